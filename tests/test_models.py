"""Tests for RequestSpec, ApiDefaults and their helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import NamedTuple

import pytest
from pydantic import BaseModel, ValidationError

from natural_api.auth import StaticTokenProvider
from natural_api.models import (
    ApiConfigFile,
    ApiDefaults,
    HttpMethod,
    RequestSpec,
    structured_items,
    timeout_seconds,
)
from natural_api.reporting import NullReporter


@pytest.fixture
def spec() -> RequestSpec:
    return RequestSpec(endpoint="/users", headers={"Accept": "application/json"})


class TestImmutability:
    def test_with_header_returns_new_spec(self, spec: RequestSpec) -> None:
        updated = spec.with_header("X-Trace", "1")
        assert updated is not spec
        assert spec.headers == {"Accept": "application/json"}
        assert updated.headers == {"Accept": "application/json", "X-Trace": "1"}

    def test_collections_are_not_aliased(self, spec: RequestSpec) -> None:
        updated = spec.with_query_param("page", 1)
        assert updated.headers == spec.headers
        assert updated.headers is not spec.headers
        assert updated.path_params is not spec.path_params
        assert updated.cookies is not spec.cookies

    def test_every_mutator_leaves_original_untouched(self, spec: RequestSpec) -> None:
        spec.with_path_param("id", 1)
        spec.with_cookie("session", "abc")
        spec.with_body({"a": 1})
        spec.with_timeout(5)
        spec.without_auth()
        spec.as_user("alice", "pw")
        spec.with_method("POST")
        assert spec == RequestSpec(endpoint="/users", headers={"Accept": "application/json"})

    def test_attribute_assignment_rejected(self, spec: RequestSpec) -> None:
        with pytest.raises(ValidationError):
            spec.endpoint = "/other"

    def test_unknown_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RequestSpec(endpoint="/users", verb="GET")


class TestKeyedSetters:
    def test_header_overwrite_keeps_size(self, spec: RequestSpec) -> None:
        updated = spec.with_header("X", "a").with_header("X", "b")
        assert updated.headers["X"] == "b"
        assert len(updated.headers) == 2

    def test_query_param_overwrite(self, spec: RequestSpec) -> None:
        updated = spec.with_query_param("page", 1).with_query_param("page", 2)
        assert updated.query_params == {"page": 2}

    def test_path_param_overwrite(self, spec: RequestSpec) -> None:
        updated = spec.with_path_param("id", 1).with_path_param("id", 7)
        assert updated.path_params == {"id": 7}

    @pytest.mark.parametrize("key", ["", "   ", None])
    def test_empty_keys_rejected(self, spec: RequestSpec, key: str | None) -> None:
        with pytest.raises(ValueError):
            spec.with_header(key, "v")
        with pytest.raises(ValueError):
            spec.with_query_param(key, "v")
        with pytest.raises(ValueError):
            spec.with_path_param(key, "v")

    def test_header_values_are_strings(self, spec: RequestSpec) -> None:
        assert spec.with_header("X-Count", 3).headers["X-Count"] == "3"

    def test_header_names_replace_case_insensitively(self, spec: RequestSpec) -> None:
        updated = spec.with_header("content-type", "text/plain").with_header("Content-Type", "application/json")
        assert updated.headers == {"Accept": "application/json", "Content-Type": "application/json"}

    def test_bulk_headers_replace_case_insensitively(self, spec: RequestSpec) -> None:
        updated = spec.with_header("ACCEPT", "text/plain").with_headers({"Accept": "application/json", "X-A": "1"})
        assert updated.headers == {"Accept": "application/json", "X-A": "1"}


class TestBulkSetters:
    def test_mapping_merge_overwrites(self) -> None:
        spec = RequestSpec(endpoint="/x", query_params={"a": 1, "b": 2})
        updated = spec.with_query_params({"b": 3, "c": 4})
        assert updated.query_params == {"a": 1, "b": 3, "c": 4}

    def test_empty_source_is_noop(self, spec: RequestSpec) -> None:
        assert spec.with_query_params({}) == spec
        assert spec.with_path_params({}) == spec

    def test_none_source_rejected(self, spec: RequestSpec) -> None:
        with pytest.raises(TypeError):
            spec.with_query_params(None)
        with pytest.raises(TypeError):
            spec.with_path_params(None)

    def test_dataclass_source(self, spec: RequestSpec) -> None:
        @dataclass
        class Filters:
            status: str
            limit: int | None = None

        updated = spec.with_query_params(Filters(status="active"))
        assert updated.query_params == {"status": "active", "limit": ""}

    def test_pydantic_source(self, spec: RequestSpec) -> None:
        class Ids(BaseModel):
            org: int
            user: int

        updated = spec.with_path_params(Ids(org=1, user=2))
        assert updated.path_params == {"org": 1, "user": 2}

    def test_namedtuple_source(self, spec: RequestSpec) -> None:
        class Page(NamedTuple):
            page: int
            size: int

        assert spec.with_query_params(Page(2, 50)).query_params == {"page": 2, "size": 50}

    def test_headers_merge(self, spec: RequestSpec) -> None:
        updated = spec.with_headers({"Accept": "text/plain", "X-Id": 5})
        assert updated.headers == {"Accept": "text/plain", "X-Id": "5"}

    def test_unstructured_source_rejected(self, spec: RequestSpec) -> None:
        with pytest.raises(TypeError):
            spec.with_query_params(42)


class TestCookies:
    def test_with_cookie_and_clear(self, spec: RequestSpec) -> None:
        updated = spec.with_cookie("session", "abc").with_cookies({"theme": "dark"})
        assert updated.cookies == {"session": "abc", "theme": "dark"}
        assert updated.clear_cookies().cookies == {}

    def test_empty_cookie_name_rejected(self, spec: RequestSpec) -> None:
        with pytest.raises(ValueError):
            spec.with_cookie("", "abc")


class TestTimeout:
    def test_seconds_and_timedelta(self, spec: RequestSpec) -> None:
        assert spec.with_timeout(5).timeout == 5.0
        assert spec.with_timeout(timedelta(milliseconds=1500)).timeout == 1.5

    @pytest.mark.parametrize("value", [0, -1, timedelta(0), timedelta(seconds=-3)])
    def test_non_positive_rejected(self, spec: RequestSpec, value: object) -> None:
        with pytest.raises(ValueError):
            spec.with_timeout(value)

    @pytest.mark.parametrize("value", ["5", True, None])
    def test_wrong_type_rejected(self, value: object) -> None:
        with pytest.raises(TypeError):
            timeout_seconds(value)

    def test_constructor_accepts_timedelta(self) -> None:
        assert RequestSpec(endpoint="/x", timeout=timedelta(seconds=2)).timeout == 2.0

    def test_constructor_rejects_zero(self) -> None:
        with pytest.raises(ValidationError):
            RequestSpec(endpoint="/x", timeout=0)


class TestMethodAndAuthFields:
    def test_default_method_is_get(self, spec: RequestSpec) -> None:
        assert spec.method == HttpMethod.GET

    def test_with_method_accepts_strings(self, spec: RequestSpec) -> None:
        assert spec.with_method("patch").method == HttpMethod.PATCH

    def test_with_method_rejects_unknown(self, spec: RequestSpec) -> None:
        with pytest.raises(ValueError):
            spec.with_method("TRACE")

    def test_as_user_and_without_auth(self, spec: RequestSpec) -> None:
        updated = spec.as_user("alice", "s3cret").without_auth()
        assert (updated.username, updated.password, updated.suppress_auth) == ("alice", "s3cret", True)

    def test_with_reporter(self, spec: RequestSpec) -> None:
        reporter = NullReporter()
        assert spec.with_reporter(reporter).reporter is reporter


class TestStructuredItems:
    def test_mapping_values_kept(self) -> None:
        assert structured_items({"a": None}) == {"a": None}

    def test_none_rejected(self) -> None:
        with pytest.raises(TypeError):
            structured_items(None)

    def test_dataclass_type_rejected(self) -> None:
        @dataclass
        class Empty:
            pass

        with pytest.raises(TypeError):
            structured_items(Empty)


class TestApiDefaults:
    def test_empty_defaults(self) -> None:
        defaults = ApiDefaults()
        assert defaults.base_uri is None
        assert defaults.default_headers == {}
        assert defaults.timeout is None
        assert defaults.auth_provider is None
        assert defaults.reporter is None

    def test_accepts_collaborators(self) -> None:
        provider = StaticTokenProvider("t")
        defaults = ApiDefaults(auth_provider=provider, timeout=timedelta(seconds=3))
        assert defaults.auth_provider is provider
        assert defaults.timeout == 3.0

    def test_rejects_non_provider(self) -> None:
        with pytest.raises(ValidationError):
            ApiDefaults(auth_provider="token")

    def test_rejects_negative_timeout(self) -> None:
        with pytest.raises(ValidationError):
            ApiDefaults(timeout=-1)


class TestApiConfigFile:
    def test_minimal(self) -> None:
        config = ApiConfigFile.model_validate({})
        assert config.verify_ssl is True
        assert config.headers == {}

    def test_rejects_unknown_keys(self) -> None:
        with pytest.raises(ValidationError):
            ApiConfigFile.model_validate({"base_uri": "https://x"})

    def test_rejects_zero_timeout(self) -> None:
        with pytest.raises(ValidationError):
            ApiConfigFile.model_validate({"timeout": 0})
