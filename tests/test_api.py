"""Tests for the Api entry point: endpoint resolution, defaults and lifecycle."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

from natural_api.api import Api, is_absolute_url, resolve_endpoint
from natural_api.auth import StaticTokenProvider
from natural_api.errors import ConfigError
from natural_api.executor import Executor, HttpxExecutor
from natural_api.models import ApiDefaults
from natural_api.reporting import CompactReporter
from tests.conftest import RecordingExecutor, mock_client


class TestResolveEndpoint:
    @pytest.mark.parametrize(
        ("base", "endpoint", "expected"),
        [
            ("https://api.test", "/users", "https://api.test/users"),
            ("https://api.test/", "/users", "https://api.test/users"),
            ("https://api.test/", "users", "https://api.test/users"),
            ("https://api.test/v1", "users/1?x=1#frag", "https://api.test/v1/users/1?x=1#frag"),
            ("https://api.test//", "//users", "https://api.test/users"),
            ("https://api.test", "/", "https://api.test/"),
        ],
    )
    def test_join_with_single_slash(self, base: str, endpoint: str, expected: str) -> None:
        assert resolve_endpoint(endpoint, base) == expected

    def test_absolute_endpoint_used_verbatim(self) -> None:
        url = "http://other.test/health"
        assert resolve_endpoint(url, "https://api.test") == url

    def test_no_base_used_verbatim(self) -> None:
        assert resolve_endpoint("/users", None) == "/users"
        assert resolve_endpoint("/users", "") == "/users"

    def test_unicode_accepted(self) -> None:
        assert resolve_endpoint("/café/ñ", None) == "/café/ñ"

    @pytest.mark.parametrize("endpoint", [None, "", "   ", "//", "///"])
    def test_rejected_patterns(self, endpoint: str | None) -> None:
        with pytest.raises(ValueError):
            resolve_endpoint(endpoint, "https://api.test")

    def test_single_slash_accepted(self) -> None:
        assert resolve_endpoint("/", None) == "/"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("https://x", True), ("ws+tls://x", True), ("/x", False), ("x://", True), ("1a://x", False)],
    )
    def test_is_absolute_url(self, value: str, expected: bool) -> None:
        assert is_absolute_url(value) is expected


class TestApiDefaults:
    def test_defaults_seed_the_spec(self) -> None:
        defaults = ApiDefaults(
            base_uri="https://api.test",
            default_headers={"Accept": "application/json"},
            timeout=7,
        )
        spec = Api(RecordingExecutor(), defaults).for_("/users").spec
        assert spec.endpoint == "https://api.test/users"
        assert spec.headers == {"Accept": "application/json"}
        assert spec.timeout == 7.0

    def test_default_headers_not_shared(self) -> None:
        defaults = ApiDefaults(default_headers={"Accept": "application/json"})
        api = Api(RecordingExecutor(), defaults)
        api.for_("/a").with_header("Accept", "text/plain")
        assert api.for_("/b").spec.headers == {"Accept": "application/json"}
        assert defaults.default_headers == {"Accept": "application/json"}

    def test_no_defaults(self) -> None:
        spec = Api(RecordingExecutor()).for_("/users").spec
        assert spec.endpoint == "/users"
        assert spec.headers == {}
        assert spec.timeout is None

    def test_base_url_overrides_defaults(self) -> None:
        api = Api(RecordingExecutor(), ApiDefaults(base_uri="https://old.test"), base_url="https://new.test")
        assert api.for_("/x").spec.endpoint == "https://new.test/x"
        assert api.defaults.base_uri == "https://new.test"

    def test_invalid_endpoint_rejected(self) -> None:
        with pytest.raises(ValueError):
            Api(RecordingExecutor()).for_("  ")


class TestLifecycle:
    def test_owned_executor_closed(self) -> None:
        with Api() as api:
            assert isinstance(api.executor, HttpxExecutor)
            client = api.executor._client
        assert client.is_closed

    def test_borrowed_executor_left_open(self) -> None:
        executor = MagicMock(spec=Executor)
        with Api(executor):
            pass
        executor.close.assert_not_called()

    def test_end_to_end_over_mock_transport(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"path": request.url.path, "auth": request.headers.get("authorization")})

        defaults = ApiDefaults(auth_provider=StaticTokenProvider("t"))
        with HttpxExecutor(mock_client(handler)) as executor:
            body = Api(executor, defaults).for_("/users/{id}").with_path_param("id", 42).get().should_return(dict)
        assert body == {"path": "/users/42", "auth": "Bearer t"}


class TestFromConfig:
    def test_builds_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("API_TOKEN", "secret-token")
        config = tmp_path / "api.yaml"
        config.write_text(
            "base_url: https://api.test\n"
            "timeout: 5\n"
            "token: ${API_TOKEN}\n"
            "reporter: compact\n"
            "headers:\n"
            "  Accept: application/json\n"
        )

        executor = RecordingExecutor()
        api = Api.from_config(config, executor=executor)
        api.for_("/users").get()

        spec = executor.last_spec
        assert spec.endpoint == "https://api.test/users"
        assert spec.timeout == 5.0
        assert spec.headers == {"Accept": "application/json", "Authorization": "Bearer secret-token"}
        assert isinstance(api.defaults.reporter, CompactReporter)

    def test_creates_owned_executor(self, tmp_path: Path) -> None:
        config = tmp_path / "api.yaml"
        config.write_text("base_url: https://api.test\nverify_ssl: false\n")
        with Api.from_config(config) as api:
            assert isinstance(api.executor, HttpxExecutor)
            client = api.executor._client
        assert client.is_closed

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            Api.from_config(tmp_path / "missing.yaml")
