"""Data models for natural-api.

All models use Pydantic v2. RequestSpec is frozen: every with_* mutator
returns a new instance with copied collection fields, so a spec captured
earlier in a chain never observes later modifiers.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from natural_api.auth import AuthProvider
from natural_api.reporting import Reporter


# Fallback when neither the request nor the defaults provider sets a timeout
DEFAULT_TIMEOUT = 30.0


# =============================================================================
# Core Request Models
# =============================================================================


class HttpMethod(str, Enum):
    """HTTP verbs a chain can issue."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# Only these verbs serialize a request body
BODY_METHODS = frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH})


def timeout_seconds(value: Any) -> float:
    """Normalize a timeout given as seconds or timedelta. Must be strictly positive."""
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(
            f"Timeout must be seconds or a timedelta, got {type(value).__name__}"
        )
    else:
        seconds = float(value)
    if seconds <= 0:
        raise ValueError("Timeout must be positive")
    return seconds


def structured_items(source: Any) -> dict[str, Any]:
    """Read name/value pairs from a mapping or a structured value.

    Accepts mappings, pydantic models, dataclass instances and namedtuples.
    For non-mapping sources, None members become empty strings.
    """
    if source is None:
        raise TypeError("Parameters cannot be None")
    if isinstance(source, Mapping):
        return dict(source)

    if isinstance(source, BaseModel):
        items = source.model_dump()
    elif dataclasses.is_dataclass(source) and not isinstance(source, type):
        items = {f.name: getattr(source, f.name) for f in dataclasses.fields(source)}
    elif isinstance(source, tuple) and hasattr(source, "_asdict"):
        items = source._asdict()
    else:
        raise TypeError(
            f"Expected a mapping or structured value, got {type(source).__name__}"
        )
    return {k: ("" if v is None else v) for k, v in items.items()}


def _require_key(key: Any, kind: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise ValueError(f"{kind} key cannot be null or empty")
    return key


def _set_header(headers: dict[str, str], key: str, value: Any) -> None:
    # Header names are case-insensitive: the latest spelling replaces earlier ones
    for existing in [k for k in headers if k.lower() == key.lower()]:
        del headers[existing]
    headers[key] = str(value)


class RequestSpec(BaseModel):
    """One pending request, threaded through a chain until a verb executes it.

    Path parameters are substituted into {name} placeholders at execution
    time, not here. Cookies are merged into a single Cookie header by the
    executor.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    endpoint: str = Field(description="Absolute or base-relative URL, may contain {name} placeholders")
    method: HttpMethod = Field(default=HttpMethod.GET, description="HTTP method")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    query_params: dict[str, Any] = Field(default_factory=dict, description="Query parameters")
    path_params: dict[str, Any] = Field(default_factory=dict, description="Path placeholder values")
    cookies: dict[str, str] = Field(default_factory=dict, description="Request cookies")
    body: Any = Field(default=None, description="Body, serialized to JSON for POST/PUT/PATCH")
    timeout: float | None = Field(default=None, description="Timeout in seconds")
    suppress_auth: bool = Field(default=False, description="Skip authentication resolution")
    username: str | None = Field(default=None, description="Identity passed to the auth provider")
    password: str | None = Field(default=None, description="Password passed to the auth provider")
    reporter: Reporter | None = Field(default=None, description="Per-call reporter override")

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> float | None:
        if v is None:
            return None
        return timeout_seconds(v)

    def _replace(self, **changes: Any) -> RequestSpec:
        # Collections are always copied so the new spec shares no mutable state
        update: dict[str, Any] = {
            "headers": dict(self.headers),
            "query_params": dict(self.query_params),
            "path_params": dict(self.path_params),
            "cookies": dict(self.cookies),
        }
        update.update(changes)
        return self.model_copy(update=update)

    def with_header(self, key: str, value: str) -> RequestSpec:
        _require_key(key, "Header")
        headers = dict(self.headers)
        _set_header(headers, key, value)
        return self._replace(headers=headers)

    def with_headers(self, headers: Any) -> RequestSpec:
        merged = dict(self.headers)
        for key, value in structured_items(headers).items():
            _set_header(merged, key, value)
        return self._replace(headers=merged)

    def with_query_param(self, key: str, value: Any) -> RequestSpec:
        _require_key(key, "Query parameter")
        params = dict(self.query_params)
        params[key] = value
        return self._replace(query_params=params)

    def with_query_params(self, parameters: Any) -> RequestSpec:
        params = dict(self.query_params)
        params.update(structured_items(parameters))
        return self._replace(query_params=params)

    def with_path_param(self, key: str, value: Any) -> RequestSpec:
        _require_key(key, "Path parameter")
        params = dict(self.path_params)
        params[key] = value
        return self._replace(path_params=params)

    def with_path_params(self, parameters: Any) -> RequestSpec:
        params = dict(self.path_params)
        params.update(structured_items(parameters))
        return self._replace(path_params=params)

    def with_cookie(self, name: str, value: str) -> RequestSpec:
        _require_key(name, "Cookie")
        cookies = dict(self.cookies)
        cookies[name] = str(value)
        return self._replace(cookies=cookies)

    def with_cookies(self, cookies: Mapping[str, str]) -> RequestSpec:
        merged = dict(self.cookies)
        for name, value in structured_items(cookies).items():
            merged[name] = str(value)
        return self._replace(cookies=merged)

    def clear_cookies(self) -> RequestSpec:
        return self._replace(cookies={})

    def with_method(self, method: HttpMethod | str) -> RequestSpec:
        if isinstance(method, str):
            method = HttpMethod(method.upper())
        return self._replace(method=method)

    def with_body(self, body: Any) -> RequestSpec:
        return self._replace(body=body)

    def with_timeout(self, timeout: float | timedelta) -> RequestSpec:
        return self._replace(timeout=timeout_seconds(timeout))

    def without_auth(self) -> RequestSpec:
        return self._replace(suppress_auth=True)

    def as_user(self, username: str, password: str | None = None) -> RequestSpec:
        return self._replace(username=username, password=password)

    def with_reporter(self, reporter: Reporter) -> RequestSpec:
        return self._replace(reporter=reporter)


# =============================================================================
# Defaults Provider
# =============================================================================


class ApiDefaults(BaseModel):
    """Process-wide defaults, consulted once per Api.for_() call.

    An Api without defaults behaves as ApiDefaults(): no base URI, no
    default headers, the executor's fallback timeout, no auth provider and
    the next reporter in the selection order.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    base_uri: str | None = Field(default=None, description="Base URI joined to relative endpoints")
    default_headers: dict[str, str] = Field(
        default_factory=dict, description="Headers seeded into every request"
    )
    timeout: float | None = Field(default=None, description="Default timeout in seconds")
    auth_provider: AuthProvider | None = Field(
        default=None, description="Token provider for automatic Authorization headers"
    )
    reporter: Reporter | None = Field(default=None, description="Reporter for chains started here")

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> float | None:
        if v is None:
            return None
        return timeout_seconds(v)


# =============================================================================
# Configuration File Models
# =============================================================================


class ApiConfigFile(BaseModel):
    """Top-level YAML configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    base_url: str | None = Field(default=None, description="Base URL for relative endpoints")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Default headers (supports ${ENV_VAR} substitution)",
    )
    timeout: float | None = Field(default=None, gt=0, description="Default timeout in seconds")
    token: str | None = Field(default=None, description="Static bearer token")
    reporter: str | None = Field(default=None, description="Reporter name from the registry")
    verify_ssl: bool = Field(default=True, description="Verify server certificates")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")
