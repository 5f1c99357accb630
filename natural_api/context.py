"""Context - The fluent, immutable request builder.

Every modifier returns a new ApiContext wrapping a new RequestSpec; the
receiver is never changed, so contexts can be shared between threads and
branched freely. Verb methods execute the request and return a
ResultContext.

Usage:
    result = (
        api.for_("/users/{id}")
        .with_path_param("id", 42)
        .with_header("Accept", "application/json")
        .as_user("alice", "s3cret")
        .get()
    )
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from natural_api.auth import AUTHORIZATION, AuthProvider, format_auth_value
from natural_api.errors import ApiError, ApiExecutionError
from natural_api.executor import Executor, apply_auth
from natural_api.models import HttpMethod, RequestSpec
from natural_api.reporting import Reporter, select_reporter
from natural_api.result import ResultContext

_NO_BODY = object()


def _executor_failure(error: Exception, spec: RequestSpec) -> ApiExecutionError:
    """Wrap an exception that escaped an executor without being converted."""
    return ApiExecutionError("Error during HTTP request execution", error, spec)


def validate_endpoint(endpoint: Any) -> str:
    """Reject null, blank and slash-only (length > 1) endpoints; accept everything else."""
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ValueError("Endpoint cannot be null or empty")
    trimmed = endpoint.strip()
    if len(trimmed) > 1 and all(c == "/" for c in trimmed):
        raise ValueError("Endpoint cannot consist only of slashes")
    return endpoint


@dataclass(frozen=True)
class ChainSettings:
    """What a chain shares with every context and result derived from it."""

    executor: Executor
    auth_provider: AuthProvider | None = None
    defaults_reporter: Reporter | None = None
    bound_reporter: Reporter | None = None


class ApiContext:
    """Builder state before execution."""

    def __init__(self, spec: RequestSpec, settings: ChainSettings) -> None:
        if spec is None:
            raise TypeError("spec cannot be None")
        if settings is None:
            raise TypeError("settings cannot be None")
        self._spec = spec
        self._settings = settings

    @classmethod
    def start(cls, endpoint: str, settings: ChainSettings, **spec_fields: Any) -> ApiContext:
        """Begin a chain at endpoint, used verbatim."""
        return cls(RequestSpec(endpoint=validate_endpoint(endpoint), **spec_fields), settings)

    @property
    def spec(self) -> RequestSpec:
        return self._spec

    @property
    def settings(self) -> ChainSettings:
        return self._settings

    def _derive(self, spec: RequestSpec) -> ApiContext:
        return ApiContext(spec, self._settings)

    # -------------------------------------------------------------------------
    # Modifiers
    # -------------------------------------------------------------------------

    def with_header(self, key: str, value: str) -> ApiContext:
        return self._derive(self._spec.with_header(key, value))

    def with_headers(self, headers: Mapping[str, str] | Any) -> ApiContext:
        return self._derive(self._spec.with_headers(headers))

    def with_query_param(self, key: str, value: Any) -> ApiContext:
        return self._derive(self._spec.with_query_param(key, value))

    def with_query_params(self, parameters: Mapping[str, Any] | Any) -> ApiContext:
        return self._derive(self._spec.with_query_params(parameters))

    def with_path_param(self, key: str, value: Any) -> ApiContext:
        return self._derive(self._spec.with_path_param(key, value))

    def with_path_params(self, parameters: Mapping[str, Any] | Any) -> ApiContext:
        return self._derive(self._spec.with_path_params(parameters))

    def with_cookie(self, name: str, value: str) -> ApiContext:
        return self._derive(self._spec.with_cookie(name, value))

    def with_cookies(self, cookies: Mapping[str, str]) -> ApiContext:
        return self._derive(self._spec.with_cookies(cookies))

    def clear_cookies(self) -> ApiContext:
        return self._derive(self._spec.clear_cookies())

    def using_auth(self, scheme_or_token: str) -> ApiContext:
        """Set Authorization directly. A bare token is sent as Bearer."""
        return self.with_header(AUTHORIZATION, format_auth_value(scheme_or_token))

    def using_token(self, token: str) -> ApiContext:
        if not isinstance(token, str) or not token.strip():
            raise ValueError("Token cannot be null or empty")
        return self.using_auth(f"Bearer {token}")

    def without_auth(self) -> ApiContext:
        """Skip the auth provider for this request. Explicit Authorization headers are kept."""
        return self._derive(self._spec.without_auth())

    def as_user(self, username: str, password: str | None = None) -> ApiContext:
        """Identity passed to the auth provider for token resolution."""
        if not isinstance(username, str) or not username.strip():
            raise ValueError("Username cannot be null or empty")
        return self._derive(self._spec.as_user(username, password))

    def with_timeout(self, timeout: float | timedelta) -> ApiContext:
        return self._derive(self._spec.with_timeout(timeout))

    def with_reporter(self, reporter: Reporter) -> ApiContext:
        if reporter is None:
            raise TypeError("Reporter cannot be None")
        return self._derive(self._spec.with_reporter(reporter))

    # -------------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------------

    def get(self) -> ResultContext:
        return self._execute(HttpMethod.GET)

    def delete(self) -> ResultContext:
        return self._execute(HttpMethod.DELETE)

    def post(self, body: Any = None) -> ResultContext:
        return self._execute(HttpMethod.POST, body)

    def put(self, body: Any = None) -> ResultContext:
        return self._execute(HttpMethod.PUT, body)

    def patch(self, body: Any = None) -> ResultContext:
        return self._execute(HttpMethod.PATCH, body)

    async def aget(self) -> ResultContext:
        return await self._aexecute(HttpMethod.GET)

    async def adelete(self) -> ResultContext:
        return await self._aexecute(HttpMethod.DELETE)

    async def apost(self, body: Any = None) -> ResultContext:
        return await self._aexecute(HttpMethod.POST, body)

    async def aput(self, body: Any = None) -> ResultContext:
        return await self._aexecute(HttpMethod.PUT, body)

    async def apatch(self, body: Any = None) -> ResultContext:
        return await self._aexecute(HttpMethod.PATCH, body)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _active_reporter(self) -> Reporter:
        settings = self._settings
        return select_reporter(
            self._spec.reporter,
            settings.defaults_reporter,
            settings.bound_reporter,
            settings.executor.reporter,
        )

    def _prepare(self, method: HttpMethod, body: Any) -> RequestSpec:
        spec = self._spec.with_method(method)
        if body is not _NO_BODY:
            spec = spec.with_body(body)
        return spec

    def _uses_executor_auth(self) -> bool:
        return self._settings.auth_provider is not None and self._settings.executor.supports_auth

    def _apply_auth(self, spec: RequestSpec) -> RequestSpec:
        """Resolve the provider token here, for executors that cannot."""
        return apply_auth(
            spec,
            self._settings.auth_provider,
            spec.username,
            spec.password,
            spec.suppress_auth,
        )

    def _finish(self, result: ResultContext, reporter: Reporter) -> ResultContext:
        bound = result.bind(self._settings, reporter)
        reporter.on_response_received(bound)
        return bound

    def _execute(self, method: HttpMethod, body: Any = _NO_BODY) -> ResultContext:
        spec = self._prepare(method, body)
        reporter = self._active_reporter()
        executor = self._settings.executor

        if self._uses_executor_auth():
            reporter.on_request_sent(spec)
            try:
                result = executor.execute_with_auth(
                    spec,
                    self._settings.auth_provider,
                    spec.username,
                    spec.password,
                    spec.suppress_auth,
                )
            except ApiError:
                raise
            except Exception as e:
                raise _executor_failure(e, spec) from e
        else:
            spec = self._apply_auth(spec)
            reporter.on_request_sent(spec)
            try:
                result = executor.execute(spec)
            except ApiError:
                raise
            except Exception as e:
                raise _executor_failure(e, spec) from e

        return self._finish(result, reporter)

    async def _aexecute(self, method: HttpMethod, body: Any = _NO_BODY) -> ResultContext:
        spec = self._prepare(method, body)
        reporter = self._active_reporter()
        executor = self._settings.executor

        if self._uses_executor_auth():
            reporter.on_request_sent(spec)
            try:
                result = await executor.aexecute_with_auth(
                    spec,
                    self._settings.auth_provider,
                    spec.username,
                    spec.password,
                    spec.suppress_auth,
                )
            except ApiError:
                raise
            except Exception as e:
                raise _executor_failure(e, spec) from e
        else:
            if self._settings.auth_provider is not None:
                spec = await asyncio.to_thread(self._apply_auth, spec)
            reporter.on_request_sent(spec)
            try:
                result = await executor.aexecute(spec)
            except ApiError:
                raise
            except Exception as e:
                raise _executor_failure(e, spec) from e

        return self._finish(result, reporter)

    def __repr__(self) -> str:
        return f"ApiContext({self._spec.endpoint!r})"
