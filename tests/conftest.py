"""Pytest configuration and fixtures for natural-api tests.

This file provides:
- RecordingExecutor: In-memory Executor that records every RequestSpec
- RecordingReporter / CountingAuthProvider: Observable collaborators
- make_result: ResultContext factory with sensible defaults
- mock_client: httpx.Client backed by httpx.MockTransport
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable

import httpx
import pytest

from natural_api.auth import AuthProvider
from natural_api.executor import Executor
from natural_api.models import HttpMethod, RequestSpec
from natural_api.reporting import Reporter
from natural_api.result import ResultContext

BASE_URL = "https://api.test"


def _encode_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body)


def make_result(
    status_code: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
    endpoint: str = "/test",
    method: HttpMethod = HttpMethod.GET,
    set_cookies: list[str] | None = None,
    elapsed_ms: float = 5.0,
) -> ResultContext:
    """Create a ResultContext for testing validation.

    Non-string bodies are JSON-encoded; strings are used as the raw body.
    """
    return ResultContext(
        status_code=status_code,
        headers=headers or {},
        raw_body=_encode_body(body),
        request=RequestSpec(endpoint=endpoint, method=method),
        elapsed_ms=elapsed_ms,
        set_cookies=set_cookies,
    )


class RecordingExecutor(Executor):
    """Executor that records specs and answers with canned responses.

    Usage:
        executor = RecordingExecutor(status_code=201, body={"id": 1})
        api = Api(executor)
        api.for_("/users").post({"name": "Ted"})
        assert executor.last_spec.method == HttpMethod.POST
    """

    def __init__(
        self,
        status_code: int = 200,
        body: Any = None,
        headers: dict[str, str] | None = None,
        error: BaseException | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        self.specs: list[RequestSpec] = []
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.error = error
        self.reporter = reporter

    @property
    def last_spec(self) -> RequestSpec:
        return self.specs[-1]

    def execute(self, spec: RequestSpec) -> ResultContext:
        self.specs.append(spec)
        if self.error is not None:
            raise self.error
        return ResultContext(
            status_code=self.status_code,
            headers=self.headers,
            raw_body=_encode_body(self.body),
            request=spec,
        )


class AuthRecordingExecutor(RecordingExecutor):
    """RecordingExecutor that declares the authenticated capability."""

    supports_auth = True

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.auth_calls: list[tuple[Any, ...]] = []

    def execute_with_auth(
        self,
        spec: RequestSpec,
        auth_provider: AuthProvider | None,
        username: str | None,
        password: str | None,
        suppress_auth: bool,
    ) -> ResultContext:
        self.auth_calls.append((auth_provider, username, password, suppress_auth))
        return super().execute_with_auth(spec, auth_provider, username, password, suppress_auth)


class RecordingReporter(Reporter):
    """Reporter that records (event, detail) tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def on_request_sent(self, spec: RequestSpec) -> None:
        self.events.append(("request", spec.endpoint))

    def on_response_received(self, result: ResultContext) -> None:
        self.events.append(("response", result.status_code))

    def on_assertion_passed(self, message: str, result: ResultContext) -> None:
        self.events.append(("passed", message))

    def on_assertion_failed(self, message: str, result: ResultContext) -> None:
        self.events.append(("failed", message))

    def names(self) -> list[str]:
        return [event for event, _ in self.events]


class CountingAuthProvider(AuthProvider):
    """AuthProvider that records calls and returns a fixed token."""

    def __init__(self, token: str | None = "tok-123") -> None:
        self.token = token
        self.calls: list[tuple[str | None, str | None]] = []

    def get_token(self, username: str | None = None, password: str | None = None) -> str | None:
        self.calls.append((username, password))
        return self.token


class SlowAuthProvider(CountingAuthProvider):
    """AuthProvider whose token fetch blocks, like a call to a token service."""

    def __init__(self, delay: float = 0.3, token: str | None = "slow-token") -> None:
        super().__init__(token)
        self.delay = delay

    def get_token(self, username: str | None = None, password: str | None = None) -> str | None:
        time.sleep(self.delay)
        return super().get_token(username, password)


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def auth_provider() -> CountingAuthProvider:
    return CountingAuthProvider()


def mock_client(
    handler: Callable[[httpx.Request], httpx.Response],
    base_url: str = BASE_URL,
) -> httpx.Client:
    """httpx.Client that answers through handler instead of the network."""
    return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler))
