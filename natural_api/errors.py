"""Errors - The failure kinds raised by natural-api.

Two kinds are visible to callers of a chain:

- ApiExecutionError: something went wrong getting a response (network,
  outgoing body serialization, timeout/cancellation). Carries the full
  request context of the RequestSpec that was executing.
- ApiAssertionError: a response was obtained but failed a stated expectation.
  Carries expected vs. actual plus endpoint, verb and a body snippet.

Bad builder arguments are plain ValueError/TypeError raised at the call site.
"""

from __future__ import annotations

import asyncio
import socket
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from natural_api.models import RequestSpec


# Response bodies longer than this are truncated in assertion errors
BODY_SNIPPET_LIMIT = 500


class ApiError(Exception):
    """Base class for natural-api errors."""


class ConfigError(ApiError):
    """Raised when configuration loading fails."""


class BodyDecodeError(ApiError, ValueError):
    """Raised when a response body is empty or cannot be decoded to the requested type."""


# =============================================================================
# Execution Errors
# =============================================================================


class ApiExecutionError(ApiError):
    """A transport-level failure while executing a request.

    Built once, at the failure site, from the RequestSpec being executed.
    The request fields are snapshots; later changes to anything the caller
    holds do not leak into the error.
    """

    def __init__(self, message: str, inner: BaseException | None, spec: RequestSpec) -> None:
        super().__init__(message)
        self.message = message
        self.inner = inner
        self.spec = spec
        self.endpoint = spec.endpoint
        self.method = spec.method
        self.headers = dict(spec.headers)
        self.query_params = dict(spec.query_params)
        self.path_params = dict(spec.path_params)
        self.body = spec.body
        self.timeout = spec.timeout

    def __str__(self) -> str:
        lines = [f"[{self.method.value}] {self.endpoint} failed: {self.message}"]
        if self.inner is not None:
            lines.append(f"Inner Exception: {type(self.inner).__name__} - {self.inner}")
        if self.headers:
            lines.append("Headers: " + ", ".join(f"{k}={v}" for k, v in self.headers.items()))
        if self.query_params:
            lines.append(
                "Query Params: " + ", ".join(f"{k}={v}" for k, v in self.query_params.items())
            )
        if self.path_params:
            lines.append(
                "Path Params: " + ", ".join(f"{k}={v}" for k, v in self.path_params.items())
            )
        if self.body is not None:
            lines.append(f"Body: {type(self.body).__name__}")
        if self.timeout is not None:
            lines.append(f"Timeout: {self.timeout:g}s")
        return "\n".join(lines)

    def user_friendly_message(self) -> str:
        """Short rendering with the transport failure mapped to a human phrase."""
        base = f"[{self.method.value}] {self.endpoint} failed: {self.message}"
        if self.inner is None:
            return base
        return f"{base}\nCause: {describe_transport_failure(self.inner)}"


def describe_transport_failure(error: BaseException) -> str:
    """Map known transport failure categories to a short phrase.

    Order matters: httpx.ConnectError and ConnectionRefusedError are also
    OSError/TransportError subclasses, so the specific checks come first.
    """
    if isinstance(error, (httpx.ConnectError, ConnectionRefusedError)):
        return "Connection to server failed"
    if isinstance(error, (httpx.TimeoutException, TimeoutError, asyncio.CancelledError)):
        return "Request timed out"
    if isinstance(error, (socket.gaierror, httpx.TransportError, OSError)):
        return "Network connection failed"
    return str(error)


# =============================================================================
# Assertion Errors
# =============================================================================


class ApiAssertionError(ApiError, AssertionError):
    """A response failed a caller-stated expectation.

    Subclasses AssertionError so test runners report it as a test failure
    rather than an error.
    """

    def __init__(
        self,
        message: str,
        failed_expectation: str,
        actual_values: str,
        endpoint: str,
        http_verb: str,
        response_body_snippet: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.failed_expectation = failed_expectation
        self.actual_values = actual_values
        self.endpoint = endpoint
        self.http_verb = http_verb
        self.response_body_snippet = response_body_snippet

    def __str__(self) -> str:
        lines = [
            self.message,
            f"  Request:  {self.http_verb} {self.endpoint}",
            f"  Expected: {self.failed_expectation}",
            f"  Actual:   {self.actual_values}",
        ]
        if self.response_body_snippet:
            lines.append(f"  Body:     {self.response_body_snippet}")
        return "\n".join(lines)


def body_snippet(raw_body: str | None, limit: int = BODY_SNIPPET_LIMIT) -> str | None:
    """Truncate a response body for inclusion in an assertion error."""
    if not raw_body:
        return None
    if len(raw_body) <= limit:
        return raw_body
    return raw_body[:limit] + "..."
