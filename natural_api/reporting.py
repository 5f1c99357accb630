"""Reporting - Observers notified around each exchange.

Reporters never affect control flow. A chain picks exactly one reporter,
highest priority first:

1. per-call reporter set with ApiContext.with_reporter()
2. reporter on the active ApiDefaults
3. reporter bound to the Api entry point (or its executor)
4. NullReporter

Reporters may be invoked from many chains at once, so implementations here
hold no per-exchange state.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING, Any, Callable, TextIO

from jsonpath_ng import parse as jsonpath_parse
from pydantic_core import to_json

if TYPE_CHECKING:
    from natural_api.models import RequestSpec
    from natural_api.result import ResultContext


MASKED = "***MASKED***"
REDACTED = "[REDACTED]"

# Header names containing any of these are masked in console output
_SENSITIVE_HEADER_MARKERS = (
    "authorization",
    "auth",
    "token",
    "password",
    "secret",
    "apikey",
    "api-key",
    "bearer",
    "cookie",
)

# JSON keys containing any of these are masked in console output
_SENSITIVE_BODY_MARKERS = ("password", "token", "secret")


class Reporter:
    """Base reporter. Every hook is a no-op; subclasses override what they need."""

    def on_request_sent(self, spec: RequestSpec) -> None:
        pass

    def on_response_received(self, result: ResultContext) -> None:
        pass

    def on_assertion_passed(self, message: str, result: ResultContext) -> None:
        pass

    def on_assertion_failed(self, message: str, result: ResultContext) -> None:
        pass


class NullReporter(Reporter):
    """Reports nothing."""


NULL_REPORTER = NullReporter()


def select_reporter(*candidates: Reporter | None) -> Reporter:
    """Return the first configured reporter, in priority order, or NULL_REPORTER."""
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return NULL_REPORTER


# =============================================================================
# Masking helpers
# =============================================================================


def mask_header(key: str, value: str) -> str:
    lower = key.lower()
    if any(marker in lower for marker in _SENSITIVE_HEADER_MARKERS):
        return MASKED
    return value


def _mask_sensitive_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            k: MASKED
            if isinstance(k, str) and any(m in k.lower() for m in _SENSITIVE_BODY_MARKERS)
            else _mask_sensitive_keys(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_mask_sensitive_keys(item) for item in data]
    return data


# =============================================================================
# Console reporters
# =============================================================================


class ConsoleReporter(Reporter):
    """Prints request and response blocks with sensitive values masked.

    Usage:
        reporter = ConsoleReporter(redact_fields=["$.card.number"])
        api = Api(reporter=reporter)

    redact_fields are JSONPath expressions applied to JSON bodies in
    addition to the built-in key masking. They are compiled up front so a
    bad expression fails at construction.
    """

    def __init__(self, stream: TextIO | None = None, redact_fields: list[str] | tuple[str, ...] = ()) -> None:
        self._stream = stream
        self._redact_paths = [jsonpath_parse(path) for path in redact_fields]

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so pytest's capture replacement of sys.stdout is honored
        return self._stream if self._stream is not None else sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self.stream)

    def on_request_sent(self, spec: RequestSpec) -> None:
        self._print("--- API Request ---")
        self._print(f"Method: {spec.method.value}")
        self._print(f"Url:    {spec.endpoint}")
        self._print_headers(spec.headers)
        if spec.body is not None:
            self._print("Body:")
            self._print(self.format_body(spec.body))

    def on_response_received(self, result: ResultContext) -> None:
        self._print("--- API Response ---")
        self._print(f"Status:   {result.status_code}")
        self._print(f"Duration: {result.elapsed_ms:.0f} ms")
        self._print_headers(result.headers)
        if result.raw_body and result.raw_body.strip():
            self._print("Body:")
            self._print(self.format_body(result.raw_body))

    def on_assertion_passed(self, message: str, result: ResultContext) -> None:
        self._print(f"PASS Assertion passed: {message}")

    def on_assertion_failed(self, message: str, result: ResultContext) -> None:
        self._print(f"FAIL Assertion failed: {message}")
        if result.raw_body and result.raw_body.strip():
            self._print("Response Body:")
            self._print(self.format_body(result.raw_body))

    def _print_headers(self, headers: dict[str, str]) -> None:
        if not headers:
            return
        self._print("Headers:")
        for key, value in headers.items():
            self._print(f"  {key}: {mask_header(key, value)}")

    def format_body(self, body: Any) -> str:
        """Pretty-print a body, masking and redacting JSON content.

        Strings that are not JSON are returned as-is.
        """
        if isinstance(body, (str, bytes)):
            try:
                data = json.loads(body)
            except ValueError:
                return body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        else:
            data = json.loads(to_json(body, fallback=str))

        data = _mask_sensitive_keys(data)
        for compiled in self._redact_paths:
            if compiled.find(data):
                data = compiled.update(data, REDACTED)
        return json.dumps(data, indent=2, ensure_ascii=False)


class CompactReporter(ConsoleReporter):
    """One line per event."""

    def on_request_sent(self, spec: RequestSpec) -> None:
        self._print(f"REQ {spec.method.value} {spec.endpoint}")

    def on_response_received(self, result: ResultContext) -> None:
        self._print(f"RES {result.status_code} ({result.elapsed_ms:.0f}ms)")

    def on_assertion_passed(self, message: str, result: ResultContext) -> None:
        self._print(f"PASS: {message}")

    def on_assertion_failed(self, message: str, result: ResultContext) -> None:
        self._print(f"FAIL: {message}")


class LoggingReporter(Reporter):
    """Routes events to the standard logging module."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("natural_api.exchange")

    def on_request_sent(self, spec: RequestSpec) -> None:
        self._logger.info("REQ %s %s", spec.method.value, spec.endpoint)

    def on_response_received(self, result: ResultContext) -> None:
        self._logger.info(
            "RES %s %s -> %d (%.0fms)",
            result.request.method.value,
            result.request.endpoint,
            result.status_code,
            result.elapsed_ms,
        )

    def on_assertion_passed(self, message: str, result: ResultContext) -> None:
        self._logger.info("PASS: %s", message)

    def on_assertion_failed(self, message: str, result: ResultContext) -> None:
        self._logger.warning("FAIL: %s", message)


# =============================================================================
# Registry
# =============================================================================


class ReporterRegistry:
    """Maps reporter names (case-insensitive) to factories.

    Used by configuration files, which name a reporter instead of
    constructing one.
    """

    def __init__(
        self,
        factories: dict[str, Callable[[], Reporter]] | None = None,
        default: str = "default",
    ) -> None:
        if factories is None:
            factories = {
                "default": ConsoleReporter,
                "console": ConsoleReporter,
                "compact": CompactReporter,
                "logging": LoggingReporter,
                "null": NullReporter,
            }
        self._factories = {name.lower(): factory for name, factory in factories.items()}
        self._default = default.lower()

    def register(self, name: str, factory: Callable[[], Reporter]) -> None:
        if not name or not name.strip():
            raise ValueError("Reporter name cannot be empty")
        self._factories[name.lower()] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def get(self, name: str | None) -> Reporter:
        """Build the reporter registered under name; blank names give the default."""
        key = name.strip().lower() if name and name.strip() else self._default
        factory = self._factories.get(key)
        if factory is None:
            raise KeyError(f"Reporter '{name}' is not registered")

        reporter = factory()
        if not isinstance(reporter, Reporter):
            raise TypeError(f"Factory for reporter '{key}' returned {type(reporter).__name__}, not a Reporter")
        return reporter
