"""Executor - Sends one RequestSpec over the wire and captures the response.

Executor is the capability a transport implements. HttpxExecutor is the
default transport, built on httpx. An executor performs exactly one network
exchange per call with no retries; every failure surfaces as
ApiExecutionError carrying the originating RequestSpec.

Executors that resolve authentication themselves set supports_auth = True
and receive the auth provider through execute_with_auth(). For the rest,
ApiContext resolves the Authorization header before calling execute().
"""

from __future__ import annotations

import asyncio
import logging
import re
import ssl
import time
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx
from pydantic_core import to_json

from natural_api.auth import AUTHORIZATION, AuthProvider, resolve_auth_header
from natural_api.errors import ApiError, ApiExecutionError
from natural_api.models import BODY_METHODS, DEFAULT_TIMEOUT, RequestSpec
from natural_api.reporting import Reporter
from natural_api.result import ResultContext

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


def _sanitize_header_value(value: str) -> str:
    """Sanitize a header value to ensure it's ASCII-safe.

    HTTP headers must contain only ASCII characters per RFC 7230. Non-ASCII
    characters are replaced with '?' so the request can still be sent.
    """
    return value.encode('ascii', errors='replace').decode('ascii')


def _param_to_string(value: Any) -> str:
    """Render a path or query parameter value for a URL."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_url(spec: RequestSpec) -> str:
    """Substitute path parameters and append query parameters.

    Every {key} with a matching path parameter is replaced by exact textual
    replacement. Placeholders without a value are left as they are.
    Query values are percent-encoded; the separator is '&' when the
    endpoint already has a query string.
    """
    url = spec.endpoint
    for key, value in spec.path_params.items():
        url = url.replace(f"{{{key}}}", _param_to_string(value))

    unresolved = _PLACEHOLDER.findall(url)
    if unresolved:
        logger.debug("Unresolved path placeholders in %s: %s", url, ", ".join(unresolved))

    if spec.query_params:
        query = "&".join(
            f"{key}={quote(_param_to_string(value), safe='')}"
            for key, value in spec.query_params.items()
        )
        url += ("&" if "?" in url else "?") + query

    return url


def _content_type(headers: dict[str, str]) -> str:
    """Media type from an explicit Content-Type header, without parameters."""
    for key, value in reversed(headers.items()):
        if key.lower() == "content-type":
            return value.split(";")[0].strip() or "application/json"
    return "application/json"


def apply_auth(
    spec: RequestSpec,
    auth_provider: AuthProvider | None,
    username: str | None,
    password: str | None,
    suppress_auth: bool,
) -> RequestSpec:
    """Return spec with the provider's Authorization header added, if one applies.

    Provider failures become ApiExecutionError.
    """
    try:
        header = resolve_auth_header(spec.headers, auth_provider, username, password, suppress_auth)
    except ApiError:
        raise
    except Exception as e:
        raise ApiExecutionError("Authentication failed", e, spec) from e
    if header is None:
        return spec
    return spec.with_header(AUTHORIZATION, header)


class Executor(ABC):
    """A transport capable of executing RequestSpecs.

    Subclasses implement execute(). Transports that attach provider tokens
    themselves set supports_auth and override execute_with_auth().
    """

    supports_auth: bool = False

    # Reporter bound to this transport; used when neither the chain nor the defaults set one
    reporter: Reporter | None = None

    @abstractmethod
    def execute(self, spec: RequestSpec) -> ResultContext:
        """Execute the request. Raises ApiExecutionError on transport failure."""

    def execute_with_auth(
        self,
        spec: RequestSpec,
        auth_provider: AuthProvider | None,
        username: str | None,
        password: str | None,
        suppress_auth: bool,
    ) -> ResultContext:
        """Execute the request, resolving the Authorization header first."""
        return self.execute(apply_auth(spec, auth_provider, username, password, suppress_auth))

    async def aexecute(self, spec: RequestSpec) -> ResultContext:
        """Async entry point. Runs execute() in a worker thread unless overridden."""
        return await asyncio.to_thread(self.execute, spec)

    async def aexecute_with_auth(
        self,
        spec: RequestSpec,
        auth_provider: AuthProvider | None,
        username: str | None,
        password: str | None,
        suppress_auth: bool,
    ) -> ResultContext:
        return await asyncio.to_thread(
            self.execute_with_auth, spec, auth_provider, username, password, suppress_auth
        )

    def close(self) -> None:
        """Release transport resources."""

    async def aclose(self) -> None:
        self.close()


class HttpxExecutor(Executor):
    """Default transport built on httpx.

    Usage:
        executor = HttpxExecutor()
        try:
            result = executor.execute(spec)
        finally:
            executor.close()

    Or with context manager:
        with HttpxExecutor() as executor:
            result = executor.execute(spec)

    Clients passed in are borrowed and left open by close(); clients built
    here are owned and closed.
    """

    supports_auth = True

    def __init__(
        self,
        client: httpx.Client | None = None,
        async_client: httpx.AsyncClient | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
        ca_bundle: str | None = None,
        ciphers: str | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            client: Existing sync client to use (not closed by this executor).
            async_client: Existing async client to use (not closed by this executor).
            transport: httpx transport for the owned sync client (e.g. httpx.MockTransport).
            async_transport: httpx transport for the owned async client.
            default_timeout: Timeout in seconds when the request sets none.
            verify_ssl: Verify server certificates.
            ca_bundle: Path to a CA bundle for verification.
            ciphers: OpenSSL cipher string.
            reporter: Reporter bound to this executor.
        """
        self._default_timeout = default_timeout
        self.reporter = reporter
        self._client_kwargs = self._build_client_kwargs(verify_ssl, ca_bundle, ciphers)

        self._owns_client = client is None
        self._client = client or httpx.Client(transport=transport, **self._client_kwargs)

        # The async client is created on first async use
        self._owns_async_client = async_client is None
        self._async_client = async_client
        self._async_transport = async_transport

    def __enter__(self) -> HttpxExecutor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    async def __aenter__(self) -> HttpxExecutor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    async def aclose(self) -> None:
        try:
            if self._owns_async_client and self._async_client is not None:
                await self._async_client.aclose()
        finally:
            self.close()

    @staticmethod
    def _build_client_kwargs(
        verify_ssl: bool, ca_bundle: str | None, ciphers: str | None
    ) -> dict[str, Any]:
        """Build TLS kwargs for httpx clients."""
        kwargs: dict[str, Any] = {}

        # Ciphers require a custom SSL context
        if ciphers:
            ssl_context = ssl.create_default_context()
            try:
                ssl_context.set_ciphers(ciphers)
            except ssl.SSLError as e:
                raise ValueError(f"Invalid cipher string '{ciphers}': {e}") from e

            if ca_bundle:
                ssl_context.load_verify_locations(ca_bundle)
            elif not verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

            kwargs["verify"] = ssl_context
        elif ca_bundle:
            kwargs["verify"] = ca_bundle
        elif not verify_ssl:
            kwargs["verify"] = False
        # else: use httpx default (True)

        return kwargs

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                transport=self._async_transport, **self._client_kwargs
            )
        return self._async_client

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def execute(self, spec: RequestSpec) -> ResultContext:
        return self.execute_with_auth(spec, None, None, None, True)

    def execute_with_auth(
        self,
        spec: RequestSpec,
        auth_provider: AuthProvider | None,
        username: str | None,
        password: str | None,
        suppress_auth: bool,
    ) -> ResultContext:
        try:
            auth_value = resolve_auth_header(
                spec.headers, auth_provider, username, password, suppress_auth
            )
            kwargs = self._build_request_kwargs(spec, auth_value)
            logger.debug("Sending %s %s", kwargs["method"], kwargs["url"])
            start_time = time.perf_counter()
            http_response = self._client.request(**kwargs)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except ApiExecutionError:
            raise
        except Exception as e:
            raise self._wrap_failure(e, spec) from e

        return self._convert_response(http_response, spec, elapsed_ms)

    # -------------------------------------------------------------------------
    # Async
    # -------------------------------------------------------------------------

    async def aexecute(self, spec: RequestSpec) -> ResultContext:
        return await self.aexecute_with_auth(spec, None, None, None, True)

    async def aexecute_with_auth(
        self,
        spec: RequestSpec,
        auth_provider: AuthProvider | None,
        username: str | None,
        password: str | None,
        suppress_auth: bool,
    ) -> ResultContext:
        try:
            auth_value = None
            if auth_provider is not None and not suppress_auth:
                # Token fetches may block; run them in a worker thread
                auth_value = await asyncio.to_thread(
                    resolve_auth_header, spec.headers, auth_provider, username, password, suppress_auth
                )
            kwargs = self._build_request_kwargs(spec, auth_value)
            logger.debug("Sending %s %s", kwargs["method"], kwargs["url"])
            start_time = time.perf_counter()
            http_response = await self._get_async_client().request(**kwargs)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except ApiExecutionError:
            raise
        except Exception as e:
            raise self._wrap_failure(e, spec) from e

        return self._convert_response(http_response, spec, elapsed_ms)

    # -------------------------------------------------------------------------
    # Request/response conversion
    # -------------------------------------------------------------------------

    def _build_request_kwargs(self, spec: RequestSpec, auth_value: str | None) -> dict[str, Any]:
        """Build kwargs for httpx request().

        Content-Type is only sent with a body. Cookies are merged into a
        single Cookie header after any explicit one.
        """
        headers: dict[str, str] = {}
        for key, value in spec.headers.items():
            if key.lower() == "content-type":
                continue
            headers[key] = _sanitize_header_value(value)

        if spec.cookies:
            cookie_header = "; ".join(f"{k}={v}" for k, v in spec.cookies.items())
            existing = next((k for k in headers if k.lower() == "cookie"), None)
            if existing is not None:
                headers[existing] = f"{headers[existing]}; {cookie_header}"
            else:
                headers["Cookie"] = cookie_header

        if auth_value is not None:
            headers[AUTHORIZATION] = _sanitize_header_value(auth_value)

        content: bytes | None = None
        if spec.body is not None and spec.method in BODY_METHODS:
            content = to_json(spec.body)
            headers["Content-Type"] = _content_type(spec.headers)

        timeout = spec.timeout if spec.timeout is not None else self._default_timeout

        return {
            "method": spec.method.value,
            "url": build_url(spec),
            "headers": headers,
            "content": content,
            "timeout": timeout,
        }

    @staticmethod
    def _wrap_failure(error: Exception, spec: RequestSpec) -> ApiExecutionError:
        if isinstance(error, httpx.TimeoutException):
            message = "Request timed out"
        elif isinstance(error, httpx.ConnectError):
            message = "Connection error"
        elif isinstance(error, httpx.RequestError):
            message = "Request error"
        elif isinstance(error, UnicodeEncodeError):
            # Non-ASCII in places we don't sanitize: header keys, query keys, paths
            message = (
                f"Encoding error: non-ASCII character {error.object[error.start:error.end]!r} "
                f"at position {error.start} (header key, query key, or path)"
            )
        else:
            message = "Error during HTTP request execution"
        logger.debug("%s %s failed: %s (%s)", spec.method.value, spec.endpoint, message, error)
        return ApiExecutionError(message, error, spec)

    @staticmethod
    def _convert_response(
        response: httpx.Response,
        spec: RequestSpec,
        elapsed_ms: float,
    ) -> ResultContext:
        """Convert an httpx Response to a ResultContext.

        Repeated headers are joined with ", "; Set-Cookie values are kept
        separately since they cannot be joined safely.
        """
        headers: dict[str, str] = {}
        for key, value in response.headers.multi_items():
            if key in headers:
                headers[key] = f"{headers[key]}, {value}"
            else:
                headers[key] = value

        return ResultContext(
            status_code=response.status_code,
            headers=headers,
            raw_body=response.text,
            request=spec,
            elapsed_ms=elapsed_ms,
            set_cookies=response.headers.get_list("set-cookie"),
        )
