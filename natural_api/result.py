"""Result - A completed exchange and its validation surface.

ResultContext is an immutable snapshot: status, headers, the raw body
(captured once) and the request that produced it. Typed decoding is lazy
and uses pydantic TypeAdapters, so models can be BaseModel subclasses,
dataclasses, TypedDicts or plain containers such as list[int].

should_return() checks, in order, status, headers and body, and raises
ApiAssertionError at the first failing check.
"""

from __future__ import annotations

import copy
import functools
import json
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Generic, Mapping, TypeVar, get_args, get_origin, overload

from jsonpath_ng import parse as jsonpath_parse
from jsonschema.exceptions import best_match
from jsonschema.validators import Draft202012Validator, validator_for
from pydantic import TypeAdapter, ValidationError

from natural_api.errors import ApiAssertionError, BodyDecodeError, body_snippet
from natural_api.reporting import NULL_REPORTER, Reporter

if TYPE_CHECKING:
    from natural_api.context import ApiContext, ChainSettings
    from natural_api.models import RequestSpec

T = TypeVar("T")

HeaderPredicate = Callable[[Mapping[str, str]], bool]

_UNSET = object()


@functools.lru_cache(maxsize=256)
def _adapter(model: Any) -> TypeAdapter:
    return TypeAdapter(model)


def _type_name(model: Any) -> str:
    return getattr(model, "__name__", None) or repr(model)


def _is_model(value: Any) -> bool:
    """True for classes and parameterized generics like list[User]."""
    return isinstance(value, type) or get_origin(value) is not None


def extract_cookie(set_cookie_values: list[str] | tuple[str, ...], name: str) -> str | None:
    """Find a cookie value in Set-Cookie header values.

    The cookie name is matched case-insensitively against the leading
    name=value pair of each value; the first match wins.
    """
    if not name or not name.strip():
        return None
    prefix = f"{name.lower()}="
    for header_value in set_cookie_values:
        if not header_value or not header_value.strip():
            continue
        cookie_part = header_value.split(";", 1)[0].strip()
        if cookie_part.lower().startswith(prefix):
            return cookie_part[len(prefix):]
    return None


class ResultContext:
    """Immutable wrapper around one completed HTTP exchange.

    Usage:
        user = api.for_("/users/1").get().should_return(User)

        (api.for_("/users")
            .post({"name": "Ted"})
            .should_return(User, status=201, body=lambda u: u.id > 0))
    """

    def __init__(
        self,
        status_code: int,
        headers: Mapping[str, str],
        raw_body: str | None,
        request: RequestSpec,
        elapsed_ms: float = 0.0,
        set_cookies: list[str] | tuple[str, ...] | None = None,
    ) -> None:
        self._status_code = status_code
        self._headers = dict(headers)
        self._raw_body = raw_body or ""
        self._request = request
        self._elapsed_ms = elapsed_ms
        if set_cookies is None:
            set_cookies = [v for k, v in self._headers.items() if k.lower() == "set-cookie"]
        self._set_cookies = tuple(set_cookies)
        self._parsed: Any = _UNSET
        self._chain: ChainSettings | None = None
        self._reporter: Reporter = NULL_REPORTER

    def bind(self, chain: ChainSettings, reporter: Reporter) -> ResultContext:
        """Return a copy attached to the chain that produced it."""
        bound = copy.copy(self)
        bound._chain = chain
        bound._reporter = reporter
        return bound

    # -------------------------------------------------------------------------
    # Snapshot accessors
    # -------------------------------------------------------------------------

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def headers(self) -> Mapping[str, str]:
        return MappingProxyType(self._headers)

    @property
    def raw_body(self) -> str:
        return self._raw_body

    @property
    def request(self) -> RequestSpec:
        return self._request

    @property
    def elapsed_ms(self) -> float:
        return self._elapsed_ms

    @property
    def set_cookies(self) -> tuple[str, ...]:
        return self._set_cookies

    @property
    def reporter(self) -> Reporter:
        return self._reporter

    @property
    def is_success(self) -> bool:
        return 200 <= self._status_code <= 299

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lower = name.lower()
        for key, value in self._headers.items():
            if key.lower() == lower:
                return value
        return None

    def get_cookie(self, name: str) -> str | None:
        return extract_cookie(self._set_cookies, name)

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def _json(self) -> Any:
        if self._parsed is _UNSET:
            if not self._raw_body.strip():
                raise BodyDecodeError("Response body is empty or null")
            try:
                self._parsed = json.loads(self._raw_body)
            except ValueError as e:
                raise BodyDecodeError(f"Failed to deserialize JSON: {e}") from e
        return self._parsed

    def body_as(self, model: Any = None) -> Any:
        """Decode the body as model. With no model, returns the parsed JSON.

        Raises:
            BodyDecodeError: Body is empty, not JSON, or does not fit model.
        """
        if model is str:
            if not self._raw_body:
                raise BodyDecodeError("Response body is empty or null")
            return self._raw_body

        data = self._json()
        if model is None or model is Any:
            return copy.deepcopy(data)

        try:
            return _adapter(model).validate_python(data)
        except ValidationError as e:
            raise BodyDecodeError(f"Failed to deserialize body as {_type_name(model)}: {e}") from e

    @property
    def body(self) -> Any:
        return self.body_as()

    def select(self, path: str) -> list[Any]:
        """All values in the JSON body matching a JSONPath expression."""
        return [match.value for match in jsonpath_parse(path).find(self._json())]

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _fail(self, message: str, expected: str, actual: str) -> ApiAssertionError:
        self._reporter.on_assertion_failed(message, self)
        return ApiAssertionError(
            message,
            expected,
            actual,
            self._request.endpoint,
            self._request.method.value,
            body_snippet(self._raw_body),
        )

    def _check_status(self, status: int) -> None:
        if self._status_code != status:
            raise self._fail(
                f"Expected status code {status} but got {self._status_code}",
                f"Status code {status}",
                f"Status code {self._status_code}",
            )
        self._reporter.on_assertion_passed(f"Status code {status}", self)

    def _check_success(self) -> None:
        if not self.is_success:
            raise self._fail(
                f"Expected successful status code (2xx), but got {self._status_code}",
                "Successful status code (2xx)",
                f"Status: {self._status_code}",
            )
        self._reporter.on_assertion_passed("Successful status code (2xx)", self)

    def _check_headers(self, predicate: HeaderPredicate) -> None:
        try:
            ok = predicate(self.headers)
        except Exception as e:
            raise self._fail(
                f"Header validation failed: {e}", "Valid headers", repr(self._headers)
            ) from e
        if not ok:
            raise self._fail("Header validation failed", "Valid headers", repr(self._headers))
        self._reporter.on_assertion_passed("Header validation", self)

    def _decode_for_check(self, model: Any) -> Any:
        expected = f"Body decodable as {_type_name(model)}" if model is not None else "JSON body"
        try:
            return self.body_as(model)
        except BodyDecodeError as e:
            raise self._fail(f"Body validation failed: {e}", expected, "Undecodable body") from e

    def _check_body(self, model: Any, predicate: Callable[[Any], bool]) -> None:
        decoded = self._decode_for_check(model)
        try:
            ok = predicate(decoded)
        except Exception as e:
            raise self._fail(f"Body validation failed: {e}", "Valid body", repr(decoded)) from e
        if not ok:
            raise self._fail("Body validation failed", "Valid body", repr(decoded))
        self._reporter.on_assertion_passed("Body validation", self)

    @overload
    def should_return(self, expected: type[T], /) -> T: ...

    @overload
    def should_return(
        self,
        expected: int | type[Any] | None = None,
        /,
        *,
        status: int | None = None,
        model: Any = None,
        body: Callable[[Any], bool] | None = None,
        headers: HeaderPredicate | None = None,
    ) -> ResultContext: ...

    def should_return(
        self,
        expected: Any = None,
        /,
        *,
        status: int | None = None,
        model: Any = None,
        body: Callable[[Any], bool] | None = None,
        headers: HeaderPredicate | None = None,
    ) -> Any:
        """Validate the response.

        The positional argument is either an expected status code or a body
        model. should_return(Model) alone asserts a 2xx status and returns
        the decoded body; should_return(TypedResponse[Model]) returns a
        TypedResponse. Every other form returns this context for chaining.

        Raises:
            ApiAssertionError: At the first failing check.
        """
        if expected is not None:
            if isinstance(expected, bool):
                raise TypeError("Expected a status code or a model, got bool")
            if isinstance(expected, int):
                if status is not None:
                    raise TypeError("Status given both positionally and by keyword")
                status = expected
            elif _is_model(expected):
                if model is not None:
                    raise TypeError("Model given both positionally and by keyword")
                model = expected
            else:
                raise TypeError(f"Expected a status code or a model, got {type(expected).__name__}")

        if model is not None and status is None and body is None and headers is None:
            self._check_success()
            if get_origin(model) is TypedResponse:
                inner = get_args(model)[0]
                response: TypedResponse[Any] = TypedResponse(self, inner)
                self._decode_for_check(inner)
                return response
            return self._decode_for_check(model)

        if status is not None:
            self._check_status(status)
        if headers is not None:
            self._check_headers(headers)
        if body is not None:
            self._check_body(model, body)
        return self

    def should_match_schema(self, schema: Mapping[str, Any]) -> ResultContext:
        """Validate the JSON body against a JSON Schema.

        The validator class follows the schema's $schema, defaulting to
        Draft 2020-12. An invalid schema raises jsonschema.SchemaError.
        """
        data = self._decode_for_check(None)
        validator_cls = validator_for(schema, default=Draft202012Validator)
        validator_cls.check_schema(schema)
        error = best_match(validator_cls(schema).iter_errors(data))
        if error is not None:
            raise self._fail(
                f"Schema validation failed at {error.json_path}: {error.message}",
                "Body matching schema",
                error.message,
            )
        self._reporter.on_assertion_passed("Schema validation", self)
        return self

    def then(self, callback: Callable[[ResultView], Any]) -> ResultContext:
        """Call callback with a read-only view of this result and return self."""
        if callback is None:
            raise TypeError("Callback cannot be None")
        callback(ResultView(self))
        return self

    def for_(self, endpoint: str) -> ApiContext:
        """Start a new chain on the same executor, auth provider and reporters.

        The endpoint is used as given; no base URI is applied.
        """
        from natural_api.context import ApiContext

        if self._chain is None:
            raise RuntimeError("Result is not attached to a chain; start one with Api.for_()")
        return ApiContext.start(endpoint, self._chain)

    def __repr__(self) -> str:
        return (
            f"ResultContext({self._request.method.value} {self._request.endpoint} "
            f"-> {self._status_code})"
        )


class ResultView:
    """Read-only view of a result, handed to then() callbacks."""

    def __init__(self, context: ResultContext) -> None:
        self._context = context

    @property
    def status_code(self) -> int:
        return self._context.status_code

    @property
    def headers(self) -> Mapping[str, str]:
        return self._context.headers

    @property
    def raw_body(self) -> str:
        return self._context.raw_body

    @property
    def request(self) -> RequestSpec:
        return self._context.request

    @property
    def elapsed_ms(self) -> float:
        return self._context.elapsed_ms

    @property
    def body(self) -> Any:
        return self._context.body_as()

    def body_as(self, model: Any = None) -> Any:
        return self._context.body_as(model)

    def should_return(self, *args: Any, **kwargs: Any) -> Any:
        return self._context.should_return(*args, **kwargs)

    def get_cookie(self, name: str) -> str | None:
        return self._context.get_cookie(name)

    def select(self, path: str) -> list[Any]:
        return self._context.select(path)

    def for_(self, endpoint: str) -> ApiContext:
        return self._context.for_(endpoint)


class TypedResponse(ResultView, Generic[T]):
    """A result whose body is decoded as a fixed model.

    Returned by result.should_return(TypedResponse[User]).
    """

    def __init__(self, context: ResultContext, model: Any) -> None:
        super().__init__(context)
        self._model = model

    @property
    def model(self) -> Any:
        return self._model

    @property
    def body(self) -> T:
        return self._context.body_as(self._model)
