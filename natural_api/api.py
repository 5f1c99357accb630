"""Api - Entry point for fluent request chains.

Usage:
    with Api(base_url="https://api.example.com") as api:
        user = api.for_("/users/1").get().should_return(User)

Or from a config file:
    api = Api.from_config("api.yaml")
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from natural_api.config_loader import build_defaults, load_api_config
from natural_api.context import ApiContext, ChainSettings, validate_endpoint
from natural_api.executor import Executor, HttpxExecutor
from natural_api.models import ApiDefaults
from natural_api.reporting import Reporter, ReporterRegistry

logger = logging.getLogger(__name__)

_ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def is_absolute_url(endpoint: str) -> bool:
    return bool(_ABSOLUTE_URL.match(endpoint))


def resolve_endpoint(endpoint: str, base_uri: str | None) -> str:
    """Join endpoint to base_uri with exactly one slash, unless endpoint is absolute.

    Raises:
        ValueError: endpoint is empty, whitespace or only slashes.
    """
    validate_endpoint(endpoint)
    if not base_uri or is_absolute_url(endpoint):
        return endpoint
    return f"{base_uri.rstrip('/')}/{endpoint.lstrip('/')}"


class Api:
    """Starts request chains against one executor and one set of defaults.

    Api holds no per-request state; one instance can serve any number of
    concurrent chains.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        defaults: ApiDefaults | None = None,
        *,
        base_url: str | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        """Initialize the entry point.

        Args:
            executor: Transport to use. An HttpxExecutor is created (and
                closed by close()) when omitted.
            defaults: Base URI, default headers, timeout, auth provider and reporter.
            base_url: Overrides defaults.base_uri.
            reporter: Reporter bound to this entry point, below the defaults' reporter.
        """
        self._owns_executor = executor is None
        self._executor = executor or HttpxExecutor()
        defaults = defaults or ApiDefaults()
        if base_url is not None:
            defaults = defaults.model_copy(update={"base_uri": base_url})
        self._defaults = defaults
        self._settings = ChainSettings(
            executor=self._executor,
            auth_provider=defaults.auth_provider,
            defaults_reporter=defaults.reporter,
            bound_reporter=reporter,
        )

    @classmethod
    def from_config(
        cls,
        config_path: Path | str,
        executor: Executor | None = None,
        registry: ReporterRegistry | None = None,
    ) -> Api:
        """Build an Api from a YAML config file. See config_loader."""
        config = load_api_config(config_path)
        defaults = build_defaults(config, registry)
        if executor is None:
            executor = HttpxExecutor(verify_ssl=config.verify_ssl, ca_bundle=config.ca_bundle)
            api = cls(executor, defaults)
            api._owns_executor = True
            return api
        return cls(executor, defaults)

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def defaults(self) -> ApiDefaults:
        return self._defaults

    def for_(self, endpoint: str) -> ApiContext:
        """Start a chain at endpoint, seeded from the defaults.

        Raises:
            ValueError: endpoint is empty, whitespace or only slashes.
        """
        url = resolve_endpoint(endpoint, self._defaults.base_uri)
        logger.debug("Starting chain at %s", url)
        spec_fields: dict[str, Any] = {"headers": dict(self._defaults.default_headers)}
        if self._defaults.timeout is not None:
            spec_fields["timeout"] = self._defaults.timeout
        return ApiContext.start(url, self._settings, **spec_fields)

    def close(self) -> None:
        """Close the executor if this Api created it."""
        if self._owns_executor:
            self._executor.close()

    async def aclose(self) -> None:
        if self._owns_executor:
            await self._executor.aclose()

    def __enter__(self) -> Api:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    async def __aenter__(self) -> Api:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()
