"""Config Loader - Loads Api defaults from a YAML file.

Handles loading YAML config files with environment variable substitution
and turning them into ApiDefaults.

Example config:

    base_url: https://api.example.com
    timeout: 10
    token: ${API_TOKEN}
    reporter: compact
    headers:
      Accept: application/json
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from natural_api.auth import StaticTokenProvider
from natural_api.errors import ConfigError
from natural_api.models import ApiConfigFile, ApiDefaults
from natural_api.reporting import ReporterRegistry

_ENV_VAR = re.compile(r"\$\{([^}]+)\}")


def load_api_config(config_path: Path | str) -> ApiConfigFile:
    """Load API configuration from YAML with ${ENV_VAR} substitution."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    # Substitute environment variables
    raw_config = _substitute_env_vars(raw_config)

    try:
        return ApiConfigFile.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def build_defaults(config: ApiConfigFile, registry: ReporterRegistry | None = None) -> ApiDefaults:
    """Convert a loaded config file into ApiDefaults.

    A token becomes a StaticTokenProvider; a reporter name is looked up in
    registry (the built-in registry when omitted).
    """
    auth_provider = StaticTokenProvider(config.token) if config.token else None

    reporter = None
    if config.reporter is not None:
        registry = registry or ReporterRegistry()
        try:
            reporter = registry.get(config.reporter)
        except KeyError as e:
            raise ConfigError(
                f"Unknown reporter '{config.reporter}'. Available: {', '.join(registry.names())}"
            ) from e

    return ApiDefaults(
        base_uri=config.base_url,
        default_headers=config.headers,
        timeout=config.timeout,
        auth_provider=auth_provider,
        reporter=reporter,
    )


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR.sub(replacer, s)
