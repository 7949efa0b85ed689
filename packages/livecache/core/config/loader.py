"""Configuration loading utilities with JSON and YAML support."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from livecache.core.config.models import LiveCacheConfig
from livecache.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

BACKEND_URL_ENV = "LIVECACHE_BACKEND_URL"


def detect_format(file_path: Path | str) -> str:
    """Detect config file format from extension.

    Args:
        file_path: Path to config file

    Returns:
        Format string: "json" or "yaml"

    Raises:
        ValueError: If format cannot be determined

    Example:
        >>> detect_format("livecache.json")
        'json'
        >>> detect_format("livecache.yml")
        'yaml'
    """
    suffix = Path(file_path).suffix.lower()

    if suffix == ".json":
        return "json"
    elif suffix in [".yaml", ".yml"]:
        return "yaml"
    else:
        raise ValueError(f"Unsupported config format: {suffix}")


def load_config(path: str | Path) -> dict[str, Any]:
    """Load and return raw configuration dictionary.

    Args:
        path: Path to config file (.json, .yaml, or .yml)

    Returns:
        Raw configuration dictionary

    Raises:
        FileNotFoundError: If config file does not exist
        ValueError: If format is not supported or file content is invalid
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    fmt = detect_format(path)

    if fmt == "json":
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        try:
            with path.open("r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
                # safe_load returns None for empty files
                return content if content is not None else {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e


def load_app_config(path: str | Path | None = None) -> LiveCacheConfig:
    """Load and validate application configuration.

    Missing files fall back to defaults. The backend URL is read from
    LIVECACHE_BACKEND_URL when the file does not set it.

    Args:
        path: Path to config file (.json, .yaml, or .yml). Defaults to livecache.json

    Returns:
        Validated LiveCacheConfig instance

    Raises:
        ValidationError: If config is invalid
    """
    if path is None:
        path = LiveCacheConfig.default_path()

    if Path(path).exists():
        config = LiveCacheConfig.model_validate(load_config(path))
    else:
        logger.debug(f"No config at {path}, using defaults")
        config = LiveCacheConfig()

    return _load_env_vars_into_config(config)


def require_backend_url(config: LiveCacheConfig) -> str:
    """Return the backend connection string, failing if it is empty.

    The value is opaque; only emptiness is checked.

    Raises:
        ConfigurationError: If no backend URL is configured
    """
    url = (config.backend_url or "").strip()
    if not url:
        raise ConfigurationError(
            f"No backend connection string configured. Set backend_url in the config file "
            f"or the {BACKEND_URL_ENV} environment variable."
        )
    return url


def _load_env_vars_into_config(config: LiveCacheConfig) -> LiveCacheConfig:
    """Fill unset values from the environment."""
    if config.backend_url is None:
        backend_url = os.getenv(BACKEND_URL_ENV)
        if backend_url:
            logger.debug(f"Loaded {BACKEND_URL_ENV} from environment")
            return config.model_copy(update={"backend_url": backend_url})
    return config
