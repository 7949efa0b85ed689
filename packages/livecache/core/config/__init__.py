"""Configuration management for livecache."""

from livecache.core.config.loader import (
    BACKEND_URL_ENV,
    detect_format,
    load_app_config,
    load_config,
    require_backend_url,
)
from livecache.core.config.models import (
    ConfigBase,
    HttpBackendConfig,
    LiveCacheConfig,
    LoggingConfig,
    ReconnectPolicy,
)

__all__ = [
    "BACKEND_URL_ENV",
    "ConfigBase",
    "HttpBackendConfig",
    "LiveCacheConfig",
    "LoggingConfig",
    "ReconnectPolicy",
    "detect_format",
    "load_app_config",
    "load_config",
    "require_backend_url",
]
