"""Shared utilities for livecache."""

from livecache.core.utils.logging import (
    StructuredJSONFormatter,
    configure_logging,
    configure_logging_from_config,
    get_logger,
)

__all__ = [
    "StructuredJSONFormatter",
    "configure_logging",
    "configure_logging_from_config",
    "get_logger",
]
