"""
adr_config -- YAML-backed settings for the ADR orchestration engine.

``get_default_settings()`` returns the packaged defaults (cached);
``load_settings(path)`` overlays an operator file and environment overrides.
"""

from functools import lru_cache

from adr_config.loader import load_settings, parse_orchestration_settings
from adr_config.schema import (
    AdrSettings,
    OrchestrationSettings,
    PeriodWindowDefault,
    QueueSettings,
    VendorApiSettings,
)


@lru_cache(maxsize=1)
def get_default_settings() -> AdrSettings:
    """Packaged defaults only (no overlay, no environment)."""
    return load_settings(environ={})


__all__ = [
    "AdrSettings",
    "OrchestrationSettings",
    "PeriodWindowDefault",
    "QueueSettings",
    "VendorApiSettings",
    "get_default_settings",
    "load_settings",
    "parse_orchestration_settings",
]
