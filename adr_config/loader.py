"""
Settings loader (``adr_config.loader``).

Responsibility
--------------
Loads the packaged ``defaults.yaml``, optionally overlays an operator YAML
file, applies environment overrides, and parses the result into the frozen
dataclasses of ``adr_config.schema``.

Failure modes
-------------
* Missing overlay file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from adr_kernel.exceptions import ConfigurationError

from adr_config.schema import (
    AdrSettings,
    OrchestrationSettings,
    PeriodWindowDefault,
    QueueSettings,
    VendorApiSettings,
)

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")

ENV_DATABASE_URL = "ADR_DATABASE_URL"
ENV_VENDOR_BASE_URL = "ADR_VENDOR_BASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``overlay`` onto ``base`` (lists are replaced)."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build(cls: type, data: Mapping[str, Any] | None, section: str):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section}': {', '.join(unknown)}", source=section,
        )
    try:
        return cls(**data)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid '{section}' settings: {exc}", source=section) from exc


def parse_orchestration_settings(data: Mapping[str, Any] | None) -> OrchestrationSettings:
    return _build(OrchestrationSettings, data, "orchestration")


def parse_settings(data: Mapping[str, Any]) -> AdrSettings:
    """Parse a merged settings dict into ``AdrSettings``."""
    windows = tuple(
        _build(PeriodWindowDefault, entry, "period_windows")
        for entry in data.get("period_windows") or ()
    )
    return AdrSettings(
        orchestration=parse_orchestration_settings(data.get("orchestration")),
        queue=_build(QueueSettings, data.get("queue"), "queue"),
        vendor_api=_build(VendorApiSettings, data.get("vendor_api"), "vendor_api"),
        period_windows=windows,
        database_url=data.get("database_url"),
    )


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AdrSettings:
    """
    Load packaged defaults, overlay ``path`` if given, then apply env overrides.

    Environment:
        ADR_DATABASE_URL     -> database_url
        ADR_VENDOR_BASE_URL  -> vendor_api.base_url
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_dicts(data, load_yaml_file(Path(path)))

    if env.get(ENV_DATABASE_URL):
        data["database_url"] = env[ENV_DATABASE_URL]
    if env.get(ENV_VENDOR_BASE_URL):
        data = merge_dicts(data, {"vendor_api": {"base_url": env[ENV_VENDOR_BASE_URL]}})

    return parse_settings(data)
