"""
Profile loading for the app and device endpoints.

Profiles live in ``configs/profiles.yaml``.  Values are resolved in order:
dataclass defaults, the selected YAML profile, ``RTCLINK_*`` environment
variables, then explicit overrides (usually CLI flags).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
ENV_PROFILES_VAR = "RTCLINK_PROFILES"
ENV_PREFIX = "RTCLINK_"


class SettingsError(ValueError):
    """Raised when a profile cannot be resolved."""


@dataclass(frozen=True)
class EndpointSettings:
    """Everything an endpoint needs to address its peer and collaborators."""

    product_key: str = "PLAF204"
    device_id: str = "AF070135F064641AG"
    app_id: str = "188815492"
    namespace: str = "dl"
    api_base_url: str = "http://127.0.0.1:8067/api/v1/signal"
    api_token: str = ""
    api_timeout: float = 10.0
    broker_url: str = "ws://127.0.0.1:8067/broker"
    cloud_host: str = "127.0.0.1"
    cloud_port: int = 8067
    qos: int = 1
    keepalive_max_ticks: int = 10
    offer_settle_s: float = 1.0
    candidate_settle_s: float = 2.0
    log_level: str = "info"

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "EndpointSettings":
        known = {item.name: item for item in fields(cls)}
        values: Dict[str, Any] = {}
        for key, raw in payload.items():
            if key not in known:
                LOG.warning("Ignoring unknown setting '%s'", key)
                continue
            if raw is None:
                continue
            values[key] = _coerce(key, raw, known[key].default)
        return cls(**values)


def _coerce(key: str, raw: Any, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in {"1", "true", "yes", "on"}
            return bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError) as exc:
        raise SettingsError(f"Invalid value for '{key}': {raw!r}") from exc
    return str(raw)


def read_profiles(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    target = path or Path(os.environ.get(ENV_PROFILES_VAR) or PROFILES_PATH)
    try:
        with Path(target).open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.warning("Profiles file %s not found; using built-in defaults", target)
        profiles = {}
    if not isinstance(profiles, dict):
        raise SettingsError(f"Profiles file {target} must contain a mapping")
    return profiles


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    source = os.environ if environ is None else environ
    names = {item.name for item in fields(EndpointSettings)}
    overrides: Dict[str, str] = {}
    for name in names:
        value = source.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_settings(
    profile: str = "default",
    *,
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> EndpointSettings:
    profiles = read_profiles(path)
    if profiles and profile not in profiles:
        raise SettingsError(f"Unknown profile '{profile}'")
    merged: Dict[str, Any] = dict(profiles.get(profile) or {})
    merged.update(env_overrides(environ))
    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})
    return EndpointSettings.from_mapping(merged)


__all__ = ["EndpointSettings", "SettingsError", "load_settings", "read_profiles"]
