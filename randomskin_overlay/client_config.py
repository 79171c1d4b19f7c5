"""Configuration helpers for the random skin overlay client."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

DEFAULT_BRIDGE_URL = "ws://localhost:3000"
BRIDGE_URL_ENV_VAR = "RANDOMSKIN_BRIDGE_URL"
SETTINGS_PATH_ENV_VAR = "RANDOMSKIN_OVERLAY_SETTINGS"
SETTINGS_FILENAME = "overlay_settings.json"

ANCHOR_POLICY_CAROUSEL_FIRST = "carousel-first"
ANCHOR_POLICY_SELECTED_FIRST = "selected-first"
ANCHOR_POLICIES = (ANCHOR_POLICY_CAROUSEL_FIRST, ANCHOR_POLICY_SELECTED_FIRST)


@dataclass(frozen=True)
class ControlGeometry:
    """Size of the injected control and its offset from the anchor item's top edge."""

    width: int = 38
    height: int = 23
    offset_y: int = 78


@dataclass(frozen=True)
class OverlaySettings:
    """Values used to bootstrap the overlay before the controller says anything."""

    bridge_url: str = DEFAULT_BRIDGE_URL
    reconnect_delay_ms: int = 3000
    locate_retry_delay_ms: int = 500
    locate_max_retries: int = 5
    phase_settle_ms: int = 100
    mutation_coalesce_ms: int = 50
    interaction_phases: Tuple[str, ...] = ("ChampSelect", "FINALIZATION")
    anchor_policy: str = ANCHOR_POLICY_CAROUSEL_FIRST
    control: ControlGeometry = field(default_factory=ControlGeometry)
    forward_logs: bool = True
    client_log_retention: int = 5


def _int(value: Any, fallback: int, *, minimum: int) -> int:
    if value is None:
        return fallback
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return fallback
    return max(minimum, numeric)


def _phases(value: Any, fallback: Tuple[str, ...]) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return fallback
    cleaned = tuple(str(item).strip() for item in value if isinstance(item, str) and item.strip())
    return cleaned or fallback


def settings_from_mapping(data: Mapping[str, Any]) -> OverlaySettings:
    """Build settings from a decoded overlay_settings.json object."""
    defaults = OverlaySettings()
    policy = str(data.get("anchor_policy", defaults.anchor_policy) or "").strip().lower()
    if policy not in ANCHOR_POLICIES:
        policy = defaults.anchor_policy
    control_raw = data.get("control")
    control_data: Dict[str, Any] = control_raw if isinstance(control_raw, dict) else {}
    control = ControlGeometry(
        width=_int(control_data.get("width"), defaults.control.width, minimum=1),
        height=_int(control_data.get("height"), defaults.control.height, minimum=1),
        offset_y=_int(control_data.get("offset_y"), defaults.control.offset_y, minimum=-10000),
    )
    bridge_url = data.get("bridge_url")
    if not isinstance(bridge_url, str) or not bridge_url.strip():
        bridge_url = defaults.bridge_url
    return OverlaySettings(
        bridge_url=bridge_url.strip(),
        reconnect_delay_ms=_int(data.get("reconnect_delay_ms"), defaults.reconnect_delay_ms, minimum=100),
        locate_retry_delay_ms=_int(data.get("locate_retry_delay_ms"), defaults.locate_retry_delay_ms, minimum=10),
        locate_max_retries=_int(data.get("locate_max_retries"), defaults.locate_max_retries, minimum=0),
        phase_settle_ms=_int(data.get("phase_settle_ms"), defaults.phase_settle_ms, minimum=0),
        mutation_coalesce_ms=_int(data.get("mutation_coalesce_ms"), defaults.mutation_coalesce_ms, minimum=0),
        interaction_phases=_phases(data.get("interaction_phases"), defaults.interaction_phases),
        anchor_policy=policy,
        control=control,
        forward_logs=bool(data.get("forward_logs", defaults.forward_logs)),
        client_log_retention=_int(data.get("client_log_retention"), defaults.client_log_retention, minimum=1),
    )


def load_settings(settings_path: Optional[Path], env: Optional[Mapping[str, str]] = None) -> OverlaySettings:
    """Read overlay_settings.json if it exists, then apply environment overrides."""
    environ = os.environ if env is None else env
    data: Dict[str, Any] = {}
    if settings_path is not None:
        try:
            loaded = json.loads(settings_path.read_text(encoding="utf-8"))
        except (FileNotFoundError, OSError, json.JSONDecodeError):
            loaded = {}
        if isinstance(loaded, dict):
            data = loaded
    url_override = environ.get(BRIDGE_URL_ENV_VAR)
    if url_override and url_override.strip():
        data = dict(data)
        data["bridge_url"] = url_override.strip()
    return settings_from_mapping(data)


def resolve_settings_path(arg_path: Optional[str], env: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if env is None else env
    if arg_path:
        return Path(arg_path).expanduser().resolve()
    env_override = environ.get(SETTINGS_PATH_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()
    return (Path.cwd() / SETTINGS_FILENAME).resolve()
