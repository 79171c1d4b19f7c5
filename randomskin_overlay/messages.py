"""Wire format for the controller bridge (one JSON object per frame)."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from randomskin_overlay.errors import MessageDecodeError

JsonDict = Dict[str, Any]
MESSAGE_SOURCE = "LU-RandomSkin"

# Outbound kinds
ASSET_REQUEST = "asset-request"
CONTROL_CLICK = "control-click"
LOG = "log"

# Inbound kinds, plus the names older controllers still send.
STATE_UPDATE = "state-update"
ASSET_DELIVERED = "asset-delivered"
PHASE_SIGNAL = "phase-signal"
_LEGACY_KINDS = {
    "random-mode-state": STATE_UPDATE,
    "local-asset-url": ASSET_DELIVERED,
    "phase-change": PHASE_SIGNAL,
}


class ControlMode(str, Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"

    @classmethod
    def parse(cls, value: Any) -> "ControlMode":
        token = str(value or "").strip().lower()
        if token == cls.ENABLED.value:
            return cls.ENABLED
        return cls.DISABLED


class ResourceKey(str, Enum):
    FLAG = "flag"
    CONTROL_DISABLED = "dice-disabled"
    CONTROL_ENABLED = "dice-enabled"

    @classmethod
    def for_mode(cls, mode: ControlMode) -> "ResourceKey":
        return cls.CONTROL_ENABLED if mode is ControlMode.ENABLED else cls.CONTROL_DISABLED


_LEGACY_ASSET_PATHS = {
    "random_flag.png": ResourceKey.FLAG,
    "dice-disabled.png": ResourceKey.CONTROL_DISABLED,
    "dice-enabled.png": ResourceKey.CONTROL_ENABLED,
}


def parse_resource_key(value: Any) -> Optional[ResourceKey]:
    if not isinstance(value, str):
        return None
    token = value.strip()
    legacy = _LEGACY_ASSET_PATHS.get(token)
    if legacy is not None:
        return legacy
    try:
        return ResourceKey(token)
    except ValueError:
        return None


@dataclass(frozen=True)
class StateUpdate:
    active: bool
    control_mode: ControlMode
    context_id: Optional[Any] = None


@dataclass(frozen=True)
class AssetDelivered:
    key: ResourceKey
    handle_ref: str


@dataclass(frozen=True)
class PhaseSignal:
    phase: str


InboundMessage = Union[StateUpdate, AssetDelivered, PhaseSignal]


def _parse_state_update(payload: Mapping[str, Any]) -> StateUpdate:
    mode = payload.get("controlMode", payload.get("diceState"))
    context = payload.get("contextId", payload.get("randomSkinId"))
    return StateUpdate(active=payload.get("active") is True, control_mode=ControlMode.parse(mode), context_id=context)


def _parse_asset_delivered(payload: Mapping[str, Any]) -> Optional[AssetDelivered]:
    key = parse_resource_key(payload.get("key", payload.get("assetPath")))
    handle = payload.get("handleRef", payload.get("url"))
    if key is None or not isinstance(handle, str) or not handle:
        return None
    return AssetDelivered(key=key, handle_ref=handle)


def _parse_phase_signal(payload: Mapping[str, Any]) -> Optional[PhaseSignal]:
    phase = payload.get("phase")
    if phase is None:
        return None
    return PhaseSignal(phase=str(phase))


_PARSERS: Dict[str, Callable[[Mapping[str, Any]], Optional[InboundMessage]]] = {
    STATE_UPDATE: _parse_state_update,
    ASSET_DELIVERED: _parse_asset_delivered,
    PHASE_SIGNAL: _parse_phase_signal,
}


def decode_frame(raw: Union[str, bytes]) -> JsonDict:
    """Decode one frame into a JSON object or raise MessageDecodeError."""
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        payload = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MessageDecodeError(f"invalid JSON frame: {exc}", raw) from exc
    if not isinstance(payload, dict):
        raise MessageDecodeError(f"frame is {type(payload).__name__}, expected object", raw)
    return payload


def message_kind(payload: Mapping[str, Any]) -> Optional[str]:
    kind = payload.get("type")
    if not isinstance(kind, str):
        return None
    return _LEGACY_KINDS.get(kind, kind)


def parse_inbound(payload: Mapping[str, Any]) -> Optional[InboundMessage]:
    """Map a decoded frame onto a typed message; None for unknown or incomplete ones."""
    kind = message_kind(payload)
    parser = _PARSERS.get(kind or "")
    if parser is None:
        return None
    return parser(payload)


def _envelope(kind: str, **fields: Any) -> JsonDict:
    payload: JsonDict = {"type": kind, "source": MESSAGE_SOURCE}
    payload.update(fields)
    payload["timestamp"] = int(time.time() * 1000)
    return payload


def asset_request(key: ResourceKey) -> JsonDict:
    return _envelope(ASSET_REQUEST, key=key.value)


def control_click(mode: ControlMode) -> JsonDict:
    return _envelope(CONTROL_CLICK, controlMode=mode.value)


def log_message(level: str, message: str, data: Optional[Mapping[str, Any]] = None) -> JsonDict:
    payload = _envelope(LOG, level=level, message=message)
    if data:
        payload["data"] = dict(data)
    return payload
