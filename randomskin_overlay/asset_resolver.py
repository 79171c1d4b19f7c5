from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from randomskin_overlay.logging_utils import get_logger
from randomskin_overlay.messages import ResourceKey, asset_request

SendFn = Callable[[Mapping[str, Any]], object]
DeliveryListener = Callable[["AssetHandle"], None]

_LOGGER = get_logger("Assets")


@dataclass(frozen=True)
class AssetHandle:
    key: ResourceKey
    ref: str


class AssetResolver:
    """Maps logical resource keys to controller-delivered handles.

    Handles are cached for the process lifetime and the first delivery wins. A key
    without a handle has at most one request in flight, whoever asks for it.
    """

    def __init__(self, send: SendFn) -> None:
        self._send = send
        self._handles: Dict[ResourceKey, AssetHandle] = {}
        self._pending: Set[ResourceKey] = set()
        self._listeners: List[DeliveryListener] = []

    def on_delivery(self, listener: DeliveryListener) -> None:
        self._listeners.append(listener)

    def cached(self, key: ResourceKey) -> Optional[AssetHandle]:
        return self._handles.get(key)

    def is_pending(self, key: ResourceKey) -> bool:
        return key in self._pending

    def resolve(self, key: ResourceKey) -> Optional[AssetHandle]:
        """Return the handle if known; otherwise make sure exactly one request is out."""
        handle = self._handles.get(key)
        if handle is not None:
            return handle
        if key in self._pending:
            return None
        self._pending.add(key)
        _LOGGER.debug("Requesting asset %s from controller", key.value)
        self._send(asset_request(key))
        return None

    def preload(self, keys: Iterable[ResourceKey]) -> None:
        for key in keys:
            self.resolve(key)

    def deliver(self, key: ResourceKey, handle_ref: str) -> Optional[AssetHandle]:
        """Store a delivery and notify listeners; repeated deliveries are ignored."""
        self._pending.discard(key)
        if key in self._handles:
            _LOGGER.debug("Ignoring repeated delivery for asset %s", key.value)
            return None
        handle = AssetHandle(key=key, ref=handle_ref)
        self._handles[key] = handle
        _LOGGER.info("Received asset %s from controller: %s", key.value, handle_ref)
        for listener in list(self._listeners):
            listener(handle)
        return handle

    def reset_pending(self, keep: Iterable[ResourceKey] = ()) -> None:
        """Forget in-flight requests lost with a dead connection.

        Keys in ``keep`` were never written (they are still queued) and stay pending.
        """
        dropped = self._pending.difference(keep)
        if dropped:
            _LOGGER.debug("Dropping %d in-flight asset request(s)", len(dropped))
        self._pending.difference_update(dropped)
