from __future__ import annotations

import time
from typing import Callable, Optional

from randomskin_overlay.asset_resolver import AssetHandle, AssetResolver
from randomskin_overlay.host_tree import ControlNode, HostTree, Rect
from randomskin_overlay.logging_utils import get_logger
from randomskin_overlay.messages import ControlMode, ResourceKey

CONTROL_CLASS = "lu-random-dice-button"
CONTROL_IMAGE_KEYS = (ResourceKey.CONTROL_DISABLED, ResourceKey.CONTROL_ENABLED)
MISSING_PLACEMENT_LOG_INTERVAL = 5.0

_LOGGER = get_logger("Control")


class ControlAffordance:
    """The dice control: a node this package owns, appended to the host root.

    Created at most once per phase, repositioned on every pass, image picked by the
    current control mode. Writes are skipped when nothing changed.
    """

    def __init__(
        self,
        tree: HostTree,
        resolver: AssetResolver,
        *,
        on_click: Callable[[], None],
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tree = tree
        self._resolver = resolver
        self._on_click = on_click
        self._time = time_source
        self._node: Optional[ControlNode] = None
        self._mode = ControlMode.DISABLED
        self._geometry: Optional[Rect] = None
        self._image_ref: Optional[str] = None
        self._last_missing_log: Optional[float] = None

    @property
    def exists(self) -> bool:
        return self._node is not None

    @property
    def mode(self) -> ControlMode:
        return self._mode

    def sync(self, placement: Optional[Rect], mode: ControlMode) -> bool:
        """Create the control if needed, then bring position, class and image up to date."""
        if self._node is None:
            if placement is None:
                self._log_missing_placement()
                return False
            self._create(placement, mode)
            return True
        if placement is not None:
            self._move(placement)
        self._set_mode(mode)
        return True

    def handle_delivery(self, handle: AssetHandle) -> None:
        if self._node is None:
            return
        if handle.key is ResourceKey.for_mode(self._mode):
            self._refresh_image()

    def remove(self) -> None:
        node = self._node
        self._node = None
        self._geometry = None
        self._image_ref = None
        if node is not None:
            node.remove()
            _LOGGER.debug("Removed dice button")

    def _create(self, placement: Rect, mode: ControlMode) -> None:
        self._resolver.preload(CONTROL_IMAGE_KEYS)
        node = self._tree.create_control((CONTROL_CLASS, mode.value))
        node.set_click_handler(self._on_click)
        self._node = node
        self._mode = mode
        self._geometry = None
        self._image_ref = None
        self._move(placement)
        self._refresh_image()
        _LOGGER.info("Created dice button at (%.0f, %.0f) state=%s", placement.left, placement.top, mode.value)

    def _move(self, placement: Rect) -> None:
        if self._node is None or placement == self._geometry:
            return
        self._node.set_geometry(placement)
        self._geometry = placement

    def _set_mode(self, mode: ControlMode) -> None:
        if self._node is None:
            return
        if mode is not self._mode:
            self._mode = mode
            self._node.set_state_class(mode.value)
            _LOGGER.debug("Updated dice button state to %s", mode.value)
        self._refresh_image()

    def _refresh_image(self) -> None:
        if self._node is None:
            return
        handle = self._resolver.resolve(ResourceKey.for_mode(self._mode))
        if handle is None:
            self._resolver.preload(CONTROL_IMAGE_KEYS)
            return
        if handle.ref != self._image_ref:
            self._node.set_image(handle.ref)
            self._image_ref = handle.ref

    def _log_missing_placement(self) -> None:
        now = self._time()
        last = self._last_missing_log
        if last is None or now - last > MISSING_PLACEMENT_LOG_INTERVAL:
            _LOGGER.debug("Could not find dice button location (will retry)")
            self._last_missing_log = now
