"""Finds the rewards anchor and the control placement in the host's skin carousel."""
from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from randomskin_overlay.client_config import ANCHOR_POLICY_SELECTED_FIRST, ControlGeometry
from randomskin_overlay.host_tree import AnchorRef, HostNode, HostTree, Rect
from randomskin_overlay.logging_utils import get_logger

ITEM_CLASSES = ("skin-selection-item",)
CENTER_ITEM_CLASS = "skin-carousel-offset-2"
SELECTED_ITEM_CLASSES = ("skin-selection-item", "skin-selection-item-selected")
CAROUSEL_CLASSES = ("skin-selection-carousel",)
INFO_CLASSES = ("skin-selection-item-information",)
REWARDS_CLASS = "loyalty-reward-icon--rewards"
REWARDS_CLASSES = ("skin-selection-item-information", REWARDS_CLASS)

_LOGGER = get_logger("Locator")

Strategy = Tuple[str, Callable[[], Optional[HostNode]]]


class TreeLocator:
    """Re-derives anchors from the live tree on every call; nothing is cached."""

    def __init__(
        self,
        tree: HostTree,
        *,
        in_phase: Callable[[], bool],
        policy: str = "carousel-first",
        control: Optional[ControlGeometry] = None,
    ) -> None:
        self._tree = tree
        self._in_phase = in_phase
        self._policy = policy
        self._control = control or ControlGeometry()

    def _strategies(self) -> List[Strategy]:
        centered: Strategy = ("central item", self._find_in_center_item)
        selected: Strategy = ("selected item", self._find_in_selected_item)
        leading = [selected, centered] if self._policy == ANCHOR_POLICY_SELECTED_FIRST else [centered, selected]
        return leading + [
            ("direct selector", lambda: self._tree.query_first(REWARDS_CLASSES)),
            ("carousel scan", self._scan_carousel),
        ]

    def locate_anchor(self) -> Optional[AnchorRef]:
        if not self._in_phase():
            return None
        for label, strategy in self._strategies():
            node = strategy()
            if node is not None:
                _LOGGER.debug("Found rewards element via %s", label)
                return AnchorRef(node, strategy=label)
        _LOGGER.debug("Rewards element not found anywhere")
        return None

    def locate_placement(self) -> Optional[Rect]:
        """Rect for the control: centered on the anchor item, offset below its top edge."""
        if not self._in_phase():
            return None
        item = self._center_item()
        if item is None:
            item = self._tree.query_first(SELECTED_ITEM_CLASSES)
        if item is None:
            return None
        rect = item.bounding_rect()
        geometry = self._control
        return Rect(
            left=rect.center_x - geometry.width / 2.0,
            top=rect.top + geometry.offset_y,
            width=float(geometry.width),
            height=float(geometry.height),
        )

    def _center_item(self) -> Optional[HostNode]:
        for item in self._tree.query_all(ITEM_CLASSES):
            if item.has_class(CENTER_ITEM_CLASS):
                return item
        return None

    def _find_in_center_item(self) -> Optional[HostNode]:
        for item in self._tree.query_all(ITEM_CLASSES):
            if item.has_class(CENTER_ITEM_CLASS):
                info = item.query_first(REWARDS_CLASSES)
                if info is not None:
                    return info
        return None

    def _find_in_selected_item(self) -> Optional[HostNode]:
        item = self._tree.query_first(SELECTED_ITEM_CLASSES)
        if item is None:
            return None
        return item.query_first(REWARDS_CLASSES)

    def _scan_carousel(self) -> Optional[HostNode]:
        # Unreachable while the direct selector runs first: anything matched here
        # carries both rewards classes, so that strategy already returned it. Kept as
        # the last fallback; no test can make it win.
        carousel = self._tree.query_first(CAROUSEL_CLASSES)
        if carousel is None:
            return None
        for item in carousel.query_all(ITEM_CLASSES):
            info = item.query_first(INFO_CLASSES)
            if info is not None and info.has_class(REWARDS_CLASS):
                return info
        return None
