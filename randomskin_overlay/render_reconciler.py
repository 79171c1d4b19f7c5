"""Converges the host tree onto the latest activation state.

Every trigger (state update, asset delivery, mutation, phase entry, retry) runs the
same pass, so repeated or racing triggers settle on one result:

1. outside the interaction phase nothing happens;
2. the anchor is re-located; when missing, one bounded retry is armed;
3. overrides move off a previously rendered anchor that is no longer the target;
4. inactive state tears overrides down;
5. active state without the flag image asks the resolver and waits for delivery;
6. otherwise the flag overrides are applied (once; unchanged inputs write nothing).
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from randomskin_overlay.asset_resolver import AssetHandle, AssetResolver
from randomskin_overlay.control_affordance import ControlAffordance
from randomskin_overlay.host_tree import AnchorRef, HostNode, HostTree
from randomskin_overlay.logging_utils import get_logger
from randomskin_overlay.messages import ControlMode, ResourceKey, StateUpdate, control_click
from randomskin_overlay.phase_gate import PhaseGate
from randomskin_overlay.tree_locator import TreeLocator

AfterFn = Callable[[int, Callable[[], None]], object]
SendFn = Callable[[Mapping[str, Any]], object]

FLAG_MARKER = "lu-random-flag-active"
FOREIGN_FLAG_MARKER = "lu-historic-flag-active"
IMAGE_PROPERTY = "background-image"
VISIBILITY_OVERRIDES = (
    ("display", "block"),
    ("visibility", "visible"),
    ("opacity", "1"),
)
FLAG_OVERRIDES = (
    ("background-repeat", "no-repeat"),
    ("background-size", "contain"),
    ("height", "32px"),
    ("width", "32px"),
    ("position", "absolute"),
    ("right", "-14px"),
    ("top", "-14px"),
    ("pointer-events", "none"),
    ("cursor", "default"),
    ("-webkit-user-select", "none"),
    ("list-style-type", "none"),
    ("content", " "),
)
OWNED_PROPERTIES = tuple(name for name, _ in VISIBILITY_OVERRIDES + FLAG_OVERRIDES) + (IMAGE_PROPERTY,)

_LOGGER = get_logger("Reconciler")


@dataclass(frozen=True)
class ActivationState:
    active: bool = False
    control_mode: ControlMode = ControlMode.DISABLED


def image_value(handle_ref: str) -> str:
    return f'url("{handle_ref}")'


class RenderReconciler:
    def __init__(
        self,
        tree: HostTree,
        gate: PhaseGate,
        locator: TreeLocator,
        resolver: AssetResolver,
        send: SendFn,
        *,
        after: AfterFn,
        retry_delay_ms: int = 500,
        max_retries: int = 5,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gate = gate
        self._locator = locator
        self._resolver = resolver
        self._send = send
        self._after = after
        self._retry_delay_ms = max(0, int(retry_delay_ms))
        self._max_retries = max(0, int(max_retries))
        self._activation = ActivationState()
        self._rendered: Optional[AnchorRef] = None
        self._retries = 0
        self._retry_pending = False
        self.control = ControlAffordance(tree, resolver, on_click=self._handle_click, time_source=time_source)

    @property
    def activation(self) -> ActivationState:
        return self._activation

    @property
    def retry_count(self) -> int:
        return self._retries

    # Triggers -------------------------------------------------------------

    def apply_state(self, update: StateUpdate) -> None:
        previous = self._activation
        self._activation = ActivationState(active=update.active, control_mode=update.control_mode)
        _LOGGER.info(
            "Received random mode state update: active=%s was_active=%s mode=%s context=%s",
            update.active,
            previous.active,
            update.control_mode.value,
            update.context_id,
        )
        if not self._gate.in_interaction_phase:
            return
        self._sync_control()
        self.reconcile("state-update")

    def handle_delivery(self, handle: AssetHandle) -> None:
        if not self._gate.in_interaction_phase:
            return
        if handle.key is ResourceKey.FLAG:
            if self._activation.active:
                self.reconcile("delivery")
            return
        self.control.handle_delivery(handle)

    def handle_mutation(self) -> None:
        if not self._gate.in_interaction_phase:
            return
        self._sync_control()
        if self._activation.active:
            self.reconcile("mutation")

    def handle_phase_enter(self) -> None:
        # _rendered may already be set: state can land during the settle delay.
        self._sync_control()
        if self._activation.active:
            self.reconcile("phase-enter")

    def handle_phase_exit(self) -> None:
        self._teardown_rendered()
        self.control.remove()
        self._retries = 0
        self._retry_pending = False

    # Reconciliation -------------------------------------------------------

    def reconcile(self, reason: str = "") -> None:
        if not self._gate.in_interaction_phase:
            return
        anchor = self._locator.locate_anchor()
        node = anchor.resolve() if anchor is not None else None
        if anchor is None or node is None:
            if not self._activation.active:
                self._teardown_rendered()
            self._anchor_missing(reason)
            return
        self._retries = 0

        if self._rendered is not None and not anchor.same_node(self._rendered):
            previous = self._rendered.resolve()
            if previous is not None:
                _LOGGER.debug("Selected skin changed - hiding flag on previous element")
                self._teardown(previous)
        self._rendered = anchor

        if not self._activation.active:
            if self._teardown(node):
                _LOGGER.info("Random flag hidden on rewards element")
            return

        handle = self._resolver.resolve(ResourceKey.FLAG)
        if handle is None:
            _LOGGER.debug("Flag image not delivered yet; waiting (%s)", reason or "unspecified")
            return
        self._apply(node, handle.ref)

    def _anchor_missing(self, reason: str) -> None:
        if self._retry_pending:
            return
        if self._retries < self._max_retries:
            self._retries += 1
            self._retry_pending = True
            epoch = self._gate.epoch
            _LOGGER.debug(
                "Rewards element not found (%s), retry %d/%d",
                reason or "unspecified",
                self._retries,
                self._max_retries,
            )
            self._after(self._retry_delay_ms, lambda: self._retry_fired(epoch))
            return
        _LOGGER.warning("Rewards element not found after %d retries, giving up", self._max_retries)
        self._retries = 0

    def _retry_fired(self, epoch: int) -> None:
        if epoch != self._gate.epoch:
            return
        self._retry_pending = False
        if not self._gate.in_interaction_phase:
            self._retries = 0
            return
        self.reconcile("retry")

    def _sync_control(self) -> None:
        self.control.sync(self._locator.locate_placement(), self._activation.control_mode)

    def _handle_click(self) -> None:
        mode = self._activation.control_mode
        _LOGGER.info("Dice button clicked (state=%s)", mode.value)
        self._send(control_click(mode))

    # Overrides ------------------------------------------------------------

    @staticmethod
    def _apply(node: HostNode, handle_ref: str) -> bool:
        image = image_value(handle_ref)
        if node.has_class(FLAG_MARKER) and node.style_value(IMAGE_PROPERTY) == image:
            return False
        for name, value in VISIBILITY_OVERRIDES:
            node.set_style(name, value, important=True)
        node.add_class(FLAG_MARKER)
        node.set_style(IMAGE_PROPERTY, image, important=True)
        for name, value in FLAG_OVERRIDES:
            node.set_style(name, value, important=True)
        _LOGGER.info("Random flag shown on rewards element (%s)", handle_ref)
        return True

    def _teardown_rendered(self) -> None:
        """Tear down the last rendered anchor, even if no strategy matches it any more."""
        node = self._rendered.resolve() if self._rendered is not None else None
        self._rendered = None
        if node is not None and self._teardown(node):
            _LOGGER.info("Random flag hidden on previously rendered element")

    def _teardown(self, node: HostNode) -> bool:
        """Remove our overrides; a coexisting foreign flag keeps its shared styles."""
        if not node.has_class(FLAG_MARKER):
            return False
        node.remove_class(FLAG_MARKER)
        if node.has_class(FOREIGN_FLAG_MARKER):
            flag = self._resolver.cached(ResourceKey.FLAG)
            current = node.style_value(IMAGE_PROPERTY) or ""
            if flag is not None and flag.ref in current:
                node.remove_style(IMAGE_PROPERTY)
            return True
        for name in OWNED_PROPERTIES:
            node.remove_style(name)
        return True
