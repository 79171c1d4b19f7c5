"""Single owning instance that wires the bridge core together."""
from __future__ import annotations

import time
from typing import Callable, Optional, Set

from randomskin_overlay.asset_resolver import AssetResolver
from randomskin_overlay.bridge_channel import AfterFn, BridgeChannel, ChannelState, Transport
from randomskin_overlay.client_config import OverlaySettings
from randomskin_overlay.control_affordance import CONTROL_CLASS
from randomskin_overlay.host_tree import HostTree
from randomskin_overlay.logging_utils import get_logger
from randomskin_overlay.messages import (
    ASSET_REQUEST,
    AssetDelivered,
    JsonDict,
    PhaseSignal,
    ResourceKey,
    StateUpdate,
    message_kind,
    parse_inbound,
    parse_resource_key,
)
from randomskin_overlay.mutation_watcher import MutationWatcher
from randomskin_overlay.phase_gate import PhaseGate
from randomskin_overlay.render_reconciler import RenderReconciler
from randomskin_overlay.tree_locator import TreeLocator

_LOGGER = get_logger("Core")


class OverlayCore:
    """Constructed once per process; owns every piece of mutable overlay state.

    Inbound messages are dispatched one at a time in arrival order on the thread
    that runs the event loop.
    """

    def __init__(
        self,
        tree: HostTree,
        transport: Transport,
        *,
        after: AfterFn,
        settings: Optional[OverlaySettings] = None,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or OverlaySettings()
        self.channel = BridgeChannel(
            self.settings.bridge_url,
            transport,
            after=after,
            reconnect_delay_ms=self.settings.reconnect_delay_ms,
        )
        self.resolver = AssetResolver(self.channel.send)
        self.gate = PhaseGate(self.settings.interaction_phases, after=after, settle_ms=self.settings.phase_settle_ms)
        self.locator = TreeLocator(
            tree,
            in_phase=lambda: self.gate.in_interaction_phase,
            policy=self.settings.anchor_policy,
            control=self.settings.control,
        )
        self.reconciler = RenderReconciler(
            tree,
            self.gate,
            self.locator,
            self.resolver,
            self.channel.send,
            after=after,
            retry_delay_ms=self.settings.locate_retry_delay_ms,
            max_retries=self.settings.locate_max_retries,
            time_source=time_source,
        )
        self.watcher = MutationWatcher(
            tree,
            in_phase=lambda: self.gate.in_interaction_phase,
            on_relevant=self.reconciler.handle_mutation,
            after=after,
            coalesce_ms=self.settings.mutation_coalesce_ms,
            owned_classes=(CONTROL_CLASS,),
        )
        self.gate.on_enter(self.reconciler.handle_phase_enter)
        self.gate.on_exit(self.reconciler.handle_phase_exit)
        self.resolver.on_delivery(self.reconciler.handle_delivery)
        self.channel.on_message(self.dispatch)
        self.channel.on_state_change(self._channel_state_changed)
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        _LOGGER.info("Initializing random skin overlay")
        self.channel.start()
        self.watcher.start()
        self.resolver.preload(ResourceKey)
        _LOGGER.info("Random skin overlay initialized")

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.watcher.stop()
        self.reconciler.handle_phase_exit()
        self.channel.stop()

    def dispatch(self, payload: JsonDict) -> None:
        message = parse_inbound(payload)
        if message is None:
            _LOGGER.debug("Ignoring bridge message of type %r", message_kind(payload))
            return
        if isinstance(message, StateUpdate):
            self.reconciler.apply_state(message)
        elif isinstance(message, AssetDelivered):
            self.resolver.deliver(message.key, message.handle_ref)
        elif isinstance(message, PhaseSignal):
            self.gate.on_phase_signal(message.phase)

    def _channel_state_changed(self, previous: ChannelState, current: ChannelState) -> None:
        if previous is ChannelState.OPEN and current is ChannelState.CLOSED:
            # Requests already written to the dead connection will never be answered;
            # requests still queued go out on the next connection.
            self.resolver.reset_pending(keep=self._queued_asset_keys())
        elif current is ChannelState.OPEN and self._started:
            # Runs before the queue flush; keys already queued are still pending.
            self.resolver.preload(ResourceKey)

    def _queued_asset_keys(self) -> Set[ResourceKey]:
        keys = set()
        for payload in self.channel.queued_messages():
            if payload.get("type") == ASSET_REQUEST:
                key = parse_resource_key(payload.get("key"))
                if key is not None:
                    keys.add(key)
        return keys
