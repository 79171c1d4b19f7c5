"""Reconnecting, queueing message channel to the external controller."""
from __future__ import annotations

import json
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, List, Mapping, Optional, Protocol, Union

from randomskin_overlay.errors import ChannelError, MessageDecodeError
from randomskin_overlay.logging_utils import get_logger
from randomskin_overlay.messages import JsonDict, decode_frame

AfterFn = Callable[[int, Callable[[], None]], object]
MessageHandler = Callable[[JsonDict], None]
StateListener = Callable[["ChannelState", "ChannelState"], None]

CHANNEL_LOGGER_NAME = "RandomSkin.Overlay.Bridge"
_LOGGER = get_logger("Bridge")


class ChannelState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Transport(Protocol):
    """Byte pipe used by the channel; events come back through ``bind`` callbacks."""

    def bind(
        self,
        *,
        on_open: Callable[[], None],
        on_text: Callable[[Union[str, bytes]], None],
        on_closed: Callable[[str], None],
    ) -> None: ...

    def open(self, url: str) -> None: ...

    def send_text(self, text: str) -> None: ...

    def close(self) -> None: ...


class BridgeChannel:
    """Owns connect/reconnect, the outbound queue, and inbound framing.

    All methods run on the event-loop thread; the transport reports back through
    the ``handle_*`` methods.
    """

    def __init__(
        self,
        url: str,
        transport: Transport,
        *,
        after: AfterFn,
        reconnect_delay_ms: int = 3000,
    ) -> None:
        self._url = url
        self._transport = transport
        self._after = after
        self._reconnect_delay_ms = max(0, int(reconnect_delay_ms))
        self._state = ChannelState.CLOSED
        self._queue: Deque[str] = deque()
        self._handlers: List[MessageHandler] = []
        self._state_listeners: List[StateListener] = []
        self._running = False
        self._reconnect_pending = False
        self._flushing = False
        transport.bind(on_open=self.handle_open, on_text=self.handle_text, on_closed=self.handle_closed)

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def queued(self) -> int:
        return len(self._queue)

    def queued_messages(self) -> List[JsonDict]:
        """Messages still waiting for a connection, oldest first."""
        return [json.loads(text) for text in self._queue]

    # Subscriptions --------------------------------------------------------

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    # Lifecycle ------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._connect()

    def stop(self) -> None:
        self._running = False
        if self._state is not ChannelState.CLOSED:
            try:
                self._transport.close()
            except ChannelError as exc:
                _LOGGER.debug("Error closing bridge transport: %s", exc)
        self._set_state(ChannelState.CLOSED)

    def _connect(self) -> None:
        if not self._running or self._state is not ChannelState.CLOSED:
            return
        self._set_state(ChannelState.CONNECTING)
        _LOGGER.debug("Connecting to controller bridge at %s", self._url)
        try:
            self._transport.open(self._url)
        except ChannelError as exc:
            _LOGGER.error("Failed to set up bridge connection to %s: %s", self._url, exc)
            self.handle_closed(str(exc))

    def _schedule_reconnect(self) -> None:
        if not self._running or self._reconnect_pending:
            return
        self._reconnect_pending = True
        self._after(self._reconnect_delay_ms, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_pending = False
        if self._state is ChannelState.CLOSED:
            self._connect()

    # Outbound -------------------------------------------------------------

    def send(self, message: Mapping[str, Any]) -> bool:
        """Transmit now when OPEN, otherwise queue. False if the message cannot be serialised."""
        try:
            serialised = json.dumps(dict(message), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            _LOGGER.warning("Failed to serialise outgoing message %r: %s", message, exc)
            return False
        if self._state is not ChannelState.OPEN or self._flushing or self._queue:
            self._queue.append(serialised)
            return True
        self._transmit([serialised])
        return True

    def _transmit(self, batch: List[str]) -> bool:
        for index, text in enumerate(batch):
            try:
                self._transport.send_text(text)
            except ChannelError as exc:
                _LOGGER.warning("Failed to write to controller bridge: %s", exc)
                self._queue.extendleft(reversed(batch[index:]))
                try:
                    self._transport.close()
                except ChannelError as close_exc:
                    _LOGGER.debug("Error closing bridge transport: %s", close_exc)
                self.handle_closed(str(exc))
                return False
        return True

    def _flush(self) -> None:
        self._flushing = True
        try:
            # Each pass drains a snapshot; sends made during a pass wait for the next one.
            while self._queue and self._state is ChannelState.OPEN:
                snapshot = list(self._queue)
                self._queue.clear()
                _LOGGER.debug("Flushing %d queued bridge message(s)", len(snapshot))
                if not self._transmit(snapshot):
                    break
        finally:
            self._flushing = False

    # Transport events -----------------------------------------------------

    def handle_open(self) -> None:
        if self._state is ChannelState.OPEN:
            return
        self._set_state(ChannelState.OPEN)
        _LOGGER.info("WebSocket bridge connected to %s", self._url)
        self._flush()

    def handle_closed(self, reason: str = "") -> None:
        if self._state is ChannelState.CLOSED:
            if self._running:
                self._schedule_reconnect()
            return
        previous = self._state
        self._set_state(ChannelState.CLOSED)
        if previous is ChannelState.OPEN:
            _LOGGER.info("WebSocket bridge closed (%s), reconnecting...", reason or "no reason")
        else:
            _LOGGER.warning("WebSocket bridge connect failed (%s), retrying", reason or "no reason")
        self._schedule_reconnect()

    def handle_text(self, raw: Union[str, bytes]) -> None:
        try:
            payload = decode_frame(raw)
        except MessageDecodeError as exc:
            _LOGGER.error("Failed to parse bridge message: %s", exc)
            return
        for handler in list(self._handlers):
            try:
                handler(payload)
            except Exception:
                _LOGGER.exception("Bridge message handler failed for %s", payload.get("type"))

    def _set_state(self, state: ChannelState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(previous, state)
            except Exception:
                _LOGGER.exception("Channel state listener failed")
