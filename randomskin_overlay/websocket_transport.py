"""WebSocket transport: asyncio I/O thread, events delivered on the Qt thread."""
from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional, Union

import websockets
from PyQt6.QtCore import QObject, pyqtSignal
from websockets.exceptions import InvalidHandshake, InvalidURI

from randomskin_overlay.errors import ChannelError
from randomskin_overlay.logging_utils import get_logger

_LOGGER = get_logger("Bridge.Transport")


class WebSocketTransport(QObject):
    """Runs one ``websockets`` session at a time on a private event loop.

    Signals are emitted from the I/O thread; Qt queues them onto the thread that
    owns this object, so channel callbacks never run concurrently.
    """

    opened = pyqtSignal()
    text_received = pyqtSignal(object)
    closed = pyqtSignal(str)

    def __init__(self, open_timeout: float = 5.0) -> None:
        super().__init__()
        self._open_timeout = open_timeout
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_ready = threading.Event()
        self._outgoing: Optional["asyncio.Queue[Optional[str]]"] = None
        self._session: Optional["asyncio.Future[None]"] = None

    def bind(
        self,
        *,
        on_open: Callable[[], None],
        on_text: Callable[[Union[str, bytes]], None],
        on_closed: Callable[[str], None],
    ) -> None:
        self.opened.connect(on_open)
        self.text_received.connect(on_text)
        self.closed.connect(on_closed)

    # Loop thread ----------------------------------------------------------

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._thread and self._thread.is_alive() and self._loop is not None:
            return self._loop
        self._loop_ready.clear()
        self._thread = threading.Thread(target=self._thread_main, name="RandomSkin-Bridge", daemon=True)
        self._thread.start()
        if not self._loop_ready.wait(timeout=5.0) or self._loop is None:
            raise ChannelError("bridge I/O loop failed to start")
        return self._loop

    def _thread_main(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        self._loop_ready.set()
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def shutdown(self) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if self._thread:
            self._thread.join(timeout=5.0)
        self._loop = None
        self._thread = None

    # Transport API --------------------------------------------------------

    def open(self, url: str) -> None:
        loop = self._ensure_loop()
        try:
            self._session = asyncio.run_coroutine_threadsafe(self._run_session(url), loop)
        except RuntimeError as exc:
            raise ChannelError(f"cannot schedule bridge session: {exc}") from exc

    def send_text(self, text: str) -> None:
        loop = self._loop
        queue_ref = self._outgoing
        if loop is None or queue_ref is None:
            raise ChannelError("bridge transport is not connected")
        try:
            loop.call_soon_threadsafe(queue_ref.put_nowait, text)
        except RuntimeError as exc:
            raise ChannelError(f"bridge loop unavailable: {exc}") from exc

    def close(self) -> None:
        loop = self._loop
        queue_ref = self._outgoing
        if loop is not None and queue_ref is not None:
            try:
                loop.call_soon_threadsafe(queue_ref.put_nowait, None)
            except RuntimeError as exc:
                _LOGGER.debug("Failed to signal bridge session shutdown: %s", exc)
        session = self._session
        if session is not None and not session.done():
            session.cancel()

    # Session --------------------------------------------------------------

    async def _run_session(self, url: str) -> None:
        reason = "connection closed"
        outgoing: Optional["asyncio.Queue[Optional[str]]"] = None
        try:
            async with websockets.connect(url, open_timeout=self._open_timeout) as ws:
                outgoing = asyncio.Queue()
                self._outgoing = outgoing
                self.opened.emit()
                sender = asyncio.create_task(self._pump_outgoing(ws, outgoing))
                try:
                    async for raw in ws:
                        self.text_received.emit(raw)
                finally:
                    self._release_outgoing(outgoing)
                    sender.cancel()
                    await asyncio.gather(sender, return_exceptions=True)
        except asyncio.CancelledError:
            reason = "closed locally"
            raise
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake, websockets.ConnectionClosed) as exc:
            reason = str(exc) or type(exc).__name__
            _LOGGER.warning("WebSocket bridge error: %s", reason)
        finally:
            self._release_outgoing(outgoing)
            self.closed.emit(reason)

    def _release_outgoing(self, outgoing: Optional["asyncio.Queue[Optional[str]]"]) -> None:
        # A newer session may already own the slot.
        if outgoing is not None and self._outgoing is outgoing:
            self._outgoing = None

    async def _pump_outgoing(self, ws, queue_ref: "asyncio.Queue[Optional[str]]") -> None:
        while True:
            text = await queue_ref.get()
            if text is None:
                await ws.close()
                return
            try:
                await ws.send(text)
            except websockets.ConnectionClosed as exc:
                _LOGGER.warning("Failed to write outgoing bridge message: %s", exc)
                return
