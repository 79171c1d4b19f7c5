"""Error taxonomy for the bridge core.

None of these are fatal: every raise site has a local recovery path.
"""
from __future__ import annotations


class ChannelError(RuntimeError):
    """Connect, transmit, or framing failure on the controller bridge."""


class MessageDecodeError(ChannelError):
    """Inbound payload that is not a JSON object."""

    def __init__(self, message: str, raw: object = None) -> None:
        super().__init__(message)
        self.raw = raw
