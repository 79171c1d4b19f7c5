"""Host-tree interface consumed and produced by the overlay core (no Qt types).

The host application owns the tree and may rebuild any part of it at any time.
The core only queries it by class, reads bounding rects, writes styles and
classes on nodes it located, and appends one control node to the root.
"""
from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence, Tuple


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2.0


@dataclass(frozen=True)
class MutationRecord:
    """One structural change: nodes added to or removed from ``target``."""

    target: Optional["HostNode"] = None
    added: Tuple["HostNode", ...] = field(default_factory=tuple)
    removed: Tuple["HostNode", ...] = field(default_factory=tuple)


class HostNode(Protocol):
    def has_class(self, name: str) -> bool: ...

    def add_class(self, name: str) -> None: ...

    def remove_class(self, name: str) -> None: ...

    def query_all(self, classes: Sequence[str]) -> Sequence["HostNode"]:
        """Descendants carrying every class in ``classes``, in tree order."""
        ...

    def query_first(self, classes: Sequence[str]) -> Optional["HostNode"]: ...

    def bounding_rect(self) -> Rect: ...

    def set_style(self, prop: str, value: str, *, important: bool = True) -> None: ...

    def remove_style(self, prop: str) -> None: ...

    def style_value(self, prop: str) -> Optional[str]: ...


class ControlNode(Protocol):
    """Node synthesized by the core and appended to the tree root."""

    def has_class(self, name: str) -> bool: ...

    def set_geometry(self, rect: Rect) -> None: ...

    def set_image(self, handle_ref: Optional[str]) -> None: ...

    def set_state_class(self, state: str) -> None: ...

    def set_click_handler(self, handler: Callable[[], None]) -> None: ...

    def remove(self) -> None: ...


class HostTree(Protocol):
    def query_all(self, classes: Sequence[str]) -> Sequence[HostNode]: ...

    def query_first(self, classes: Sequence[str]) -> Optional[HostNode]: ...

    def create_control(self, classes: Sequence[str]) -> ControlNode: ...

    def subscribe(self, callback: Callable[[MutationRecord], None]) -> Callable[[], None]:
        """Register for structural mutations; returns an unsubscribe callable."""
        ...


class AnchorRef:
    """Weak, non-owning handle on a located host node.

    Holding one never keeps a node alive after the host drops it.
    """

    __slots__ = ("_ref", "strategy")

    def __init__(self, node: HostNode, strategy: str = "") -> None:
        self._ref = weakref.ref(node)
        self.strategy = strategy

    def resolve(self) -> Optional[HostNode]:
        return self._ref()

    def same_node(self, other: Optional["AnchorRef"]) -> bool:
        if other is None:
            return False
        mine = self._ref()
        return mine is not None and mine is other.resolve()

    def __repr__(self) -> str:
        node = self._ref()
        state = "dead" if node is None else type(node).__name__
        return f"AnchorRef({state}, strategy={self.strategy!r})"
