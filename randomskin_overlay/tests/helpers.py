"""In-memory host tree, transport and timer harness shared by the tests."""
from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from randomskin_overlay.errors import ChannelError
from randomskin_overlay.host_tree import MutationRecord, Rect


class AfterHarness:
    def __init__(self) -> None:
        self.scheduled: List[Tuple[str, int, Callable[[], None]]] = []
        self.fired: List[str] = []

    def after(self, ms: int, cb) -> str:
        handle = f"h{len(self.scheduled) + 1}"
        self.scheduled.append((handle, ms, cb))
        return handle

    @property
    def pending(self) -> List[Tuple[str, int, Callable[[], None]]]:
        return [entry for entry in self.scheduled if entry[0] not in self.fired]

    def delays(self) -> List[int]:
        return [ms for _h, ms, _cb in self.pending]

    def run_next(self) -> bool:
        pending = self.pending
        if not pending:
            return False
        handle, _ms, cb = pending[0]
        self.fired.append(handle)
        cb()
        return True

    def run_all(self, limit: int = 100) -> int:
        count = 0
        while self.run_next():
            count += 1
            if count >= limit:
                raise AssertionError("timer harness did not settle")
        return count


class FakeNode:
    def __init__(self, *classes: str, rect: Optional[Rect] = None) -> None:
        self.classes = list(classes)
        self.children: List["FakeNode"] = []
        self.parent: Optional["FakeNode"] = None
        self.rect = rect or Rect(0.0, 0.0, 10.0, 10.0)
        self.styles: Dict[str, Tuple[str, bool]] = {}
        self.style_writes = 0

    def has_class(self, name: str) -> bool:
        return name in self.classes

    def add_class(self, name: str) -> None:
        if name not in self.classes:
            self.classes.append(name)

    def remove_class(self, name: str) -> None:
        if name in self.classes:
            self.classes.remove(name)

    def descendants(self):
        for child in self.children:
            yield child
            yield from child.descendants()

    def query_all(self, classes: Sequence[str]) -> List["FakeNode"]:
        return [node for node in self.descendants() if all(node.has_class(name) for name in classes)]

    def query_first(self, classes: Sequence[str]) -> Optional["FakeNode"]:
        found = self.query_all(classes)
        return found[0] if found else None

    def bounding_rect(self) -> Rect:
        return self.rect

    def set_style(self, prop: str, value: str, *, important: bool = True) -> None:
        self.styles[prop] = (value, important)
        self.style_writes += 1

    def remove_style(self, prop: str) -> None:
        self.styles.pop(prop, None)

    def style_value(self, prop: str) -> Optional[str]:
        entry = self.styles.get(prop)
        return entry[0] if entry else None


class FakeControl(FakeNode):
    def __init__(self, tree: "FakeTree", classes: Sequence[str]) -> None:
        super().__init__(*classes)
        self.tree = tree
        self.image: Optional[str] = None
        self.image_writes = 0
        self.geometry: Optional[Rect] = None
        self.click_handler: Optional[Callable[[], None]] = None
        self.removed = False

    def set_geometry(self, rect: Rect) -> None:
        self.geometry = rect

    def set_image(self, handle_ref: Optional[str]) -> None:
        self.image = handle_ref
        self.image_writes += 1

    def set_state_class(self, state: str) -> None:
        self.classes = self.classes[:1] + [state]

    def set_click_handler(self, handler: Callable[[], None]) -> None:
        self.click_handler = handler

    def click(self) -> None:
        assert self.click_handler is not None
        self.click_handler()

    def remove(self) -> None:
        self.removed = True
        self.tree.detach(self)


class FakeTree:
    def __init__(self) -> None:
        self.root = FakeNode("body")
        self.subscribers: List[Callable[[MutationRecord], None]] = []
        self.controls: List[FakeControl] = []

    def query_all(self, classes: Sequence[str]) -> List[FakeNode]:
        return self.root.query_all(classes)

    def query_first(self, classes: Sequence[str]) -> Optional[FakeNode]:
        return self.root.query_first(classes)

    def create_control(self, classes: Sequence[str]) -> FakeControl:
        control = FakeControl(self, classes)
        self.controls.append(control)
        self.attach(self.root, control)
        return control

    def live_controls(self) -> List[FakeControl]:
        return [control for control in self.controls if not control.removed]

    def subscribe(self, callback):
        self.subscribers.append(callback)
        return lambda: self.subscribers.remove(callback)

    def attach(self, parent: FakeNode, child: FakeNode) -> FakeNode:
        child.parent = parent
        parent.children.append(child)
        self._publish(MutationRecord(target=parent, added=(child,)))
        return child

    def detach(self, child: FakeNode) -> None:
        parent = child.parent
        if parent is None:
            return
        parent.children.remove(child)
        child.parent = None
        self._publish(MutationRecord(target=parent, removed=(child,)))

    def _publish(self, record: MutationRecord) -> None:
        for callback in list(self.subscribers):
            callback(record)


def build_carousel(
    tree: FakeTree,
    *,
    count: int = 5,
    center: Optional[int] = 2,
    selected: Optional[int] = None,
    rewards: bool = True,
) -> List[FakeNode]:
    """Attach a skin carousel; returns the rewards info node of every item."""
    carousel = tree.attach(tree.root, FakeNode("skin-selection-carousel"))
    infos = []
    for index in range(count):
        classes = ["skin-selection-item"]
        if center is not None:
            # The host labels the centered item offset-2 whatever its index.
            classes.append(f"skin-carousel-offset-{index - center + 2}")
        if index == selected:
            classes.append("skin-selection-item-selected")
        item = tree.attach(carousel, FakeNode(*classes, rect=Rect(100.0 * index, 200.0, 80.0, 120.0)))
        info_classes = ["skin-selection-item-information"]
        if rewards:
            info_classes.append("loyalty-reward-icon--rewards")
        infos.append(tree.attach(item, FakeNode(*info_classes)))
    return infos


class FakeTransport:
    def __init__(self) -> None:
        self.opened_urls: List[str] = []
        self.sent: List[str] = []
        self.closes = 0
        self.fail_sends = 0
        self.fail_open = False
        self._on_open = None
        self._on_text = None
        self._on_closed = None

    def bind(self, *, on_open, on_text, on_closed) -> None:
        self._on_open = on_open
        self._on_text = on_text
        self._on_closed = on_closed

    def open(self, url: str) -> None:
        self.opened_urls.append(url)
        if self.fail_open:
            raise ChannelError("connection refused")

    def send_text(self, text: str) -> None:
        if self.fail_sends:
            self.fail_sends -= 1
            raise ChannelError("broken pipe")
        self.sent.append(text)

    def close(self) -> None:
        self.closes += 1

    # Drive events as the real transport would.
    def connect(self) -> None:
        self._on_open()

    def drop(self, reason: str = "gone") -> None:
        self._on_closed(reason)

    def receive(self, payload) -> None:
        self._on_text(payload if isinstance(payload, (str, bytes)) else json.dumps(payload))

    def sent_messages(self) -> List[dict]:
        return [json.loads(text) for text in self.sent]

    def sent_types(self) -> List[str]:
        return [message["type"] for message in self.sent_messages()]
