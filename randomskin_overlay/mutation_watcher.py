from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence

from randomskin_overlay.host_tree import HostNode, HostTree, MutationRecord
from randomskin_overlay.logging_utils import get_logger

AfterFn = Callable[[int, Callable[[], None]], object]

_LOGGER = get_logger("Mutations")


class MutationWatcher:
    """Turns bursts of structural host-tree changes into single reconcile passes.

    Mutations outside the interaction phase and mutations that only touch nodes the
    overlay owns (its own control) are ignored.
    """

    def __init__(
        self,
        tree: HostTree,
        *,
        in_phase: Callable[[], bool],
        on_relevant: Callable[[], None],
        after: AfterFn,
        coalesce_ms: int = 50,
        owned_classes: Sequence[str] = (),
    ) -> None:
        self._tree = tree
        self._in_phase = in_phase
        self._on_relevant = on_relevant
        self._after = after
        self._coalesce_ms = max(0, int(coalesce_ms))
        self._owned_classes = tuple(owned_classes)
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pending = False

    @property
    def watching(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._tree.subscribe(self.notify)

    def stop(self) -> None:
        unsubscribe = self._unsubscribe
        self._unsubscribe = None
        if unsubscribe is not None:
            unsubscribe()

    def notify(self, record: MutationRecord) -> None:
        if not self._in_phase():
            return
        if self._only_owned(record):
            return
        if self._pending:
            return
        self._pending = True
        self._after(self._coalesce_ms, self._flush)

    def _flush(self) -> None:
        self._pending = False
        if not self._in_phase():
            return
        _LOGGER.debug("Host tree changed; re-running reconciliation")
        self._on_relevant()

    def _only_owned(self, record: MutationRecord) -> bool:
        touched: Iterable[HostNode] = tuple(record.added) + tuple(record.removed)
        nodes = list(touched)
        if not nodes or not self._owned_classes:
            return False
        return all(any(node.has_class(name) for name in self._owned_classes) for node in nodes)
