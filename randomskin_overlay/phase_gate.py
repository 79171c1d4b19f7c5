from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from randomskin_overlay.logging_utils import get_logger

AfterFn = Callable[[int, Callable[[], None]], object]
PhaseCallback = Callable[[], None]

_LOGGER = get_logger("Phase")


class PhaseGate:
    """Tracks whether the host is in a phase where the overlay may act.

    Transitions are edge-triggered. Entering schedules the setup pass after a settle
    delay so the host tree can finish building; leaving tears down synchronously.
    """

    def __init__(
        self,
        allowed_phases: Iterable[str],
        *,
        after: AfterFn,
        settle_ms: int = 100,
    ) -> None:
        self._allowed = frozenset(allowed_phases)
        self._after = after
        self._settle_ms = max(0, int(settle_ms))
        self._in_phase = False
        self._phase: Optional[str] = None
        self._epoch = 0
        self._on_enter: List[PhaseCallback] = []
        self._on_exit: List[PhaseCallback] = []

    @property
    def in_interaction_phase(self) -> bool:
        return self._in_phase

    @property
    def phase(self) -> Optional[str]:
        return self._phase

    @property
    def epoch(self) -> int:
        """Incremented on every exit; timers armed in an older epoch must not act."""
        return self._epoch

    def on_enter(self, callback: PhaseCallback) -> None:
        self._on_enter.append(callback)

    def on_exit(self, callback: PhaseCallback) -> None:
        self._on_exit.append(callback)

    def on_phase_signal(self, phase: str) -> None:
        was_in_phase = self._in_phase
        self._phase = phase
        self._in_phase = phase in self._allowed
        if self._in_phase and not was_in_phase:
            _LOGGER.debug("Entered %s phase - enabling overlay", phase)
            epoch = self._epoch
            self._after(self._settle_ms, lambda: self._run_enter(epoch))
        elif was_in_phase and not self._in_phase:
            _LOGGER.debug("Left interaction phase (now %s) - disabling overlay", phase)
            self._epoch += 1
            for callback in list(self._on_exit):
                callback()

    def _run_enter(self, epoch: int) -> None:
        if not self._in_phase or epoch != self._epoch:
            return
        for callback in list(self._on_enter):
            callback()
