"""
Progress Module - Weighted phase progress for catalog loads.
============================================================

A load moves through fixed phases, each owning a slice of the [0, 1] bar:

    initial_check   0.05  (0.05)
    read_metadata   0.05  (0.10)
    fetch_batches   0.40  (0.50)
    merge_data      0.10  (0.60)
    write_chunks    0.30  (0.90)
    finalize        0.10  (1.00)

Progress only ever moves forward. When a phase has a known number of steps
the status text carries "(completed/total)".
"""

from typing import Callable, Optional

from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import ProgressUpdate

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressUpdate], None]

# (weight, cumulative) per phase, in execution order
PHASES: dict[str, tuple[float, float]] = {
    "initial_check": (0.05, 0.05),
    "read_metadata": (0.05, 0.10),
    "fetch_batches": (0.40, 0.50),
    "merge_data": (0.10, 0.60),
    "write_chunks": (0.30, 0.90),
    "finalize": (0.10, 1.00),
}

PHASE_MESSAGES: dict[str, str] = {
    "initial_check": "Initializing course system...",
    "read_metadata": "Counting available courses...",
    "fetch_batches": "Downloading course data...",
    "merge_data": "Merging course updates...",
    "write_chunks": "Storing course data...",
    "finalize": "Building search index...",
}


class ProgressTracker:
    """
    Deterministic, monotonic progress reporter.

    Example:
        >>> tracker = ProgressTracker(print)
        >>> tracker.start_phase("fetch_batches", total=3)
        >>> tracker.advance(completed=1)   # progress 0.10 + 0.40/3
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._phase: Optional[str] = None
        self._total = 0
        self._completed = 0
        self._progress = 0.0
        self._status = ""

    @property
    def phase(self) -> Optional[str]:
        return self._phase

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def current(self) -> ProgressUpdate:
        return ProgressUpdate(
            progress=self._progress,
            status=self._status,
            phase=self._phase,
            completed=self._completed,
            total=self._total,
        )

    def _phase_base(self, phase: str) -> float:
        weight, cumulative = PHASES[phase]
        return cumulative - weight

    def _emit(self, progress: float, status: str) -> None:
        self._progress = max(self._progress, min(1.0, progress))
        self._status = status
        if self._callback is not None:
            self._callback(self.current)

    def _status_text(self, status: Optional[str]) -> str:
        text = status or PHASE_MESSAGES.get(self._phase or "", self._status)
        if status is None and self._total > 0:
            text = f"{text} ({self._completed}/{self._total})"
        return text

    def start_phase(self, phase: str, total: int = 0, status: Optional[str] = None) -> None:
        """
        Enter `phase`, optionally with a known number of steps.

        Raises:
            ValueError: If the phase name is unknown
        """
        if phase not in PHASES:
            raise ValueError(f"Unknown progress phase: {phase}")

        self._phase = phase
        self._total = max(0, total)
        self._completed = 0
        logger.debug(f"Progress phase: {phase} (total={total})")
        self._emit(self._phase_base(phase), self._status_text(status))

    def advance(
        self,
        completed: Optional[int] = None,
        fraction: Optional[float] = None,
        status: Optional[str] = None,
    ) -> None:
        """
        Report progress inside the current phase.

        Args:
            completed: Steps done so far (uses the phase total)
            fraction: Explicit fraction of the phase, 0..1
            status: Custom status text
        """
        if self._phase is None:
            logger.warning("Progress update without an active phase ignored")
            return

        if completed is not None:
            self._completed = completed
            if fraction is None and self._total > 0:
                fraction = completed / self._total
        fraction = min(1.0, max(0.0, fraction or 0.0))

        weight, _ = PHASES[self._phase]
        self._emit(self._phase_base(self._phase) + weight * fraction, self._status_text(status))

    def complete_phase(self, status: Optional[str] = None) -> None:
        """Jump to the end of the current phase."""
        if self._phase is None:
            return
        self._completed = self._total
        _, cumulative = PHASES[self._phase]
        self._emit(cumulative, self._status_text(status))

    def finish(self, status: str = "Ready!") -> None:
        """Report completion of the whole load."""
        self._phase = "finalize"
        self._total = 0
        self._emit(1.0, status)
