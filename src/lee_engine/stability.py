# lee_engine/src/lee_engine/stability.py
"""Divergence heuristic driven by the output-step error signal.

The monitor latches the error and solution magnitude of the first output and
flags a run as divergent once the latest error exceeds 100 times the first
error, or 1.5 times the first magnitude. This is a heuristic: it catches the
exponential blow-up typical of an explicit scheme run beyond its stability
limit, but it does not prove instability, and a physically growing error
could trip it as well.
"""

from __future__ import annotations

from dataclasses import dataclass

ERROR_GROWTH_LIMIT = 100.0
MAGNITUDE_GROWTH_LIMIT = 1.5


@dataclass(slots=True)
class StabilityRecord:
    """Error signal history of one run.

    Attributes:
        first_error: Error at the first observation (None before it).
        first_magnitude: Reference magnitude at the first observation.
        last_error: Error at the latest observation.
    """

    first_error: float | None = None
    first_magnitude: float | None = None
    last_error: float | None = None


class StabilityMonitor:
    """Observe output-step errors and report divergence."""

    def __init__(self) -> None:
        """Create a monitor with no observations."""
        self.record = StabilityRecord()

    def reset(self) -> None:
        """Forget all observations (start of a new run)."""
        self.record = StabilityRecord()

    def observe(self, error_magnitude: float, reference_magnitude: float) -> None:
        """Record one output-step error.

        Args:
            error_magnitude: Error of the current solution.
            reference_magnitude: Size of the current solution.
        """
        rec = self.record
        if rec.first_error is None:
            rec.first_error = float(error_magnitude)
            rec.first_magnitude = float(reference_magnitude)
        rec.last_error = float(error_magnitude)

    def is_divergent(self) -> bool:
        """Return True when the latest error indicates blow-up."""
        rec = self.record
        if rec.first_error is None or rec.last_error is None:
            return False
        assert rec.first_magnitude is not None
        return (
            rec.last_error > ERROR_GROWTH_LIMIT * rec.first_error
            or rec.last_error > MAGNITUDE_GROWTH_LIMIT * rec.first_magnitude
        )

    def is_stable(self) -> bool:
        """Return True unless the run is flagged divergent."""
        return not self.is_divergent()
