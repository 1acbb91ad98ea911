# lee_engine/src/lee_engine/time_control.py
"""Simulation clock with step counting and output cadence.

Output ticks are detected from floor-based tick indices rather than time
equality: a tick fires on the first step whose time has crossed the next
multiple of the output interval, even when the step size does not divide the
interval. The tick index is capped at floor(final_time / output_interval) so
an overshooting final step cannot produce an extra output. A step longer than
the output interval crosses several boundaries; each call of at_tick()
consumes one of them, so callers drain a step with ``while tc.at_tick():``.
"""

from __future__ import annotations

import math

_TICK_TOLERANCE = 1e-10

_NOT_SETUP_ERROR = "TimeControl.setup() must be called first"
_POSITIVE_ERROR = "{name} must be positive; got {value}"
_SET_TIME_BACKWARDS_ERROR = "set_time cannot move time backwards ({new} < {current})"


def _require_positive(name: str, value: float) -> None:
    if not (math.isfinite(value) and value > 0):
        raise ValueError(_POSITIVE_ERROR.format(name=name, value=value))


class TimeControl:
    """Current time, step number, step size and output cadence of a run."""

    def __init__(self) -> None:
        """Create an uninitialized clock; call :meth:`setup` before use."""
        self._ready = False
        self.current_time = 0.0
        self.step_number = 0
        self.step_size = 0.0
        self.final_time = 0.0
        self.output_interval = 0.0
        self.max_steps = 0
        self._last_tick = 0
        self._max_tick = 0

    def setup(
        self,
        final_time: float,
        output_interval: float,
        initial_step_size: float,
        max_steps: int,
    ) -> None:
        """Initialize the clock and reset time, step and tick counters.

        Args:
            final_time: End time of the run.
            output_interval: Simulated time between two outputs.
            initial_step_size: Step size until the first :meth:`set_time_step`.
            max_steps: Hard cap on the number of steps.

        Raises:
            ValueError: If any argument is not positive.
        """
        _require_positive("final_time", final_time)
        _require_positive("output_interval", output_interval)
        _require_positive("step_size", initial_step_size)
        _require_positive("max_steps", max_steps)

        self.final_time = float(final_time)
        self.output_interval = float(output_interval)
        self.step_size = float(initial_step_size)
        self.max_steps = int(max_steps)
        self.current_time = 0.0
        self.step_number = 0
        self._last_tick = 0
        self._max_tick = self._tick_index(self.final_time)
        self._ready = True

    def _require_setup(self) -> None:
        if not self._ready:
            raise RuntimeError(_NOT_SETUP_ERROR)

    def _tick_index(self, t: float) -> int:
        return math.floor(t / self.output_interval + _TICK_TOLERANCE)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def advance_time_step(self) -> None:
        """Move the clock forward by one step of the current step size."""
        self._require_setup()
        self.step_number += 1
        self.current_time += self.step_size

    def at_tick(self) -> bool:
        """Consume one pending output tick.

        Returns:
            True if the current time has crossed a multiple of the output
            interval that has not been reported yet.
        """
        self._require_setup()
        tick = min(self._tick_index(self.current_time), self._max_tick)
        if tick > self._last_tick:
            self._last_tick += 1
            return True
        return False

    def done(self) -> bool:
        """Return True when the final time or the step cap has been reached."""
        self._require_setup()
        return self.current_time >= self.final_time or self.step_number >= self.max_steps

    def set_time_step(self, value: float) -> None:
        """Change the step size; applies from the next step.

        Args:
            value: New step size.

        Raises:
            ValueError: If value is not positive.
        """
        _require_positive("step_size", value)
        self.step_size = float(value)

    def set_time(self, value: float) -> None:
        """Jump the clock forward, e.g. to final_time on early termination.

        Args:
            value: New current time.

        Raises:
            ValueError: If value lies before the current time.
        """
        self._require_setup()
        if value < self.current_time:
            raise ValueError(
                _SET_TIME_BACKWARDS_ERROR.format(new=value, current=self.current_time)
            )
        self.current_time = float(value)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def time(self) -> float:
        """Current simulated time."""
        return self.current_time

    @property
    def time_step(self) -> float:
        """Current step size."""
        return self.step_size

    @property
    def output_step_number(self) -> int:
        """Number of output ticks so far; the initial output is number 0."""
        return self._last_tick
