# lee_engine/src/lee_engine/cfl_search.py
"""Bisection search for the largest stable Courant number.

Each iteration runs a complete simulation at the candidate Courant number and
uses its stability verdict as the oracle. Until a stable run has been seen the
candidate decreases (by 0.1, or by a factor of 3 once it is small); until an
unstable run has been seen it increases by 0.05; afterwards the candidate is
the midpoint of the closest stable and unstable values.

Reported values are multiplied by degree**1.5. This scaling is a heuristic
that makes limits of different approximation orders roughly comparable; it is
not derived from a stability analysis of the scheme.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from lee_engine.config import Parameters
from lee_engine.driver import SimulationDriver
from lee_engine.state import ExecutionContext

logger = logging.getLogger(__name__)

CFLRunner = Callable[[Parameters], bool]

DEFAULT_ITERATIONS = 12
_BANNER = "*" * 55
_ITERATIONS_ERROR = "n_iterations must be >= 1; got {n}"


@dataclass(frozen=True, slots=True)
class CFLSearchState:
    """Bounds threaded through the search iterations.

    Attributes:
        candidate: Courant number of the next run.
        closest_stable: Largest Courant number seen to be stable (None if no
            stable run yet).
        closest_instable: Smallest Courant number seen to be unstable (None if
            no unstable run yet).
        iteration: Number of completed runs.
    """

    candidate: float
    closest_stable: float | None = None
    closest_instable: float | None = None
    iteration: int = 0


@dataclass(frozen=True, slots=True)
class CFLSearchResult:
    """Outcome of a CFL search, in scaled (degree**1.5) units.

    Attributes:
        state: Final search state (unscaled).
        scale: Scaling factor degree**1.5.
        history: (candidate, stable) pairs of every run (unscaled).
    """

    state: CFLSearchState
    scale: float
    history: tuple[tuple[float, bool], ...]

    @property
    def stable(self) -> float | None:
        """Scaled closest stable Courant number."""
        s = self.state.closest_stable
        return None if s is None else s * self.scale

    @property
    def instable(self) -> float | None:
        """Scaled closest unstable Courant number."""
        s = self.state.closest_instable
        return None if s is None else s * self.scale

    @property
    def middle(self) -> float | None:
        """Scaled midpoint of both bounds (None unless both exist)."""
        lo, hi = self.state.closest_stable, self.state.closest_instable
        if lo is None or hi is None:
            return None
        return 0.5 * (lo + hi) * self.scale


def next_candidate(state: CFLSearchState, stable: bool, degree: int) -> CFLSearchState:
    """Record one verdict and choose the next candidate.

    Args:
        state: State before the run.
        stable: Verdict of the run at ``state.candidate``.
        degree: Approximation order.

    Returns:
        State for the next iteration.
    """
    cand = state.candidate
    if stable:
        state = replace(state, closest_stable=cand)
    else:
        state = replace(state, closest_instable=cand)

    if state.closest_stable is None:
        if cand / degree**1.5 > 0.15:
            nxt = cand - 0.1
        else:
            nxt = cand / 3.0
    elif state.closest_instable is None:
        nxt = cand + 0.05
    else:
        nxt = 0.5 * (state.closest_stable + state.closest_instable)
    return replace(state, candidate=nxt, iteration=state.iteration + 1)


def run_single(parameters: Parameters, context: ExecutionContext | None = None) -> bool:
    """Run one fresh simulation and return its stability verdict.

    Args:
        parameters: Run parameters (with the candidate Courant number).
        context: Execution context.

    Returns:
        True if the run was stable.
    """
    driver = SimulationDriver(parameters, context=context)
    driver.run()
    return driver.cfl_stable()


def _fmt(value: float | None) -> str:
    return "none" if value is None else f"{value:g}"


def run_cfl_search(
    parameters: Parameters,
    *,
    runner: CFLRunner | None = None,
    n_iterations: int = DEFAULT_ITERATIONS,
    context: ExecutionContext | None = None,
) -> CFLSearchResult:
    """Search the stability limit of the Courant number.

    Args:
        parameters: Base parameters; ``cfl_number`` is the starting candidate.
        runner: Stability oracle for one parameter set. Defaults to a full
            simulation with a fresh driver per call.
        n_iterations: Number of runs.
        context: Execution context (logging on the root rank only).

    Raises:
        ValueError: If n_iterations < 1.

    Returns:
        CFLSearchResult with scaled bounds.
    """
    if n_iterations < 1:
        raise ValueError(_ITERATIONS_ERROR.format(n=n_iterations))
    ctx = context or ExecutionContext()
    oracle = runner or (lambda prm: run_single(prm, ctx))
    degree = parameters.fe_degree
    scale = float(degree) ** 1.5
    verbose = ctx.is_root

    state = CFLSearchState(candidate=parameters.cfl_number)
    history: list[tuple[float, bool]] = []
    for i in range(n_iterations):
        if verbose:
            logger.info(_BANNER)
            logger.info("cfl %g in iteration %d", state.candidate * scale, i)
            logger.info(_BANNER)
        trial = parameters.model_copy(update={"cfl_number": state.candidate})
        stable = bool(oracle(trial))
        history.append((state.candidate, stable))
        state = next_candidate(state, stable, degree)

    result = CFLSearchResult(state=state, scale=scale, history=tuple(history))
    if verbose:
        logger.info(_BANNER)
        logger.info("Final results for the CFL stability analysis:")
        logger.info("The Courant number                %s is instable", _fmt(result.instable))
        logger.info("The Courant number                %s is stable", _fmt(result.stable))
        logger.info("The limit might be in the middle: %s", _fmt(result.middle))
        logger.info(_BANNER)
    return result
