# tests/test_cfl_search.py
"""Unit tests for lee_engine.cfl_search.

The stability oracle is injected, so the bisection logic is tested without
running simulations; one slow test exercises the default simulation runner.
"""

from __future__ import annotations

from typing import Any

import pytest

from lee_engine.cfl_search import (
    CFLSearchState,
    next_candidate,
    run_cfl_search,
)
from lee_engine.config import Parameters


def _threshold(limit: float) -> Any:
    """Oracle that is stable up to (and including) `limit`."""

    def _runner(prm: Parameters) -> bool:
        return prm.cfl_number <= limit

    return _runner


# -------------------------------------------------------------------
# Candidate update rule
# -------------------------------------------------------------------


def test_next_candidate_decreases_until_stable() -> None:
    """Without a stable bound: -0.1 while large, /3 once small."""
    large = next_candidate(CFLSearchState(candidate=0.5), stable=False, degree=1)
    assert large.candidate == pytest.approx(0.4)
    assert large.closest_instable == 0.5
    assert large.iteration == 1

    small = next_candidate(CFLSearchState(candidate=0.3), stable=False, degree=2)
    # 0.3 / 2**1.5 < 0.15
    assert small.candidate == pytest.approx(0.1)


def test_next_candidate_increases_until_unstable() -> None:
    """Without an unstable bound the candidate grows by 0.05."""
    state = next_candidate(CFLSearchState(candidate=0.2), stable=True, degree=1)
    assert state.candidate == pytest.approx(0.25)
    assert state.closest_stable == 0.2
    assert state.closest_instable is None


def test_next_candidate_bisects_between_bounds() -> None:
    """With both bounds the candidate is their midpoint."""
    state = CFLSearchState(candidate=0.3, closest_stable=0.2, closest_instable=0.4)
    nxt = next_candidate(state, stable=False, degree=1)
    assert nxt.closest_instable == 0.3
    assert nxt.candidate == pytest.approx(0.25)


# -------------------------------------------------------------------
# Search
# -------------------------------------------------------------------


def test_search_from_pathologically_high_start() -> None:
    """Starting far above the limit, the search walks down and brackets it."""
    prm = Parameters(fe_degree=1, cfl_number=1.0, output_directory=None)
    result = run_cfl_search(prm, runner=_threshold(0.42))
    assert result.stable is not None
    assert result.instable is not None
    assert result.stable <= 0.42 < result.instable
    assert result.instable - result.stable < 0.02
    assert len(result.history) == 12


def test_search_from_pathologically_low_start() -> None:
    """Starting far below the limit, the search walks up and brackets it."""
    prm = Parameters(fe_degree=1, cfl_number=0.01, output_directory=None)
    result = run_cfl_search(prm, runner=_threshold(0.42))
    assert result.stable is not None
    assert result.instable is not None
    assert result.stable <= 0.42 < result.instable
    assert result.middle == pytest.approx(0.5 * (result.stable + result.instable))


def test_search_never_stable_reports_no_stable_bound() -> None:
    """If no run is stable the stable bound and the midpoint stay unset."""
    prm = Parameters(fe_degree=2, cfl_number=0.5, output_directory=None)
    result = run_cfl_search(prm, runner=lambda p: False, n_iterations=5)
    assert result.stable is None
    assert result.middle is None
    assert result.instable is not None
    candidates = [c for c, _ in result.history]
    assert candidates == sorted(candidates, reverse=True)


def test_reported_values_are_scaled_by_degree() -> None:
    """Bounds are reported in units of degree**1.5."""
    prm = Parameters(fe_degree=2, cfl_number=0.1, output_directory=None)
    result = run_cfl_search(prm, runner=_threshold(0.12), n_iterations=8)
    assert result.scale == pytest.approx(2**1.5)
    assert result.state.closest_stable is not None
    assert result.stable == pytest.approx(result.state.closest_stable * 2**1.5)


def test_each_iteration_gets_fresh_parameters() -> None:
    """The base parameters are not mutated; every run sees its candidate."""
    prm = Parameters(fe_degree=1, cfl_number=0.3, output_directory=None)
    seen: list[float] = []

    def _runner(p: Parameters) -> bool:
        seen.append(p.cfl_number)
        return True

    run_cfl_search(prm, runner=_runner, n_iterations=3)
    assert prm.cfl_number == 0.3
    assert seen == pytest.approx([0.3, 0.35, 0.4])


def test_iterations_must_be_positive() -> None:
    """At least one run is required."""
    with pytest.raises(ValueError, match="n_iterations"):
        run_cfl_search(Parameters(), runner=lambda p: True, n_iterations=0)


@pytest.mark.slow
def test_default_runner_runs_simulations(small_parameters: Any) -> None:
    """Without a runner, every iteration runs a fresh simulation."""
    prm = small_parameters(cfl_number=0.1, n_refinements=2, final_time=0.1)
    result = run_cfl_search(prm, n_iterations=2)
    assert [stable for _, stable in result.history] == [True, True]
    assert result.state.candidate == pytest.approx(0.2)
