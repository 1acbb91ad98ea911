# lee_engine/src/lee_engine/adaptation.py
"""Error-driven mesh adaptation between time steps.

One adaptation pass:

1. evaluate the per-cell error indicator of the current solution;
2. mark a fixed fraction of cells: the largest indicators for refinement, the
   smallest for coarsening (ties broken by cell index);
3. compare against the indicator maximum captured after the initial
   refinement: cells far below it are not refined, and cells even further
   below are coarsened;
4. drop flags that would leave [min_level, max_level];
5. rebuild the mesh, re-index the operator and transfer the solution;
6. update the time step for the new smallest cell.

Level bounds are applied after step 3 so that forced coarsening cannot push a
cell below min_level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import numpy.typing as npt

from lee_engine.discretization import (
    LinearizedEulerOperator,
    compute_time_step_size,
)
from lee_engine.errors import MeshRebuildError, mesh_rebuild_error, raise_unsupported
from lee_engine.mesh import COARSEN, KEEP, REFINE, CartesianForest
from lee_engine.state import ExecutionContext, SimulationState
from lee_engine.time_control import TimeControl

logger = logging.getLogger(__name__)

FloatArray = npt.NDArray[np.floating[Any]]
IntArray = npt.NDArray[np.int64]

_LEVELS_ERROR = "max_level ({max_level}) must be >= min_level ({min_level})"
_FRACTION_ERROR = (
    "refine_fraction ({refine}) and coarsen_fraction ({coarsen}) must be in [0, 1] "
    "and sum to at most 1"
)
_INTERVAL_ERROR = "interval must be >= 1; got {interval}"


@dataclass(frozen=True, slots=True)
class AdaptationPolicy:
    """Cadence, marking fractions and level bounds of mesh adaptation.

    Attributes:
        min_level: Coarsest level a cell may have.
        max_level: Finest level a cell may have.
        interval: Adapt every `interval` steps.
        refine_fraction: Fraction of cells marked for refinement.
        coarsen_fraction: Fraction of cells marked for coarsening.
        refine_suppression_factor: No refinement below this fraction of the
            reference indicator.
        forced_coarsen_factor: Coarsen below this fraction of the reference
            indicator.
    """

    min_level: int
    max_level: int
    interval: int = 10
    refine_fraction: float = 0.1
    coarsen_fraction: float = 0.6
    refine_suppression_factor: float = 0.1
    forced_coarsen_factor: float = 0.05

    def __post_init__(self) -> None:
        """Validate the policy.

        Raises:
            ValueError: If bounds, fractions or interval are inconsistent.
        """
        if self.max_level < self.min_level:
            raise ValueError(
                _LEVELS_ERROR.format(max_level=self.max_level, min_level=self.min_level)
            )
        if not (
            0.0 <= self.refine_fraction <= 1.0
            and 0.0 <= self.coarsen_fraction <= 1.0
            and self.refine_fraction + self.coarsen_fraction <= 1.0
        ):
            raise ValueError(
                _FRACTION_ERROR.format(
                    refine=self.refine_fraction, coarsen=self.coarsen_fraction
                )
            )
        if self.interval < 1:
            raise ValueError(_INTERVAL_ERROR.format(interval=self.interval))

    @property
    def enabled(self) -> bool:
        """True when the level range allows any adaptation."""
        return self.max_level > self.min_level


# =============================================================================
# Marking
# =============================================================================


def mark_fixed_fraction(
    indicator: npt.ArrayLike,
    refine_fraction: float,
    coarsen_fraction: float,
) -> IntArray:
    """Flag the largest and smallest indicators for refinement/coarsening.

    Cells are ordered by (indicator, cell index) with a stable sort, so equal
    indicators are resolved deterministically.

    Args:
        indicator: Error indicator per cell.
        refine_fraction: Fraction of cells to refine.
        coarsen_fraction: Fraction of cells to coarsen.

    Returns:
        Flag per cell (REFINE, COARSEN or KEEP).
    """
    values = np.asarray(indicator, dtype=np.float64)
    n = values.size
    order = np.lexsort((np.arange(n), values))
    n_refine = int(refine_fraction * n)
    n_coarsen = min(int(coarsen_fraction * n), n - n_refine)

    flags = np.full(n, KEEP, dtype=np.int64)
    if n_coarsen:
        flags[order[:n_coarsen]] = COARSEN
    if n_refine:
        flags[order[n - n_refine :]] = REFINE
    return flags


def apply_reference_thresholds(
    flags: IntArray,
    indicator: FloatArray,
    reference: float | None,
    policy: AdaptationPolicy,
) -> IntArray:
    """Suppress refinement and force coarsening relative to a reference error.

    Args:
        flags: Flags from :func:`mark_fixed_fraction`.
        indicator: Error indicator per cell.
        reference: Maximal indicator captured after initial refinement; the
            thresholds are skipped while it is None.
        policy: Thresholds.

    Returns:
        Adjusted flags (new array).
    """
    out = flags.copy()
    if reference is None:
        return out
    suppress = (out == REFINE) & (indicator < policy.refine_suppression_factor * reference)
    out[suppress] = KEEP
    out[indicator < policy.forced_coarsen_factor * reference] = COARSEN
    return out


def clamp_to_levels(
    flags: IntArray,
    levels: IntArray,
    min_level: int,
    max_level: int,
) -> IntArray:
    """Drop flags that would move a cell outside [min_level, max_level].

    Args:
        flags: Flag per cell.
        levels: Current level per cell.
        min_level: Coarsest allowed level.
        max_level: Finest allowed level.

    Returns:
        Adjusted flags (new array).
    """
    out = flags.copy()
    out[(out == REFINE) & (levels >= max_level)] = KEEP
    out[(out == COARSEN) & (levels <= min_level)] = KEEP
    return out


# =============================================================================
# Controller
# =============================================================================


class AdaptationController:
    """Owns the solution state across mesh rebuilds."""

    def __init__(
        self,
        mesh: CartesianForest,
        operator: LinearizedEulerOperator,
        time_control: TimeControl,
        policy: AdaptationPolicy,
        cfl_number: float,
        context: ExecutionContext,
        state: SimulationState,
    ) -> None:
        """
        Initialize the controller.

        Args:
            mesh: Mesh to adapt.
            operator: Discretization re-indexed after every rebuild.
            time_control: Clock whose step size follows the mesh.
            policy: Adaptation policy.
            cfl_number: Courant number for the step size update.
            context: Execution context (logging on the root rank only).
            state: Current solution state.

        Raises:
            UnsupportedConfigurationError: For a distributed 1-D mesh when the
                policy enables adaptation.
        """
        self.mesh = mesh
        self.operator = operator
        self.time_control = time_control
        self.policy = policy
        self.cfl_number = float(cfl_number)
        self.context = context
        self.state = state
        self.maximal_cellwise_error_init: float | None = None
        self.n_adaptations = 0
        if policy.enabled:
            self._check_supported()

    def _check_supported(self) -> None:
        if self.mesh.dim == 1 and self.mesh.distributed:
            raise_unsupported(
                "mesh adaptation",
                "distributed 1-D mesh",
                supported="serial meshes in 1-D, any mesh in 2-D and 3-D",
            )

    def maybe_adapt(self, step_number: int) -> bool:
        """Adapt if enabled and the step number is on the cadence.

        Args:
            step_number: Current step number.

        Returns:
            True if the mesh was rebuilt.
        """
        if not self.policy.enabled or step_number % self.policy.interval != 0:
            return False
        self.adapt()
        return True

    def indicator(self) -> FloatArray:
        """Evaluate the error indicator of the current state."""
        self.state.check_generation(self.mesh.generation)
        scratch = np.empty_like(self.state.values)
        return self.operator.estimate_error(self.state.values, scratch)

    def capture_reference_error(self) -> float:
        """Store the maximum indicator as the reference for later passes.

        Returns:
            The captured value.
        """
        indicator = self.indicator()
        self.maximal_cellwise_error_init = float(np.max(indicator)) if indicator.size else 0.0
        return self.maximal_cellwise_error_init

    def compute_flags(self, indicator: FloatArray) -> IntArray:
        """Turn an indicator into admissible refinement flags.

        Args:
            indicator: Error indicator per cell.

        Returns:
            Flag per cell.
        """
        policy = self.policy
        flags = mark_fixed_fraction(
            indicator, policy.refine_fraction, policy.coarsen_fraction
        )
        flags = apply_reference_thresholds(
            flags, indicator, self.maximal_cellwise_error_init, policy
        )
        return clamp_to_levels(
            flags, np.asarray(self.mesh.levels), policy.min_level, policy.max_level
        )

    def adapt(self) -> None:
        """Run one unconditional adaptation pass.

        Raises:
            UnsupportedConfigurationError: For a distributed 1-D mesh.
            MeshRebuildError: If the rebuild or the state transfer fails.
        """
        self._check_supported()
        flags = self.compute_flags(self.indicator())
        old_generation = self.mesh.generation
        n_old = self.mesh.n_active_cells
        snapshot = self.state.values.copy()
        try:
            transfer = self.mesh.execute_coarsening_and_refinement(flags)
            self.operator.reinit(self.mesh)
            values = transfer.apply(snapshot)
        except MeshRebuildError:
            raise
        except Exception as exc:
            raise mesh_rebuild_error(generation=old_generation, reason=str(exc)) from exc

        self.state = SimulationState.from_array(values, self.mesh.generation)
        self.time_control.set_time_step(
            compute_time_step_size(self.mesh, self.cfl_number)
        )
        self.n_adaptations += 1
        if self.context.is_root:
            logger.debug(
                "Adapted mesh: %d -> %d cells (generation %d), dt = %.4g",
                n_old,
                self.mesh.n_active_cells,
                self.mesh.generation,
                self.time_control.time_step,
            )
