# lee_engine/src/lee_engine/driver.py
"""Simulation driver for the adaptive linearized Euler solver.

The driver owns one run and walks through a fixed sequence of states:

    UNINITIALIZED -> GRID_READY -> DOFS_READY -> INITIAL_REFINEMENT
        -> RUNNING -> FINISHED

Each transition has its own method (make_grid, make_dofs, initial_refinement,
run); calling one out of order raises RuntimeError. ``run()`` performs any
missing transitions itself, so the usual entry point is a single call.

Main loop, per step:
    1. advance the clock,
    2. swap the two solution buffers and integrate,
    3. adapt the mesh on the adaptation cadence,
    4. on every output tick crossed by the step: evaluate errors, feed the
       stability monitor, write output, and end the run early if the monitor
       reports divergence.

Divergence is a verdict, not an error: the clock is set to the final time and
the loop drains normally. The verdict is available from :meth:`cfl_stable`.
"""

from __future__ import annotations

import logging
import resource
import sys
import time
import warnings
from dataclasses import dataclass
from enum import Enum, auto

import numpy as np

from lee_engine.adaptation import AdaptationController, AdaptationPolicy
from lee_engine.config import Parameters
from lee_engine.discretization import LinearizedEulerOperator, compute_time_step_size
from lee_engine.exact import ExactSolution
from lee_engine.integrators import ExplicitIntegrator, build_integrator
from lee_engine.mesh import CartesianForest, MeshDescription
from lee_engine.output import (
    NpzOutputSink,
    NullOutputSink,
    OutputRecord,
    OutputSink,
    component_names,
)
from lee_engine.stability import StabilityMonitor, StabilityRecord
from lee_engine.state import ExecutionContext, SimulationState
from lee_engine.time_control import TimeControl

logger = logging.getLogger(__name__)

_TRANSITION_ERROR_MSG = "cannot call {method}() in state {state}; expected {expected}"
_NOT_FINISHED_ERROR_MSG = "cfl_stable() is only available after run() has finished"
_STEP_CAP_WARNING_MSG = (
    "max_time_steps={max_steps} with step size {dt:.4g} ends the run before "
    "final_time={final_time}"
)


class DriverState(Enum):
    """Lifecycle states of :class:`SimulationDriver`."""

    UNINITIALIZED = auto()
    GRID_READY = auto()
    DOFS_READY = auto()
    INITIAL_REFINEMENT = auto()
    RUNNING = auto()
    FINISHED = auto()


@dataclass(frozen=True, slots=True)
class RunReport:
    """Summary of a finished run.

    Attributes:
        n_steps: Number of time steps performed.
        n_output_ticks: Number of output ticks after the initial output.
        final_time: Simulated time at the end of the run.
        time_step: Step size at the end of the run.
        n_active_cells: Number of active cells at the end of the run.
        wall_time_per_step: Average integration wall time per step.
        wall_time_per_step_per_cell: The same, divided by the cell count.
        output_time: Wall time spent on output.
        adaptation_time: Wall time spent on mesh adaptation.
        compute_time: Wall time spent on integration.
        stable: Stability verdict of the run.
        stability: Error signal history.
    """

    n_steps: int
    n_output_ticks: int
    final_time: float
    time_step: float
    n_active_cells: int
    wall_time_per_step: float
    wall_time_per_step_per_cell: float
    output_time: float
    adaptation_time: float
    compute_time: float
    stable: bool
    stability: StabilityRecord


def _max_rss_mb() -> float:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is reported in bytes on macOS and in kilobytes elsewhere
    scale = 1.0 / 2**20 if sys.platform == "darwin" else 1.0 / 2**10
    return float(usage) * scale


class SimulationDriver:
    """Run one simulation of the linearized Euler equations."""

    def __init__(
        self,
        parameters: Parameters,
        *,
        context: ExecutionContext | None = None,
        sink: OutputSink | None = None,
    ) -> None:
        """
        Initialize the driver.

        Args:
            parameters: Run parameters.
            context: Execution context (defaults to a single rank).
            sink: Output sink; defaults to writing ``.npz`` files to
                ``parameters.output_directory`` (or nothing when it is None).

        Raises:
            UnsupportedConfigurationError: If the parameters cannot be run.
        """
        parameters.check_supported()
        self.parameters = parameters
        self.context = context or ExecutionContext()
        if sink is None:
            if parameters.output_directory is None:
                sink = NullOutputSink()
            else:
                sink = NpzOutputSink(parameters.output_directory, self.context)
        self.sink = sink

        self.state = DriverState.UNINITIALIZED
        self.time_control = TimeControl()
        self.monitor = StabilityMonitor()
        self.mesh: CartesianForest | None = None
        self.operator: LinearizedEulerOperator | None = None
        self.integrator: ExplicitIntegrator | None = None
        self.adaptation: AdaptationController | None = None
        self._spare: SimulationState | None = None
        self._report: RunReport | None = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, method: str, *expected: DriverState) -> None:
        if self.state not in expected:
            raise RuntimeError(
                _TRANSITION_ERROR_MSG.format(
                    method=method,
                    state=self.state.name,
                    expected=" or ".join(s.name for s in expected),
                )
            )

    def _log(self, msg: str, *args: object) -> None:
        if self.context.is_root:
            logger.info(msg, *args)

    def _log_memory(self) -> None:
        # one value per partition; all partitions live in this process
        per_partition = np.full(self.parameters.n_partitions, _max_rss_mb())
        self._log(
            "   Memory stats [MB]: %.1f %.1f %.1f",
            per_partition.min(),
            per_partition.mean(),
            per_partition.max(),
        )

    def exact_solution(self, t: float) -> ExactSolution:
        """Exact solution of the configured test case at time t."""
        p = self.parameters
        return ExactSolution(
            time=t,
            case=p.initial_case,
            dim=p.dimension,
            modes=p.membrane_modes,
            length=p.domain_right - p.domain_left,
            left=p.domain_left,
            sound_speed=p.sound_speed,
            gamma=p.gamma,
        )

    @property
    def solution(self) -> SimulationState:
        """Current solution state."""
        if self.adaptation is None:
            raise RuntimeError(
                _TRANSITION_ERROR_MSG.format(
                    method="solution",
                    state=self.state.name,
                    expected=DriverState.DOFS_READY.name,
                )
            )
        return self.adaptation.state

    @property
    def basename(self) -> str:
        """Output file stem without the step suffix."""
        p = self.parameters
        assert self.operator is not None
        return (
            f"sol_deg{p.fe_degree}_{self.operator.name}"
            f"_case{p.initial_case}_ref{p.n_refinements}"
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def make_grid(self) -> None:
        """Create the uniformly refined hyper-cube mesh."""
        self._require("make_grid", DriverState.UNINITIALIZED)
        p = self.parameters
        self.mesh = CartesianForest.from_description(
            MeshDescription(
                dim=p.dimension,
                n_global_refinements=p.n_refinements,
                left=p.domain_left,
                right=p.domain_right,
                distributed=p.distributed_mesh,
                n_partitions=p.n_partitions,
            )
        )
        self._log("Number of global active cells: %d", self.mesh.n_active_cells)
        self._log_memory()
        self.state = DriverState.GRID_READY

    def make_dofs(self) -> None:
        """Set up the clock, the operator, the integrator and the state."""
        self._require("make_dofs", DriverState.GRID_READY)
        assert self.mesh is not None
        p = self.parameters

        dt = compute_time_step_size(self.mesh, p.cfl_number)
        self.time_control.setup(p.final_time, p.output_interval, dt, p.max_time_steps)
        if p.max_time_steps * dt < p.final_time:
            warnings.warn(
                _STEP_CAP_WARNING_MSG.format(
                    max_steps=p.max_time_steps, dt=dt, final_time=p.final_time
                ),
                RuntimeWarning,
                stacklevel=2,
            )

        self.integrator = build_integrator(
            p.integrator, ssp_stages=p.ssp_stages, ssp_order=p.ssp_order
        )
        self.operator = LinearizedEulerOperator(
            self.mesh,
            degree=p.fe_degree,
            scheme=self.integrator.name,
            sound_speed=p.sound_speed,
            gamma=p.gamma,
        )
        state = SimulationState(
            self.mesh.n_active_cells, self.operator.n_components, self.mesh.generation
        )
        self._spare = state.like()
        self.adaptation = AdaptationController(
            self.mesh,
            self.operator,
            self.time_control,
            AdaptationPolicy(
                min_level=p.min_level,
                max_level=p.max_level,
                interval=p.adaptive_refinement_interval,
            ),
            p.cfl_number,
            self.context,
            state,
        )

        n_cells = self.mesh.n_active_cells
        self._log(
            "Number of degrees of freedom: %d = %d x %d",
            n_cells * self.operator.n_components,
            self.operator.n_components,
            n_cells,
        )
        self._log_memory()
        self._log("   Time step size: %.6g", self.time_control.time_step)
        self.state = DriverState.DOFS_READY

    def initial_refinement(self) -> None:
        """Project the initial field and pre-adapt the mesh to it."""
        self._require("initial_refinement", DriverState.DOFS_READY)
        assert self.adaptation is not None
        assert self.operator is not None

        initial = self.exact_solution(self.time_control.time)
        self.operator.project(initial, self.solution.values)

        n_left = self.parameters.n_adaptive_refinements
        while n_left > 0:
            self.adaptation.adapt()
            self.operator.project(initial, self.solution.values)
            n_left -= 1
            if n_left == 0:
                self.adaptation.capture_reference_error()
        self._spare = self.solution.like()
        self.state = DriverState.INITIAL_REFINEMENT

    def output_results(self) -> None:
        """Evaluate errors, update the stability verdict and write output."""
        assert self.mesh is not None
        assert self.operator is not None
        tc = self.time_control
        p = self.parameters
        op = self.operator
        values = self.solution.values
        dim = p.dimension
        exact = self.exact_solution(tc.time)

        density_mag = op.integrate_difference(values, None, slice(0, 1), p.fe_degree + 1)
        error_rho = op.integrate_difference(values, exact, slice(0, 1), p.fe_degree + 2)
        error_v = op.integrate_difference(values, exact, slice(1, dim + 1), p.fe_degree + 2)
        error_energy = op.integrate_difference(
            values, exact, slice(dim + 1, dim + 2), p.fe_degree + 3
        )

        self.monitor.observe(error_rho, density_mag)
        if self.monitor.is_divergent() and tc.time < tc.final_time:
            self._log("   Divergence detected; ending run at time %.2f", tc.time)
            tc.set_time(tc.final_time)

        projected = np.empty_like(values)
        op.project(exact, projected)
        record = OutputRecord(
            basename=self.basename,
            output_number=tc.output_step_number,
            time=tc.time,
            centers=self.mesh.centers,
            levels=np.asarray(self.mesh.levels),
            partitions=self.mesh.partition_ids(),
            solution=values.copy(),
            error=projected - values,
            names=component_names(dim),
            n_partitions=self.mesh.n_partitions,
            norms={
                "error_density": error_rho,
                "error_momentum": error_v,
                "error_energy": error_energy,
                "magnitude_density": density_mag,
            },
        )
        self.sink.write(record)

        self._log(
            "   Time:%8.2f , error rho: %10.4e , error rho*v: %10.4e , "
            "error energy: %10.4e , solution mag rho: %10.4e",
            tc.time,
            error_rho,
            error_v,
            error_energy,
            density_mag,
        )
        self._log(
            "write output for time step %d at time %.2f", tc.step_number, tc.time
        )

    def run(self) -> RunReport:
        """Perform all outstanding transitions and the time loop.

        Returns:
            RunReport of the finished run.
        """
        if self.state is DriverState.UNINITIALIZED:
            self.make_grid()
        if self.state is DriverState.GRID_READY:
            self.make_dofs()
        if self.state is DriverState.DOFS_READY:
            self.initial_refinement()
        self._require("run", DriverState.INITIAL_REFINEMENT)
        assert self.mesh is not None
        assert self.operator is not None
        assert self.integrator is not None
        assert self.adaptation is not None

        self.state = DriverState.RUNNING
        self.monitor.reset()
        self.output_results()

        tc = self.time_control
        compute_time = 0.0
        output_time = 0.0
        adaptation_time = 0.0
        n_ticks = 0

        while not tc.done():
            tc.advance_time_step()

            start = time.perf_counter()
            state_in = self.solution
            state_out = self._spare
            assert state_out is not None
            state_in.check_generation(self.mesh.generation)
            state_out.check_generation(self.mesh.generation)
            dt = tc.time_step
            self.integrator.perform_time_step(
                state_in.values,
                state_out.values,
                dt,
                self.operator.rhs,
                time=tc.time - dt,
            )
            self.adaptation.state, self._spare = state_out, state_in
            compute_time += time.perf_counter() - start

            start = time.perf_counter()
            if self.adaptation.maybe_adapt(tc.step_number):
                self._spare = self.solution.like()
                adaptation_time += time.perf_counter() - start

            start = time.perf_counter()
            # a step longer than the output interval owes several outputs
            while tc.at_tick():
                n_ticks += 1
                self.output_results()
                if self.monitor.is_divergent():
                    break
            output_time += time.perf_counter() - start

        self.state = DriverState.FINISHED
        n_steps = tc.step_number
        n_cells = self.mesh.n_active_cells
        per_step = compute_time / n_steps if n_steps else 0.0

        self._log("")
        self._log("   Performed %d time steps.", n_steps)
        self._log(
            "   Average wallclock time per time step: %.4gs, time per element: %.4gs",
            per_step,
            per_step / n_cells,
        )
        self._log(
            "   Spent %.4g s on output, %.4g s on adaptation, and %.4g s on computations.",
            output_time,
            adaptation_time,
            compute_time,
        )

        self._report = RunReport(
            n_steps=n_steps,
            n_output_ticks=n_ticks,
            final_time=tc.time,
            time_step=tc.time_step,
            n_active_cells=n_cells,
            wall_time_per_step=per_step,
            wall_time_per_step_per_cell=per_step / n_cells,
            output_time=output_time,
            adaptation_time=adaptation_time,
            compute_time=compute_time,
            stable=self.monitor.is_stable(),
            stability=self.monitor.record,
        )
        return self._report

    def cfl_stable(self) -> bool:
        """Return the stability verdict of the finished run.

        Raises:
            RuntimeError: If the run has not finished.
        """
        if self.state is not DriverState.FINISHED:
            raise RuntimeError(_NOT_FINISHED_ERROR_MSG)
        return self.monitor.is_stable()
