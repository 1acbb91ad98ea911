"""lee_engine adaptive explicit solver for the linearized Euler equations."""

from __future__ import annotations

from .adaptation import AdaptationController, AdaptationPolicy, mark_fixed_fraction
from .cfl_search import CFLSearchResult, CFLSearchState, run_cfl_search
from .config import Parameters, load_parameters
from .discretization import LinearizedEulerOperator, compute_time_step_size
from .driver import DriverState, RunReport, SimulationDriver
from .errors import (
    ConfigurationError,
    ErrorCode,
    LeeEngineError,
    MeshRebuildError,
    UnsupportedConfigurationError,
)
from .exact import ExactSolution
from .integrators import (
    ButcherTableau,
    ExplicitIntegrator,
    IntegratorType,
    RHSFunction,
    build_integrator,
)
from .mesh import CartesianForest, CellTransfer, MeshDescription
from .output import NpzOutputSink, NullOutputSink, OutputSink
from .stability import StabilityMonitor, StabilityRecord
from .state import ExecutionContext, SimulationState
from .time_control import TimeControl

__all__ = [
    "AdaptationController",
    "AdaptationPolicy",
    "ButcherTableau",
    "CFLSearchResult",
    "CFLSearchState",
    "CartesianForest",
    "CellTransfer",
    "ConfigurationError",
    "DriverState",
    "ErrorCode",
    "ExactSolution",
    "ExecutionContext",
    "ExplicitIntegrator",
    "IntegratorType",
    "LeeEngineError",
    "LinearizedEulerOperator",
    "MeshDescription",
    "MeshRebuildError",
    "NpzOutputSink",
    "NullOutputSink",
    "OutputSink",
    "Parameters",
    "RHSFunction",
    "RunReport",
    "SimulationDriver",
    "SimulationState",
    "StabilityMonitor",
    "StabilityRecord",
    "TimeControl",
    "UnsupportedConfigurationError",
    "build_integrator",
    "compute_time_step_size",
    "load_parameters",
    "mark_fixed_fraction",
    "run_cfl_search",
]

__version__ = "0.1.0"
