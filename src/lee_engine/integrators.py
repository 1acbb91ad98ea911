# lee_engine/src/lee_engine/integrators.py
"""Explicit Runge-Kutta integrators for semi-discrete wave problems.

Every integrator advances a state array by one step of size dt given a
right-hand side F(t, y). The family is selected once at setup time from
:class:`IntegratorType`; the driver only ever talks to the common
:class:`ExplicitIntegrator` interface.

Supported schemes (keyword `IntegratorType`):
    - "expleuler":  Forward Euler (order 1).
    - "classrk4":   Classical 4-stage Runge-Kutta (order 4).
    - "lsrk45reg2": Kennedy-Carpenter-Lewis RK4(3)5[2R+]C, two registers.
    - "lsrk33reg2": Three-stage third-order scheme in the same 2R format.
    - "lsrk45reg3": Carpenter-Kennedy five-stage fourth-order scheme in
                    Williamson form (solution, increment and stage registers).
    - "lsrk59reg2": Kennedy-Carpenter-Lewis RK5(4)9[2R+]S, two registers.
    - "ssprk":      Strong-stability-preserving RK in Shu-Osher form,
                    parameterized by (stages, order).

Purity:
    perform_time_step is a function of (state_in, dt, rhs) only. Scratch
    registers are owned by the integrator instance and reallocated whenever the
    state shape changes (for example after a mesh rebuild); they never carry
    information from one call to the next. state_in is never written.

Tableaux:
    Each scheme exposes its Butcher tableau. Storage-format coefficients (2R,
    Williamson, Shu-Osher) are the source of truth; the tableau is derived from
    them so that both views describe exactly the same method.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar, TypeAlias

import numpy as np
from numpy.typing import NDArray

from lee_engine.errors import raise_unsupported

# =============================================================================
# Errors / messages
# =============================================================================

_RHS_SHAPE_ERROR_MSG = "rhs shape {actual} does not match expected {expected}"
_DT_ERROR_MSG = "time step must be a positive finite float; got {dt}"
_STATE_SHAPE_ERROR_MSG = "state_out shape {actual} does not match state_in {expected}"
_SSP_SUPPORTED = "(s, 1) for s >= 1, (s, 2) for s >= 2, (3, 3), (n*n, 3) for n >= 2, (10, 4)"


# =============================================================================
# Type aliases
# =============================================================================

FloatArray: TypeAlias = NDArray[np.floating]
RHSFunction = Callable[[float, FloatArray], FloatArray]


class IntegratorType(StrEnum):
    """Selector for the explicit time integration scheme."""

    EXPL_EULER = "expleuler"
    CLASS_RK4 = "classrk4"
    LSRK45_REG2 = "lsrk45reg2"
    LSRK33_REG2 = "lsrk33reg2"
    LSRK45_REG3 = "lsrk45reg3"
    LSRK59_REG2 = "lsrk59reg2"
    SSPRK = "ssprk"


@dataclass(frozen=True, slots=True)
class ButcherTableau:
    """Butcher tableau of an explicit Runge-Kutta method.

    Attributes:
        a: Strictly lower triangular stage matrix, shape (s, s).
        b: Quadrature weights, shape (s,).
        c: Stage times, shape (s,); equal to the row sums of a.
    """

    a: FloatArray
    b: FloatArray
    c: FloatArray

    @property
    def n_stages(self) -> int:
        """Number of stages s."""
        return int(self.b.size)

    @classmethod
    def from_matrix(cls, a: FloatArray, b: FloatArray) -> ButcherTableau:
        """Build a tableau, deriving c as the row sums of a.

        Args:
            a: Stage matrix.
            b: Weights.

        Returns:
            ButcherTableau instance.
        """
        a_arr = np.asarray(a, dtype=np.float64)
        b_arr = np.asarray(b, dtype=np.float64)
        return cls(a=a_arr, b=b_arr, c=a_arr.sum(axis=1))


# =============================================================================
# Base class
# =============================================================================


class ExplicitIntegrator(ABC):
    """Capability "advance one explicit step" shared by all schemes."""

    name: ClassVar[str] = "explicit"
    order: int = 1

    def __init__(self) -> None:
        """Initialize an integrator with empty scratch registers."""
        self._registers: list[FloatArray] = []

    @property
    @abstractmethod
    def tableau(self) -> ButcherTableau:
        """Butcher tableau describing the scheme."""

    @property
    def n_stages(self) -> int:
        """Number of right-hand side evaluations per step."""
        return self.tableau.n_stages

    @abstractmethod
    def perform_time_step(
        self,
        state_in: FloatArray,
        state_out: FloatArray,
        dt: float,
        rhs: RHSFunction,
        *,
        time: float = 0.0,
    ) -> None:
        """Advance state_in by dt and write the result into state_out.

        Args:
            state_in: State at `time` (read only).
            state_out: Output array, same shape as state_in (written in-place).
            dt: Step size.
            rhs: Right-hand side F(t, y).
            time: Time at the beginning of the step.
        """

    # ------------------------------------------------------------------
    # Helpers shared by the concrete schemes
    # ------------------------------------------------------------------

    def _registers_like(self, like: FloatArray, count: int) -> list[FloatArray]:
        """Return `count` scratch arrays shaped like `like`.

        Args:
            like: Template array.
            count: Number of registers required.

        Returns:
            List of scratch arrays (contents undefined).
        """
        if count == 0:
            return []
        if (
            len(self._registers) < count
            or self._registers[0].shape != like.shape
            or self._registers[0].dtype != like.dtype
        ):
            self._registers = [np.empty_like(like) for _ in range(count)]
        return self._registers[:count]

    @staticmethod
    def _check_step(state_in: FloatArray, state_out: FloatArray, dt: float) -> None:
        if not (np.isfinite(dt) and dt > 0.0):
            raise ValueError(_DT_ERROR_MSG.format(dt=dt))
        if state_out.shape != state_in.shape:
            raise ValueError(
                _STATE_SHAPE_ERROR_MSG.format(
                    actual=state_out.shape, expected=state_in.shape
                )
            )

    @staticmethod
    def _source(state_in: FloatArray, state_out: FloatArray) -> FloatArray:
        """Return a read-only view of the input that survives writes to state_out."""
        if np.shares_memory(state_in, state_out):
            return state_in.copy()
        return state_in

    @staticmethod
    def _rhs(rhs: RHSFunction, t: float, y: FloatArray) -> FloatArray:
        """Evaluate the right-hand side with shape enforcement.

        Args:
            rhs: Right-hand side F(t, y).
            t: Stage time.
            y: Stage state.

        Raises:
            ValueError: If the right-hand side has an unexpected shape.

        Returns:
            F(t, y) as a float array.
        """
        f = np.asarray(rhs(float(t), y), dtype=y.dtype)
        if f.shape != y.shape:
            raise ValueError(_RHS_SHAPE_ERROR_MSG.format(actual=f.shape, expected=y.shape))
        return f


# =============================================================================
# Single- and multi-stage classics
# =============================================================================


class ExplicitEuler(ExplicitIntegrator):
    """Forward Euler, y_{n+1} = y_n + dt F(t_n, y_n)."""

    name = "expleuler"
    order = 1

    @property
    def tableau(self) -> ButcherTableau:
        """Butcher tableau describing the scheme."""
        return ButcherTableau.from_matrix(np.zeros((1, 1)), np.ones(1))

    def perform_time_step(
        self,
        state_in: FloatArray,
        state_out: FloatArray,
        dt: float,
        rhs: RHSFunction,
        *,
        time: float = 0.0,
    ) -> None:
        """Advance one forward Euler step."""
        self._check_step(state_in, state_out, dt)
        f = self._rhs(rhs, time, state_in)
        u = self._source(state_in, state_out)
        np.multiply(f, dt, out=state_out)
        state_out += u


class ClassicalRK4(ExplicitIntegrator):
    """Classical fourth-order Runge-Kutta method (Kutta 1901)."""

    name = "classrk4"
    order = 4

    @property
    def tableau(self) -> ButcherTableau:
        """Butcher tableau describing the scheme."""
        a = np.array(
            [
                [0.0, 0.0, 0.0, 0.0],
                [0.5, 0.0, 0.0, 0.0],
                [0.0, 0.5, 0.0, 0.0],
                [0.0, 0.0, 1.0, 0.0],
            ]
        )
        b = np.array([1.0 / 6.0, 1.0 / 3.0, 1.0 / 3.0, 1.0 / 6.0])
        return ButcherTableau.from_matrix(a, b)

    def perform_time_step(
        self,
        state_in: FloatArray,
        state_out: FloatArray,
        dt: float,
        rhs: RHSFunction,
        *,
        time: float = 0.0,
    ) -> None:
        """Advance one classical RK4 step."""
        self._check_step(state_in, state_out, dt)
        u = self._source(state_in, state_out)
        (stage,) = self._registers_like(u, 1)

        k = self._rhs(rhs, time, u)
        np.multiply(k, dt / 6.0, out=state_out)
        state_out += u
        np.multiply(k, 0.5 * dt, out=stage)
        stage += u

        k = self._rhs(rhs, time + 0.5 * dt, stage)
        state_out += (dt / 3.0) * k
        np.multiply(k, 0.5 * dt, out=stage)
        stage += u

        k = self._rhs(rhs, time + 0.5 * dt, stage)
        state_out += (dt / 3.0) * k
        np.multiply(k, dt, out=stage)
        stage += u

        k = self._rhs(rhs, time + dt, stage)
        state_out += (dt / 6.0) * k


# =============================================================================
# Low-storage schemes
# =============================================================================


class LowStorageRK2Register(ExplicitIntegrator):
    """Two-register low-storage Runge-Kutta scheme of Kennedy et al. (2000).

    The stage matrix has the 2R structure a_ij = b_j for j < i - 1, so the
    whole method is defined by the sub-diagonal `ai` and the weights `bi`.
    Only the accumulated solution and the next stage vector are stored.
    """

    ai: ClassVar[tuple[float, ...]] = ()
    bi: ClassVar[tuple[float, ...]] = ()

    @property
    def tableau(self) -> ButcherTableau:
        """Butcher tableau describing the scheme."""
        s = len(self.bi)
        a = np.zeros((s, s))
        for i in range(1, s):
            a[i, : i - 1] = self.bi[: i - 1]
            a[i, i - 1] = self.ai[i - 1]
        return ButcherTableau.from_matrix(a, np.asarray(self.bi))

    def perform_time_step(
        self,
        state_in: FloatArray,
        state_out: FloatArray,
        dt: float,
        rhs: RHSFunction,
        *,
        time: float = 0.0,
    ) -> None:
        """Advance one low-storage step."""
        self._check_step(state_in, state_out, dt)
        u = self._source(state_in, state_out)
        (stage,) = self._registers_like(u, 1)
        c = self.tableau.c
        n_stages = len(self.bi)

        np.copyto(state_out, u)
        np.copyto(stage, u)
        for i in range(n_stages):
            k = self._rhs(rhs, time + c[i] * dt, stage)
            if i < n_stages - 1:
                np.multiply(k, self.ai[i] * dt, out=stage)
                stage += state_out
            state_out += (self.bi[i] * dt) * k


class LowStorageRK33Reg2(LowStorageRK2Register):
    """Three-stage, third-order scheme in 2R format."""

    name = "lsrk33reg2"
    order = 3
    ai = (0.755726351946097, 0.386954477304099)
    bi = (0.245170287303492, 0.184896052186740, 0.569933660509768)


class LowStorageRK45Reg2(LowStorageRK2Register):
    """RK4(3)5[2R+]C of Kennedy, Carpenter and Lewis (2000)."""

    name = "lsrk45reg2"
    order = 4
    ai = (
        970286171893.0 / 4311952581923.0,
        6584761158862.0 / 12103376702013.0,
        2251764453980.0 / 15575788980749.0,
        26877169314380.0 / 34165994151039.0,
    )
    bi = (
        1153189308089.0 / 22510343858157.0,
        1772645290293.0 / 4653164025191.0,
        -1672844663538.0 / 4480602732383.0,
        2114624349019.0 / 3568978502595.0,
        5198255086312.0 / 14908931495163.0,
    )


class LowStorageRK59Reg2(LowStorageRK2Register):
    """RK5(4)9[2R+]S of Kennedy, Carpenter and Lewis (2000)."""

    name = "lsrk59reg2"
    order = 5
    ai = (
        1107026461565.0 / 5417078080134.0,
        38141181049399.0 / 41724347789894.0,
        493273079041.0 / 11940823631197.0,
        1851571280403.0 / 6147804934346.0,
        11782306865191.0 / 62590030070788.0,
        9452544825720.0 / 13648368537481.0,
        4435885630781.0 / 26285702406235.0,
        2357909744247.0 / 11371140753790.0,
    )
    bi = (
        2274579626619.0 / 23610510767302.0,
        693987741272.0 / 12394497460941.0,
        -347131529483.0 / 15096185902911.0,
        1144057200723.0 / 32081666971178.0,
        1562491064753.0 / 11797114684756.0,
        13113619727965.0 / 44346030145118.0,
        393957816125.0 / 7825732611452.0,
        720647959663.0 / 6565743875477.0,
        3559252274877.0 / 14424734981077.0,
    )


class LowStorageRK45Reg3(ExplicitIntegrator):
    """Five-stage fourth-order scheme of Carpenter and Kennedy (1994).

    Williamson (2N) form: an increment register is damped by A_i and refreshed
    with the stage residual, then added to the solution with weight B_i. Only
    the solution and the increment are storage registers; the stage residual
    returned by the right-hand side is transient.
    """

    name = "lsrk45reg3"
    order = 4
    williamson_a: ClassVar[tuple[float, ...]] = (
        0.0,
        -567301805773.0 / 1357537059087.0,
        -2404267990393.0 / 2016746695238.0,
        -3550918686646.0 / 2091501179385.0,
        -1275806237668.0 / 842570457699.0,
    )
    williamson_b: ClassVar[tuple[float, ...]] = (
        1432997174477.0 / 9575080441755.0,
        5161836677717.0 / 13612068292357.0,
        1720146321549.0 / 2090206949498.0,
        3134564353537.0 / 4481467310338.0,
        2277821191437.0 / 14882151754819.0,
    )

    @property
    def tableau(self) -> ButcherTableau:
        """Butcher tableau describing the scheme."""
        s = len(self.williamson_b)
        a = np.zeros((s, s))
        increment = np.zeros(s)
        solution = np.zeros(s)
        for i in range(s):
            a[i] = solution
            increment *= self.williamson_a[i]
            increment[i] += 1.0
            solution += self.williamson_b[i] * increment
        return ButcherTableau.from_matrix(a, solution)

    def perform_time_step(
        self,
        state_in: FloatArray,
        state_out: FloatArray,
        dt: float,
        rhs: RHSFunction,
        *,
        time: float = 0.0,
    ) -> None:
        """Advance one Williamson-form step."""
        self._check_step(state_in, state_out, dt)
        u = self._source(state_in, state_out)
        (increment,) = self._registers_like(u, 1)
        c = self.tableau.c

        np.copyto(state_out, u)
        increment.fill(0.0)
        for i, (a_i, b_i) in enumerate(
            zip(self.williamson_a, self.williamson_b, strict=True)
        ):
            k = self._rhs(rhs, time + c[i] * dt, state_out)
            increment *= a_i
            increment += dt * k
            state_out += b_i * increment


# =============================================================================
# Strong-stability-preserving schemes
# =============================================================================


def check_ssp_pair(stages: int, order: int) -> None:
    """Validate an SSP (stages, order) pair.

    Args:
        stages: Number of stages.
        order: Order of accuracy.

    Raises:
        UnsupportedConfigurationError: If the pair is not supported.
    """
    n = math.isqrt(stages) if stages > 0 else 0
    supported = (
        (order == 1 and stages >= 1)
        or (order == 2 and stages >= 2)
        or (order == 3 and (stages == 3 or (n >= 2 and n * n == stages)))
        or (order == 4 and stages == 10)
    )
    if not supported:
        raise_unsupported(
            "SSP Runge-Kutta (stages, order)",
            (stages, order),
            supported=_SSP_SUPPORTED,
        )


def _shu_osher_coefficients(stages: int, order: int) -> tuple[FloatArray, FloatArray]:
    """Return Shu-Osher (alpha, beta) arrays of shape (stages + 1, stages).

    Row i describes y_i = sum_j alpha_ij y_j + dt beta_ij F(y_j); y_0 is the
    input and y_stages the result. Coefficients follow Ketcheson (2008) for the
    (s, 1), (s, 2), (n^2, 3) and (10, 4) families and Shu and Osher (1988) for
    (3, 3).

    Args:
        stages: Number of stages.
        order: Order of accuracy.

    Returns:
        Tuple (alpha, beta).
    """
    check_ssp_pair(stages, order)
    s = stages
    alpha = np.zeros((s + 1, s))
    beta = np.zeros((s + 1, s))

    if order == 1:
        for i in range(1, s + 1):
            alpha[i, i - 1] = 1.0
            beta[i, i - 1] = 1.0 / s
    elif order == 2:
        for i in range(1, s):
            alpha[i, i - 1] = 1.0
            beta[i, i - 1] = 1.0 / (s - 1)
        alpha[s, 0] = 1.0 / s
        alpha[s, s - 1] = (s - 1) / s
        beta[s, s - 1] = 1.0 / s
    elif order == 3 and s == 3:
        alpha[1, 0] = 1.0
        beta[1, 0] = 1.0
        alpha[2, 0], alpha[2, 1], beta[2, 1] = 0.75, 0.25, 0.25
        alpha[3, 0], alpha[3, 2], beta[3, 2] = 1.0 / 3.0, 2.0 / 3.0, 2.0 / 3.0
    elif order == 3:
        n = math.isqrt(s)
        r = s - n
        saved = (n - 1) * (n - 2) // 2
        merged = n * (n + 1) // 2
        for i in range(1, s + 1):
            if i == merged:
                weight = (n - 1) / (2 * n - 1)
                alpha[i, saved] = n / (2 * n - 1)
                alpha[i, i - 1] = weight
                beta[i, i - 1] = weight / r
            else:
                alpha[i, i - 1] = 1.0
                beta[i, i - 1] = 1.0 / r
    else:
        for i in range(1, s + 1):
            alpha[i, i - 1] = 1.0
            beta[i, i - 1] = 1.0 / 6.0
        alpha[5, 4], alpha[5, 0], beta[5, 4] = 0.4, 0.6, 1.0 / 15.0
        alpha[10, 9], beta[10, 9] = 0.6, 0.1
        alpha[10, 4], beta[10, 4], alpha[10, 0] = 9.0 / 25.0, 3.0 / 50.0, 1.0 / 25.0

    return alpha, beta


class SSPRK(ExplicitIntegrator):
    """Strong-stability-preserving Runge-Kutta scheme in Shu-Osher form."""

    name = "ssprk"

    def __init__(self, stages: int = 10, order: int = 4) -> None:
        """
        Initialize an SSP scheme.

        Args:
            stages: Number of stages.
            order: Order of accuracy.
        """
        super().__init__()
        self.alpha, self.beta = _shu_osher_coefficients(stages, order)
        self.stages = int(stages)
        self.order = int(order)
        self._tableau = self._derive_tableau()

    def _derive_tableau(self) -> ButcherTableau:
        s = self.stages
        # weights[i, k]: coefficient of dt F(y_k) in y_i
        weights = np.zeros((s + 1, s))
        for i in range(1, s + 1):
            weights[i] = self.beta[i] + self.alpha[i, :i] @ weights[:i]
        return ButcherTableau.from_matrix(weights[:s], weights[s])

    @property
    def tableau(self) -> ButcherTableau:
        """Butcher tableau describing the scheme."""
        return self._tableau

    def perform_time_step(
        self,
        state_in: FloatArray,
        state_out: FloatArray,
        dt: float,
        rhs: RHSFunction,
        *,
        time: float = 0.0,
    ) -> None:
        """Advance one SSP step."""
        self._check_step(state_in, state_out, dt)
        u = self._source(state_in, state_out)
        s = self.stages
        c = self._tableau.c
        stages = [u, *self._registers_like(u, s - 1)]
        residuals: list[FloatArray] = []

        for i in range(1, s + 1):
            residuals.append(self._rhs(rhs, time + c[i - 1] * dt, stages[i - 1]))
            target = state_out if i == s else stages[i]
            target.fill(0.0)
            for j in range(i):
                if self.alpha[i, j] != 0.0:
                    target += self.alpha[i, j] * stages[j]
                if self.beta[i, j] != 0.0:
                    target += (dt * self.beta[i, j]) * residuals[j]


# =============================================================================
# Selection
# =============================================================================

_FIXED_SCHEMES: dict[IntegratorType, type[ExplicitIntegrator]] = {
    IntegratorType.EXPL_EULER: ExplicitEuler,
    IntegratorType.CLASS_RK4: ClassicalRK4,
    IntegratorType.LSRK45_REG2: LowStorageRK45Reg2,
    IntegratorType.LSRK33_REG2: LowStorageRK33Reg2,
    IntegratorType.LSRK45_REG3: LowStorageRK45Reg3,
    IntegratorType.LSRK59_REG2: LowStorageRK59Reg2,
}


def build_integrator(
    kind: IntegratorType | str,
    *,
    ssp_stages: int = 10,
    ssp_order: int = 4,
) -> ExplicitIntegrator:
    """Instantiate the integrator selected by `kind`.

    Args:
        kind: Scheme selector (enum member or its string value).
        ssp_stages: Stages of the SSP scheme (only used for "ssprk").
        ssp_order: Order of the SSP scheme (only used for "ssprk").

    Returns:
        A fresh integrator instance.
    """
    try:
        selector = IntegratorType(str(kind).strip().lower())
    except ValueError:
        raise_unsupported(
            "time integrator",
            kind,
            supported=", ".join(member.value for member in IntegratorType),
        )
        raise

    if selector is IntegratorType.SSPRK:
        return SSPRK(stages=ssp_stages, order=ssp_order)
    return _FIXED_SCHEMES[selector]()
