# lee_engine/src/lee_engine/discretization.py
"""Finite-volume discretization of the linearized Euler equations.

The system is linearized about a quiescent background with density 1 and
sound speed c. The conserved perturbation U = (rho, m_1..m_d, E) obeys

    dU/dt + sum_k A_k dU/dx_k = 0,

with the flux Jacobian in direction k

    rho -> m_k,   m_j -> delta_jk (gamma - 1) E,   E -> H0 m_k,

where H0 = c^2 / (gamma - 1). Cell averages are coupled through a local
Lax-Friedrichs flux

    F* = 1/2 A_k (U_L + U_R) - 1/2 c (U_R - U_L),

contributing -area/vol_L F* to the low cell and +area/vol_R F* to the high
cell. The semi-discrete operator is linear and autonomous, so it is assembled
once per mesh generation into a CSR matrix acting on the row-major
(n_cells, n_components) state.

Design notes:
    * Quadrature (projection, error norms) uses tensor Gauss-Legendre rules
      from numpy.polynomial.legendre.
    * The face-jump indicator is eta_K^2 = h_K * sum_faces area * |[U]|^2.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from itertools import product
from typing import Any, Protocol

import numpy as np
import numpy.typing as npt
from numpy.polynomial.legendre import leggauss
from scipy.sparse import coo_matrix, csr_matrix

from lee_engine.mesh import CartesianForest

FloatArray = npt.NDArray[np.floating[Any]]
FieldFunction = Callable[[FloatArray], FloatArray]

_STATE_SHAPE_ERROR = "state shape {actual} does not match operator shape {expected}"
_SCRATCH_SHAPE_ERROR = "scratch shape {actual} does not match operator shape {expected}"
_FIELD_SHAPE_ERROR = "field returned shape {actual}; expected {expected}"
_N_POINTS_ERROR = "n_points must be >= 1; got {n}"
_CFL_ERROR = "cfl_number must be positive; got {cfl}"


# =============================================================================
# Quadrature
# =============================================================================


@dataclass(frozen=True, slots=True)
class TensorQuadrature:
    """Tensor-product Gauss-Legendre rule on the reference cell [-1, 1]^dim.

    Attributes:
        points: Reference points, shape (n_q, dim).
        weights: Weights normalized to sum to one, shape (n_q,).
    """

    points: FloatArray
    weights: FloatArray

    @classmethod
    def gauss(cls, n_points: int, dim: int) -> TensorQuadrature:
        """Build an n_points^dim Gauss rule.

        Args:
            n_points: Points per direction.
            dim: Spatial dimension.

        Raises:
            ValueError: If n_points < 1.

        Returns:
            TensorQuadrature instance.
        """
        if n_points < 1:
            raise ValueError(_N_POINTS_ERROR.format(n=n_points))
        xi, w = leggauss(n_points)
        pts = np.array(list(product(xi, repeat=dim)), dtype=np.float64)
        wts = np.array([np.prod(c) for c in product(w, repeat=dim)], dtype=np.float64)
        return cls(points=pts.reshape(-1, dim), weights=wts / wts.sum())


# =============================================================================
# Operator interface
# =============================================================================


class OperatorLike(Protocol):
    """Discretization interface consumed by the driver and adaptation."""

    generation: int

    @property
    def name(self) -> str:
        """Human-readable scheme name."""
        ...

    @property
    def n_components(self) -> int:
        """Number of solution components."""
        ...

    def reinit(self, mesh: CartesianForest) -> None:
        """Rebuild per-mesh data after a mesh change."""
        ...

    def rhs(self, t: float, y: FloatArray) -> FloatArray:
        """Evaluate the semi-discrete right-hand side."""
        ...

    def estimate_error(self, state: FloatArray, scratch: FloatArray) -> FloatArray:
        """Return one error indicator per cell."""
        ...

    def project(self, field: FieldFunction, out: FloatArray) -> None:
        """Project a field onto the discrete space."""
        ...


def compute_time_step_size(mesh: CartesianForest, cfl_number: float) -> float:
    """Return the explicit step size for the given CFL multiplier.

    Args:
        mesh: Current mesh.
        cfl_number: Courant number.

    Raises:
        ValueError: If cfl_number is not positive.

    Returns:
        cfl_number times the smallest cell diameter.
    """
    if not cfl_number > 0.0:
        raise ValueError(_CFL_ERROR.format(cfl=cfl_number))
    return float(cfl_number * mesh.min_cell_diameter())


# =============================================================================
# Linearized Euler operator
# =============================================================================


class LinearizedEulerOperator:
    """Cell-centred finite-volume operator for the linearized Euler system."""

    def __init__(
        self,
        mesh: CartesianForest,
        *,
        degree: int,
        scheme: str,
        sound_speed: float = 1.0,
        gamma: float = 1.4,
    ) -> None:
        """
        Initialize the operator and assemble it for the current mesh.

        Args:
            mesh: Mesh to discretize on.
            degree: Approximation order (sets quadrature sizes).
            scheme: Name of the time integrator used with this operator.
            sound_speed: Background sound speed c.
            gamma: Ratio of specific heats.
        """
        self.degree = int(degree)
        self.scheme = str(scheme)
        self.sound_speed = float(sound_speed)
        self.gamma = float(gamma)
        self.dim = mesh.dim
        self.generation = -1
        self._mesh = mesh
        self._matrix: csr_matrix = csr_matrix((0, 0))
        self.reinit(mesh)

    @property
    def name(self) -> str:
        """Scheme name used in output file names."""
        return f"fv-{self.scheme}"

    @property
    def n_components(self) -> int:
        """Number of components (density, momentum, energy)."""
        return self.dim + 2

    @property
    def n_cells(self) -> int:
        """Number of cells of the mesh the operator is assembled for."""
        return self._mesh.n_active_cells

    @property
    def matrix(self) -> csr_matrix:
        """Assembled operator acting on the flattened state."""
        return self._matrix

    def flux_jacobian(self, direction: int) -> FloatArray:
        """Return A_k for the given coordinate direction.

        Args:
            direction: Coordinate direction k.

        Returns:
            Dense (n_components, n_components) matrix.
        """
        m = self.n_components
        a = np.zeros((m, m))
        a[0, 1 + direction] = 1.0
        a[1 + direction, m - 1] = self.gamma - 1.0
        a[m - 1, 1 + direction] = self.sound_speed**2 / (self.gamma - 1.0)
        return a

    def reinit(self, mesh: CartesianForest) -> None:
        """Assemble the operator for the current mesh generation.

        Args:
            mesh: Mesh (possibly rebuilt since the last call).
        """
        self._mesh = mesh
        self._matrix = self._assemble(mesh)
        self.generation = mesh.generation

    def _assemble(self, mesh: CartesianForest) -> csr_matrix:
        m = self.n_components
        n = mesh.n_active_cells
        faces = mesh.faces()
        volumes = mesh.volumes
        identity = np.eye(m)
        half_c = 0.5 * self.sound_speed

        rows: list[npt.NDArray[np.int64]] = []
        cols: list[npt.NDArray[np.int64]] = []
        vals: list[FloatArray] = []

        for k in range(self.dim):
            mask = faces.direction == k
            if not np.any(mask):
                continue
            lo = faces.left[mask]
            hi = faces.right[mask]
            area = faces.area[mask]
            a_k = 0.5 * self.flux_jacobian(k)
            block_lo = a_k + half_c * identity
            block_hi = a_k - half_c * identity
            scale_lo = -area / volumes[lo]
            scale_hi = area / volumes[hi]

            for block, source in ((block_lo, lo), (block_hi, hi)):
                for a, b in zip(*np.nonzero(block)):
                    for target, scale in ((lo, scale_lo), (hi, scale_hi)):
                        rows.append(target * m + a)
                        cols.append(source * m + b)
                        vals.append(scale * block[a, b])

        if not rows:
            return csr_matrix((n * m, n * m))
        return coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(n * m, n * m),
        ).tocsr()

    def _check_state(self, y: FloatArray) -> None:
        expected = (self.n_cells, self.n_components)
        if y.shape != expected:
            raise ValueError(_STATE_SHAPE_ERROR.format(actual=y.shape, expected=expected))

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def rhs(self, t: float, y: FloatArray) -> FloatArray:
        """Evaluate dU/dt for the flattened state.

        Args:
            t: Time (unused; the operator is autonomous).
            y: State of shape (n_cells, n_components).

        Returns:
            Time derivative with the shape of y.
        """
        del t
        self._check_state(y)
        return np.asarray(self._matrix @ y.ravel()).reshape(y.shape)

    def estimate_error(self, state: FloatArray, scratch: FloatArray) -> FloatArray:
        """Face-jump error indicator per cell.

        Args:
            state: Solution values, shape (n_cells, n_components).
            scratch: Work array of the same shape (overwritten).

        Raises:
            ValueError: If scratch has the wrong shape.

        Returns:
            Non-negative indicator per cell.
        """
        self._check_state(state)
        if scratch.shape != state.shape:
            raise ValueError(
                _SCRATCH_SHAPE_ERROR.format(actual=scratch.shape, expected=state.shape)
            )
        faces = self._mesh.faces()
        scratch.fill(0.0)
        jump = state[faces.right] - state[faces.left]
        weighted = faces.area[:, None] * jump**2
        np.add.at(scratch, faces.left, weighted)
        np.add.at(scratch, faces.right, weighted)
        return np.sqrt(self._mesh.cell_sizes * scratch.sum(axis=1))

    def _quadrature_points(self, n_points: int) -> tuple[FloatArray, FloatArray]:
        quad = TensorQuadrature.gauss(n_points, self.dim)
        centers = self._mesh.centers
        half = 0.5 * self._mesh.cell_sizes
        pts = centers[:, None, :] + half[:, None, None] * quad.points[None, :, :]
        return pts.reshape(-1, self.dim), quad.weights

    def _evaluate(self, field: FieldFunction, n_points: int) -> tuple[FloatArray, FloatArray]:
        points, weights = self._quadrature_points(n_points)
        values = np.asarray(field(points), dtype=np.float64)
        expected = (points.shape[0], self.n_components)
        if values.shape != expected:
            raise ValueError(_FIELD_SHAPE_ERROR.format(actual=values.shape, expected=expected))
        return values.reshape(self.n_cells, weights.size, self.n_components), weights

    def project(self, field: FieldFunction, out: FloatArray) -> None:
        """L2-project a field onto cell averages.

        Args:
            field: Callable mapping (n, dim) points to (n, n_components) values.
            out: Output array, shape (n_cells, n_components) (written in-place).
        """
        self._check_state(out)
        values, weights = self._evaluate(field, self.degree + 1)
        np.einsum("cqm,q->cm", values, weights, out=out)

    def integrate_difference(
        self,
        state: FloatArray,
        field: FieldFunction | None,
        components: slice,
        n_points: int,
    ) -> float:
        """L2 norm of (state - field) over the selected components.

        Args:
            state: Solution values, shape (n_cells, n_components).
            field: Reference field, or None for the zero function.
            components: Components included in the norm.
            n_points: Gauss points per direction.

        Returns:
            The global L2 norm.
        """
        self._check_state(state)
        if field is None:
            local = np.sum(state[:, components] ** 2, axis=1)
        else:
            values, weights = self._evaluate(field, n_points)
            diff = state[:, None, components] - values[:, :, components]
            local = np.einsum("cqm,q->c", diff**2, weights)
        return float(np.sqrt(np.sum(self._mesh.volumes * local)))
