# tests/test_discretization.py
"""Unit tests for lee_engine.discretization and lee_engine.exact.

This module verifies:
- free-stream preservation and conservation of the assembled operator, also
  across hanging faces.
- projection and L2 error evaluation by Gauss quadrature.
- the face-jump error indicator.
- the exact solutions satisfy the linearized Euler equations.
- first-order convergence of the finite-volume scheme for a plane wave.
"""

from __future__ import annotations

import numpy as np
import pytest

from lee_engine.discretization import (
    LinearizedEulerOperator,
    TensorQuadrature,
    compute_time_step_size,
)
from lee_engine.errors import UnsupportedConfigurationError
from lee_engine.exact import ExactSolution
from lee_engine.integrators import ClassicalRK4
from lee_engine.mesh import REFINE, CartesianForest, MeshDescription


def _mesh(dim: int = 2, refinements: int = 3) -> CartesianForest:
    """Uniform mesh on the unit hyper cube."""
    return CartesianForest.from_description(
        MeshDescription(dim=dim, n_global_refinements=refinements)
    )


def _adapted_mesh() -> CartesianForest:
    """2-D mesh with hanging faces of one and two level differences."""
    mesh = _mesh(2, 2)
    flags = np.zeros(mesh.n_active_cells, dtype=np.int64)
    flags[[0, 6]] = REFINE
    mesh.execute_coarsening_and_refinement(flags)
    flags = np.zeros(mesh.n_active_cells, dtype=np.int64)
    flags[np.argmax(mesh.levels)] = REFINE
    mesh.execute_coarsening_and_refinement(flags)
    return mesh


def _operator(mesh: CartesianForest, degree: int = 2) -> LinearizedEulerOperator:
    return LinearizedEulerOperator(mesh, degree=degree, scheme="classrk4")


# -------------------------------------------------------------------
# Operator structure
# -------------------------------------------------------------------


@pytest.mark.parametrize("mesh_factory", [_mesh, _adapted_mesh])
def test_constant_state_is_steady(mesh_factory: object) -> None:
    """A uniform perturbation has zero time derivative."""
    mesh = mesh_factory()  # type: ignore[operator]
    op = _operator(mesh)
    y = np.tile(np.array([0.3, -1.0, 2.0, 0.7]), (mesh.n_active_cells, 1))
    assert np.allclose(op.rhs(0.0, y), 0.0, atol=1e-12)


@pytest.mark.parametrize("mesh_factory", [_mesh, _adapted_mesh])
def test_operator_is_conservative(mesh_factory: object) -> None:
    """sum(volume * dU/dt) vanishes for every component."""
    mesh = mesh_factory()  # type: ignore[operator]
    op = _operator(mesh)
    rng = np.random.default_rng(7)
    y = rng.normal(size=(mesh.n_active_cells, op.n_components))
    assert np.allclose(mesh.volumes @ op.rhs(0.0, y), 0.0, atol=1e-10)


def test_operator_is_reassembled_per_generation() -> None:
    """reinit follows the mesh generation and the new cell count."""
    mesh = _mesh(2, 2)
    op = _operator(mesh)
    assert op.generation == 0
    flags = np.zeros(mesh.n_active_cells, dtype=np.int64)
    flags[3] = REFINE
    mesh.execute_coarsening_and_refinement(flags)
    op.reinit(mesh)
    assert op.generation == 1
    n = mesh.n_active_cells * op.n_components
    assert op.matrix.shape == (n, n)


def test_rhs_rejects_wrong_shape() -> None:
    """The state must have one row per cell and dim + 2 columns."""
    op = _operator(_mesh(2, 1))
    with pytest.raises(ValueError, match="state shape"):
        op.rhs(0.0, np.zeros((4, 3)))


def test_name_and_time_step() -> None:
    """The scheme name feeds file names; dt is cfl times the smallest edge."""
    mesh = _mesh(2, 3)
    op = _operator(mesh)
    assert op.name == "fv-classrk4"
    assert compute_time_step_size(mesh, 0.5) == pytest.approx(0.5 / 8)
    with pytest.raises(ValueError, match="cfl_number"):
        compute_time_step_size(mesh, 0.0)


# -------------------------------------------------------------------
# Quadrature, projection, norms
# -------------------------------------------------------------------


def test_tensor_quadrature_integrates_polynomials() -> None:
    """An n-point rule is exact for degree 2n - 1 per direction."""
    quad = TensorQuadrature.gauss(3, 2)
    x, y = quad.points[:, 0], quad.points[:, 1]
    # mean of x**4 y**2 over [-1, 1]^2
    assert quad.weights @ (x**4 * y**2) == pytest.approx(1.0 / 5.0 * 1.0 / 3.0)
    with pytest.raises(ValueError, match="n_points"):
        TensorQuadrature.gauss(0, 2)


def test_projection_of_linear_field_gives_centre_values() -> None:
    """Cell averages of a linear field equal its value at the cell centre."""
    mesh = _adapted_mesh()
    op = _operator(mesh)

    def field(points: np.ndarray) -> np.ndarray:
        out = np.zeros((points.shape[0], 4))
        out[:, 0] = 2.0 * points[:, 0] - points[:, 1] + 1.0
        return out

    values = np.empty((mesh.n_active_cells, 4))
    op.project(field, values)
    assert np.allclose(values, field(mesh.centers))


def test_integrate_difference() -> None:
    """L2 norms against zero and against the projected field itself."""
    mesh = _mesh(2, 2)
    op = _operator(mesh)
    values = np.zeros((mesh.n_active_cells, 4))
    values[:, 0] = 2.0
    assert op.integrate_difference(values, None, slice(0, 1), 3) == pytest.approx(2.0)
    assert op.integrate_difference(values, None, slice(1, 3), 3) == 0.0

    def constant(points: np.ndarray) -> np.ndarray:
        out = np.zeros((points.shape[0], 4))
        out[:, 0] = 2.0
        return out

    assert op.integrate_difference(values, constant, slice(0, 4), 4) == pytest.approx(0.0)


# -------------------------------------------------------------------
# Error indicator
# -------------------------------------------------------------------


def test_indicator_detects_jumps() -> None:
    """Constant states have zero indicator; a jump marks its neighbours."""
    mesh = _mesh(2, 2)
    op = _operator(mesh)
    values = np.ones((mesh.n_active_cells, 4))
    scratch = np.empty_like(values)
    assert np.allclose(op.estimate_error(values, scratch), 0.0)

    values[5, 0] = 3.0
    eta = op.estimate_error(values, scratch)
    assert eta[5] == eta.max()
    assert np.count_nonzero(eta) == 5
    with pytest.raises(ValueError, match="scratch shape"):
        op.estimate_error(values, np.empty((2, 4)))


# -------------------------------------------------------------------
# Exact solutions
# -------------------------------------------------------------------


@pytest.mark.parametrize(("case", "dim"), [(1, 2), (1, 3), (2, 2), (2, 3)])
def test_exact_solution_satisfies_equations(case: int, dim: int) -> None:
    """dU/dt + sum_k A_k dU/dx_k = 0 checked by central differences."""
    exact = ExactSolution(time=0.37, case=case, dim=dim, modes=2)
    op = _operator(_mesh(dim, 1))
    rng = np.random.default_rng(3)
    x = rng.uniform(size=(5, dim))
    eps = 1e-5

    dudt = (exact.at(0.37 + eps)(x) - exact.at(0.37 - eps)(x)) / (2 * eps)
    flux = np.zeros_like(dudt)
    for k in range(dim):
        shift = np.zeros(dim)
        shift[k] = eps
        dudx = (exact(x + shift) - exact(x - shift)) / (2 * eps)
        flux += dudx @ op.flux_jacobian(k).T
    assert np.allclose(dudt + flux, 0.0, atol=1e-5)


def test_standing_wave_starts_at_rest() -> None:
    """Case 1 has zero momentum at t = 0."""
    exact = ExactSolution(time=0.0, case=1, dim=2)
    values = exact(np.array([[0.1, 0.2], [0.7, 0.4]]))
    assert np.allclose(values[:, 1:3], 0.0)


def test_unknown_case_is_unsupported() -> None:
    """Only the built-in cases are available."""
    with pytest.raises(UnsupportedConfigurationError, match="initial case"):
        ExactSolution(time=0.0, case=3, dim=2)


# -------------------------------------------------------------------
# Convergence
# -------------------------------------------------------------------


def _plane_wave_error(refinements: int) -> float:
    """
    Advect a plane wave to t = 0.25 and return the density L2 error.

    Args:
        refinements: Uniform refinement level.

    Returns:
        Density L2 error at the final time.
    """
    mesh = _mesh(2, refinements)
    op = _operator(mesh, degree=1)
    exact = ExactSolution(time=0.0, case=2, dim=2)
    y = np.empty((mesh.n_active_cells, 4))
    op.project(exact, y)
    out = np.empty_like(y)
    scheme = ClassicalRK4()
    t_end = 0.25
    n_steps = int(round(t_end / compute_time_step_size(mesh, 0.2)))
    dt = t_end / n_steps
    for i in range(n_steps):
        scheme.perform_time_step(y, out, dt, op.rhs, time=i * dt)
        y, out = out, y
    return op.integrate_difference(y, exact.at(t_end), slice(0, 1), 3)


def test_plane_wave_error_decreases_with_refinement() -> None:
    """The first-order scheme converges at roughly first order."""
    coarse = _plane_wave_error(4)
    fine = _plane_wave_error(5)
    assert fine < coarse
    assert np.log2(coarse / fine) > 0.6
