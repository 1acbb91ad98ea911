# tests/test_mesh.py
"""Unit tests for lee_engine.mesh.

This module verifies:
- uniform construction (cell counts, sizes, generation, ordering).
- face lists on uniform and adapted meshes (every cell is closed).
- refinement and coarsening semantics and the generation counter.
- conservative cell transfer (injection and averaging).
"""

from __future__ import annotations

import numpy as np
import pytest

from lee_engine.mesh import (
    COARSEN,
    KEEP,
    REFINE,
    CartesianForest,
    MeshDescription,
)


def _mesh(dim: int = 2, refinements: int = 2, **kwargs: object) -> CartesianForest:
    """Build a uniform mesh on the unit hyper cube."""
    return CartesianForest.from_description(
        MeshDescription(dim=dim, n_global_refinements=refinements, **kwargs)
    )


def _closure_per_direction(mesh: CartesianForest) -> tuple[np.ndarray, np.ndarray]:
    """
    Sum face areas on the low and high side of every cell per direction.

    Returns:
        Tuple (area as left cell, area as right cell), shape (n_cells, dim).
    """
    faces = mesh.faces()
    as_left = np.zeros((mesh.n_active_cells, mesh.dim))
    as_right = np.zeros((mesh.n_active_cells, mesh.dim))
    np.add.at(as_left, (faces.left, faces.direction), faces.area)
    np.add.at(as_right, (faces.right, faces.direction), faces.area)
    return as_left, as_right


# -------------------------------------------------------------------
# Construction
# -------------------------------------------------------------------


@pytest.mark.parametrize(("dim", "refinements"), [(1, 3), (2, 2), (3, 1)])
def test_uniform_mesh_geometry(dim: int, refinements: int) -> None:
    """Uniform meshes have 2**(dim*r) equal cells covering the domain."""
    mesh = _mesh(dim, refinements, left=-1.0, right=1.0)
    n = 2 ** (dim * refinements)
    assert mesh.n_active_cells == n
    assert mesh.generation == 0
    assert np.all(mesh.levels == refinements)
    assert mesh.min_cell_diameter() == pytest.approx(2.0 / 2**refinements)
    assert mesh.volumes.sum() == pytest.approx(2.0**dim)
    assert np.all(mesh.centers > -1.0)
    assert np.all(mesh.centers < 1.0)


def test_description_validation() -> None:
    """Invalid descriptions are rejected."""
    with pytest.raises(ValueError, match="dim"):
        MeshDescription(dim=4, n_global_refinements=1)
    with pytest.raises(ValueError, match="larger"):
        MeshDescription(dim=2, n_global_refinements=1, left=1.0, right=0.0)
    with pytest.raises(ValueError, match="n_partitions"):
        MeshDescription(dim=2, n_global_refinements=1, n_partitions=0)


def test_levels_are_read_only() -> None:
    """The public level array cannot be modified in place."""
    mesh = _mesh()
    with pytest.raises(ValueError):
        mesh.levels[0] = 7


def test_partitions_are_contiguous_blocks() -> None:
    """Ownership splits the cell order into contiguous, balanced blocks."""
    mesh = _mesh(2, 2, n_partitions=3)
    ids = mesh.partition_ids()
    assert np.all(np.diff(ids) >= 0)
    assert set(ids.tolist()) == {0, 1, 2}
    counts = np.bincount(ids)
    assert counts.max() - counts.min() <= 1


# -------------------------------------------------------------------
# Faces
# -------------------------------------------------------------------


@pytest.mark.parametrize("dim", [1, 2, 3])
def test_uniform_periodic_face_count(dim: int) -> None:
    """A periodic uniform mesh has dim faces per cell."""
    mesh = _mesh(dim, 2)
    assert mesh.faces().n_faces == dim * mesh.n_active_cells


def test_adapted_mesh_cells_are_closed() -> None:
    """On a mesh with hanging faces every cell's faces cover its boundary."""
    mesh = _mesh(2, 2)
    flags = np.zeros(mesh.n_active_cells, dtype=np.int64)
    flags[5] = REFINE
    mesh.execute_coarsening_and_refinement(flags)
    flags = np.zeros(mesh.n_active_cells, dtype=np.int64)
    flags[np.argmax(mesh.levels)] = REFINE
    mesh.execute_coarsening_and_refinement(flags)

    as_left, as_right = _closure_per_direction(mesh)
    expected = mesh.cell_sizes[:, None] ** (mesh.dim - 1)
    assert np.allclose(as_left, expected)
    assert np.allclose(as_right, expected)


def test_single_cell_mesh_is_its_own_neighbour() -> None:
    """With zero refinements the periodic cell faces itself."""
    mesh = _mesh(2, 0)
    faces = mesh.faces()
    assert faces.n_faces == 2
    assert np.all(faces.left == 0)
    assert np.all(faces.right == 0)


# -------------------------------------------------------------------
# Refinement / coarsening
# -------------------------------------------------------------------


def test_refine_replaces_cell_by_children() -> None:
    """Refining one cell adds 2**dim - 1 cells and bumps the generation."""
    mesh = _mesh(3, 1)
    flags = np.full(mesh.n_active_cells, KEEP)
    flags[0] = REFINE
    transfer = mesh.execute_coarsening_and_refinement(flags)
    assert mesh.n_active_cells == 8 + 7
    assert mesh.generation == 1
    assert transfer.old_generation == 0
    assert transfer.new_generation == 1
    assert np.sum(mesh.levels == 2) == 8


def test_coarsen_requires_all_siblings() -> None:
    """Coarsening happens only for complete, fully flagged sibling groups."""
    mesh = _mesh(2, 1)
    partial = np.array([COARSEN, COARSEN, COARSEN, KEEP])
    mesh.execute_coarsening_and_refinement(partial)
    assert mesh.n_active_cells == 4
    assert mesh.generation == 1

    mesh.execute_coarsening_and_refinement(np.full(4, COARSEN))
    assert mesh.n_active_cells == 1
    assert mesh.levels.tolist() == [0]


def test_level_zero_cell_is_never_coarsened() -> None:
    """The coarse cell has no parent."""
    mesh = _mesh(2, 0)
    mesh.execute_coarsening_and_refinement(np.array([COARSEN]))
    assert mesh.n_active_cells == 1


def test_invalid_flags_raise() -> None:
    """Flags must match the cell count and use -1/0/1."""
    mesh = _mesh(2, 1)
    with pytest.raises(ValueError, match="flags shape"):
        mesh.execute_coarsening_and_refinement(np.zeros(3))
    with pytest.raises(ValueError, match="flags must only contain"):
        mesh.execute_coarsening_and_refinement(np.array([0, 2, 0, 0]))


# -------------------------------------------------------------------
# Transfer
# -------------------------------------------------------------------


def test_transfer_conserves_cell_integrals() -> None:
    """Injection and averaging preserve sum(volume * value) per component."""
    rng = np.random.default_rng(1234)
    mesh = _mesh(2, 3)
    values = rng.normal(size=(mesh.n_active_cells, 4))
    for _ in range(4):
        before = mesh.volumes @ values
        flags = rng.integers(-1, 2, size=mesh.n_active_cells)
        flags[mesh.levels <= 1] = np.maximum(flags[mesh.levels <= 1], KEEP)
        transfer = mesh.execute_coarsening_and_refinement(flags)
        values = transfer.apply(values)
        assert values.shape == (mesh.n_active_cells, 4)
        assert np.allclose(mesh.volumes @ values, before)


def test_transfer_injects_and_averages() -> None:
    """Children inherit the parent value; a parent gets the children's mean."""
    mesh = _mesh(1, 1)
    transfer = mesh.execute_coarsening_and_refinement(np.array([REFINE, KEEP]))
    assert np.allclose(transfer.apply(np.array([3.0, 5.0])), [3.0, 3.0, 5.0])

    mesh = _mesh(1, 1)
    transfer = mesh.execute_coarsening_and_refinement(np.array([COARSEN, COARSEN]))
    assert np.allclose(transfer.apply(np.array([3.0, 5.0])), [4.0])


def test_transfer_rejects_wrong_row_count() -> None:
    """Values must have one row per old cell."""
    mesh = _mesh(1, 1)
    transfer = mesh.execute_coarsening_and_refinement(np.array([KEEP, KEEP]))
    with pytest.raises(ValueError, match="transfer expects"):
        transfer.apply(np.zeros(3))
