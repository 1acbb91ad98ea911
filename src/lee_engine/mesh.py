# lee_engine/src/lee_engine/mesh.py
"""Adaptive Cartesian forest on a periodic hyper cube.

The mesh is the set of active leaves of a quadtree/octree over the domain
[left, right]^dim. A leaf is identified by its refinement level and integer
coordinates on that level; cell widths are (right - left) / 2**level.

Design notes:
    * Leaves are kept in a deterministic order (lexicographic by anchor
      position on the finest level present), so the row index of a cell in the
      solution array is reproducible for a given leaf set.
    * No 2:1 balance is imposed. The face list resolves neighbours across any
      level difference: a face between cells of different levels is recorded
      once, from the fine side, with the fine face area.
    * Every call to :meth:`CartesianForest.execute_coarsening_and_refinement`
      increments ``generation`` and returns a :class:`CellTransfer` that maps
      cell values of the old leaf set onto the new one (injection onto
      children, volume-weighted average onto parents).
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from typing import Any, Protocol

import numpy as np
import numpy.typing as npt
from scipy.sparse import coo_matrix, csr_matrix

IntArray = npt.NDArray[np.int64]
FloatArray = npt.NDArray[np.floating[Any]]

REFINE = 1
COARSEN = -1
KEEP = 0

_DIM_ERROR = "dim must be 1, 2 or 3; got {dim}"
_REFINEMENTS_ERROR = "n_global_refinements must be >= 0; got {n}"
_DOMAIN_ERROR = "right ({right}) must be larger than left ({left})"
_PARTITIONS_ERROR = "n_partitions must be >= 1; got {n}"
_FLAGS_SHAPE_ERROR = "flags shape {actual} does not match number of active cells {expected}"
_FLAGS_VALUE_ERROR = "flags must only contain -1 (coarsen), 0 (keep) or 1 (refine)"
_TRANSFER_SHAPE_ERROR = "values have {actual} rows; transfer expects {expected}"


@dataclass(frozen=True, slots=True)
class MeshDescription:
    """Geometry and partitioning of a hyper-cube mesh.

    Attributes:
        dim: Spatial dimension.
        n_global_refinements: Number of uniform refinements of the single
            coarse cell.
        left: Lower domain bound in every direction.
        right: Upper domain bound in every direction.
        distributed: Whether cells are distributed over several owners.
        n_partitions: Number of contiguous ownership blocks.
    """

    dim: int
    n_global_refinements: int
    left: float = 0.0
    right: float = 1.0
    distributed: bool = False
    n_partitions: int = 1

    def __post_init__(self) -> None:
        """Validate the description.

        Raises:
            ValueError: If any field is out of range.
        """
        if self.dim not in (1, 2, 3):
            raise ValueError(_DIM_ERROR.format(dim=self.dim))
        if self.n_global_refinements < 0:
            raise ValueError(_REFINEMENTS_ERROR.format(n=self.n_global_refinements))
        if self.right <= self.left:
            raise ValueError(_DOMAIN_ERROR.format(right=self.right, left=self.left))
        if self.n_partitions < 1:
            raise ValueError(_PARTITIONS_ERROR.format(n=self.n_partitions))


@dataclass(frozen=True, slots=True)
class FaceList:
    """Interior faces of the active mesh, oriented along +e_direction.

    Attributes:
        left: Cell index on the low side of each face.
        right: Cell index on the high side of each face.
        direction: Coordinate direction of the face normal.
        area: Face area (fine side for faces with hanging nodes).
    """

    left: IntArray
    right: IntArray
    direction: IntArray
    area: FloatArray

    @property
    def n_faces(self) -> int:
        """Number of faces."""
        return int(self.left.size)


@dataclass(frozen=True, slots=True)
class CellTransfer:
    """Linear map of cell values from one mesh generation to the next.

    Attributes:
        matrix: Sparse (n_new, n_old) transfer matrix.
        old_generation: Generation the input values belong to.
        new_generation: Generation the output values belong to.
    """

    matrix: csr_matrix
    old_generation: int
    new_generation: int

    def apply(self, values: FloatArray) -> FloatArray:
        """Transfer cell values (one row per old cell) to the new mesh.

        Args:
            values: Array of shape (n_old,) or (n_old, n_components).

        Raises:
            ValueError: If the number of rows does not match.

        Returns:
            Array with one row per new cell.
        """
        arr = np.asarray(values, dtype=np.float64)
        if arr.shape[0] != self.matrix.shape[1]:
            raise ValueError(
                _TRANSFER_SHAPE_ERROR.format(
                    actual=arr.shape[0], expected=self.matrix.shape[1]
                )
            )
        return np.asarray(self.matrix @ arr)


class MeshLike(Protocol):
    """Mesh interface consumed by the driver and the adaptation controller."""

    generation: int

    @property
    def dim(self) -> int:
        """Spatial dimension."""
        ...

    @property
    def n_active_cells(self) -> int:
        """Number of active cells."""
        ...

    @property
    def levels(self) -> IntArray:
        """Refinement level per active cell."""
        ...

    @property
    def distributed(self) -> bool:
        """Whether the mesh is distributed."""
        ...

    def min_cell_diameter(self) -> float:
        """Smallest cell diameter."""
        ...

    def execute_coarsening_and_refinement(self, flags: npt.ArrayLike) -> CellTransfer:
        """Rebuild the mesh according to per-cell flags."""
        ...


class CartesianForest:
    """Periodic adaptive Cartesian mesh of the hyper cube [left, right]^dim."""

    def __init__(
        self,
        description: MeshDescription,
        levels: IntArray,
        coords: IntArray,
    ) -> None:
        """
        Create a mesh from an explicit leaf set.

        Args:
            description: Geometry and partitioning.
            levels: Level per leaf, shape (n,).
            coords: Integer coordinates per leaf, shape (n, dim).
        """
        self.description = description
        self.generation = 0
        self._levels, self._coords = self._sorted(
            np.asarray(levels, dtype=np.int64),
            np.asarray(coords, dtype=np.int64).reshape(-1, description.dim),
        )
        self._faces: FaceList | None = None

    @classmethod
    def from_description(cls, description: MeshDescription) -> CartesianForest:
        """Build the uniformly refined hyper cube.

        Args:
            description: Geometry and partitioning.

        Returns:
            Mesh at generation 0 with 2**(dim * n_global_refinements) cells.
        """
        level = description.n_global_refinements
        per_axis = np.arange(2**level, dtype=np.int64)
        grids = np.meshgrid(*([per_axis] * description.dim), indexing="ij")
        coords = np.stack([g.ravel() for g in grids], axis=1)
        levels = np.full(coords.shape[0], level, dtype=np.int64)
        return cls(description, levels, coords)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def dim(self) -> int:
        """Spatial dimension."""
        return self.description.dim

    @property
    def distributed(self) -> bool:
        """Whether the mesh is distributed over several owners."""
        return self.description.distributed

    @property
    def n_partitions(self) -> int:
        """Number of ownership blocks."""
        return self.description.n_partitions

    @property
    def n_active_cells(self) -> int:
        """Number of active cells."""
        return int(self._levels.size)

    @property
    def levels(self) -> IntArray:
        """Refinement level per active cell (read-only view)."""
        view = self._levels.view()
        view.flags.writeable = False
        return view

    @property
    def coords(self) -> IntArray:
        """Integer leaf coordinates per active cell (read-only view)."""
        view = self._coords.view()
        view.flags.writeable = False
        return view

    @property
    def domain_length(self) -> float:
        """Edge length of the hyper cube."""
        return self.description.right - self.description.left

    @property
    def cell_sizes(self) -> FloatArray:
        """Edge length per active cell."""
        return self.domain_length / np.exp2(self._levels)

    @property
    def volumes(self) -> FloatArray:
        """Volume per active cell."""
        return self.cell_sizes**self.dim

    @property
    def centers(self) -> FloatArray:
        """Cell centres, shape (n_cells, dim)."""
        h = self.cell_sizes[:, None]
        return self.description.left + (self._coords + 0.5) * h

    def min_cell_diameter(self) -> float:
        """Smallest minimum vertex distance (edge length) over all cells."""
        return float(self.cell_sizes.min())

    def partition_ids(self) -> IntArray:
        """Owner of each active cell (contiguous blocks of the cell order)."""
        n = self.n_active_cells
        return (np.arange(n, dtype=np.int64) * self.n_partitions) // max(n, 1)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def faces(self) -> FaceList:
        """Return the interior faces of the current leaf set (cached).

        Returns:
            FaceList with every face recorded exactly once.
        """
        if self._faces is None:
            self._faces = self._build_faces()
        return self._faces

    def _build_faces(self) -> FaceList:
        index = self._leaf_index()
        dim = self.dim
        left: list[int] = []
        right: list[int] = []
        direction: list[int] = []
        area: list[float] = []
        sizes = self.cell_sizes

        for i, (level, coord) in enumerate(zip(self._levels.tolist(), self._coords.tolist())):
            n_axis = 2**level
            face_area = float(sizes[i] ** (dim - 1))
            for k in range(dim):
                for sign in (1, -1):
                    nb = list(coord)
                    nb[k] = (nb[k] + sign) % n_axis
                    same = index.get((level, tuple(nb)))
                    if same is not None:
                        if sign == 1:
                            left.append(i)
                            right.append(same)
                            direction.append(k)
                            area.append(face_area)
                        continue
                    coarse = self._find_ancestor(index, level, nb)
                    if coarse is None:
                        # neighbour is refined; its children record the face
                        continue
                    lo, hi = (i, coarse) if sign == 1 else (coarse, i)
                    left.append(lo)
                    right.append(hi)
                    direction.append(k)
                    area.append(face_area)

        return FaceList(
            left=np.asarray(left, dtype=np.int64),
            right=np.asarray(right, dtype=np.int64),
            direction=np.asarray(direction, dtype=np.int64),
            area=np.asarray(area, dtype=np.float64),
        )

    @staticmethod
    def _find_ancestor(
        index: dict[tuple[int, tuple[int, ...]], int],
        level: int,
        coord: list[int],
    ) -> int | None:
        for coarser in range(level - 1, -1, -1):
            shift = level - coarser
            key = (coarser, tuple(c >> shift for c in coord))
            found = index.get(key)
            if found is not None:
                return found
        return None

    def _leaf_index(self) -> dict[tuple[int, tuple[int, ...]], int]:
        return {
            (level, tuple(coord)): i
            for i, (level, coord) in enumerate(
                zip(self._levels.tolist(), self._coords.tolist())
            )
        }

    # ------------------------------------------------------------------
    # Adaptation
    # ------------------------------------------------------------------

    def execute_coarsening_and_refinement(self, flags: npt.ArrayLike) -> CellTransfer:
        """Refine and coarsen active cells according to per-cell flags.

        A cell flagged ``REFINE`` is replaced by its 2**dim children. A group of
        2**dim siblings is replaced by its parent only if all siblings are
        active and flagged ``COARSEN``; otherwise the coarsen flags of the
        group are ignored.

        Args:
            flags: Integer flag per active cell (-1, 0 or 1).

        Raises:
            ValueError: If flags have the wrong shape or values.

        Returns:
            CellTransfer from the previous to the new generation.
        """
        flag_arr = np.asarray(flags, dtype=np.int64)
        n_old = self.n_active_cells
        if flag_arr.shape != (n_old,):
            raise ValueError(_FLAGS_SHAPE_ERROR.format(actual=flag_arr.shape, expected=n_old))
        if np.any((flag_arr < COARSEN) | (flag_arr > REFINE)):
            raise ValueError(_FLAGS_VALUE_ERROR)

        dim = self.dim
        n_children = 2**dim
        offsets = np.array(list(product((0, 1), repeat=dim)), dtype=np.int64)

        # Coarsening groups: parent key -> flagged children
        groups: dict[tuple[int, tuple[int, ...]], list[int]] = {}
        for i in np.flatnonzero((flag_arr == COARSEN) & (self._levels > 0)).tolist():
            level = int(self._levels[i])
            parent = (level - 1, tuple((self._coords[i] >> 1).tolist()))
            groups.setdefault(parent, []).append(i)

        new_levels: list[int] = []
        new_coords: list[npt.NDArray[np.int64]] = []
        rows: list[int] = []
        cols: list[int] = []
        weights: list[float] = []

        def _append(level: int, coord: npt.NDArray[np.int64]) -> int:
            new_levels.append(level)
            new_coords.append(coord)
            return len(new_levels) - 1

        coarsened = np.zeros(n_old, dtype=bool)
        for (parent_level, parent_coord), members in groups.items():
            if len(members) != n_children:
                continue
            row = _append(parent_level, np.asarray(parent_coord, dtype=np.int64))
            for i in members:
                coarsened[i] = True
                rows.append(row)
                cols.append(i)
                weights.append(1.0 / n_children)

        for i in range(n_old):
            if coarsened[i]:
                continue
            level = int(self._levels[i])
            if flag_arr[i] == REFINE:
                for offset in offsets:
                    row = _append(level + 1, 2 * self._coords[i] + offset)
                    rows.append(row)
                    cols.append(i)
                    weights.append(1.0)
            else:
                row = _append(level, self._coords[i].copy())
                rows.append(row)
                cols.append(i)
                weights.append(1.0)

        levels_arr = np.asarray(new_levels, dtype=np.int64)
        coords_arr = np.asarray(new_coords, dtype=np.int64).reshape(-1, dim)
        order = self._ordering(levels_arr, coords_arr)
        position = np.empty_like(order)
        position[order] = np.arange(order.size)

        matrix = coo_matrix(
            (np.asarray(weights), (position[np.asarray(rows)], np.asarray(cols))),
            shape=(order.size, n_old),
        ).tocsr()

        old_generation = self.generation
        self._levels = levels_arr[order]
        self._coords = coords_arr[order]
        self._faces = None
        self.generation += 1
        return CellTransfer(
            matrix=matrix,
            old_generation=old_generation,
            new_generation=self.generation,
        )

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def _ordering(levels: IntArray, coords: IntArray) -> IntArray:
        if levels.size == 0:
            return np.zeros(0, dtype=np.int64)
        finest = int(levels.max())
        anchors = coords << (finest - levels)[:, None]
        # np.lexsort sorts by the last key first
        keys = [levels] + [anchors[:, k] for k in range(anchors.shape[1] - 1, -1, -1)]
        return np.lexsort(keys).astype(np.int64)

    @classmethod
    def _sorted(cls, levels: IntArray, coords: IntArray) -> tuple[IntArray, IntArray]:
        order = cls._ordering(levels, coords)
        return levels[order], coords[order]
