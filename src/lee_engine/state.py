# lee_engine/src/lee_engine/state.py
"""Solution storage tied to a mesh generation.

A :class:`SimulationState` owns the (n_cells, n_components) solution array of
one mesh generation. Arrays are never resized: a mesh rebuild allocates a new
state for the new generation and the old one is dropped. Using a state against
a mesh of another generation is a programming error and is caught by
:meth:`SimulationState.check_generation`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import numpy.typing as npt

FloatArray = npt.NDArray[np.floating[Any]]

_SHAPE_ERROR = "state shape {actual} does not match expected {expected}"
_STALE_GENERATION_ERROR = (
    "state belongs to mesh generation {state} but the mesh is at generation {mesh}"
)
_CONTEXT_ERROR = "rank {rank} is not in [0, {n_ranks})"


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Explicit description of the process group a run executes in.

    Attributes:
        rank: Rank of this process.
        n_ranks: Number of processes.
    """

    rank: int = 0
    n_ranks: int = 1

    def __post_init__(self) -> None:
        """Validate the rank against the group size.

        Raises:
            ValueError: If rank is outside [0, n_ranks).
        """
        if not 0 <= self.rank < self.n_ranks:
            raise ValueError(_CONTEXT_ERROR.format(rank=self.rank, n_ranks=self.n_ranks))

    @property
    def is_root(self) -> bool:
        """True on the rank that reports progress."""
        return self.rank == 0


class SimulationState:
    """Cell-wise solution values for one mesh generation."""

    __slots__ = ("generation", "values")

    def __init__(self, n_cells: int, n_components: int, generation: int) -> None:
        """
        Allocate a zero state.

        Args:
            n_cells: Number of active cells (rows).
            n_components: Number of solution components (columns).
            generation: Mesh generation the state is allocated for.
        """
        self.values: FloatArray = np.zeros((int(n_cells), int(n_components)))
        self.generation = int(generation)

    @classmethod
    def from_array(cls, values: npt.ArrayLike, generation: int) -> SimulationState:
        """Wrap an existing 2-D array (copied) as a state.

        Args:
            values: Array of shape (n_cells, n_components).
            generation: Mesh generation the values belong to.

        Raises:
            ValueError: If values is not two-dimensional.

        Returns:
            New state.
        """
        arr = np.array(values, dtype=np.float64)
        if arr.ndim != 2:
            raise ValueError(_SHAPE_ERROR.format(actual=arr.shape, expected="(n, m)"))
        state = cls(arr.shape[0], arr.shape[1], generation)
        np.copyto(state.values, arr)
        return state

    @property
    def shape(self) -> tuple[int, int]:
        """Shape (n_cells, n_components)."""
        return self.values.shape  # type: ignore[return-value]

    @property
    def n_cells(self) -> int:
        """Number of cells."""
        return int(self.values.shape[0])

    @property
    def n_components(self) -> int:
        """Number of components."""
        return int(self.values.shape[1])

    def check_generation(self, generation: int) -> None:
        """Assert that the state belongs to the given mesh generation.

        Args:
            generation: Current mesh generation.
        """
        assert self.generation == generation, _STALE_GENERATION_ERROR.format(
            state=self.generation, mesh=generation
        )

    def check_shape(self, expected: tuple[int, int]) -> None:
        """Validate the state shape.

        Args:
            expected: Required shape.

        Raises:
            ValueError: If the shape differs.
        """
        if self.values.shape != tuple(expected):
            raise ValueError(_SHAPE_ERROR.format(actual=self.values.shape, expected=expected))

    def like(self) -> SimulationState:
        """Allocate a zero state with the same shape and generation."""
        return SimulationState(self.n_cells, self.n_components, self.generation)
