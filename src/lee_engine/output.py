# lee_engine/src/lee_engine/output.py
"""Output sinks for cell-wise solution snapshots.

Snapshots are written as compressed NumPy archives named

    sol_deg{p}_{scheme}_case{c}_ref{r}_step{NNN}.npz

With more than one partition every partition is written to its own
``..._Proc{i}.npz`` file and a JSON record lists the pieces of one output step.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import numpy.typing as npt

from lee_engine.state import ExecutionContext

logger = logging.getLogger(__name__)

FloatArray = npt.NDArray[np.floating[Any]]
IntArray = npt.NDArray[np.int64]


def component_names(dim: int) -> tuple[str, ...]:
    """Names of the solution components for a given dimension."""
    return ("density", *(f"momentum_{d}" for d in range(dim)), "energy")


@dataclass(frozen=True, slots=True)
class OutputRecord:
    """One output step of a run.

    Attributes:
        basename: File name stem without the step suffix.
        output_number: Output tick number (0 for the initial output).
        time: Simulated time.
        centers: Cell centres, shape (n_cells, dim).
        levels: Refinement level per cell.
        partitions: Owning partition per cell.
        solution: Cell values, shape (n_cells, n_components).
        error: Difference to the exact solution at the cell centres.
        names: Component names.
        n_partitions: Number of mesh partitions (one output piece each).
        norms: Scalar diagnostics (error norms, magnitudes).
    """

    basename: str
    output_number: int
    time: float
    centers: FloatArray
    levels: IntArray
    partitions: IntArray
    solution: FloatArray
    error: FloatArray
    names: tuple[str, ...]
    n_partitions: int = 1
    norms: dict[str, float] = field(default_factory=dict)

    @property
    def stem(self) -> str:
        """File name stem including the step number."""
        return f"{self.basename}_step{self.output_number:03d}"


class OutputSink(Protocol):
    """Destination of output records."""

    def write(self, record: OutputRecord) -> list[Path]:
        """Persist one output step and return the written paths."""
        ...


class NullOutputSink:
    """Sink that discards every record."""

    def write(self, record: OutputRecord) -> list[Path]:
        """Discard the record."""
        del record
        return []


class NpzOutputSink:
    """Write output records as ``.npz`` files below a directory."""

    def __init__(self, directory: str | Path, context: ExecutionContext) -> None:
        """
        Initialize the sink.

        Args:
            directory: Target directory (created on first write).
            context: Execution context; partitions are written by the rank
                that owns them and the JSON record by the root rank.
        """
        self.directory = Path(directory)
        self.context = context

    def _arrays(self, record: OutputRecord, mask: npt.NDArray[np.bool_]) -> dict[str, Any]:
        arrays: dict[str, Any] = {
            "time": np.float64(record.time),
            "centers": record.centers[mask],
            "levels": record.levels[mask],
            "partition": record.partitions[mask],
        }
        for j, name in enumerate(record.names):
            arrays[name] = record.solution[mask, j]
            arrays[f"error_{name}"] = record.error[mask, j]
        return arrays

    def write(self, record: OutputRecord) -> list[Path]:
        """Write one output step.

        Args:
            record: Output record.

        Returns:
            Paths written by this rank.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        n_partitions = record.n_partitions
        written: list[Path] = []

        if n_partitions == 1:
            if self.context.is_root:
                path = self.directory / f"{record.stem}.npz"
                everything = np.ones(record.levels.shape, dtype=bool)
                np.savez_compressed(path, **self._arrays(record, everything))
                written.append(path)
            return written

        pieces = [f"{record.stem}_Proc{i}.npz" for i in range(n_partitions)]
        for i, name in enumerate(pieces):
            if i % self.context.n_ranks != self.context.rank:
                continue
            path = self.directory / name
            np.savez_compressed(path, **self._arrays(record, record.partitions == i))
            written.append(path)

        if self.context.is_root:
            index = self.directory / f"{record.stem}.json"
            index.write_text(
                json.dumps(
                    {
                        "time": record.time,
                        "output_number": record.output_number,
                        "pieces": pieces,
                        "norms": record.norms,
                    },
                    indent=2,
                ),
                encoding="utf-8",
            )
            written.append(index)
        logger.debug("Wrote %d output files for %s", len(written), record.stem)
        return written
