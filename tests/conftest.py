"""Global pytest configuration and shared fixtures for lee_engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from lee_engine.config import Parameters
from lee_engine.output import OutputRecord

# -----------------------------------------------------------------------------
# Global markers registration safety (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as running complete simulations",
    )


# -----------------------------------------------------------------------------
# Shared fixtures
# -----------------------------------------------------------------------------


class RecordingSink:
    """Output sink that keeps records in memory."""

    def __init__(self) -> None:
        """Create an empty sink."""
        self.records: list[OutputRecord] = []

    def write(self, record: OutputRecord) -> list[Path]:
        """Store the record."""
        self.records.append(record)
        return []


@pytest.fixture
def recording_sink() -> RecordingSink:
    """Fresh in-memory output sink."""
    return RecordingSink()


@pytest.fixture
def small_parameters() -> Any:
    """
    Factory for cheap 2-D parameter sets without file output.

    Usage:
        def test_x(small_parameters):
            prm = small_parameters(final_time=0.2)
    """

    def _make(**overrides: object) -> Parameters:
        values: dict[str, object] = {
            "dimension": 2,
            "fe_degree": 2,
            "integrator": "expleuler",
            "cfl_number": 0.1,
            "final_time": 0.2,
            "output_interval": 0.1,
            "max_time_steps": 10_000,
            "n_refinements": 3,
            "output_directory": None,
        }
        values.update(overrides)
        return Parameters.model_validate(values)

    return _make
