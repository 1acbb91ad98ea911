# lee_engine/src/lee_engine/config.py
"""Parameter model and parameter-file loading for lee_engine.

This module defines the pydantic configuration object consumed by the
simulation driver and the CFL search, and reads it from disk.

Notes:
    - Two file formats are accepted: YAML (``.yml``/``.yaml``) and the
      deal.II-style ``.prm`` format (``set Key Name = value`` lines, with
      ``subsection``/``end`` blocks used only for grouping). Keys of ``.prm``
      files are normalized to snake_case and mapped through ``_PRM_ALIASES``.
    - Field constraints catch malformed values at parse time; combinations that
      are well-formed but unsupported by the driver are rejected by
      :meth:`Parameters.check_supported`.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from lee_engine.errors import (
    ConfigurationError,
    ErrorCode,
    raise_invalid_parameters,
    raise_unsupported,
)
from lee_engine.integrators import IntegratorType, check_ssp_pair

SUPPORTED_DIMENSIONS: Final[tuple[int, ...]] = (2, 3)
SUPPORTED_DEGREES: Final[tuple[int, ...]] = (1, 2, 3, 4, 5)
SUPPORTED_INITIAL_CASES: Final[tuple[int, ...]] = (1, 2)

DEFAULT_PARAMETER_FILE: Final[str] = "default_parameters.prm"

_YAML_SUFFIXES: Final[tuple[str, ...]] = (".yml", ".yaml")

_PRM_SET_RE = re.compile(r"^set\s+(?P<key>.+?)\s*=\s*(?P<value>.*)$")
_PRM_LINE_ERROR_MSG = "line {lineno} is not understood: {line!r}"
_PRM_UNBALANCED_MSG = "unbalanced 'subsection'/'end' blocks"
_YAML_MAPPING_MSG = "YAML parameter file must contain a mapping at top level"
_DOMAIN_ORDER_MSG = "domain_right ({right}) must be larger than domain_left ({left})"

# Parameter names used by earlier parameter files of this code.
_PRM_ALIASES: Final[dict[str, str]] = {
    "degree": "fe_degree",
    "time_integrator": "integrator",
    "integrator_type": "integrator",
    "output_every_time": "output_interval",
    "output_time_interval": "output_interval",
    "number_of_refinements": "n_refinements",
    "number_of_adaptive_refinements": "n_adaptive_refinements",
    "initial_cases": "initial_case",
}


class Parameters(BaseModel):
    """Run parameters of the linearized Euler driver.

    The model is immutable in spirit: the CFL search derives per-iteration
    copies with ``model_copy(update={"cfl_number": ...})`` instead of mutating
    a shared instance.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    # Discretization
    dimension: int = Field(default=2, description="Spatial dimension (2 or 3)")
    fe_degree: int = Field(default=2, description="Approximation order (1-5)")
    integrator: IntegratorType = Field(
        default=IntegratorType.LSRK45_REG2,
        description="Explicit time integration scheme",
    )
    ssp_stages: int = Field(default=10, ge=1, description="Stages of the SSP scheme")
    ssp_order: int = Field(default=4, ge=1, description="Order of the SSP scheme")

    # Time control
    cfl_number: float = Field(default=0.1, gt=0.0)
    final_time: float = Field(default=1.0, gt=0.0)
    output_interval: float = Field(default=0.1, gt=0.0)
    max_time_steps: int = Field(default=100_000, ge=1)

    # Mesh and adaptivity
    n_refinements: int = Field(default=4, ge=0, le=12)
    n_adaptive_refinements: int = Field(default=0, ge=0, le=8)
    adaptive_refinement_interval: int = Field(default=10, ge=1)
    domain_left: float = 0.0
    domain_right: float = 1.0
    distributed_mesh: bool = False
    n_partitions: int = Field(default=1, ge=1)

    # Test case
    initial_case: int = Field(default=1)
    membrane_modes: int = Field(default=1, ge=1)
    sound_speed: float = Field(default=1.0, gt=0.0)
    gamma: float = Field(default=1.4, gt=1.0)

    # Driver mode and output
    cfl_stability_analysis: bool = False
    output_directory: str | None = "output"

    @model_validator(mode="after")
    def _check_domain(self) -> Parameters:
        if self.domain_right <= self.domain_left:
            raise ValueError(
                _DOMAIN_ORDER_MSG.format(
                    right=self.domain_right, left=self.domain_left
                )
            )
        return self

    @property
    def n_components(self) -> int:
        """Number of solution components (density, momentum, energy)."""
        return self.dimension + 2

    @property
    def min_level(self) -> int:
        """Coarsest refinement level the adaptation may produce."""
        return self.n_refinements

    @property
    def max_level(self) -> int:
        """Finest refinement level the adaptation may produce."""
        return self.n_refinements + self.n_adaptive_refinements

    def check_supported(self) -> None:
        """Reject parameter combinations the driver cannot run.

        Raises:
            UnsupportedConfigurationError: If dimension, degree, initial case or
                SSP (stages, order) pair is not supported.
        """
        if self.dimension not in SUPPORTED_DIMENSIONS:
            raise_unsupported(
                "dimension", self.dimension, supported="2 or 3"
            )
        if self.fe_degree not in SUPPORTED_DEGREES:
            raise_unsupported(
                "approximation order", self.fe_degree, supported="1 to 5"
            )
        if self.initial_case not in SUPPORTED_INITIAL_CASES:
            raise_unsupported(
                "initial case",
                self.initial_case,
                supported="1 (standing wave) or 2 (plane wave)",
            )
        if self.integrator is IntegratorType.SSPRK:
            check_ssp_pair(self.ssp_stages, self.ssp_order)

    def to_yaml(self) -> str:
        """Serialize the parameters so the run can be repeated.

        Returns:
            YAML document with all parameter values.
        """
        return yaml.safe_dump(self.model_dump(mode="json"), sort_keys=False)


# =============================================================================
# Loading
# =============================================================================


def _normalize_key(key: str) -> str:
    norm = re.sub(r"[\s\-]+", "_", key.strip().lower())
    return _PRM_ALIASES.get(norm, norm)


def _parse_prm_value(value: str) -> object:
    text = value.strip()
    lowered = text.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"none", ""}:
        return None
    return text


def read_prm(text: str, *, source: str | None = None) -> dict[str, Any]:
    """Parse a deal.II-style parameter file into a flat mapping.

    Args:
        text: File content.
        source: Optional origin (for error messages).

    Returns:
        Mapping of normalized parameter names to raw values.
    """
    values: dict[str, Any] = {}
    depth = 0
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        if line.startswith("subsection"):
            depth += 1
            continue
        if line == "end":
            depth -= 1
            if depth < 0:
                raise_invalid_parameters(detail=_PRM_UNBALANCED_MSG, source=source)
            continue
        match = _PRM_SET_RE.match(line)
        if match is None:
            raise_invalid_parameters(
                detail=_PRM_LINE_ERROR_MSG.format(lineno=lineno, line=raw),
                source=source,
            )
        else:
            values[_normalize_key(match["key"])] = _parse_prm_value(match["value"])
    if depth != 0:
        raise_invalid_parameters(detail=_PRM_UNBALANCED_MSG, source=source)
    return values


def parameters_from_mapping(
    values: dict[str, Any],
    *,
    source: str | None = None,
) -> Parameters:
    """Validate a raw mapping into :class:`Parameters`.

    Args:
        values: Raw parameter mapping.
        source: Optional origin (for error messages).

    Raises:
        ConfigurationError: If validation fails.

    Returns:
        Validated parameters.
    """
    try:
        return Parameters.model_validate(values)
    except ValidationError as exc:
        origin = f" Source: {source}." if source else ""
        msg = f"Invalid lee_engine parameters.{origin} Detail: {exc}"
        raise ConfigurationError(msg, code=ErrorCode.INVALID_PARAMETERS) from exc


def load_parameters(path: str | Path) -> Parameters:
    """Load parameters from a YAML or ``.prm`` file.

    Args:
        path: Parameter file path.

    Raises:
        ConfigurationError: If the file content is invalid.

    Returns:
        Validated parameters.
    """
    file_path = Path(path)
    text = file_path.read_text(encoding="utf-8")
    source = str(file_path)

    if file_path.suffix.lower() in _YAML_SUFFIXES:
        loaded = yaml.safe_load(text)
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise_invalid_parameters(detail=_YAML_MAPPING_MSG, source=source)
        values = {_normalize_key(str(k)): v for k, v in loaded.items()}
    else:
        values = read_prm(text, source=source)

    return parameters_from_mapping(values, source=source)
