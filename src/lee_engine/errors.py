# lee_engine/src/lee_engine/errors.py
"""Error types and message helpers for lee_engine.

This module centralizes the fatal failure modes of the driver:

- configuration errors (unsupported dimension, degree, scheme, geometry
  combinations) that are discoverable before any simulation work begins, and
- mesh rebuild failures, after which the solution state cannot be trusted.

Numerical divergence is not represented here: the stability
monitor reports it as a negative verdict and the run drains normally.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """Machine-readable classification for lee_engine failures.

    Use these codes to support consistent logging and (optional) programmatic
    recovery without requiring many custom exception subclasses.
    """

    INVALID_PARAMETERS = "invalid_parameters"
    UNSUPPORTED_CONFIGURATION = "unsupported_configuration"
    MESH_REBUILD_FAILED = "mesh_rebuild_failed"


class LeeEngineError(Exception):
    """Base exception for lee_engine failures.

    This exists so callers (most prominently the command line entry point) can
    tell known failures apart from unexpected ones.
    """

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        """
        Initialize a LeeEngineError.

        Args:
            message: Human-readable error message.
            code: Optional machine-readable error code classifying the error.
        """
        super().__init__(message)
        self.code: ErrorCode | None = code


class ConfigurationError(LeeEngineError, ValueError):
    """Raised when a parameter set is invalid or incomplete."""


class UnsupportedConfigurationError(ConfigurationError):
    """Raised when a parameter combination is valid but not supported."""


class MeshRebuildError(LeeEngineError, RuntimeError):
    """Raised when a mesh rebuild or the attached state transfer fails."""


def raise_unsupported(what: str, value: object, *, supported: str) -> None:
    """
    Raise a standardized error for unsupported configuration values.

    Args:
        what: Name of the configuration item (for example, "dimension").
        value: Value that was requested.
        supported: Human-readable description of the supported values.

    Raises:
        UnsupportedConfigurationError: Always.
    """
    msg = f"Unsupported {what}: {value!r}. Supported: {supported}."
    raise UnsupportedConfigurationError(
        msg, code=ErrorCode.UNSUPPORTED_CONFIGURATION
    )


def raise_invalid_parameters(*, detail: str, source: str | None = None) -> None:
    """
    Raise a standardized parameter error.

    Args:
        detail: Detail text describing the parameter issue.
        source: Optional origin of the parameters (for example, a file path).

    Raises:
        ConfigurationError: Always.
    """
    parts: list[str] = ["Invalid lee_engine parameters."]
    if source:
        parts.append(f"Source: {source}.")
    parts.append(f"Detail: {detail}")
    raise ConfigurationError(" ".join(parts), code=ErrorCode.INVALID_PARAMETERS)


def mesh_rebuild_error(*, generation: int, reason: str) -> MeshRebuildError:
    """
    Build a standardized mesh rebuild error.

    The caller raises it, chaining the underlying failure with ``from``.

    Args:
        generation: Mesh generation that was being rebuilt.
        reason: Explanation of the failure.

    Returns:
        MeshRebuildError ready to be raised.
    """
    msg = (
        f"Mesh rebuild from generation {generation} failed: {reason}. "
        "The solution state is not recoverable after a partial rebuild."
    )
    return MeshRebuildError(msg, code=ErrorCode.MESH_REBUILD_FAILED)
