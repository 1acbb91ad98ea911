"""Unit tests for lee_engine.errors."""

from __future__ import annotations

import pytest

from lee_engine import errors


def test_error_hierarchy() -> None:
    """Configuration errors are ValueErrors, rebuild errors RuntimeErrors."""
    assert issubclass(errors.ConfigurationError, errors.LeeEngineError)
    assert issubclass(errors.ConfigurationError, ValueError)
    assert issubclass(errors.UnsupportedConfigurationError, errors.ConfigurationError)
    assert issubclass(errors.MeshRebuildError, errors.LeeEngineError)
    assert issubclass(errors.MeshRebuildError, RuntimeError)


def test_error_code_defaults_to_none() -> None:
    """The code is optional."""
    exc = errors.LeeEngineError("boom")
    assert exc.code is None
    assert str(exc) == "boom"


def test_raise_unsupported_message_and_code() -> None:
    """raise_unsupported names the item, the value and what is supported."""
    with pytest.raises(errors.UnsupportedConfigurationError) as info:
        errors.raise_unsupported("dimension", 4, supported="2 or 3")
    assert str(info.value) == "Unsupported dimension: 4. Supported: 2 or 3."
    assert info.value.code == errors.ErrorCode.UNSUPPORTED_CONFIGURATION


def test_raise_invalid_parameters_with_and_without_source() -> None:
    """The source is included only when given."""
    with pytest.raises(errors.ConfigurationError) as info:
        errors.raise_invalid_parameters(detail="bad value", source="run.prm")
    assert str(info.value) == (
        "Invalid lee_engine parameters. Source: run.prm. Detail: bad value"
    )
    assert info.value.code == errors.ErrorCode.INVALID_PARAMETERS

    with pytest.raises(errors.ConfigurationError) as info:
        errors.raise_invalid_parameters(detail="bad value")
    assert "Source" not in str(info.value)


def test_mesh_rebuild_error_is_built_not_raised() -> None:
    """The builder returns the exception so callers can chain it."""
    exc = errors.mesh_rebuild_error(generation=3, reason="transfer failed")
    assert isinstance(exc, errors.MeshRebuildError)
    assert exc.code == errors.ErrorCode.MESH_REBUILD_FAILED
    assert "generation 3" in str(exc)
    assert "transfer failed" in str(exc)


def test_error_codes_are_strings() -> None:
    """Codes compare equal to their string values."""
    assert errors.ErrorCode.MESH_REBUILD_FAILED == "mesh_rebuild_failed"
    assert {c.value for c in errors.ErrorCode} == {
        "invalid_parameters",
        "unsupported_configuration",
        "mesh_rebuild_failed",
    }
