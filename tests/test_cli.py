"""Tests for the lee-engine command line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from lee_engine import cli


def _write_parameters(path: Path, **overrides: object) -> Path:
    values: dict[str, object] = {
        "fe_degree": 1,
        "integrator": "expleuler",
        "n_refinements": 2,
        "final_time": 0.05,
        "output_interval": 0.05,
        "output_directory": None,
    }
    values.update(overrides)
    path.write_text(yaml.safe_dump(values), encoding="utf-8")
    return path


def test_parser_defaults() -> None:
    """Without arguments the default parameter file is used."""
    args = cli.build_parser().parse_args([])
    assert args.parameter_file == "default_parameters.prm"
    assert args.log_level == "INFO"


def test_successful_run_echoes_parameters(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """A run exits with 0 and prints the parameters as YAML."""
    path = _write_parameters(tmp_path / "run.yaml")
    assert cli.main([str(path), "--log-level", "WARNING"]) == 0
    echoed = yaml.safe_load(capsys.readouterr().out)
    assert echoed["fe_degree"] == 1
    assert echoed["final_time"] == 0.05


def test_cfl_search_mode(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """cfl_stability_analysis switches to the search."""
    calls: list[float] = []

    def _search(parameters: object, **_: object) -> None:
        calls.append(parameters.cfl_number)  # type: ignore[attr-defined]

    monkeypatch.setattr(cli, "run_cfl_search", _search)
    path = _write_parameters(tmp_path / "run.yaml", cfl_stability_analysis=True)
    assert cli.main([str(path)]) == 0
    assert calls == [0.1]
    assert "cfl_stability_analysis: true" in capsys.readouterr().out


def test_missing_file_reports_exception(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Known failures print the message and abort with status 1."""
    assert cli.main([str(tmp_path / "missing.prm")]) == 1
    err = capsys.readouterr().err
    assert "Exception on processing: " in err
    assert "missing.prm" in err
    assert "Aborting!" in err


def test_unsupported_configuration_reports_exception(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Unsupported parameters are rejected before any simulation work."""
    path = _write_parameters(tmp_path / "run.yaml", dimension=1)
    assert cli.main([str(path)]) == 1
    assert "Unsupported dimension" in capsys.readouterr().err


def test_unknown_failure_reports_generic_message(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Unexpected exception types get the generic abort message."""

    def _boom(parameter_file: str) -> None:
        raise KeyError(parameter_file)

    monkeypatch.setattr(cli, "run", _boom)
    assert cli.main([str(tmp_path / "run.yaml")]) == 1
    err = capsys.readouterr().err
    assert "Unknown exception!" in err
    assert "Aborting!" in err
