# lee_engine/src/lee_engine/cli.py
"""Command line entry point: ``lee-engine [parameter_file]``.

Runs a single simulation, or the CFL search when ``cfl_stability_analysis``
is set, and echoes the parameters used so the run can be repeated. Exit
status is 0 on success and 1 on any failure.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from lee_engine import __version__
from lee_engine.cfl_search import run_cfl_search
from lee_engine.config import DEFAULT_PARAMETER_FILE, load_parameters
from lee_engine.driver import SimulationDriver
from lee_engine.errors import LeeEngineError
from lee_engine.state import ExecutionContext

logger = logging.getLogger(__name__)

_RULE = "-" * 52


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lee-engine",
        description="Adaptive explicit solver for the linearized Euler equations.",
    )
    parser.add_argument(
        "parameter_file",
        nargs="?",
        default=DEFAULT_PARAMETER_FILE,
        help=f"YAML or .prm parameter file (default: {DEFAULT_PARAMETER_FILE})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging verbosity (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _report_failure(lines: Sequence[str]) -> None:
    print("\n", file=sys.stderr)
    print(_RULE, file=sys.stderr)
    for line in lines:
        print(line, file=sys.stderr)
    print(_RULE, file=sys.stderr)


def run(parameter_file: str) -> None:
    """Load parameters and run a simulation or the CFL search.

    Args:
        parameter_file: Path of the parameter file.
    """
    context = ExecutionContext()
    parameters = load_parameters(parameter_file)
    parameters.check_supported()
    if context.is_root:
        logger.info("Number of ranks:         %d", context.n_ranks)

    if parameters.cfl_stability_analysis:
        run_cfl_search(parameters, context=context)
    else:
        SimulationDriver(parameters, context=context).run()

    if context.is_root:
        sys.stdout.write(parameters.to_yaml())


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ``lee-engine`` script.

    Args:
        argv: Command line arguments (defaults to ``sys.argv[1:]``).

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(message)s")

    try:
        run(args.parameter_file)
    except (LeeEngineError, ValueError, OSError) as exc:
        _report_failure(["Exception on processing: ", str(exc), "Aborting!"])
        return 1
    except Exception:
        logger.debug("unexpected failure", exc_info=True)
        _report_failure(["Unknown exception!", "Aborting!"])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
