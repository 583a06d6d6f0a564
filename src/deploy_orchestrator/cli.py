"""
Command line entry point.

deploy-orchestrator run --config pipeline.yml
deploy-orchestrator check --config pipeline.yml

Exit codes tell scripts which gate stopped the run.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from deploy_orchestrator.core.errors import (
    ConfigError,
    OrchestratorError,
    PolicyViolation,
    ResourceApplyError,
    StageTimeout,
    ValidationError,
    VerificationError,
)
from deploy_orchestrator.core.types import PipelineRun
from deploy_orchestrator.pipeline.config import load_pipeline_config
from deploy_orchestrator.pipeline.report import summarize
from deploy_orchestrator.pipeline.runner import build_driver

EXIT_OK = 0
EXIT_OTHER = 1

EXIT_CODES: dict[str, int] = {
    ConfigError.__name__: 2,
    ValidationError.__name__: 3,
    PolicyViolation.__name__: 4,
    ResourceApplyError.__name__: 5,
    VerificationError.__name__: 6,
    StageTimeout.__name__: 7,
}


def exit_code_for(run: PipelineRun) -> int:
    """Map a run to its process exit code."""
    if run.ok:
        return EXIT_OK
    return EXIT_CODES.get(run.error_type or "", EXIT_OTHER)


def _echo_run(run: PipelineRun) -> None:
    for line in summarize(run):
        click.echo(line)
    state = click.style("done", fg="green") if run.ok else click.style("failed", fg="red")
    click.echo(f"terminal state: {state}")


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity.",
)
def cli(log_level: str) -> None:
    """Gated configuration deployment: lint, scan, converge, verify, report."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Pipeline configuration file.",
)
@click.option(
    "--simulate",
    is_flag=True,
    default=False,
    help="Converge in memory hosts instead of containers and skip probes.",
)
def run(config_path: Path, simulate: bool) -> None:
    """Run the full pipeline."""
    _execute(config_path, simulate=simulate, check_only=False)


@cli.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Pipeline configuration file.",
)
def check(config_path: Path) -> None:
    """Lint and dry run the definitions without touching any node."""
    _execute(config_path, simulate=False, check_only=True)


def _execute(config_path: Path, simulate: bool, check_only: bool) -> None:
    try:
        config = load_pipeline_config(config_path)
    except (OrchestratorError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(EXIT_CODES[ConfigError.__name__]) from None

    driver = build_driver(config, simulate=simulate)
    result = driver.check() if check_only else driver.run()
    _echo_run(result)
    raise SystemExit(exit_code_for(result))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
