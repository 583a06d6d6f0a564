"""
Run reporters.

The report step runs once at the end of every pipeline run, whatever the
outcome. Reporters receive the completed stage outcomes.

LogReporter writes a human readable summary through logging.
JsonLinesReporter appends one json object per run to a file.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from deploy_orchestrator.core.serialization import pipeline_run_to_json
from deploy_orchestrator.core.types import PipelineRun, StageStatus

logger = logging.getLogger(__name__)


class RunReporter(Protocol):
    def report(self, run: PipelineRun) -> None:
        """Publish a run summary."""


def summarize(run: PipelineRun) -> list[str]:
    """Return summary lines, one per stage plus a verdict line."""
    lines: list[str] = []
    for o in run.outcomes:
        line = f"{o.stage:<9} {o.status:<8}"
        if o.detail:
            line += f" {o.detail}"
        lines.append(line)

    if run.ok:
        lines.append(f"pipeline {run.run_id} succeeded")
    else:
        lines.append(
            f"pipeline {run.run_id} failed at stage {run.failed_stage}: "
            f"{run.error_type}: {run.error_message}"
        )
    return lines


class LogReporter(RunReporter):
    """Log the run summary."""

    def report(self, run: PipelineRun) -> None:
        for line in summarize(run):
            logger.info("%s", line)

        for node in run.node_reports:
            if node.error:
                logger.error("node %s stopped: %s", node.node, node.error)

        failed = [o for o in run.outcomes if o.status == StageStatus.failure]
        if failed:
            logger.error("pipeline %s terminal state failed", run.run_id)


@dataclass(frozen=True)
class JsonLinesReporter(RunReporter):
    """
    JSON line run log.

    Each run appends one JSON object per line.
    """

    path: Path

    def report(self, run: PipelineRun) -> None:
        payload = pipeline_run_to_json(run)
        payload["ts_unix"] = int(time.time())
        line = json.dumps(payload, sort_keys=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
