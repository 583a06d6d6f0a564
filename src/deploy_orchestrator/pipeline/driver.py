"""
Pipeline driver.

This driver sequences:
init, lint, scan, converge, verify, and an always run report step.

State machine
Init -> Lint -> Scan -> Converge -> Verify -> Done
Any stage failure moves to Failed. Every stage after the failed one is
recorded as skipped and never runs. Report runs exactly once in both cases.

Init loads inventory and definitions and checks references, so a ConfigError
stops the run before any gate.

Safety
Stages are strictly sequential. A timed out stage fails the run but is not
cancelled or rolled back. Re-running the whole pipeline is the only recovery
path, and convergence idempotence makes that safe.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from deploy_orchestrator.convergence.engine import ConvergenceEngine
from deploy_orchestrator.core.errors import OrchestratorError, StageTimeout
from deploy_orchestrator.core.types import (
    DefinitionSet,
    Finding,
    NodeReport,
    PipelineRun,
    StageName,
    StageOutcome,
    StageStatus,
)
from deploy_orchestrator.definitions.base import DefinitionSource
from deploy_orchestrator.gates.policy import PolicyGate
from deploy_orchestrator.gates.quality import QualityGate, QualityReport
from deploy_orchestrator.gates.scanners import Scanner
from deploy_orchestrator.inventory.plugins.base import InventoryPlugin
from deploy_orchestrator.inventory.resolver import check_references, resolve_inventory
from deploy_orchestrator.inventory.store import InventoryStore
from deploy_orchestrator.pipeline.config import StageTimeouts
from deploy_orchestrator.pipeline.report import LogReporter, RunReporter
from deploy_orchestrator.verify.probes import Probe, ProbeSpec, verify

logger = logging.getLogger(__name__)

RUN_STAGES = (StageName.init, StageName.lint, StageName.scan, StageName.converge, StageName.verify)
CHECK_STAGES = (StageName.init, StageName.lint)


@dataclass
class _RunState:
    """Values handed from one stage to the next within a single run."""

    inventory: InventoryStore | None = None
    definitions: DefinitionSet | None = None
    quality: QualityReport | None = None
    findings: list[Finding] = field(default_factory=list)
    node_reports: list[NodeReport] = field(default_factory=list)


class PipelineDriver:
    """
    Gated deployment pipeline.

    Every collaborator is passed in. The driver performs no ambient lookup.

    scanner
    None disables scanning, the scan stage then passes with no findings.

    reporters
    Called once per run by the report step. A reporter error is logged and
    never changes the run result.
    """

    def __init__(
        self,
        inventory_plugin: InventoryPlugin,
        definition_source: DefinitionSource,
        quality_gate: QualityGate,
        policy_gate: PolicyGate,
        engine: ConvergenceEngine,
        scanner: Scanner | None = None,
        probes: tuple[ProbeSpec, ...] = (),
        probe: Probe | None = None,
        timeouts: StageTimeouts | None = None,
        reporters: list[RunReporter] | None = None,
    ) -> None:
        self._inventory_plugin = inventory_plugin
        self._definition_source = definition_source
        self._quality_gate = quality_gate
        self._policy_gate = policy_gate
        self._engine = engine
        self._scanner = scanner
        self._probes = tuple(probes)
        self._probe = probe
        self._timeouts = timeouts or StageTimeouts()
        self._reporters: list[RunReporter] = reporters if reporters is not None else [LogReporter()]

        self._stage_fns: dict[StageName, Callable[[_RunState], str]] = {
            StageName.init: self._stage_init,
            StageName.lint: self._stage_lint,
            StageName.scan: self._stage_scan,
            StageName.converge: self._stage_converge,
            StageName.verify: self._stage_verify,
        }

    def run(self) -> PipelineRun:
        """Run every stage, then report."""
        return self._execute("run", RUN_STAGES)

    def check(self) -> PipelineRun:
        """Syntax check only: init and lint, then report."""
        return self._execute("check", CHECK_STAGES)

    def _execute(self, mode: str, stages: tuple[StageName, ...]) -> PipelineRun:
        run_id = uuid.uuid4().hex[:12]
        state = _RunState()
        outcomes: list[StageOutcome] = []
        failure: tuple[StageName, BaseException] | None = None
        unexpected: BaseException | None = None

        logger.info("pipeline %s started in %s mode", run_id, mode)

        for stage in stages:
            if failure is not None:
                outcomes.append(StageOutcome(stage=stage, status=StageStatus.skipped))
                continue

            logger.info("stage %s started", stage)
            started = time.monotonic()
            try:
                detail = self._run_stage(stage, state)
            except Exception as exc:
                elapsed = time.monotonic() - started
                failure = (stage, exc)
                if not isinstance(exc, OrchestratorError):
                    unexpected = exc
                    logger.exception("stage %s crashed", stage)
                else:
                    logger.error("stage %s failed: %s", stage, exc)
                outcomes.append(
                    StageOutcome(
                        stage=stage,
                        status=StageStatus.failure,
                        detail=str(exc),
                        error_type=type(exc).__name__,
                        duration_seconds=elapsed,
                    )
                )
                continue

            elapsed = time.monotonic() - started
            logger.info("stage %s succeeded in %.2fs: %s", stage, elapsed, detail)
            outcomes.append(
                StageOutcome(stage=stage, status=StageStatus.success, detail=detail, duration_seconds=elapsed)
            )

        run = PipelineRun(
            run_id=run_id,
            mode=mode,
            outcomes=tuple(outcomes),
            ok=failure is None,
            failed_stage=failure[0] if failure else None,
            error_type=type(failure[1]).__name__ if failure else None,
            error_message=str(failure[1]) if failure else "",
            node_reports=tuple(state.node_reports),
        )

        run = self._report(run)

        if unexpected is not None:
            raise unexpected
        return run

    def _report(self, run: PipelineRun) -> PipelineRun:
        """The always run step. Returns the run with the report outcome appended."""
        started = time.monotonic()
        errors: list[str] = []
        for reporter in self._reporters:
            try:
                reporter.report(run)
            except Exception as exc:
                logger.exception("reporter %s failed", type(reporter).__name__)
                errors.append(f"{type(reporter).__name__}: {exc}")

        outcome = StageOutcome(
            stage=StageName.report,
            status=StageStatus.failure if errors else StageStatus.success,
            detail="; ".join(errors) if errors else f"{len(self._reporters)} reporters",
            duration_seconds=time.monotonic() - started,
        )
        return PipelineRun(
            run_id=run.run_id,
            mode=run.mode,
            outcomes=run.outcomes + (outcome,),
            ok=run.ok,
            failed_stage=run.failed_stage,
            error_type=run.error_type,
            error_message=run.error_message,
            node_reports=run.node_reports,
        )

    def _run_stage(self, stage: StageName, state: _RunState) -> str:
        fn = self._stage_fns[stage]
        timeout = self._timeouts.for_stage(stage.value)
        if timeout is None:
            return fn(state)

        # daemon thread, a stage still running after its timeout must not hold the process open
        result: dict[str, Any] = {}

        def target() -> None:
            try:
                result["detail"] = fn(state)
            except BaseException as exc:
                result["error"] = exc

        worker = threading.Thread(target=target, name=f"stage-{stage}", daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise StageTimeout(stage.value, timeout)
        if "error" in result:
            raise result["error"]
        return result["detail"]

    def _stage_init(self, state: _RunState) -> str:
        state.inventory = self._inventory_plugin.load()
        state.definitions = self._definition_source.load()
        resolve_inventory(state.inventory)
        check_references(state.inventory, state.definitions)
        return (
            f"{len(state.inventory)} nodes, {len(state.definitions.plays)} plays, "
            f"{len(state.definitions.roles)} roles"
        )

    def _stage_lint(self, state: _RunState) -> str:
        if state.inventory is None or state.definitions is None:
            raise OrchestratorError("lint stage needs loaded inventory and definitions")
        state.quality = self._quality_gate.evaluate(state.definitions, state.inventory)
        return (
            f"{len(state.quality.violations)} non blocking violations, "
            f"{len(state.quality.plans)} node plans resolved"
        )

    def _stage_scan(self, state: _RunState) -> str:
        if state.definitions is None:
            raise OrchestratorError("scan stage needs loaded definitions")
        if self._scanner is None:
            return "scanner disabled"
        state.findings = self._scanner.scan(state.definitions.root, state.definitions.artifacts)
        decision = self._policy_gate.evaluate(state.findings)
        return (
            f"{decision.total_findings} findings, {len(decision.flagged_artifacts)} flagged artifacts, "
            f"threshold {decision.threshold}"
        )

    def _stage_converge(self, state: _RunState) -> str:
        if state.quality is None:
            raise OrchestratorError("converge stage needs resolved node plans")
        result = self._engine.converge(state.quality.plans)
        state.node_reports = result.reports
        result.raise_for_failure()
        changed = sum(r.changed_count for r in result.reports)
        return f"{len(result.reports)} nodes converged, {changed} assertions changed"

    def _stage_verify(self, state: _RunState) -> str:
        if not self._probes:
            return "no probes configured"
        outcome = verify(list(self._probes), self._probe)
        return f"{len(outcome.results)} probes passed"
