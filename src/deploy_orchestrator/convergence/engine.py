"""
Convergence engine.

This engine brings each node to the state its NodePlan declares.

Per node
1) for each assertion, in order: check, skip when converged, otherwise apply
   and check again
2) every handler notified by a changed assertion is queued once
3) after the last assertion, queued handlers run in first notification order

Failure policy
Fail fast per node. The first failing assertion stops that node and its
queued handlers do not run. Nothing is rolled back. Re-running the pipeline
is the recovery path, converged assertions will report unchanged.

Across nodes
Nodes share no state, so they are processed concurrently when max_workers is
above one. Assertion order within a node is always sequential.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from deploy_orchestrator.convergence.handlers import HandlerQueue
from deploy_orchestrator.convergence.resources import ApplyContext, build_resource
from deploy_orchestrator.convergence.templates import TemplateRenderer
from deploy_orchestrator.core.errors import ResourceApplyError
from deploy_orchestrator.core.types import AssertionResult, AssertionSpec, ChangeStatus, NodeReport
from deploy_orchestrator.execution.base import Host, HostFactory
from deploy_orchestrator.inventory.resolver import NodePlan

logger = logging.getLogger(__name__)


class IdempotenceViolation(RuntimeError):
    """Raised when a convergent assertion still reports drift right after apply."""


@dataclass(frozen=True)
class ConvergenceConfig:
    """
    Convergence configuration.

    max_workers
    Upper bound on nodes processed at the same time. One means sequential.
    """

    max_workers: int = 4


@dataclass
class ConvergenceResult:
    """
    Result for every node, in plan order.

    errors holds one ResourceApplyError per failed node, in plan order.
    """

    reports: list[NodeReport] = field(default_factory=list)
    errors: list[ResourceApplyError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def report(self, node: str) -> NodeReport | None:
        for r in self.reports:
            if r.node == node:
                return r
        return None

    def raise_for_failure(self) -> None:
        """Raise the first node failure, if any."""
        if self.errors:
            raise self.errors[0]


class ConvergenceEngine:
    """
    Apply node plans through hosts from a HostFactory.

    renderer
    Template renderer shared by all nodes. It holds no state.
    """

    def __init__(
        self,
        host_factory: HostFactory,
        config: ConvergenceConfig | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self._host_factory = host_factory
        self._config = config or ConvergenceConfig()
        self._renderer = renderer or TemplateRenderer()

    def converge(self, plans: list[NodePlan]) -> ConvergenceResult:
        """Converge every plan and collect per node reports."""

        workers = max(1, min(self._config.max_workers, len(plans)))
        if workers == 1:
            outcomes = [self._converge_node(p) for p in plans]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="converge") as pool:
                outcomes = list(pool.map(self._converge_node, plans))

        result = ConvergenceResult()
        for report, error in outcomes:
            result.reports.append(report)
            if error is not None:
                result.errors.append(error)
        return result

    def converge_node(self, plan: NodePlan) -> NodeReport:
        """
        Converge a single node.

        Raises ResourceApplyError on the first failing assertion or handler.
        """
        report, error = self._converge_node(plan)
        if error is not None:
            raise error
        return report

    def _converge_node(self, plan: NodePlan) -> tuple[NodeReport, ResourceApplyError | None]:
        report = NodeReport(node=plan.name)
        ctx = ApplyContext(
            node=plan.name,
            variables=plan.variables,
            templates=plan.templates,
            renderer=self._renderer,
        )
        queue = HandlerQueue()

        try:
            host = self._host_factory.for_node(plan.node)
        except Exception as exc:
            error = ResourceApplyError(plan.name, "connect", exc)
            report.error = str(error)
            logger.error("%s", error)
            return report, error

        for spec in plan.assertions:
            try:
                status = self._run_assertion(spec, host, ctx)
            except Exception as exc:
                error = ResourceApplyError(plan.name, spec.identity, exc)
                error.__cause__ = exc
                report.results.append(
                    AssertionResult(assertion=spec.identity, status=ChangeStatus.failed, detail=str(exc))
                )
                report.error = str(error)
                logger.error("%s", error)
                return report, error

            report.results.append(AssertionResult(assertion=spec.identity, status=status))
            if status == ChangeStatus.changed:
                queue.notify(plan.notified_handlers(spec))

        if len(queue):
            logger.info("node %s running handlers %s", plan.name, queue.pending())

        def run_handler(key: str) -> None:
            handler = plan.handlers[key]
            try:
                self._run_assertion(handler, host, ctx)
            except Exception as exc:
                error = ResourceApplyError(plan.name, f"handler {handler.identity}", exc)
                raise error from exc

        try:
            report.handlers_fired = queue.flush(run_handler)
        except ResourceApplyError as error:
            report.error = str(error)
            logger.error("%s", error)
            return report, error

        logger.info(
            "node %s converged: %d changed, %d unchanged, handlers %s",
            plan.name,
            report.changed_count,
            len(report.results) - report.changed_count,
            report.handlers_fired,
        )
        return report, None

    def _run_assertion(self, spec: AssertionSpec, host: Host, ctx: ApplyContext) -> ChangeStatus:
        """Check, apply when needed, and check again."""

        resource = build_resource(spec)
        if resource.check(host, ctx):
            logger.debug("node %s ok: %s", ctx.node, spec.identity)
            return ChangeStatus.unchanged

        resource.apply(host, ctx)

        if resource.convergent and not resource.check(host, ctx):
            raise IdempotenceViolation(f"state still differs after apply: {spec.identity}")

        logger.info("node %s changed: %s", ctx.node, spec.identity)
        return ChangeStatus.changed
