"""
Quality gate.

Purpose
Reject definitions that cannot be applied safely before any node is touched.

Two checks, both read only
1) structural lint, blocking at or above a configured minimum severity
2) dry run resolution: bind roles to every node, then make sure every
   assertion can be built, every template exists, and every placeholder in
   templates and parameters is defined for every node that uses it

Role dependency cycles are a dry run failure.

The gate returns the node plans it resolved so convergence runs exactly what
was validated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from deploy_orchestrator.convergence.resources import build_resource
from deploy_orchestrator.convergence.templates import TemplateError, TemplateRenderer
from deploy_orchestrator.core.errors import ConfigError, ValidationError
from deploy_orchestrator.core.types import (
    AssertionKind,
    AssertionSpec,
    DefinitionSet,
    LintViolation,
    Severity,
)
from deploy_orchestrator.gates.lint import lint_definitions
from deploy_orchestrator.inventory.resolver import NodePlan, bind_roles, resolve_inventory
from deploy_orchestrator.inventory.store import InventoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityGateConfig:
    """
    Quality gate configuration.

    min_severity
    Lint violations at or above this severity block the pipeline.
    """

    min_severity: Severity = Severity.medium


@dataclass
class QualityReport:
    """
    Outcome of a passing quality gate.

    violations are the non blocking lint violations.
    plans are the resolved node plans.
    """

    violations: list[LintViolation] = field(default_factory=list)
    plans: list[NodePlan] = field(default_factory=list)


def find_role_cycle(defs: DefinitionSet) -> list[str] | None:
    """Return one dependency cycle as a list of role names, or None."""

    visiting: list[str] = []
    done: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in visiting:
            return visiting[visiting.index(name):] + [name]
        if name in done:
            return None
        role = defs.role(name)
        if role is None:
            return None
        visiting.append(name)
        for dep in role.dependencies:
            cycle = visit(dep)
            if cycle is not None:
                return cycle
        visiting.pop()
        done.add(name)
        return None

    for name in sorted(defs.roles):
        cycle = visit(name)
        if cycle is not None:
            return cycle
    return None


def _string_params(spec: AssertionSpec) -> list[str]:
    values: list[str] = []
    for value in spec.params.values():
        if isinstance(value, str):
            values.append(value)
        elif isinstance(value, list):
            values.extend(str(v) for v in value)
    return values


def _check_spec(
    spec: AssertionSpec,
    plan: NodePlan,
    renderer: TemplateRenderer,
) -> list[str]:
    problems: list[str] = []
    where = f"node {plan.name} {spec.identity}"

    try:
        build_resource(spec)
    except ConfigError as exc:
        return [f"node {plan.name} {exc}"]

    texts = _string_params(spec)
    if spec.kind == AssertionKind.template:
        src = str(spec.params.get("src"))
        text = plan.templates.get((spec.role, src))
        if text is None:
            problems.append(f"{where}: template {src!r} not found in role {spec.role}")
        else:
            texts.append(text)

    for text in texts:
        try:
            names = renderer.identifiers(text)
        except TemplateError as exc:
            problems.append(f"{where}: {exc}")
            continue
        for name in names:
            if name not in plan.variables:
                problems.append(f"{where}: undefined variable {name!r}")

    return problems


def dry_run(
    defs: DefinitionSet,
    inventory: InventoryStore,
    renderer: TemplateRenderer | None = None,
) -> list[NodePlan]:
    """
    Resolve everything without applying anything.

    Raises ValidationError listing every problem found.
    Inventory reference errors propagate as ConfigError.
    """

    renderer = renderer or TemplateRenderer()

    cycle = find_role_cycle(defs)
    if cycle is not None:
        raise ValidationError(f"cyclic role dependency: {' -> '.join(cycle)}")

    plans = bind_roles(resolve_inventory(inventory), defs)

    problems: list[str] = []
    for plan in plans:
        for spec in plan.assertions:
            problems.extend(_check_spec(spec, plan, renderer))
        for handler in plan.handlers.values():
            problems.extend(_check_spec(handler, plan, renderer))

    if problems:
        raise ValidationError("dry run failed: " + "; ".join(problems))

    return plans


class QualityGate:
    """Lint plus dry run, read only."""

    def __init__(self, config: QualityGateConfig | None = None, renderer: TemplateRenderer | None = None) -> None:
        self._config = config or QualityGateConfig()
        self._renderer = renderer or TemplateRenderer()

    def evaluate(self, defs: DefinitionSet, inventory: InventoryStore) -> QualityReport:
        """
        Run lint then dry run.

        Raises ValidationError on blocking violations or resolution failure.
        """

        violations = lint_definitions(defs)
        blocking = [v for v in violations if v.severity.at_least(self._config.min_severity)]

        for v in violations:
            level = logging.WARNING if v in blocking else logging.INFO
            logger.log(level, "lint %s [%s] %s: %s", v.rule, v.severity, v.location, v.message)

        if blocking:
            raise ValidationError(
                f"{len(blocking)} lint violations at or above {self._config.min_severity}",
                violations=blocking,
            )

        plans = dry_run(defs, inventory, renderer=self._renderer)
        logger.info("quality gate passed for %d nodes, %d non blocking violations", len(plans), len(violations))
        return QualityReport(violations=violations, plans=plans)
