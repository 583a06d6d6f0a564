"""
Structural lint.

Rules are plain functions over a DefinitionSet. Each returns violations and
never raises, so one broken role does not hide problems in the others.

Rule catalog
name-missing        LOW     task or handler without a name
unknown-module      HIGH    module not supported by the convergence engine
task-unknown-key    MEDIUM  task key that is neither a keyword nor the module
package-latest      MEDIUM  package state latest, which is not reproducible
command-unguarded   HIGH    command without creates or removes, never idempotent
restart-in-tasks    MEDIUM  service state restarted used as a task, not a handler
handler-unused      LOW     handler that no task of its scope notifies
role-empty          LOW     role without tasks
"""

from __future__ import annotations

from typing import Callable, Iterable

from deploy_orchestrator.core.types import (
    AssertionKind,
    AssertionSpec,
    DefinitionSet,
    LintViolation,
    RoleDefinition,
    Severity,
)


def _all_specs(role: RoleDefinition) -> Iterable[AssertionSpec]:
    yield from role.tasks
    yield from role.handlers


def rule_name_missing(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        for spec in _all_specs(role):
            if not spec.name.strip():
                out.append(
                    LintViolation("name-missing", Severity.low, spec.location, "all tasks should be named")
                )
    return out


def rule_unknown_module(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        for spec in _all_specs(role):
            if spec.kind is None:
                out.append(
                    LintViolation(
                        "unknown-module",
                        Severity.high,
                        spec.location,
                        f"module {spec.module!r} is not supported",
                    )
                )
    return out


def rule_unknown_key(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        for spec in _all_specs(role):
            for key in spec.extra_keys:
                out.append(
                    LintViolation("task-unknown-key", Severity.medium, spec.location, f"unknown task key {key!r}")
                )
    return out


def rule_package_latest(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        for spec in _all_specs(role):
            if spec.kind == AssertionKind.package and str(spec.params.get("state", "")) == "latest":
                out.append(
                    LintViolation(
                        "package-latest",
                        Severity.medium,
                        spec.location,
                        "package installs should pin state present instead of latest",
                    )
                )
    return out


def rule_command_unguarded(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        for spec in role.tasks:
            if spec.kind != AssertionKind.command:
                continue
            if "creates" not in spec.params and "removes" not in spec.params:
                out.append(
                    LintViolation(
                        "command-unguarded",
                        Severity.high,
                        spec.location,
                        "commands need creates or removes to be idempotent",
                    )
                )
    return out


def rule_restart_in_tasks(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        for spec in role.tasks:
            if spec.kind == AssertionKind.service and str(spec.params.get("state", "")) == "restarted":
                out.append(
                    LintViolation(
                        "restart-in-tasks",
                        Severity.medium,
                        spec.location,
                        "restarts belong in handlers so they only run on change",
                    )
                )
    return out


def rule_handler_unused(defs: DefinitionSet) -> list[LintViolation]:
    notified: set[str] = set()
    for role in defs.roles.values():
        for spec in role.tasks:
            notified.update(spec.notify)

    out: list[LintViolation] = []
    for role in defs.roles.values():
        for handler in role.handlers:
            if handler.name not in notified:
                out.append(
                    LintViolation(
                        "handler-unused",
                        Severity.low,
                        handler.location,
                        f"handler {handler.name!r} is never notified",
                    )
                )
    return out


def rule_role_empty(defs: DefinitionSet) -> list[LintViolation]:
    out: list[LintViolation] = []
    for role in defs.roles.values():
        if not role.tasks:
            location = f"roles/{role.name}"
            out.append(LintViolation("role-empty", Severity.low, location, f"role {role.name} has no tasks"))
    return out


LintRule = Callable[[DefinitionSet], list[LintViolation]]

DEFAULT_RULES: tuple[LintRule, ...] = (
    rule_name_missing,
    rule_unknown_module,
    rule_unknown_key,
    rule_package_latest,
    rule_command_unguarded,
    rule_restart_in_tasks,
    rule_handler_unused,
    rule_role_empty,
)


def lint_definitions(
    defs: DefinitionSet,
    rules: Iterable[LintRule] = DEFAULT_RULES,
) -> list[LintViolation]:
    """Run every rule and return violations sorted by location then rule."""
    violations: list[LintViolation] = []
    for rule in rules:
        violations.extend(rule(defs))
    return sorted(violations, key=lambda v: (v.location, v.rule))
