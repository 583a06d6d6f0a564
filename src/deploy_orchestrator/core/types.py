"""
Core types.

This file defines the shared data structures used across the engine.

Important design choice
We keep these types tool neutral.

Tool neutral means:
A role describes desired end state as resource assertions such as
"package present" or "file rendered from template", never as shell commands.
The execution layer decides how a node is reached and how state is read.

Group membership is resolved into typed predicates once, when definitions are
loaded, so convergence never matches group name strings ad hoc.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any


class Severity(StrEnum):
    """
    Severity shared by lint violations and scanner findings.

    Values match the upper case spelling used by common scanners.
    Use rank for ordering comparisons.
    """

    unknown = "UNKNOWN"
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    critical = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: Severity) -> bool:
        """Return True when this severity is equal to or above other."""
        return self.rank >= other.rank

    @classmethod
    def parse(cls, raw: str) -> Severity:
        """Parse a severity case insensitively. Unrecognized values map to unknown."""
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.unknown


_SEVERITY_RANK = {
    Severity.unknown: 0,
    Severity.low: 1,
    Severity.medium: 2,
    Severity.high: 3,
    Severity.critical: 4,
}


class ConnectionKind(StrEnum):
    """
    How a node is reached.

    docker
      Commands run through docker exec against a named container.

    memory
      Simulated node used by tests and simulate mode.
    """

    docker = "docker"
    memory = "memory"


class AssertionKind(StrEnum):
    """Supported resource assertion kinds."""

    package = "package"
    template = "template"
    copy = "copy"
    service = "service"
    command = "command"


class ChangeStatus(StrEnum):
    changed = "changed"
    unchanged = "unchanged"
    failed = "failed"


@dataclass(frozen=True)
class ConnectionSpec:
    """
    Connection descriptor.

    kind selects the connection factory.
    target is the transport handle, for docker the container name.
    """

    kind: ConnectionKind = ConnectionKind.docker
    target: str = ""


@dataclass(frozen=True)
class Node:
    """
    A managed target.

    groups keeps the order the inventory lists them in.
    variables holds per node variables, the highest precedence scope.
    """

    name: str
    groups: tuple[str, ...]
    connection: ConnectionSpec
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class Group:
    """A named set of nodes sharing variables."""

    name: str
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GroupPredicate:
    """
    Typed group membership predicate.

    all_of
    The node must belong to every one of these groups.

    any_of
    The node must belong to at least one of these groups. Empty means no constraint.

    none_of
    The node must belong to none of these groups.
    """

    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()
    none_of: tuple[str, ...] = ()

    def matches(self, groups: frozenset[str] | set[str] | tuple[str, ...]) -> bool:
        member = set(groups)
        if not member.issuperset(self.all_of):
            return False
        if self.any_of and not member.intersection(self.any_of):
            return False
        if member.intersection(self.none_of):
            return False
        return True

    @property
    def is_unconditional(self) -> bool:
        return not (self.all_of or self.any_of or self.none_of)

    def referenced_groups(self) -> tuple[str, ...]:
        return self.all_of + self.any_of + self.none_of


@dataclass(frozen=True)
class AssertionSpec:
    """
    A declared resource assertion, or a handler.

    module is the raw module name as written in the definition file.
    kind is None when the module is not supported, lint reports that.
    notify lists handler names in declaration order.
    extra_keys keeps unknown task keys so lint can report them.
    """

    role: str
    name: str
    module: str
    kind: AssertionKind | None
    params: dict[str, Any] = field(default_factory=dict)
    when: GroupPredicate = GroupPredicate()
    notify: tuple[str, ...] = ()
    location: str = ""
    extra_keys: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        label = self.name or f"{self.module} {self.location}".strip()
        return f"{self.role}: {label}"


@dataclass
class RoleDefinition:
    """
    A reusable bundle of assertions and handlers.

    templates maps template file name to template text.
    dependencies are role names applied before this role.
    """

    name: str
    tasks: list[AssertionSpec] = field(default_factory=list)
    handlers: list[AssertionSpec] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)
    templates: dict[str, str] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    path: Path | None = None

    def handler(self, name: str) -> AssertionSpec | None:
        for h in self.handlers:
            if h.name == name:
                return h
        return None


@dataclass(frozen=True)
class Play:
    """Apply roles, in order, to every node of a group. hosts may be "all"."""

    name: str
    hosts: str
    roles: tuple[str, ...]


@dataclass
class DefinitionSet:
    """
    The full declarative input of a pipeline run.

    artifacts are files handed to the policy scanner, such as Dockerfiles.
    """

    root: Path
    plays: list[Play] = field(default_factory=list)
    roles: dict[str, RoleDefinition] = field(default_factory=dict)
    artifacts: list[Path] = field(default_factory=list)

    def role(self, name: str) -> RoleDefinition | None:
        return self.roles.get(name)


@dataclass(frozen=True)
class LintViolation:
    """A structural lint violation."""

    rule: str
    severity: Severity
    location: str
    message: str


@dataclass(frozen=True)
class Finding:
    """
    A security or compliance finding.

    artifact is the file the finding occurs in.
    """

    artifact: str
    rule_id: str
    severity: Severity
    title: str = ""


@dataclass(frozen=True)
class AssertionResult:
    assertion: str
    status: ChangeStatus
    detail: str = ""


@dataclass
class NodeReport:
    """
    Convergence result for one node.

    results keep assertion order.
    handlers_fired holds handler identities in first notification order.
    error is set when convergence stopped early.
    """

    node: str
    results: list[AssertionResult] = field(default_factory=list)
    handlers_fired: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def changed_count(self) -> int:
        return sum(1 for r in self.results if r.status == ChangeStatus.changed)


class StageName(StrEnum):
    init = "init"
    lint = "lint"
    scan = "scan"
    converge = "converge"
    verify = "verify"
    report = "report"


class StageStatus(StrEnum):
    success = "success"
    failure = "failure"
    skipped = "skipped"


@dataclass(frozen=True)
class StageOutcome:
    """
    Outcome of one pipeline stage.

    error_type is the exception class name when the stage failed.
    """

    stage: StageName
    status: StageStatus
    detail: str = ""
    error_type: str | None = None
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class PipelineRun:
    """
    Immutable record of a completed pipeline run.

    outcomes keep stage order and always end with the report stage.
    """

    run_id: str
    mode: str
    outcomes: tuple[StageOutcome, ...]
    ok: bool
    failed_stage: StageName | None = None
    error_type: str | None = None
    error_message: str = ""
    node_reports: tuple[NodeReport, ...] = ()

    def outcome(self, stage: StageName) -> StageOutcome | None:
        for o in self.outcomes:
            if o.stage == stage:
                return o
        return None

    @property
    def terminal_state(self) -> str:
        return "done" if self.ok else "failed"
