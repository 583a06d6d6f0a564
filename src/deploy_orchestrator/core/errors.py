"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ConfigError should block before any stage runs.
ValidationError and PolicyViolation should block before any node is touched.
ResourceApplyError stops a node but never rolls back what already converged.
VerificationError means the deployed state is unconfirmed, not undone.
"""

from __future__ import annotations

from typing import Any


class OrchestratorError(Exception):
    """Base class for all orchestrator exceptions."""


class ConfigError(OrchestratorError):
    """Raised when inventory, group, play or role references are malformed."""


class ValidationError(OrchestratorError):
    """
    Raised when lint or dry run resolution fails.

    violations holds the blocking lint violations, if any.
    """

    def __init__(self, message: str, violations: list[Any] | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class PolicyViolation(OrchestratorError):
    """
    Raised when the policy gate threshold is exceeded.

    artifacts lists the artifacts carrying a finding at the gated severity.
    """

    def __init__(self, message: str, artifacts: list[str], threshold: int) -> None:
        super().__init__(message)
        self.artifacts = list(artifacts)
        self.threshold = threshold


class ExecutionFailed(OrchestratorError):
    """
    Raised when a command on a node execution channel fails.

    returncode and stderr come from the underlying command.
    """

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ResourceApplyError(OrchestratorError):
    """
    Raised when a resource assertion cannot be converged on a node.

    node and assertion identify where convergence stopped.
    cause is the underlying exception.
    """

    def __init__(self, node: str, assertion: str, cause: BaseException) -> None:
        super().__init__(f"node {node} assertion {assertion!r} failed: {cause}")
        self.node = node
        self.assertion = assertion
        self.cause = cause


class VerificationError(OrchestratorError):
    """
    Raised when post deployment probes fail.

    failures are human readable probe failure messages.
    """

    def __init__(self, message: str, failures: list[str]) -> None:
        super().__init__(message)
        self.failures = list(failures)


class StageTimeout(OrchestratorError):
    """Raised when a pipeline stage exceeds its configured timeout."""

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        super().__init__(f"stage {stage} exceeded timeout of {timeout_seconds} seconds")
        self.stage = stage
        self.timeout_seconds = timeout_seconds
