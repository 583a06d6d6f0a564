"""
Policy gate.

Purpose
Evaluate scanner findings against a bounded risk threshold.

Rule
Group findings by artifact. Count the distinct artifacts that carry at least
one finding at or above the gated severity. Fail only when that count exceeds
max_artifacts.

A handful of known critical findings in auxiliary files, such as a lab
Dockerfile, does not block a deployment. Critical findings spread across many
files do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from deploy_orchestrator.core.errors import PolicyViolation
from deploy_orchestrator.core.types import Finding, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyGateConfig:
    """
    Policy gate configuration.

    max_artifacts
    Highest tolerated number of artifacts with a gated finding.

    severity
    Findings at or above this severity count toward the threshold.
    """

    max_artifacts: int = 2
    severity: Severity = Severity.critical


@dataclass(frozen=True)
class PolicyDecision:
    """
    Result of a passing evaluation.

    flagged_artifacts are the artifacts that counted toward the threshold.
    """

    flagged_artifacts: list[str]
    total_findings: int
    threshold: int


def group_findings_by_artifact(findings: list[Finding]) -> dict[str, list[Finding]]:
    """Group findings by artifact, artifacts in first appearance order."""
    grouped: dict[str, list[Finding]] = {}
    for f in findings:
        grouped.setdefault(f.artifact, []).append(f)
    return grouped


def flagged_artifacts(findings: list[Finding], severity: Severity = Severity.critical) -> list[str]:
    """Return sorted artifacts with at least one finding at or above severity."""
    grouped = group_findings_by_artifact(findings)
    return sorted(
        artifact
        for artifact, items in grouped.items()
        if any(f.severity.at_least(severity) for f in items)
    )


class PolicyGate:
    """Threshold based policy gate."""

    def __init__(self, config: PolicyGateConfig | None = None) -> None:
        self._config = config or PolicyGateConfig()

    def evaluate(self, findings: list[Finding]) -> PolicyDecision:
        """
        Evaluate findings.

        Raises PolicyViolation when more than max_artifacts artifacts are flagged.
        """

        flagged = flagged_artifacts(findings, self._config.severity)
        threshold = self._config.max_artifacts

        logger.info(
            "policy scan: %d findings, %d artifacts at %s or above, threshold %d",
            len(findings),
            len(flagged),
            self._config.severity,
            threshold,
        )

        if len(flagged) > threshold:
            raise PolicyViolation(
                f"{len(flagged)} artifacts carry {self._config.severity} findings, "
                f"more than the allowed {threshold}: {', '.join(flagged)}",
                artifacts=flagged,
                threshold=threshold,
            )

        for artifact in flagged:
            logger.warning("tolerated %s findings in %s", self._config.severity, artifact)

        return PolicyDecision(flagged_artifacts=flagged, total_findings=len(findings), threshold=threshold)
