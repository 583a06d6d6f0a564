"""
Scanner adapters.

The policy gate consumes Finding objects. Scanners produce them.

TrivyConfigScanner runs trivy config over the definitions root.
StaticFindingsScanner reads a report file that was produced earlier, which is
how a CI job that already ran the scanner hands results over.

Both understand the trivy json report shape

{
  "Results": [
    {
      "Target": "Dockerfile",
      "Misconfigurations": [
        {"ID": "DS002", "Title": "Image user should not be root", "Severity": "HIGH", "Status": "FAIL"}
      ],
      "Vulnerabilities": [
        {"VulnerabilityID": "CVE-2023-0001", "Title": "...", "Severity": "CRITICAL"}
      ]
    }
  ]
}

Misconfigurations with a status other than FAIL are ignored.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from deploy_orchestrator.core.errors import ConfigError, ExecutionFailed
from deploy_orchestrator.core.types import Finding, Severity

logger = logging.getLogger(__name__)


class Scanner(Protocol):
    """
    Scanner interface.

    root is the definitions root. artifacts lists the files the loader found,
    scanners may use it or scan root directly.
    """

    def scan(self, root: Path, artifacts: list[Path]) -> list[Finding]:
        """Return findings."""


def parse_trivy_report(data: Any) -> list[Finding]:
    """Convert a parsed trivy json report into findings."""
    if not isinstance(data, dict):
        raise ConfigError("scanner report must be a json object")

    findings: list[Finding] = []
    for result in data.get("Results", []) or []:
        if not isinstance(result, dict):
            continue
        target = str(result.get("Target", ""))

        for item in result.get("Misconfigurations", []) or []:
            if not isinstance(item, dict):
                continue
            if str(item.get("Status", "FAIL")).upper() != "FAIL":
                continue
            findings.append(
                Finding(
                    artifact=target,
                    rule_id=str(item.get("ID", "")),
                    severity=Severity.parse(str(item.get("Severity", ""))),
                    title=str(item.get("Title", "")),
                )
            )

        for item in result.get("Vulnerabilities", []) or []:
            if not isinstance(item, dict):
                continue
            findings.append(
                Finding(
                    artifact=target,
                    rule_id=str(item.get("VulnerabilityID", "")),
                    severity=Severity.parse(str(item.get("Severity", ""))),
                    title=str(item.get("Title", "")),
                )
            )

    return findings


@dataclass(frozen=True)
class StaticFindingsScanner(Scanner):
    """Read findings from a trivy json report file."""

    path: Path

    def scan(self, root: Path, artifacts: list[Path]) -> list[Finding]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"cannot read scanner report {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"cannot parse scanner report {self.path}: {exc}") from exc
        return parse_trivy_report(data)


@dataclass(frozen=True)
class TrivyConfigScanner(Scanner):
    """
    Run trivy config against the definitions root.

    trivy_bin allows a pinned binary path.
    """

    trivy_bin: str = "trivy"
    timeout_seconds: float = 600.0

    def scan(self, root: Path, artifacts: list[Path]) -> list[Finding]:
        argv = [self.trivy_bin, "config", "--format", "json", "--quiet", str(root)]
        logger.info("running %s", " ".join(argv))

        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutionFailed(f"trivy timed out after {self.timeout_seconds} seconds") from exc
        except OSError as exc:
            raise ExecutionFailed(f"cannot run {self.trivy_bin}: {exc}") from exc

        if proc.returncode != 0:
            raise ExecutionFailed(
                f"trivy exited with {proc.returncode}",
                returncode=proc.returncode,
                stderr=proc.stderr.strip(),
            )

        try:
            data = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ExecutionFailed(f"trivy produced invalid json: {exc}") from exc

        return parse_trivy_report(data)
