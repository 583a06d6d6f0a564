"""
Pipeline configuration.

The pipeline reads no environment variables and no ambient config files.
Everything it needs is in one PipelineConfig, built here from an explicit yaml
file or constructed directly in code.

Relative paths in the yaml file are resolved against the file directory.

Example
definitions: .
inventory: inventory.yml
playbook: site.yml
lint:
  min_severity: MEDIUM
policy:
  max_critical_artifacts: 2
  severity: CRITICAL
scan:
  scanner: report            # trivy, report or none
  report: trivy-results.json
converge:
  max_workers: 4
connection:
  docker_bin: docker
  command_timeout_seconds: 300
  service_manager: sysv
verify:
  probes:
    - name: lb-index
      url: http://localhost:8080/
      expect_text: hello
      attempts: 3
      backoff_seconds: 2
timeouts:
  converge: 1800
report: reports/pipeline.jsonl
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from deploy_orchestrator.convergence.engine import ConvergenceConfig
from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import Severity
from deploy_orchestrator.gates.policy import PolicyGateConfig
from deploy_orchestrator.gates.quality import QualityGateConfig
from deploy_orchestrator.verify.probes import ProbeSpec


class ScannerKind(StrEnum):
    trivy = "trivy"
    report = "report"
    none = "none"


@dataclass(frozen=True)
class ScanConfig:
    """
    Scanner selection.

    report_path is required when scanner is report.
    """

    scanner: ScannerKind = ScannerKind.trivy
    report_path: Path | None = None
    trivy_bin: str = "trivy"
    timeout_seconds: float = 600.0


@dataclass(frozen=True)
class ConnectionConfig:
    docker_bin: str = "docker"
    command_timeout_seconds: float = 300.0
    service_manager: str = "sysv"


@dataclass(frozen=True)
class StageTimeouts:
    """
    Per stage timeouts in seconds. None means no timeout.

    A stage that times out fails. Work already done is not undone.
    """

    lint: float | None = None
    scan: float | None = None
    converge: float | None = None
    verify: float | None = None

    def for_stage(self, stage: str) -> float | None:
        return getattr(self, stage, None)


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a pipeline run needs, passed in at construction."""

    definitions_root: Path
    inventory_path: Path
    playbook: str = "site.yml"
    quality: QualityGateConfig = QualityGateConfig()
    policy: PolicyGateConfig = PolicyGateConfig()
    scan: ScanConfig = ScanConfig()
    convergence: ConvergenceConfig = ConvergenceConfig()
    connection: ConnectionConfig = ConnectionConfig()
    probes: tuple[ProbeSpec, ...] = ()
    timeouts: StageTimeouts = StageTimeouts()
    report_path: Path | None = None


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"config section {key} must be a mapping")
    return value


def _path(base: Path, raw: Any) -> Path:
    p = Path(str(raw))
    return p if p.is_absolute() else base / p


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _severity(section: dict[str, Any], key: str, default: Severity, where: str) -> Severity:
    raw = section.get(key)
    if raw is None:
        return default
    parsed = Severity.parse(str(raw))
    if parsed == Severity.unknown:
        allowed = ", ".join(s.value for s in Severity if s != Severity.unknown)
        raise ConfigError(f"{where}.{key} must be one of {allowed}, got {raw!r}")
    return parsed


def _parse_probe(raw: Any, idx: int) -> ProbeSpec:
    if not isinstance(raw, dict) or not raw.get("url"):
        raise ConfigError(f"verify probe {idx} must be a mapping with url")

    status_raw = raw.get("expected_status", [])
    if isinstance(status_raw, int):
        status_raw = [status_raw]
    if not isinstance(status_raw, list):
        raise ConfigError(f"verify probe {idx} expected_status must be an int or a list")

    expect_text = raw.get("expect_text")
    return ProbeSpec(
        name=str(raw.get("name", f"probe-{idx}")),
        url=str(raw["url"]),
        expected_status=tuple(int(s) for s in status_raw),
        expect_text=None if expect_text is None else str(expect_text),
        attempts=int(raw.get("attempts", 1)),
        backoff_seconds=float(raw.get("backoff_seconds", 0.0)),
        timeout_seconds=float(raw.get("timeout_seconds", 5.0)),
    )


def pipeline_config_from_dict(data: Any, base_dir: Path) -> PipelineConfig:
    """Build a PipelineConfig from a parsed document."""
    if not isinstance(data, dict):
        raise ConfigError("pipeline config must be a mapping")
    if "inventory" not in data:
        raise ConfigError("pipeline config needs inventory")

    lint = _section(data, "lint")
    policy = _section(data, "policy")
    scan = _section(data, "scan")
    converge = _section(data, "converge")
    connection = _section(data, "connection")
    verify = _section(data, "verify")
    timeouts = _section(data, "timeouts")

    try:
        scanner = ScannerKind(str(scan.get("scanner", "trivy")))
    except ValueError as exc:
        raise ConfigError(f"unknown scanner {scan.get('scanner')}") from exc

    report_path = _path(base_dir, scan["report"]) if scan.get("report") else None
    if scanner == ScannerKind.report and report_path is None:
        raise ConfigError("scan.report is required when scan.scanner is report")

    max_artifacts = int(policy.get("max_critical_artifacts", PolicyGateConfig.max_artifacts))
    if max_artifacts < 0:
        raise ConfigError("policy.max_critical_artifacts must not be negative")

    probes_raw = verify.get("probes", []) or []
    if not isinstance(probes_raw, list):
        raise ConfigError("verify.probes must be a list")

    return PipelineConfig(
        definitions_root=_path(base_dir, data.get("definitions", ".")),
        inventory_path=_path(base_dir, data["inventory"]),
        playbook=str(data.get("playbook", "site.yml")),
        quality=QualityGateConfig(
            min_severity=_severity(lint, "min_severity", QualityGateConfig.min_severity, "lint"),
        ),
        policy=PolicyGateConfig(
            max_artifacts=max_artifacts,
            severity=_severity(policy, "severity", PolicyGateConfig.severity, "policy"),
        ),
        scan=ScanConfig(
            scanner=scanner,
            report_path=report_path,
            trivy_bin=str(scan.get("trivy_bin", "trivy")),
            timeout_seconds=float(scan.get("timeout_seconds", 600.0)),
        ),
        convergence=ConvergenceConfig(max_workers=int(converge.get("max_workers", 4))),
        connection=ConnectionConfig(
            docker_bin=str(connection.get("docker_bin", "docker")),
            command_timeout_seconds=float(connection.get("command_timeout_seconds", 300.0)),
            service_manager=str(connection.get("service_manager", "sysv")),
        ),
        probes=tuple(_parse_probe(p, i) for i, p in enumerate(probes_raw)),
        timeouts=StageTimeouts(
            lint=_optional_float(timeouts.get("lint")),
            scan=_optional_float(timeouts.get("scan")),
            converge=_optional_float(timeouts.get("converge")),
            verify=_optional_float(timeouts.get("verify")),
        ),
        report_path=_path(base_dir, data["report"]) if data.get("report") else None,
    )


def load_pipeline_config(path: Path) -> PipelineConfig:
    """Read a PipelineConfig from a yaml file."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read pipeline config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse pipeline config {path}: {exc}") from exc

    return pipeline_config_from_dict(data, path.resolve().parent)
