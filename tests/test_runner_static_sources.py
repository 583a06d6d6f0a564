from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from conftest import LAB_DIR
from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import Severity, StageName, StageStatus
from deploy_orchestrator.execution.docker import DockerHostFactory
from deploy_orchestrator.execution.mock import InMemoryHostFactory
from deploy_orchestrator.gates.scanners import StaticFindingsScanner, TrivyConfigScanner
from deploy_orchestrator.pipeline.config import (
    ScanConfig,
    ScannerKind,
    load_pipeline_config,
    pipeline_config_from_dict,
)
from deploy_orchestrator.pipeline.runner import build_driver, build_host_factory, build_scanner


def test_lab_config_resolves_paths_against_its_directory():
    config = load_pipeline_config(LAB_DIR / "pipeline.yml")

    assert config.definitions_root == LAB_DIR
    assert config.inventory_path == LAB_DIR / "inventory.yml"
    assert config.quality.min_severity == Severity.medium
    assert config.policy.max_artifacts == 2
    assert config.policy.severity == Severity.critical
    assert config.scan.scanner == ScannerKind.trivy
    assert config.convergence.max_workers == 3
    assert [p.name for p in config.probes] == ["lb-first-request", "lb-second-request"]
    assert config.probes[0].attempts == 5
    assert config.probes[0].expect_text == "Hello from the web tier"
    assert config.timeouts.converge == 1800
    assert config.report_path == LAB_DIR / "reports" / "pipeline.jsonl"


def test_config_defaults_and_errors(tmp_path: Path):
    config = pipeline_config_from_dict({"inventory": "inv.yml"}, tmp_path)
    assert config.definitions_root == tmp_path
    assert config.policy.max_artifacts == 2
    assert config.quality.min_severity == Severity.medium
    assert config.probes == ()
    assert config.timeouts.scan is None

    with pytest.raises(ConfigError, match="needs inventory"):
        pipeline_config_from_dict({}, tmp_path)
    with pytest.raises(ConfigError, match="scan.report is required"):
        pipeline_config_from_dict({"inventory": "i", "scan": {"scanner": "report"}}, tmp_path)
    with pytest.raises(ConfigError, match="unknown scanner"):
        pipeline_config_from_dict({"inventory": "i", "scan": {"scanner": "grype"}}, tmp_path)
    with pytest.raises(ConfigError):
        pipeline_config_from_dict({"inventory": "i", "verify": {"probes": [{"name": "no-url"}]}}, tmp_path)


def test_config_severities_must_be_known(tmp_path: Path):
    config = pipeline_config_from_dict(
        {"inventory": "i", "lint": {"min_severity": "high"}, "policy": {"severity": "High "}}, tmp_path
    )
    assert config.quality.min_severity == Severity.high
    assert config.policy.severity == Severity.high

    with pytest.raises(ConfigError, match="policy.severity must be one of"):
        pipeline_config_from_dict({"inventory": "i", "policy": {"severity": "CRTICAL"}}, tmp_path)
    with pytest.raises(ConfigError, match="lint.min_severity must be one of"):
        pipeline_config_from_dict({"inventory": "i", "lint": {"min_severity": "MEDUIM"}}, tmp_path)
    with pytest.raises(ConfigError, match="got 'unknown'"):
        pipeline_config_from_dict({"inventory": "i", "policy": {"severity": "unknown"}}, tmp_path)


def test_build_scanner_and_host_factory_follow_config(tmp_path: Path):
    config = pipeline_config_from_dict({"inventory": "i"}, tmp_path)
    assert isinstance(build_scanner(config), TrivyConfigScanner)
    assert isinstance(build_host_factory(config), DockerHostFactory)
    assert isinstance(build_host_factory(config, simulate=True), InMemoryHostFactory)

    report = pipeline_config_from_dict({"inventory": "i", "scan": {"scanner": "report", "report": "t.json"}}, tmp_path)
    scanner = build_scanner(report)
    assert isinstance(scanner, StaticFindingsScanner)
    assert scanner.path == tmp_path / "t.json"

    disabled = pipeline_config_from_dict({"inventory": "i", "scan": {"scanner": "none"}}, tmp_path)
    assert build_scanner(disabled) is None

    missing_report = dataclasses.replace(config, scan=ScanConfig(scanner=ScannerKind.report))
    with pytest.raises(ConfigError, match="scan.report is required"):
        build_scanner(missing_report)


def test_lab_simulated_run_converges_and_is_idempotent(tmp_path: Path):
    config = dataclasses.replace(
        load_pipeline_config(LAB_DIR / "pipeline.yml"),
        scan=ScanConfig(scanner=ScannerKind.none),
        report_path=tmp_path / "pipeline.jsonl",
    )
    factory = InMemoryHostFactory()

    first = build_driver(config, simulate=True, host_factory=factory).run()

    assert first.ok, first.error_message
    assert first.outcome(StageName.verify).detail == "no probes configured"

    lb = factory.host("lb01")
    site = lb.files["/etc/nginx/sites-available/default"]
    assert "server web01:80;" in site
    assert "server web02:80;" in site
    assert "proxy_set_header Host $host;" in site
    assert lb.count("restart_service:nginx") == 1
    assert "/var/www/html/index.html" not in lb.files

    web = factory.host("web01")
    assert "<h1>Hello from the web tier</h1>" in web.files["/var/www/html/index.html"]
    assert {"ca-certificates", "curl", "nginx"} <= web.packages
    assert web.count("restart_service:nginx") == 0

    second = build_driver(config, simulate=True, host_factory=factory).run()

    assert second.ok
    assert second.outcome(StageName.converge).status == StageStatus.success
    assert all(r.changed_count == 0 for r in second.node_reports)
    assert lb.count("restart_service:nginx") == 1

    lines = (tmp_path / "pipeline.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["terminal_state"] for line in lines] == ["done", "done"]
