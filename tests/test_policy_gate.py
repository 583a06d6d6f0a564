from __future__ import annotations

import json
from pathlib import Path

import pytest

from deploy_orchestrator.core.errors import ConfigError, PolicyViolation
from deploy_orchestrator.core.types import Finding, Severity
from deploy_orchestrator.gates.policy import PolicyGate, PolicyGateConfig, flagged_artifacts
from deploy_orchestrator.gates.scanners import StaticFindingsScanner, parse_trivy_report


def critical(artifact: str, rule_id: str = "DS001") -> Finding:
    return Finding(artifact=artifact, rule_id=rule_id, severity=Severity.critical)


def test_threshold_counts_distinct_artifacts():
    findings = [
        critical("Dockerfile", "DS001"),
        critical("Dockerfile", "DS002"),
        critical("lab/Dockerfile.web"),
        Finding(artifact="site.yml", rule_id="X1", severity=Severity.high),
    ]

    decision = PolicyGate().evaluate(findings)

    assert decision.flagged_artifacts == ["Dockerfile", "lab/Dockerfile.web"]
    assert decision.total_findings == 4
    assert decision.threshold == 2


def test_three_critical_artifacts_exceed_default_threshold():
    findings = [critical("a"), critical("b"), critical("c")]

    with pytest.raises(PolicyViolation) as excinfo:
        PolicyGate().evaluate(findings)

    assert excinfo.value.artifacts == ["a", "b", "c"]
    assert excinfo.value.threshold == 2


def test_zero_threshold_and_lower_gated_severity():
    findings = [Finding(artifact="Dockerfile", rule_id="DS002", severity=Severity.high)]

    assert PolicyGate().evaluate(findings).flagged_artifacts == []
    with pytest.raises(PolicyViolation):
        PolicyGate(PolicyGateConfig(max_artifacts=0, severity=Severity.high)).evaluate(findings)


def test_flagged_artifacts_ignores_non_critical():
    findings = [
        Finding(artifact="a", rule_id="1", severity=Severity.medium),
        Finding(artifact="b", rule_id="2", severity=Severity.unknown),
    ]
    assert flagged_artifacts(findings) == []


def test_severity_parse_is_case_insensitive():
    assert Severity.parse("critical") == Severity.critical
    assert Severity.parse(" High ") == Severity.high
    assert Severity.parse("bogus") == Severity.unknown
    assert Severity.critical.at_least(Severity.high)
    assert not Severity.low.at_least(Severity.medium)


TRIVY_REPORT = {
    "Results": [
        {
            "Target": "Dockerfile",
            "Misconfigurations": [
                {"ID": "DS002", "Title": "root user", "Severity": "HIGH", "Status": "FAIL"},
                {"ID": "DS005", "Title": "add instead of copy", "Severity": "LOW", "Status": "PASS"},
            ],
        },
        {
            "Target": "debian:bookworm",
            "Vulnerabilities": [
                {"VulnerabilityID": "CVE-2023-0001", "Title": "overflow", "Severity": "CRITICAL"},
            ],
        },
    ]
}


def test_parse_trivy_report_keeps_failed_checks_and_vulnerabilities():
    findings = parse_trivy_report(TRIVY_REPORT)

    assert findings == [
        Finding(artifact="Dockerfile", rule_id="DS002", severity=Severity.high, title="root user"),
        Finding(artifact="debian:bookworm", rule_id="CVE-2023-0001", severity=Severity.critical, title="overflow"),
    ]


def test_static_scanner_reads_report(tmp_path: Path):
    path = tmp_path / "trivy.json"
    path.write_text(json.dumps(TRIVY_REPORT), encoding="utf-8")

    findings = StaticFindingsScanner(path=path).scan(tmp_path, [])
    assert [f.rule_id for f in findings] == ["DS002", "CVE-2023-0001"]


def test_static_scanner_bad_report_is_config_error(tmp_path: Path):
    path = tmp_path / "trivy.json"
    path.write_text("not json", encoding="utf-8")

    with pytest.raises(ConfigError):
        StaticFindingsScanner(path=path).scan(tmp_path, [])
    with pytest.raises(ConfigError):
        parse_trivy_report(["not", "an", "object"])
