from __future__ import annotations

import copy
import json
from pathlib import Path

import yaml
from click.testing import CliRunner

from conftest import WEB_TREE, write_files
from deploy_orchestrator.cli import cli

INVENTORY = {
    "groups": [{"name": "tier", "vars": {"greeting": "hello"}}, "edge"],
    "nodes": [
        {"name": "edge1", "groups": ["edge"]},
        {"name": "tier1", "groups": ["tier"]},
    ],
}


def make_project(tmp_path: Path, files=WEB_TREE, **config_overrides) -> Path:
    write_files(tmp_path, {**files, "inventory.yml": INVENTORY})
    config = {"inventory": "inventory.yml", "scan": {"scanner": "none"}}
    config.update(config_overrides)
    path = tmp_path / "pipeline.yml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


def invoke(*args: str):
    return CliRunner().invoke(cli, list(args))


def test_check_passes_on_clean_definitions(tmp_path: Path):
    result = invoke("check", "--config", str(make_project(tmp_path)))

    assert result.exit_code == 0, result.output
    assert "terminal state: done" in result.output


def test_simulated_run_passes(tmp_path: Path):
    result = invoke("run", "--config", str(make_project(tmp_path)), "--simulate")

    assert result.exit_code == 0, result.output
    assert "converge" in result.output


def test_lint_failure_exit_code(tmp_path: Path):
    files = copy.deepcopy(WEB_TREE)
    files["roles/web/tasks/main.yml"][0]["apt"]["state"] = "latest"

    result = invoke("check", "--config", str(make_project(tmp_path, files=files)))

    assert result.exit_code == 3
    assert "terminal state: failed" in result.output


def test_policy_violation_exit_code(tmp_path: Path):
    report = {
        "Results": [
            {"Target": t, "Misconfigurations": [{"ID": "DS001", "Severity": "CRITICAL", "Status": "FAIL"}]}
            for t in ("a/Dockerfile", "b/Dockerfile", "c/Dockerfile")
        ]
    }
    (tmp_path / "trivy.json").write_text(json.dumps(report), encoding="utf-8")
    config = make_project(tmp_path, scan={"scanner": "report", "report": "trivy.json"})

    result = invoke("run", "--config", str(config), "--simulate")

    assert result.exit_code == 4


def test_policy_threshold_can_be_raised(tmp_path: Path):
    report = {
        "Results": [
            {"Target": t, "Misconfigurations": [{"ID": "DS001", "Severity": "CRITICAL", "Status": "FAIL"}]}
            for t in ("a/Dockerfile", "b/Dockerfile", "c/Dockerfile")
        ]
    }
    (tmp_path / "trivy.json").write_text(json.dumps(report), encoding="utf-8")
    config = make_project(
        tmp_path,
        scan={"scanner": "report", "report": "trivy.json"},
        policy={"max_critical_artifacts": 3},
    )

    assert invoke("run", "--config", str(config), "--simulate").exit_code == 0


def test_reference_error_exit_code(tmp_path: Path):
    files = copy.deepcopy(WEB_TREE)
    files["site.yml"][0]["hosts"] = "databases"

    result = invoke("check", "--config", str(make_project(tmp_path, files=files)))

    assert result.exit_code == 2


def test_malformed_config_exit_code(tmp_path: Path):
    path = tmp_path / "pipeline.yml"
    path.write_text("scan: {scanner: none}\n", encoding="utf-8")

    result = invoke("run", "--config", str(path))

    assert result.exit_code == 2
    assert "needs inventory" in result.output
