from __future__ import annotations

import copy

import pytest

from conftest import WEB_TREE, edge_and_tier_inventory
from deploy_orchestrator.core.errors import ValidationError
from deploy_orchestrator.core.types import Severity
from deploy_orchestrator.definitions.directory import DirectoryDefinitionSource
from deploy_orchestrator.gates.lint import lint_definitions
from deploy_orchestrator.gates.quality import QualityGate, QualityGateConfig, dry_run, find_role_cycle


def load(make_tree, files):
    return DirectoryDefinitionSource(root=make_tree(files)).load()


def web_tree_with(**overrides) -> dict[str, object]:
    files = copy.deepcopy(WEB_TREE)
    files.update(overrides)
    return files


def test_clean_definitions_pass_and_return_plans(make_tree):
    defs = load(make_tree, WEB_TREE)

    report = QualityGate().evaluate(defs, edge_and_tier_inventory())

    assert report.violations == []
    assert [p.name for p in report.plans] == ["edge1", "tier1", "tier2"]


def test_lint_rules_report_expected_violations(make_tree):
    files = {
        "site.yml": [{"name": "p", "hosts": "all", "roles": ["app"]}],
        "roles/app/tasks/main.yml": [
            {"apt": {"name": "nginx", "state": "latest"}},
            {"name": "run", "command": "date"},
            {"name": "bounce", "service": {"name": "nginx", "state": "restarted"}},
            {"name": "edit", "lineinfile": {"path": "/x"}},
            {"name": "loop", "apt": {"name": "curl"}, "loop": [1]},
        ],
        "roles/app/handlers/main.yml": [
            {"name": "Never used", "service": {"name": "nginx", "state": "restarted"}},
        ],
        "roles/empty/defaults/main.yml": {"x": 1},
    }

    violations = lint_definitions(load(make_tree, files))
    rules = {(v.rule, v.severity) for v in violations}

    assert ("name-missing", Severity.low) in rules
    assert ("package-latest", Severity.medium) in rules
    assert ("command-unguarded", Severity.high) in rules
    assert ("restart-in-tasks", Severity.medium) in rules
    assert ("unknown-module", Severity.high) in rules
    assert ("task-unknown-key", Severity.medium) in rules
    assert ("handler-unused", Severity.low) in rules
    assert ("role-empty", Severity.low) in rules
    assert violations == sorted(violations, key=lambda v: (v.location, v.rule))


def test_violations_below_min_severity_do_not_block(make_tree):
    tasks = copy.deepcopy(WEB_TREE["roles/web/tasks/main.yml"])
    tasks[0]["apt"]["state"] = "latest"
    defs = load(make_tree, web_tree_with(**{"roles/web/tasks/main.yml": tasks}))

    with pytest.raises(ValidationError) as excinfo:
        QualityGate().evaluate(defs, edge_and_tier_inventory())
    assert [v.rule for v in excinfo.value.violations] == ["package-latest"]

    report = QualityGate(QualityGateConfig(min_severity=Severity.high)).evaluate(defs, edge_and_tier_inventory())
    assert [v.rule for v in report.violations] == ["package-latest"]


def test_dry_run_rejects_undefined_variable(make_tree):
    defs = load(
        make_tree,
        web_tree_with(**{"roles/web/templates/index.html.j2": "<h1>{{ greeting }} {{ missing_var }}</h1>"}),
    )

    with pytest.raises(ValidationError) as excinfo:
        dry_run(defs, edge_and_tier_inventory())

    message = str(excinfo.value)
    assert "undefined variable 'missing_var'" in message
    assert "node tier1" in message
    # the edge node never renders the index template
    assert "node edge1" not in message


def test_dry_run_rejects_greeting_on_a_node_without_it(make_tree):
    tasks = copy.deepcopy(WEB_TREE["roles/web/tasks/main.yml"])
    tasks[1]["when"] = None
    defs = load(make_tree, web_tree_with(**{"roles/web/tasks/main.yml": tasks}))

    with pytest.raises(ValidationError, match="node edge1 .*undefined variable 'greeting'"):
        dry_run(defs, edge_and_tier_inventory())


def test_dry_run_rejects_missing_template(make_tree):
    files = web_tree_with()
    del files["roles/web/templates/index.html.j2"]
    defs = load(make_tree, files)

    with pytest.raises(ValidationError, match="template 'index.html.j2' not found"):
        QualityGate().evaluate(defs, edge_and_tier_inventory())


def test_dry_run_rejects_cyclic_roles(make_tree):
    files = web_tree_with(
        **{
            "roles/web/meta/main.yml": {"dependencies": ["base"]},
            "roles/base/meta/main.yml": {"dependencies": ["web"]},
            "roles/base/tasks/main.yml": [{"name": "curl", "apt": {"name": "curl"}}],
        }
    )
    defs = load(make_tree, files)

    assert find_role_cycle(defs) == ["base", "web", "base"]
    with pytest.raises(ValidationError, match="cyclic role dependency"):
        QualityGate().evaluate(defs, edge_and_tier_inventory())
