from __future__ import annotations

import pytest

from conftest import LAB_DIR, WEB_TREE
from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import AssertionKind, GroupPredicate
from deploy_orchestrator.definitions.directory import (
    DirectoryDefinitionSource,
    parse_task,
    parse_when,
)


def test_parse_when_membership_forms():
    assert parse_when(None, "x") == GroupPredicate()
    assert parse_when("'web' in group_names", "x") == GroupPredicate(all_of=("web",))
    assert parse_when('"web" not in group_names', "x") == GroupPredicate(none_of=("web",))
    assert parse_when("'a' in group_names or 'b' in group_names", "x") == GroupPredicate(any_of=("a", "b"))
    assert parse_when(["'a' in group_names", "'b' not in group_names"], "x") == GroupPredicate(
        all_of=("a",), none_of=("b",)
    )


def test_parse_when_rejects_other_expressions():
    with pytest.raises(ConfigError, match="unsupported when"):
        parse_when("ansible_os_family == 'Debian'", "tasks[0]")
    with pytest.raises(ConfigError):
        parse_when("'a' not in group_names or 'b' in group_names", "tasks[0]")


def test_parse_task_module_aliases_and_shorthand():
    task = parse_task("web", {"name": "n", "apt": "name=nginx state=present"}, "loc")
    assert task.kind == AssertionKind.package
    assert task.params == {"name": "nginx", "state": "present"}

    cmd = parse_task("web", {"shell": "touch /tmp/x", "args": {"creates": "/tmp/x"}}, "loc")
    assert cmd.kind == AssertionKind.command
    assert cmd.params == {"cmd": "touch /tmp/x", "creates": "/tmp/x"}

    fq = parse_task("web", {"ansible.builtin.systemd": {"name": "nginx"}, "notify": "Reload"}, "loc")
    assert fq.kind == AssertionKind.service
    assert fq.notify == ("Reload",)


def test_parse_task_keeps_unknown_module_and_extra_keys():
    task = parse_task("web", {"name": "n", "apt": {"name": "nginx"}, "loop": [1, 2]}, "loc")
    assert task.module == "apt"
    assert task.extra_keys == ("loop",)

    unknown = parse_task("web", {"name": "n", "lineinfile": {"path": "/x"}}, "loc")
    assert unknown.kind is None
    assert unknown.module == "lineinfile"


def test_parse_task_without_module_is_config_error():
    with pytest.raises(ConfigError, match="no module"):
        parse_task("web", {"name": "only a name"}, "loc")


def test_directory_source_loads_roles_and_templates(make_tree):
    root = make_tree(
        {
            **WEB_TREE,
            "roles/web/meta/main.yml": {"dependencies": [{"role": "common"}]},
            "roles/web/defaults/main.yml": {"greeting": "default"},
            "roles/common/tasks/main.yml": [{"name": "curl", "apt": {"name": "curl"}}],
            "Dockerfile": "FROM debian:bookworm\n",
        }
    )

    defs = DirectoryDefinitionSource(root=root).load()

    assert [p.hosts for p in defs.plays] == ["all"]
    assert sorted(defs.roles) == ["common", "web"]
    web = defs.role("web")
    assert web is not None
    assert web.dependencies == ["common"]
    assert web.defaults == {"greeting": "default"}
    assert web.templates == {"index.html.j2": "<h1>{{ greeting }}</h1>\n"}
    assert [t.name for t in web.tasks] == ["Install nginx", "Render index", "Render edge config", "Nginx running"]
    assert web.tasks[1].when == GroupPredicate(all_of=("tier",))
    assert web.tasks[1].location == "roles/web/tasks/main.yml[1]"
    assert web.handler("Restart nginx") is not None

    artifact_names = {p.relative_to(root).as_posix() for p in defs.artifacts}
    assert "Dockerfile" in artifact_names
    assert "site.yml" in artifact_names


def test_directory_source_missing_playbook_is_config_error(tmp_path):
    with pytest.raises(ConfigError, match="playbook not found"):
        DirectoryDefinitionSource(root=tmp_path).load()


def test_lab_definitions_load():
    defs = DirectoryDefinitionSource(root=LAB_DIR).load()

    assert [p.hosts for p in defs.plays] == ["all", "webservers", "loadbalancer"]
    nginx = defs.role("nginx")
    assert nginx is not None
    assert set(nginx.templates) == {"index.html.j2", "loadbalancer.conf.j2"}
    assert nginx.defaults["nginx_service"] == "nginx"
