from __future__ import annotations

import subprocess

import pytest

from conftest import make_node
from deploy_orchestrator.core.errors import ExecutionFailed
from deploy_orchestrator.core.types import ConnectionKind, ConnectionSpec, Node
from deploy_orchestrator.execution.base import CommandResult
from deploy_orchestrator.execution.docker import DockerExecConnection, DockerHostFactory
from deploy_orchestrator.execution.shell import ShellHost


class FakeConnection:
    """Records argv and answers with canned results keyed by the first argument."""

    def __init__(self, answers: dict[str, CommandResult] | None = None) -> None:
        self.answers = answers or {}
        self.calls: list[tuple[list[str], str | None]] = []

    def run(self, argv: list[str], stdin: str | None = None) -> CommandResult:
        self.calls.append((argv, stdin))
        key = argv[2] if argv[0] == "env" else argv[0]
        return self.answers.get(key, CommandResult(argv=tuple(argv), returncode=0))


def test_package_installed_reads_dpkg_status():
    conn = FakeConnection(
        {"dpkg-query": CommandResult(argv=(), returncode=0, stdout="install ok installed")}
    )
    assert ShellHost(connection=conn).package_installed("nginx")

    missing = FakeConnection({"dpkg-query": CommandResult(argv=(), returncode=1)})
    assert not ShellHost(connection=missing).package_installed("nginx")


def test_install_package_runs_apt_noninteractively():
    conn = FakeConnection()
    ShellHost(connection=conn).install_package("nginx", update_cache=True)

    assert [argv for argv, _ in conn.calls] == [
        ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "update"],
        ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "nginx"],
    ]


def test_write_file_streams_content_and_sets_mode():
    conn = FakeConnection()
    ShellHost(connection=conn).write_file("/etc/nginx/conf.d/site.conf", "server {}\n", mode="644")

    (write_argv, stdin), (chmod_argv, _) = conn.calls
    assert write_argv[:2] == ["sh", "-c"]
    assert write_argv[-1] == "/etc/nginx/conf.d/site.conf"
    assert stdin == "server {}\n"
    assert chmod_argv == ["chmod", "644", "/etc/nginx/conf.d/site.conf"]


def test_read_file_missing_returns_none():
    conn = FakeConnection({"cat": CommandResult(argv=(), returncode=1, stderr="No such file")})
    assert ShellHost(connection=conn).read_file("/nope") is None


def test_failed_mutation_raises_with_stderr():
    conn = FakeConnection({"apt-get": CommandResult(argv=(), returncode=100, stderr="E: Unable to locate package\n")})

    with pytest.raises(ExecutionFailed) as excinfo:
        ShellHost(connection=conn).install_package("nginxx")

    assert excinfo.value.returncode == 100
    assert excinfo.value.stderr == "E: Unable to locate package"


def test_service_commands_follow_service_manager():
    sysv = FakeConnection()
    ShellHost(connection=sysv).restart_service("nginx")
    ShellHost(connection=sysv).set_service_enabled("nginx", True)
    assert [argv for argv, _ in sysv.calls] == [
        ["service", "nginx", "restart"],
        ["update-rc.d", "nginx", "defaults"],
    ]

    systemd = FakeConnection()
    ShellHost(connection=systemd, service_manager="systemd").set_service_running("nginx", True)
    assert systemd.calls[0][0] == ["systemctl", "start", "nginx"]


def test_sysv_enabled_check_passes_service_name_as_argument():
    conn = FakeConnection({"sh": CommandResult(argv=(), returncode=2)})
    name = "nginx; touch /tmp/marker"

    status = ShellHost(connection=conn).service_status(name)

    assert status.running
    assert not status.enabled
    sh_argv = conn.calls[1][0]
    assert sh_argv[:2] == ["sh", "-c"]
    assert name not in sh_argv[2]
    assert sh_argv[-1] == name


def test_docker_exec_connection_wraps_argv(monkeypatch):
    seen: dict[str, object] = {}

    def fake_run(argv, **kwargs):
        seen["argv"] = argv
        seen["input"] = kwargs.get("input")
        return subprocess.CompletedProcess(argv, 0, stdout="ok", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = DockerExecConnection(target="web01").run(["cat", "/etc/hostname"], stdin="x")

    assert seen["argv"] == ["docker", "exec", "-i", "web01", "cat", "/etc/hostname"]
    assert seen["input"] == "x"
    assert result.ok
    assert result.stdout == "ok"


def test_docker_exec_connection_timeout_is_execution_failed(monkeypatch):
    def fake_run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ExecutionFailed, match="timed out"):
        DockerExecConnection(target="web01", timeout_seconds=1).run(["true"])


def test_docker_factory_rejects_other_connection_kinds():
    factory = DockerHostFactory()
    assert isinstance(factory.for_node(Node(name="web01", groups=(), connection=ConnectionSpec())), ShellHost)

    with pytest.raises(ExecutionFailed):
        factory.for_node(make_node("sim1"))
    assert make_node("sim1").connection.kind == ConnectionKind.memory
