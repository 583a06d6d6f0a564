"""
In memory hosts.

These hosts are used for tests and the simulate mode of the command line.
Each host behaves like a tiny Debian node: installed packages, files with a
mode, and services with running and enabled flags.

Features
- Records every mutating call in order, so tests can count applies and restarts
- Can inject failures for chosen operations
- Commands can declare which paths they create, to exercise creates guards
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from deploy_orchestrator.core.errors import ExecutionFailed
from deploy_orchestrator.core.types import Node
from deploy_orchestrator.execution.base import CommandResult, Host, HostFactory, ServiceStatus


@dataclass
class InMemoryHost(Host):
    """
    Simulated host.

    fail_on
    Operation keys that raise ExecutionFailed, such as "install_package:nginx"
    or "write_file:/etc/nginx/sites-available/default".

    command_creates
    Maps a command string to the paths it creates when run.

    mutations
    Ordered log of mutating operation keys.
    """

    name: str = "node"
    packages: set[str] = field(default_factory=set)
    files: dict[str, str] = field(default_factory=dict)
    modes: dict[str, str] = field(default_factory=dict)
    services: dict[str, ServiceStatus] = field(default_factory=dict)
    fail_on: set[str] = field(default_factory=set)
    command_creates: dict[str, list[str]] = field(default_factory=dict)
    mutations: list[str] = field(default_factory=list)

    def _mutate(self, key: str) -> None:
        if key in self.fail_on:
            raise ExecutionFailed(f"injected failure on {self.name}: {key}", returncode=1)
        self.mutations.append(key)

    def count(self, key: str) -> int:
        """Return how many times a mutating operation ran."""
        return self.mutations.count(key)

    def package_installed(self, name: str) -> bool:
        return name in self.packages

    def install_package(self, name: str, update_cache: bool = False) -> None:
        if update_cache:
            self._mutate("update_cache")
        self._mutate(f"install_package:{name}")
        self.packages.add(name)

    def remove_package(self, name: str) -> None:
        self._mutate(f"remove_package:{name}")
        self.packages.discard(name)

    def read_file(self, path: str) -> str | None:
        return self.files.get(path)

    def write_file(self, path: str, content: str, mode: str | None = None) -> None:
        self._mutate(f"write_file:{path}")
        self.files[path] = content
        self.modes[path] = mode if mode is not None else self.modes.get(path, "644")

    def file_mode(self, path: str) -> str | None:
        if path not in self.files:
            return None
        return self.modes.get(path, "644")

    def path_exists(self, path: str) -> bool:
        return path in self.files

    def service_status(self, name: str) -> ServiceStatus:
        return self.services.get(name, ServiceStatus(running=False, enabled=False))

    def set_service_running(self, name: str, running: bool) -> None:
        self._mutate(f"{'start' if running else 'stop'}_service:{name}")
        current = self.service_status(name)
        self.services[name] = ServiceStatus(running=running, enabled=current.enabled)

    def set_service_enabled(self, name: str, enabled: bool) -> None:
        self._mutate(f"{'enable' if enabled else 'disable'}_service:{name}")
        current = self.service_status(name)
        self.services[name] = ServiceStatus(running=current.running, enabled=enabled)

    def restart_service(self, name: str) -> None:
        self._mutate(f"restart_service:{name}")
        current = self.service_status(name)
        self.services[name] = ServiceStatus(running=True, enabled=current.enabled)

    def run_command(self, cmd: str) -> CommandResult:
        self._mutate(f"run_command:{cmd}")
        for path in self.command_creates.get(cmd, []):
            self.files.setdefault(path, "")
        return CommandResult(argv=("sh", "-c", cmd), returncode=0)


@dataclass
class InMemoryHostFactory(HostFactory):
    """
    Hands out one InMemoryHost per node name and keeps it across runs.

    fail_on
    Node name to operation keys that should fail on that node.
    """

    fail_on: dict[str, set[str]] = field(default_factory=dict)
    hosts: dict[str, InMemoryHost] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def for_node(self, node: Node) -> Host:
        return self.host(node.name)

    def host(self, name: str) -> InMemoryHost:
        with self._lock:
            if name not in self.hosts:
                self.hosts[name] = InMemoryHost(name=name, fail_on=set(self.fail_on.get(name, set())))
            return self.hosts[name]
