"""
Execution interfaces.

Goal
Define stable interfaces for reading and changing node state without binding
the convergence engine to a specific transport.

Design notes
There are two layers.

NodeConnection is the raw command execution channel a container runtime
exposes, for example docker exec.

Host is what resource assertions talk to: packages, files, services and
guarded commands. A Host built on a NodeConnection translates those calls into
commands. A simulated Host keeps state in memory.

A Host is owned by exactly one convergence worker while a node is processed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from deploy_orchestrator.core.types import Node


@dataclass(frozen=True)
class CommandResult:
    """Result of one command on a node."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class ServiceStatus:
    running: bool
    enabled: bool


class NodeConnection(Protocol):
    """
    Command execution channel to one node.

    run never raises for a non zero exit code, callers inspect the result.
    Transport failures such as a missing runtime raise ExecutionFailed.
    """

    def run(self, argv: list[str], stdin: str | None = None) -> CommandResult:
        """Run a command on the node."""


class Host(Protocol):
    """
    Typed node operations used by resource assertions.

    Mutating calls raise ExecutionFailed when the node rejects them.
    """

    def package_installed(self, name: str) -> bool:
        """Return True when the package is installed."""

    def install_package(self, name: str, update_cache: bool = False) -> None:
        """Install a package."""

    def remove_package(self, name: str) -> None:
        """Remove a package."""

    def read_file(self, path: str) -> str | None:
        """Return file content, or None when the file does not exist."""

    def write_file(self, path: str, content: str, mode: str | None = None) -> None:
        """Write file content, creating parent directories."""

    def file_mode(self, path: str) -> str | None:
        """Return the octal permission string such as 644, or None when missing."""

    def path_exists(self, path: str) -> bool:
        """Return True when the path exists."""

    def service_status(self, name: str) -> ServiceStatus:
        """Return running and enabled state of a service."""

    def set_service_running(self, name: str, running: bool) -> None:
        """Start or stop a service."""

    def set_service_enabled(self, name: str, enabled: bool) -> None:
        """Enable or disable a service at boot."""

    def restart_service(self, name: str) -> None:
        """Restart a service."""

    def run_command(self, cmd: str) -> CommandResult:
        """Run a shell command."""


class HostFactory(Protocol):
    """
    Create a Host for a node.

    This decouples the engine from transport details such as the container
    runtime binary and command timeouts.
    """

    def for_node(self, node: Node) -> Host:
        """Return a Host bound to the node connection descriptor."""
