"""
Docker exec connection.

This connection runs commands inside an already running container through the
docker command line client. Containers are never created, started or removed
here, the runtime owns their lifecycle.

Behavior
Each call spawns docker exec -i <target> <argv>.
stdin is forwarded when given, which is how file content is written.
A command that exceeds timeout_seconds raises ExecutionFailed.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

from deploy_orchestrator.core.errors import ExecutionFailed
from deploy_orchestrator.core.types import ConnectionKind, Node
from deploy_orchestrator.execution.base import CommandResult, Host, HostFactory, NodeConnection
from deploy_orchestrator.execution.shell import ShellHost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DockerExecConnection(NodeConnection):
    """
    Command channel into one container.

    target is the container name or id.
    docker_bin allows a different client binary, for example podman.
    """

    target: str
    docker_bin: str = "docker"
    timeout_seconds: float = 300.0

    def run(self, argv: list[str], stdin: str | None = None) -> CommandResult:
        full = [self.docker_bin, "exec", "-i", self.target, *argv]
        logger.debug("exec on %s: %s", self.target, argv)

        try:
            proc = subprocess.run(
                full,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutionFailed(
                f"command on {self.target} timed out after {self.timeout_seconds} seconds: {argv}"
            ) from exc
        except OSError as exc:
            raise ExecutionFailed(f"cannot run {self.docker_bin}: {exc}") from exc

        return CommandResult(
            argv=tuple(argv),
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )


@dataclass(frozen=True)
class DockerHostFactory(HostFactory):
    """
    Build shell hosts over docker exec.

    service_manager is passed to ShellHost, sysv suits slim containers
    without an init system.
    """

    docker_bin: str = "docker"
    timeout_seconds: float = 300.0
    service_manager: str = "sysv"

    def for_node(self, node: Node) -> Host:
        if node.connection.kind != ConnectionKind.docker:
            raise ExecutionFailed(
                f"node {node.name} uses connection kind {node.connection.kind}, expected docker"
            )
        conn = DockerExecConnection(
            target=node.connection.target or node.name,
            docker_bin=self.docker_bin,
            timeout_seconds=self.timeout_seconds,
        )
        return ShellHost(connection=conn, service_manager=self.service_manager)
