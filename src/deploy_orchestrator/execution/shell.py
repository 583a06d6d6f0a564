"""
Shell host.

Implements Host on top of any NodeConnection by translating typed operations
into commands that exist on a Debian style node.

packages  dpkg-query, apt-get
files     cat, stat, chmod, test
services  service and update-rc.d for sysv, systemctl for systemd

Reads never raise on a non zero exit code, they report absence instead.
Mutations raise ExecutionFailed with the command stderr.
"""

from __future__ import annotations

from dataclasses import dataclass

from deploy_orchestrator.core.errors import ExecutionFailed
from deploy_orchestrator.execution.base import CommandResult, Host, NodeConnection, ServiceStatus

_APT_ENV = ["env", "DEBIAN_FRONTEND=noninteractive"]

# Write stdin to $1, creating the parent directory first.
_WRITE_SCRIPT = 'mkdir -p "$(dirname "$1")" && cat > "$1"'
_SYSV_ENABLED_SCRIPT = 'ls /etc/rc[2-5].d/S??"$1"'


@dataclass
class ShellHost(Host):
    """
    Host backed by a command channel.

    service_manager is sysv or systemd.
    """

    connection: NodeConnection
    service_manager: str = "sysv"

    def _check(self, argv: list[str], stdin: str | None = None) -> CommandResult:
        result = self.connection.run(argv, stdin=stdin)
        if not result.ok:
            raise ExecutionFailed(
                f"command failed with exit code {result.returncode}: {' '.join(argv)}",
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result

    def package_installed(self, name: str) -> bool:
        result = self.connection.run(["dpkg-query", "-W", "-f=${Status}", name])
        return result.ok and "install ok installed" in result.stdout

    def install_package(self, name: str, update_cache: bool = False) -> None:
        if update_cache:
            self._check(_APT_ENV + ["apt-get", "update"])
        self._check(_APT_ENV + ["apt-get", "install", "-y", name])

    def remove_package(self, name: str) -> None:
        self._check(_APT_ENV + ["apt-get", "remove", "-y", name])

    def read_file(self, path: str) -> str | None:
        result = self.connection.run(["cat", path])
        if not result.ok:
            return None
        return result.stdout

    def write_file(self, path: str, content: str, mode: str | None = None) -> None:
        self._check(["sh", "-c", _WRITE_SCRIPT, "sh", path], stdin=content)
        if mode is not None:
            self._check(["chmod", mode, path])

    def file_mode(self, path: str) -> str | None:
        result = self.connection.run(["stat", "-c", "%a", path])
        if not result.ok:
            return None
        return result.stdout.strip()

    def path_exists(self, path: str) -> bool:
        return self.connection.run(["test", "-e", path]).ok

    def service_status(self, name: str) -> ServiceStatus:
        if self.service_manager == "systemd":
            running = self.connection.run(["systemctl", "is-active", "--quiet", name]).ok
            enabled = self.connection.run(["systemctl", "is-enabled", "--quiet", name]).ok
            return ServiceStatus(running=running, enabled=enabled)

        running = self.connection.run(["service", name, "status"]).ok
        enabled = self.connection.run(["sh", "-c", _SYSV_ENABLED_SCRIPT, "sh", name]).ok
        return ServiceStatus(running=running, enabled=enabled)

    def set_service_running(self, name: str, running: bool) -> None:
        action = "start" if running else "stop"
        if self.service_manager == "systemd":
            self._check(["systemctl", action, name])
        else:
            self._check(["service", name, action])

    def set_service_enabled(self, name: str, enabled: bool) -> None:
        if self.service_manager == "systemd":
            self._check(["systemctl", "enable" if enabled else "disable", name])
        elif enabled:
            self._check(["update-rc.d", name, "defaults"])
        else:
            self._check(["update-rc.d", name, "disable"])

    def restart_service(self, name: str) -> None:
        if self.service_manager == "systemd":
            self._check(["systemctl", "restart", name])
        else:
            self._check(["service", name, "restart"])

    def run_command(self, cmd: str) -> CommandResult:
        return self._check(["sh", "-c", cmd])
