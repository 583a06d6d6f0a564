"""
Resource assertions.

Purpose
A resource assertion declares the desired end state of one managed resource.
It has a check, which reads current state and answers "already converged",
and an apply, which changes the node only when the check said no.

Idempotence
Applying an assertion to a node that is already converged is a no op, because
the engine always checks first. After an apply the engine checks again, and
a convergent assertion that still reports drift is an error.

Two assertion shapes are not convergent and are never re-checked:
service with state restarted, which is meant for handlers,
and command without a creates or removes guard, which lint rejects.

String parameters may contain {{ name }} placeholders, rendered with the node
variables before use.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from deploy_orchestrator.convergence.templates import TemplateError, TemplateRenderer
from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import AssertionKind, AssertionSpec
from deploy_orchestrator.execution.base import Host

PACKAGE_STATES = ("present", "absent", "latest")
SERVICE_STATES = ("started", "stopped", "restarted")


@dataclass(frozen=True)
class ApplyContext:
    """
    Per node rendering context.

    templates maps (role, template name) to template text.
    """

    node: str
    variables: dict[str, Any]
    templates: dict[tuple[str, str], str]
    renderer: TemplateRenderer

    def render(self, text: str) -> str:
        return self.renderer.render(text, self.variables)

    def template_text(self, role: str, name: str) -> str:
        try:
            return self.templates[(role, name)]
        except KeyError:
            raise TemplateError(f"template {name!r} not found in role {role}") from None


class ResourceAssertion(Protocol):
    """Interface every assertion kind implements."""

    @property
    def convergent(self) -> bool:
        """False when check can never report converged after apply."""

    def check(self, host: Host, ctx: ApplyContext) -> bool:
        """Return True when the node already matches desired state."""

    def apply(self, host: Host, ctx: ApplyContext) -> None:
        """Change the node toward desired state."""


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"yes", "true", "1", "on"}


def _names(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


@dataclass(frozen=True)
class PackageResource:
    """
    Package present or absent.

    latest is treated as present. Upgrades are not tracked.
    """

    names: tuple[str, ...]
    state: str = "present"
    update_cache: bool = False

    convergent = True

    def _rendered(self, ctx: ApplyContext) -> list[str]:
        return [ctx.render(n) for n in self.names]

    def check(self, host: Host, ctx: ApplyContext) -> bool:
        installed = [host.package_installed(n) for n in self._rendered(ctx)]
        if self.state == "absent":
            return not any(installed)
        return all(installed)

    def apply(self, host: Host, ctx: ApplyContext) -> None:
        for name in self._rendered(ctx):
            present = host.package_installed(name)
            if self.state == "absent" and present:
                host.remove_package(name)
            elif self.state != "absent" and not present:
                host.install_package(name, update_cache=self.update_cache)


@dataclass(frozen=True)
class FileContentResource:
    """
    File with exact content and optional mode.

    Either template names a role template, or content is given inline.
    """

    role: str
    dest: str
    template: str | None = None
    content: str | None = None
    mode: str | None = None

    convergent = True

    def desired(self, ctx: ApplyContext) -> str:
        if self.template is not None:
            return ctx.render(ctx.template_text(self.role, self.template))
        return ctx.render(self.content or "")

    def check(self, host: Host, ctx: ApplyContext) -> bool:
        dest = ctx.render(self.dest)
        if host.read_file(dest) != self.desired(ctx):
            return False
        if self.mode is not None and host.file_mode(dest) != self.mode:
            return False
        return True

    def apply(self, host: Host, ctx: ApplyContext) -> None:
        host.write_file(ctx.render(self.dest), self.desired(ctx), mode=self.mode)


@dataclass(frozen=True)
class ServiceResource:
    """
    Service state.

    enabled None leaves boot state alone.
    """

    name: str
    state: str | None = "started"
    enabled: bool | None = None

    @property
    def convergent(self) -> bool:
        return self.state != "restarted"

    def check(self, host: Host, ctx: ApplyContext) -> bool:
        if self.state == "restarted":
            return False
        status = host.service_status(ctx.render(self.name))
        if self.state == "started" and not status.running:
            return False
        if self.state == "stopped" and status.running:
            return False
        if self.enabled is not None and status.enabled != self.enabled:
            return False
        return True

    def apply(self, host: Host, ctx: ApplyContext) -> None:
        name = ctx.render(self.name)
        if self.state == "restarted":
            host.restart_service(name)
            return

        status = host.service_status(name)
        if self.state == "started" and not status.running:
            host.set_service_running(name, True)
        elif self.state == "stopped" and status.running:
            host.set_service_running(name, False)

        if self.enabled is not None and status.enabled != self.enabled:
            host.set_service_enabled(name, self.enabled)


@dataclass(frozen=True)
class CommandResource:
    """
    Guarded command.

    creates skips the command when the path exists.
    removes skips the command when the path is missing.
    """

    cmd: str
    creates: str | None = None
    removes: str | None = None

    @property
    def convergent(self) -> bool:
        return self.creates is not None or self.removes is not None

    def check(self, host: Host, ctx: ApplyContext) -> bool:
        if self.creates is not None:
            return host.path_exists(ctx.render(self.creates))
        if self.removes is not None:
            return not host.path_exists(ctx.render(self.removes))
        return False

    def apply(self, host: Host, ctx: ApplyContext) -> None:
        host.run_command(ctx.render(self.cmd))


def build_resource(spec: AssertionSpec) -> ResourceAssertion:
    """
    Build the assertion implementation for a spec.

    Raises ConfigError for unsupported modules or malformed parameters.
    """

    p = spec.params
    where = spec.identity

    if spec.kind == AssertionKind.package:
        if "name" not in p:
            raise ConfigError(f"{where}: package needs name")
        state = str(p.get("state", "present"))
        if state not in PACKAGE_STATES:
            raise ConfigError(f"{where}: unsupported package state {state}")
        return PackageResource(
            names=tuple(_names(p["name"])),
            state=state,
            update_cache=_as_bool(p.get("update_cache", False)),
        )

    if spec.kind == AssertionKind.template:
        if "src" not in p or "dest" not in p:
            raise ConfigError(f"{where}: template needs src and dest")
        mode = p.get("mode")
        return FileContentResource(
            role=spec.role,
            dest=str(p["dest"]),
            template=str(p["src"]),
            mode=_mode(mode),
        )

    if spec.kind == AssertionKind.copy:
        if "content" not in p or "dest" not in p:
            raise ConfigError(f"{where}: copy needs content and dest")
        return FileContentResource(
            role=spec.role,
            dest=str(p["dest"]),
            content=str(p["content"]),
            mode=_mode(p.get("mode")),
        )

    if spec.kind == AssertionKind.service:
        if "name" not in p:
            raise ConfigError(f"{where}: service needs name")
        state = p.get("state")
        if state is not None and str(state) not in SERVICE_STATES:
            raise ConfigError(f"{where}: unsupported service state {state}")
        enabled = p.get("enabled")
        return ServiceResource(
            name=str(p["name"]),
            state=None if state is None else str(state),
            enabled=None if enabled is None else _as_bool(enabled),
        )

    if spec.kind == AssertionKind.command:
        cmd = p.get("cmd") or p.get("_raw_params")
        if not cmd:
            raise ConfigError(f"{where}: command needs cmd")
        creates = p.get("creates")
        removes = p.get("removes")
        return CommandResource(
            cmd=str(cmd),
            creates=None if creates is None else str(creates),
            removes=None if removes is None else str(removes),
        )

    raise ConfigError(f"{where}: unsupported module {spec.module}")


def _mode(value: Any) -> str | None:
    """
    Normalize a file mode to an octal string without leading zeros.

    yaml reads 0644 as the integer 420, so integers are converted from their
    decimal value back to octal.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return format(value, "o")
    return str(value).lstrip("0") or "0"
