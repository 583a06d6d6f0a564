"""
Directory definition source.

Reads an Ansible style tree rooted at a directory.

Layout
site.yml                        list of plays: name, hosts, roles
roles/<role>/tasks/main.yml     ordered list of tasks
roles/<role>/handlers/main.yml  list of handlers
roles/<role>/defaults/main.yml  mapping of default variables
roles/<role>/meta/main.yml      mapping with an optional dependencies list
roles/<role>/templates/*        template files, addressed by relative path

Every role directory is loaded, whether or not a play uses it, so lint can
see unused roles too.

Task example
- name: Template the web server index page
  ansible.builtin.template:
    src: index.html.j2
    dest: /var/www/html/index.html
  when: "'webservers' in group_names"
  notify: Restart Nginx

when supports group membership tests only:
'x' in group_names, 'x' not in group_names, clauses joined with or,
and a list of clauses which must all hold.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import (
    AssertionKind,
    AssertionSpec,
    DefinitionSet,
    GroupPredicate,
    Play,
    RoleDefinition,
)
from deploy_orchestrator.definitions.base import DefinitionSource

logger = logging.getLogger(__name__)

MODULE_ALIASES: dict[str, AssertionKind] = {
    "apt": AssertionKind.package,
    "package": AssertionKind.package,
    "ansible.builtin.apt": AssertionKind.package,
    "ansible.builtin.package": AssertionKind.package,
    "template": AssertionKind.template,
    "ansible.builtin.template": AssertionKind.template,
    "copy": AssertionKind.copy,
    "ansible.builtin.copy": AssertionKind.copy,
    "service": AssertionKind.service,
    "systemd": AssertionKind.service,
    "ansible.builtin.service": AssertionKind.service,
    "ansible.builtin.systemd": AssertionKind.service,
    "command": AssertionKind.command,
    "shell": AssertionKind.command,
    "raw": AssertionKind.command,
    "ansible.builtin.command": AssertionKind.command,
    "ansible.builtin.shell": AssertionKind.command,
    "ansible.builtin.raw": AssertionKind.command,
}

# Task keywords that are not modules and carry no meaning for convergence.
TASK_KEYWORDS = frozenset({"name", "when", "notify", "args", "tags", "become", "register"})

ARTIFACT_PATTERNS = ("Dockerfile*", "*.dockerfile", "Jenkinsfile", "*.yml", "*.yaml")

_CLAUSE = re.compile(r"""^\s*['"]([^'"]+)['"]\s+(not\s+in|in)\s+group_names\s*$""")


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc


def _parse_clause(raw: str, location: str) -> tuple[str, bool]:
    """Return (group, negated) for one membership clause."""
    m = _CLAUSE.match(raw)
    if m is None:
        raise ConfigError(f"{location}: unsupported when expression {raw!r}")
    return m.group(1), m.group(2) != "in"


def parse_when(raw: Any, location: str) -> GroupPredicate:
    """
    Convert a when value into a GroupPredicate.

    A single string may join positive clauses with or.
    A list means every clause must hold.
    """

    if raw is None:
        return GroupPredicate()

    if isinstance(raw, str):
        parts = [p for p in re.split(r"\s+or\s+", raw.strip()) if p]
        if len(parts) > 1:
            any_of: list[str] = []
            for part in parts:
                group, negated = _parse_clause(part, location)
                if negated:
                    raise ConfigError(f"{location}: negated clause cannot be joined with or")
                any_of.append(group)
            return GroupPredicate(any_of=tuple(any_of))
        raw = [raw]

    if not isinstance(raw, list):
        raise ConfigError(f"{location}: when must be a string or a list")

    all_of: list[str] = []
    none_of: list[str] = []
    for item in raw:
        group, negated = _parse_clause(str(item), location)
        (none_of if negated else all_of).append(group)
    return GroupPredicate(all_of=tuple(all_of), none_of=tuple(none_of))


def _module_params(module: str, value: Any, location: str) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        if MODULE_ALIASES.get(module) == AssertionKind.command:
            return {"cmd": value}
        # key=value shorthand, for example "name=nginx state=present"
        params: dict[str, Any] = {}
        for token in value.split():
            if "=" not in token:
                raise ConfigError(f"{location}: cannot parse {module} arguments {value!r}")
            key, _, val = token.partition("=")
            params[key] = val
        return params
    raise ConfigError(f"{location}: {module} arguments must be a mapping or a string")


def parse_task(role: str, raw: Any, location: str) -> AssertionSpec:
    """Convert one task or handler mapping into an AssertionSpec."""
    if not isinstance(raw, dict):
        raise ConfigError(f"{location}: task must be a mapping")

    candidates = [k for k in raw if k not in TASK_KEYWORDS]
    if not candidates:
        raise ConfigError(f"{location}: task has no module")

    known = [k for k in candidates if k in MODULE_ALIASES]
    module = known[0] if known else candidates[0]
    extra = tuple(str(k) for k in candidates if k != module)

    params = _module_params(module, raw.get(module), location)
    args = raw.get("args")
    if isinstance(args, dict):
        params.update(args)

    notify_raw = raw.get("notify")
    if notify_raw is None:
        notify: tuple[str, ...] = ()
    elif isinstance(notify_raw, str):
        notify = (notify_raw,)
    elif isinstance(notify_raw, list):
        notify = tuple(str(n) for n in notify_raw)
    else:
        raise ConfigError(f"{location}: notify must be a string or a list")

    return AssertionSpec(
        role=role,
        name=str(raw.get("name", "") or ""),
        module=str(module),
        kind=MODULE_ALIASES.get(module),
        params=params,
        when=parse_when(raw.get("when"), location),
        notify=notify,
        location=location,
        extra_keys=extra,
    )


def _load_task_list(role: str, path: Path, root: Path) -> list[AssertionSpec]:
    if not path.exists():
        return []
    data = _read_yaml(path)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError(f"{path} must contain a list")

    rel = path.relative_to(root).as_posix()
    return [parse_task(role, item, f"{rel}[{idx}]") for idx, item in enumerate(data)]


def _load_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = _read_yaml(path)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return dict(data)


def load_role(role_dir: Path, root: Path) -> RoleDefinition:
    """Load one role directory."""
    name = role_dir.name

    meta = _load_mapping(role_dir / "meta" / "main.yml")
    deps_raw = meta.get("dependencies", []) or []
    if not isinstance(deps_raw, list):
        raise ConfigError(f"role {name} dependencies must be a list")
    dependencies: list[str] = []
    for dep in deps_raw:
        if isinstance(dep, dict):
            dep = dep.get("role", "")
        dependencies.append(str(dep))

    templates: dict[str, str] = {}
    templates_dir = role_dir / "templates"
    if templates_dir.is_dir():
        for p in sorted(templates_dir.rglob("*")):
            if p.is_file():
                templates[p.relative_to(templates_dir).as_posix()] = p.read_text(encoding="utf-8")

    return RoleDefinition(
        name=name,
        tasks=_load_task_list(name, role_dir / "tasks" / "main.yml", root),
        handlers=_load_task_list(name, role_dir / "handlers" / "main.yml", root),
        defaults=_load_mapping(role_dir / "defaults" / "main.yml"),
        templates=templates,
        dependencies=dependencies,
        path=role_dir,
    )


def parse_plays(data: Any, source: str) -> list[Play]:
    """Convert a playbook document into plays."""
    if not isinstance(data, list):
        raise ConfigError(f"{source} must contain a list of plays")

    plays: list[Play] = []
    for idx, raw in enumerate(data):
        if not isinstance(raw, dict):
            raise ConfigError(f"{source}[{idx}] play must be a mapping")

        hosts = raw.get("hosts")
        if not isinstance(hosts, str) or not hosts:
            raise ConfigError(f"{source}[{idx}] play needs a hosts string")

        roles_raw = raw.get("roles", []) or []
        if not isinstance(roles_raw, list):
            raise ConfigError(f"{source}[{idx}] roles must be a list")

        roles: list[str] = []
        for r in roles_raw:
            if isinstance(r, dict):
                r = r.get("role", "")
            roles.append(str(r))

        plays.append(
            Play(
                name=str(raw.get("name", f"play {idx}")),
                hosts=hosts,
                roles=tuple(roles),
            )
        )
    return plays


def collect_artifacts(root: Path) -> list[Path]:
    """List files handed to the policy scanner, sorted and deduplicated."""
    found: set[Path] = set()
    for pattern in ARTIFACT_PATTERNS:
        found.update(p for p in root.rglob(pattern) if p.is_file())
    return sorted(found)


@dataclass(frozen=True)
class DirectoryDefinitionSource(DefinitionSource):
    """
    Load definitions from a directory tree.

    root is the tree root.
    playbook is the playbook file name relative to root.
    """

    root: Path
    playbook: str = "site.yml"

    def load(self) -> DefinitionSet:
        playbook_path = self.root / self.playbook
        if not playbook_path.is_file():
            raise ConfigError(f"playbook not found: {playbook_path}")

        plays = parse_plays(_read_yaml(playbook_path), self.playbook)

        roles: dict[str, RoleDefinition] = {}
        roles_dir = self.root / "roles"
        if roles_dir.is_dir():
            for role_dir in sorted(p for p in roles_dir.iterdir() if p.is_dir()):
                role = load_role(role_dir, self.root)
                roles[role.name] = role

        logger.info(
            "loaded %d plays and %d roles from %s",
            len(plays),
            len(roles),
            self.root,
        )

        return DefinitionSet(
            root=self.root,
            plays=plays,
            roles=roles,
            artifacts=collect_artifacts(self.root),
        )
