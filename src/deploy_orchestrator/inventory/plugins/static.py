"""
Static inventory plugin.

Reads a local json or yaml file that declares groups and nodes.
The file suffix picks the parser, .json for json, anything else for yaml.

Schema example
{
  "vars": {"http_port": 80},
  "groups": [
    {"name": "webservers", "vars": {"greeting": "hello"}},
    {"name": "loadbalancer"}
  ],
  "nodes": [
    {"name": "web01", "groups": ["webservers"], "connection": {"kind": "docker", "target": "web01"}},
    {"name": "lb01", "groups": ["loadbalancer"], "vars": {"listen_port": 8080}}
  ]
}

A node without a connection block is reached through docker using its own name.
Groups must be declared before nodes may reference them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import ConnectionKind, ConnectionSpec, Group, Node
from deploy_orchestrator.inventory.plugins.base import InventoryPlugin
from deploy_orchestrator.inventory.store import InventoryStore


def _parse_connection(name: str, obj: Any) -> ConnectionSpec:
    """Convert a connection dict into ConnectionSpec."""
    if obj is None:
        return ConnectionSpec(kind=ConnectionKind.docker, target=name)
    if not isinstance(obj, dict):
        raise ConfigError(f"node {name} connection must be a mapping")

    try:
        kind = ConnectionKind(str(obj.get("kind", "docker")))
    except ValueError as exc:
        raise ConfigError(f"node {name} has unknown connection kind: {obj.get('kind')}") from exc

    return ConnectionSpec(kind=kind, target=str(obj.get("target", name)))


def _group_from_dict(obj: Any) -> Group:
    if isinstance(obj, str):
        return Group(name=obj)
    if not isinstance(obj, dict) or not obj.get("name"):
        raise ConfigError(f"group entry must be a name or a mapping with name: {obj!r}")

    variables = obj.get("vars", {}) or {}
    if not isinstance(variables, dict):
        raise ConfigError(f"group {obj['name']} vars must be a mapping")
    return Group(name=str(obj["name"]), variables=dict(variables))


def _node_from_dict(obj: Any, store: InventoryStore) -> Node:
    """Convert a node dict into a Node, checking group references."""
    if not isinstance(obj, dict) or not obj.get("name"):
        raise ConfigError(f"node entry must be a mapping with name: {obj!r}")

    name = str(obj["name"])
    raw_groups = obj.get("groups", []) or []
    if not isinstance(raw_groups, list):
        raise ConfigError(f"node {name} groups must be a list")

    groups = tuple(str(g) for g in raw_groups)
    undeclared = [g for g in groups if store.group(g) is None]
    if undeclared:
        raise ConfigError(f"node {name} references undeclared groups: {', '.join(undeclared)}")

    variables = obj.get("vars", {}) or {}
    if not isinstance(variables, dict):
        raise ConfigError(f"node {name} vars must be a mapping")

    return Node(
        name=name,
        groups=groups,
        connection=_parse_connection(name, obj.get("connection")),
        variables=dict(variables),
    )


def inventory_from_dict(data: Any) -> InventoryStore:
    """Build an InventoryStore from an already parsed document."""
    if not isinstance(data, dict):
        raise ConfigError("inventory document must be a mapping")

    global_vars = data.get("vars", {}) or {}
    if not isinstance(global_vars, dict):
        raise ConfigError("inventory vars must be a mapping")

    store = InventoryStore(variables=dict(global_vars))

    for raw in data.get("groups", []) or []:
        store.add_group(_group_from_dict(raw))

    for raw in data.get("nodes", []) or []:
        store.add_node(_node_from_dict(raw, store))

    return store


@dataclass(frozen=True)
class StaticInventoryPlugin(InventoryPlugin):
    """
    Load inventory from a local json or yaml file.

    path points to a file that matches the schema described in the module docstring.
    """

    path: Path

    def load(self) -> InventoryStore:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"cannot read inventory {self.path}: {exc}") from exc

        try:
            if self.path.suffix == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot parse inventory {self.path}: {exc}") from exc

        return inventory_from_dict(data)
