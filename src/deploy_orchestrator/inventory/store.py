"""
Inventory store.

We keep a simple in memory store as the normalized view.
Inventory plugins fill it, the resolver merges variables from it.

Group declaration order is recorded because it decides variable precedence
when a node belongs to several groups defining the same variable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import Group, Node


@dataclass
class InventoryStore:
    """
    Node and group registry keyed by name.

    variables
    Global scope variables visible to every node.
    """

    variables: dict[str, Any] = field(default_factory=dict)
    _nodes: dict[str, Node] = field(default_factory=dict)
    _groups: dict[str, Group] = field(default_factory=dict)

    def add_node(self, node: Node) -> None:
        """Add a node. Node names must be unique."""
        if node.name in self._nodes:
            raise ConfigError(f"duplicate node name in inventory: {node.name}")
        self._nodes[node.name] = node

    def add_group(self, group: Group) -> None:
        """Declare a group. Declaration order is preserved."""
        if group.name in self._groups:
            raise ConfigError(f"group declared twice in inventory: {group.name}")
        self._groups[group.name] = group

    def get(self, name: str) -> Node | None:
        """Return node if present."""
        return self._nodes.get(name)

    def group(self, name: str) -> Group | None:
        return self._groups.get(name)

    def groups(self) -> list[Group]:
        """Return groups in declaration order."""
        return list(self._groups.values())

    def all(self) -> list[Node]:
        """Return all nodes in insertion order."""
        return list(self._nodes.values())

    def names(self) -> list[str]:
        """Return sorted node names. Useful for deterministic outputs."""
        return sorted(self._nodes.keys())

    def members(self, group: str) -> list[Node]:
        """Return nodes belonging to a group, in insertion order."""
        return [n for n in self._nodes.values() if group in n.groups]

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)
