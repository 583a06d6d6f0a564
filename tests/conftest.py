from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
import yaml

from deploy_orchestrator.core.types import ConnectionKind, ConnectionSpec, Group, Node
from deploy_orchestrator.inventory.store import InventoryStore

LAB_DIR = Path(__file__).resolve().parents[1] / "lab"


def write_files(root: Path, files: dict[str, object]) -> Path:
    """Write a tree. Strings are written as is, anything else is dumped as yaml."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(content, sort_keys=False), encoding="utf-8")
    return root


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict[str, object]], Path]:
    def _make(files: dict[str, object]) -> Path:
        return write_files(tmp_path / "defs", files)

    return _make


def make_node(name: str, *groups: str, **variables: object) -> Node:
    return Node(
        name=name,
        groups=tuple(groups),
        connection=ConnectionSpec(kind=ConnectionKind.memory, target=name),
        variables=dict(variables),
    )


def edge_and_tier_inventory() -> InventoryStore:
    """One edge node and two tier nodes, greeting defined for the tier group."""
    store = InventoryStore(variables={"http_port": 80})
    store.add_group(Group(name="tier", variables={"greeting": "hello"}))
    store.add_group(Group(name="edge"))
    store.add_node(make_node("edge1", "edge"))
    store.add_node(make_node("tier1", "tier"))
    store.add_node(make_node("tier2", "tier"))
    return store


WEB_TREE: dict[str, object] = {
    "site.yml": [
        {"name": "web", "hosts": "all", "roles": ["web"]},
    ],
    "roles/web/tasks/main.yml": [
        {"name": "Install nginx", "apt": {"name": "nginx", "state": "present"}},
        {
            "name": "Render index",
            "template": {"src": "index.html.j2", "dest": "/var/www/html/index.html"},
            "when": "'tier' in group_names",
            "notify": "Restart nginx",
        },
        {
            "name": "Render edge config",
            "copy": {"content": "edge {{ inventory_hostname }}\n", "dest": "/etc/nginx/edge.conf"},
            "when": "'edge' in group_names",
            "notify": ["Restart nginx"],
        },
        {
            "name": "Nginx running",
            "service": {"name": "nginx", "state": "started", "enabled": True},
            "notify": "Restart nginx",
        },
    ],
    "roles/web/handlers/main.yml": [
        {"name": "Restart nginx", "service": {"name": "nginx", "state": "restarted"}},
    ],
    "roles/web/templates/index.html.j2": "<h1>{{ greeting }}</h1>\n",
}
