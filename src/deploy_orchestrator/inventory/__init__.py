"""
Inventory package.

Plugins load nodes and groups into an InventoryStore.
The resolver merges variables and binds roles into node plans.
"""

from deploy_orchestrator.inventory.resolver import NodePlan, ResolvedNode, bind_roles, resolve_inventory
from deploy_orchestrator.inventory.store import InventoryStore

__all__ = ["InventoryStore", "NodePlan", "ResolvedNode", "bind_roles", "resolve_inventory"]
