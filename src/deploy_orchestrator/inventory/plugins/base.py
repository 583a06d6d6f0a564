"""
Inventory plugin interfaces.

Goal
Provide pluggable inventory ingestion so the pipeline is source agnostic.

Inventory is normalized into InventoryStore and Node objects.

We keep the interface narrow so it is easy to mock in tests.
"""

from __future__ import annotations

from typing import Protocol

from deploy_orchestrator.inventory.store import InventoryStore


class InventoryPlugin(Protocol):
    """
    Inventory plugin interface.

    load returns a fully populated InventoryStore.
    """

    def load(self) -> InventoryStore:
        """Load inventory into an InventoryStore."""
