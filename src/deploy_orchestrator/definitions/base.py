"""
Definition source interfaces.

Goal
Provide pluggable loading of the declarative definitions a pipeline runs on.

Definition sources return a DefinitionSet. Loading never touches a node.
"""

from __future__ import annotations

from typing import Protocol

from deploy_orchestrator.core.types import DefinitionSet


class DefinitionSource(Protocol):
    """
    Definition source interface.

    load returns plays, roles and scan artifacts.
    Malformed structure raises ConfigError.
    """

    def load(self) -> DefinitionSet:
        """Load definitions."""
