"""Definition sources."""

from deploy_orchestrator.definitions.directory import DirectoryDefinitionSource

__all__ = ["DirectoryDefinitionSource"]
