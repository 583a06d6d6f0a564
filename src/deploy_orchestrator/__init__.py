"""
deploy_orchestrator

This package is a gated configuration deployment driver.

We keep modules small and well separated:
core contains shared data structures and errors
inventory contains inventory plugins, variable merging and role binding
definitions contains the loader for plays, roles, handlers and templates
execution contains host interfaces, docker exec and in memory hosts
convergence contains resource assertions, the handler queue and the engine
gates contains lint, dry run, scanner adapters and the policy gate
verify contains post deployment probes
pipeline contains configuration, the stage driver and run reporters
"""

__version__ = "0.1.0"
