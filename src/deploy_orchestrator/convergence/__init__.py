"""
Convergence package.

This makes the convergence folder an explicit package so both Python and mypy
resolve modules consistently.
"""

from deploy_orchestrator.convergence.engine import ConvergenceConfig, ConvergenceEngine

__all__ = ["ConvergenceConfig", "ConvergenceEngine"]
