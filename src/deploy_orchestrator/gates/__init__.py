"""Quality and policy gates."""

from deploy_orchestrator.gates.policy import PolicyGate, PolicyGateConfig
from deploy_orchestrator.gates.quality import QualityGate, QualityGateConfig

__all__ = ["PolicyGate", "PolicyGateConfig", "QualityGate", "QualityGateConfig"]
