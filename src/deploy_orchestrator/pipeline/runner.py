"""
Pipeline composition.

Purpose
Wire a PipelineDriver from a PipelineConfig.

This is the composition layer of the system. The driver and the gates stay
free of environment details, this module decides which scanner, which host
factory and which reporters a run uses.
"""

from __future__ import annotations

from deploy_orchestrator.convergence.engine import ConvergenceEngine
from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.definitions.directory import DirectoryDefinitionSource
from deploy_orchestrator.execution.base import HostFactory
from deploy_orchestrator.execution.docker import DockerHostFactory
from deploy_orchestrator.execution.mock import InMemoryHostFactory
from deploy_orchestrator.gates.policy import PolicyGate
from deploy_orchestrator.gates.quality import QualityGate
from deploy_orchestrator.gates.scanners import Scanner, StaticFindingsScanner, TrivyConfigScanner
from deploy_orchestrator.inventory.plugins.static import StaticInventoryPlugin
from deploy_orchestrator.pipeline.config import PipelineConfig, ScannerKind
from deploy_orchestrator.pipeline.driver import PipelineDriver
from deploy_orchestrator.pipeline.report import JsonLinesReporter, LogReporter, RunReporter
from deploy_orchestrator.verify.probes import Probe


def build_scanner(config: PipelineConfig) -> Scanner | None:
    scan = config.scan
    if scan.scanner == ScannerKind.none:
        return None
    if scan.scanner == ScannerKind.report:
        if scan.report_path is None:
            raise ConfigError("scan.report is required when scan.scanner is report")
        return StaticFindingsScanner(path=scan.report_path)
    return TrivyConfigScanner(trivy_bin=scan.trivy_bin, timeout_seconds=scan.timeout_seconds)


def build_host_factory(config: PipelineConfig, simulate: bool = False) -> HostFactory:
    """
    Simulate mode converges in memory hosts instead of containers.

    Useful to rehearse a run on a machine without the lab containers.
    """
    if simulate:
        return InMemoryHostFactory()
    return DockerHostFactory(
        docker_bin=config.connection.docker_bin,
        timeout_seconds=config.connection.command_timeout_seconds,
        service_manager=config.connection.service_manager,
    )


def build_driver(
    config: PipelineConfig,
    simulate: bool = False,
    host_factory: HostFactory | None = None,
    probe: Probe | None = None,
) -> PipelineDriver:
    """Build a PipelineDriver. host_factory and probe override the defaults."""

    reporters: list[RunReporter] = [LogReporter()]
    if config.report_path is not None:
        reporters.append(JsonLinesReporter(path=config.report_path))

    engine = ConvergenceEngine(
        host_factory=host_factory or build_host_factory(config, simulate),
        config=config.convergence,
    )

    return PipelineDriver(
        inventory_plugin=StaticInventoryPlugin(path=config.inventory_path),
        definition_source=DirectoryDefinitionSource(root=config.definitions_root, playbook=config.playbook),
        quality_gate=QualityGate(config=config.quality),
        policy_gate=PolicyGate(config=config.policy),
        engine=engine,
        scanner=build_scanner(config),
        probes=() if simulate else config.probes,
        probe=probe,
        timeouts=config.timeouts,
        reporters=reporters,
    )
