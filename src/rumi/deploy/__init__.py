"""rumi deployment engine.

This package turns a deployment into provisioning steps, runs them against
a remote host and keeps the backups that make every run reversible.
"""

from rumi.deploy.backup import BackupManager
from rumi.deploy.layout import RemoteLayout
from rumi.deploy.locks import LockTable
from rumi.deploy.orchestrator import (
    DeploymentOrchestrator,
    RunReport,
    RunState,
    StepOutcome,
    StepStatus,
)
from rumi.deploy.planner import (
    build_activation_plan,
    build_plan,
    build_teardown_plan,
)
from rumi.deploy.registry import (
    DeploymentRegistry,
    JsonDeploymentRegistry,
    get_registry_path,
)

__all__ = [
    "BackupManager",
    "DeploymentOrchestrator",
    "DeploymentRegistry",
    "JsonDeploymentRegistry",
    "LockTable",
    "RemoteLayout",
    "RunReport",
    "RunState",
    "StepOutcome",
    "StepStatus",
    "build_activation_plan",
    "build_plan",
    "build_teardown_plan",
    "get_registry_path",
]
