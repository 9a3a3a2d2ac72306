"""Plan and step types produced by the provisioning planner.

Plans are ephemeral and never persisted. A step's undo action is plain
paired data (``Step.rollback``), not a subclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from rumi.lib.errors import PlanValidationError


class StepKind(str, Enum):
    """Kinds of provisioning step."""

    TRANSFER = "transfer"
    REMOTE_EXEC = "remote_exec"
    SERVICE_RESTART = "service_restart"
    CERTIFICATE_REQUEST = "certificate_request"
    FIREWALL_RULE = "firewall_rule"
    HEALTH_CHECK = "health_check"


@dataclass(frozen=True)
class HealthProbe:
    """Bounded polling parameters for a health-check step."""

    interval: float
    attempts: int


@dataclass(frozen=True)
class Step:
    """One provisioning step.

    Attributes:
        name: Unique name within the plan
        kind: Step kind
        description: One-line human description
        command: Remote command (exec, restart, certificate, firewall and
            health-check steps)
        local_path: Local file or directory to upload (transfer steps)
        content: Inline text to write (transfer steps without local_path)
        remote_path: Transfer destination
        mode: File mode applied after a transfer
        replace: Remove the destination before a tree transfer
        guard: Remote command evaluated first; exit 0 means already done
        idempotent: Safe to run more than once
        mutates_artifact: Changes the deployment's artifact directory
        rollback: Step that undoes this one, if any
        probe: Polling bounds (health-check steps)
    """

    name: str
    kind: StepKind
    description: str = ""
    command: str | None = None
    local_path: Path | None = None
    content: str | None = None
    remote_path: str | None = None
    mode: int | None = None
    replace: bool = False
    guard: str | None = None
    idempotent: bool = True
    mutates_artifact: bool = False
    rollback: Step | None = None
    probe: HealthProbe | None = None

    def validate(self) -> None:
        """Check the step carries what its kind needs.

        Raises:
            PlanValidationError: If the step is malformed
        """
        if self.kind == StepKind.TRANSFER:
            if not self.remote_path:
                raise PlanValidationError(self.name, "transfer step needs remote_path")
            if (self.local_path is None) == (self.content is None):
                raise PlanValidationError(
                    self.name, "transfer step needs exactly one of local_path or content"
                )
        elif not self.command:
            raise PlanValidationError(self.name, f"{self.kind.value} step needs a command")
        if self.kind == StepKind.HEALTH_CHECK and self.probe is None:
            raise PlanValidationError(self.name, "health check step needs a probe")
        if not self.idempotent and not self.guard:
            raise PlanValidationError(
                self.name, "non-idempotent step needs a skip-if-exists guard"
            )
        if self.rollback is not None:
            self.rollback.validate()

    def summary(self) -> str:
        """Return a single-line rendering for plan listings."""
        if self.kind == StepKind.TRANSFER:
            source = str(self.local_path) if self.local_path else "<generated>"
            action = f"{source} -> {self.remote_path}"
        else:
            action = self.command or ""
        flags = []
        if self.guard:
            flags.append("guarded")
        if not self.idempotent:
            flags.append("once")
        if self.rollback is not None:
            flags.append(f"undo: {self.rollback.name}")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        return f"{self.name} ({self.kind.value}): {action}{suffix}"


@dataclass
class Plan:
    """Ordered steps for one orchestration run."""

    deployment: str
    purpose: str
    steps: list[Step] = field(default_factory=list)

    def validate(self) -> Plan:
        """Validate step names are unique and each step is well formed."""
        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise PlanValidationError(step.name, "duplicate step name in plan")
            seen.add(step.name)
            step.validate()
        return self

    @property
    def mutating_steps(self) -> list[Step]:
        """Steps that change the artifact directory."""
        return [s for s in self.steps if s.mutates_artifact]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def describe(self) -> list[str]:
        """Return numbered summary lines for display."""
        return [f"{i}. {step.summary()}" for i, step in enumerate(self.steps, 1)]
