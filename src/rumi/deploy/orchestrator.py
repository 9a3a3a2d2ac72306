"""Deployment orchestrator.

Each run (install, update, rollback, delete, restore) moves through::

    planning -> backing_up -> executing -> committing -> done

and on failure after remote work started through ``rolling_back`` to
``failed``. Runs that fail before touching remote state go straight to
``failed``. The registry write at commit is the only persistent change a
successful run makes besides the backup catalog.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from rumi.deploy import snippets
from rumi.deploy.artifacts import compute_artifact_digest
from rumi.deploy.backup import BackupManager
from rumi.deploy.locks import LockTable
from rumi.deploy.planner import (
    build_activation_plan,
    build_plan,
    build_teardown_plan,
)
from rumi.deploy.registry import DeploymentRegistry
from rumi.lib.errors import (
    BackupError,
    CriticalError,
    DeploymentError,
    DeploymentFailedError,
    NoPriorStateError,
    RemoteTimeoutError,
    RumiError,
    RunCancelledError,
    SessionError,
)
from rumi.lib.logging_config import get_logger
from rumi.models.backup import Backup, RetentionClass, RetentionPolicy
from rumi.models.deployment import Deployment, DeploymentKind, Revision, RevisionStatus
from rumi.models.plan import Plan, Step, StepKind
from rumi.models.settings import Settings
from rumi.remote.base import BaseSession

logger = get_logger(__name__)

SessionFactory = Callable[[Deployment], BaseSession]

SERVICE_ACTIONS: dict[str, Callable[[str], str]] = {
    "start": snippets.service_start,
    "stop": snippets.service_stop,
    "restart": snippets.service_restart,
    "status": snippets.service_status,
}
SERVICE_KINDS = frozenset({DeploymentKind.SERVER, DeploymentKind.ETHEREUM_NODE})


class RunState(str, Enum):
    """States of an orchestration run."""

    PLANNING = "planning"
    BACKING_UP = "backing_up"
    EXECUTING = "executing"
    COMMITTING = "committing"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Terminal outcome of a step."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNDONE = "undone"


@dataclass
class StepOutcome:
    """Result of one executed (or skipped) step."""

    name: str
    status: StepStatus
    attempts: int = 1
    detail: str = ""


@dataclass
class RunReport:
    """Structured record of one orchestration run.

    Attributes:
        operation: install, update, rollback, delete or restore
        deployment: Deployment name
        dry_run: True when only the planning phase ran
        states: State transitions in order
        steps: Step outcomes in execution order
        plan: Plan that was (or would have been) executed
        revision: Revision that is active after the run
        backup: Backup taken before mutating remote state
        warnings: Best-effort failures that did not fail the run
        output: Command output shown to the user (service status)
    """

    operation: str
    deployment: str
    dry_run: bool = False
    states: list[RunState] = field(default_factory=list)
    steps: list[StepOutcome] = field(default_factory=list)
    plan: Plan | None = None
    revision: str | None = None
    backup: Backup | None = None
    warnings: list[str] = field(default_factory=list)
    output: str = ""

    @property
    def state(self) -> RunState | None:
        """Current (last) state."""
        return self.states[-1] if self.states else None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE


class _StepFailure(Exception):
    """A plan step failed; carries the steps that completed before it."""

    def __init__(self, step: str, cause: BaseException, executed: list[Step]) -> None:
        self.step = step
        self.cause = cause
        self.executed = executed
        super().__init__(f"{step}: {cause}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentOrchestrator:
    """Runs plans against remote hosts with backup checkpoints.

    Args:
        registry: Deployment registry
        backups: Backup manager
        session_factory: Opens a connected session for a deployment's host
        settings: Global settings
        locks: Per-deployment lock table (a private table when omitted)
        dry_run: Only plan; never open a session
        sleep: Sleep function used between health probes
    """

    def __init__(
        self,
        registry: DeploymentRegistry,
        backups: BackupManager,
        session_factory: SessionFactory,
        settings: Settings,
        locks: LockTable | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.backups = backups
        self.session_factory = session_factory
        self.settings = settings
        self.locks = locks or LockTable(settings.execution.lock_wait_seconds)
        self.dry_run = dry_run
        self.sleep = sleep

    # ------------------------------------------------------------------
    # State tracking

    def _transition(self, report: RunReport, state: RunState) -> None:
        previous = report.state
        report.states.append(state)
        if previous is None:
            logger.info(f"[{report.deployment}] {report.operation}: {state.value}")
        else:
            logger.info(
                f"[{report.deployment}] {report.operation}: "
                f"{previous.value} -> {state.value}"
            )

    def _warn(self, report: RunReport, message: str) -> None:
        report.warnings.append(message)
        logger.warning(f"[{report.deployment}] {message}")

    @contextmanager
    def _run(self, operation: str, name: str) -> Iterator[RunReport]:
        """Hold the deployment lock and mark unexpected exits as failed."""
        with self.locks.hold(name):
            report = RunReport(operation=operation, deployment=name, dry_run=self.dry_run)
            self._transition(report, RunState.PLANNING)
            try:
                yield report
            except BaseException:
                if report.state != RunState.FAILED:
                    self._transition(report, RunState.FAILED)
                raise

    def _require(self, operation: str, name: str) -> Deployment:
        deployment = self.registry.get(name)
        if deployment is None:
            raise DeploymentError(operation, f"deployment '{name}' does not exist")
        if not deployment.is_deployed:
            raise DeploymentError(operation, f"deployment '{name}' has no active revision")
        return deployment

    def _finish_dry_run(self, report: RunReport) -> RunReport:
        assert report.plan is not None
        logger.info(
            f"[{report.deployment}] dry run, {len(report.plan)} step(s) planned:\n"
            + "\n".join(report.plan.describe())
        )
        self._transition(report, RunState.DONE)
        return report

    # ------------------------------------------------------------------
    # Step execution

    def _check_cancelled(self, cancel: threading.Event | None, step: Step) -> None:
        if cancel is not None and cancel.is_set():
            raise RunCancelledError(step.name)

    def _poll_health(self, step: Step, session: BaseSession) -> int:
        assert step.probe is not None and step.command is not None
        last = ""
        for attempt in range(1, step.probe.attempts + 1):
            try:
                result = session.execute(step.command)
                if result.ok:
                    return attempt
                last = result.stderr.strip() or f"exit {result.exit_code}"
            except RemoteTimeoutError as exc:
                last = str(exc)
            logger.debug(
                f"Health probe {attempt}/{step.probe.attempts} for '{step.name}' failed: {last}"
            )
            if attempt < step.probe.attempts:
                self.sleep(step.probe.interval)
        raise RemoteTimeoutError(
            f"health check '{step.name}' ({last})",
            step.probe.interval * step.probe.attempts,
        )

    def _transfer(self, step: Step, session: BaseSession) -> None:
        assert step.remote_path is not None
        if step.replace:
            session.remove(step.remote_path)
        if step.local_path is None:
            session.write_text(step.remote_path, step.content or "", mode=step.mode)
        elif step.local_path.is_dir():
            session.upload_tree(step.local_path, step.remote_path)
        else:
            session.upload(step.local_path, step.remote_path, mode=step.mode)

    def _run_step(self, step: Step, session: BaseSession) -> StepOutcome:
        if step.guard:
            guard = session.execute(step.guard)
            if guard.ok:
                logger.info(f"Skipping step '{step.name}' (already done)")
                return StepOutcome(step.name, StepStatus.SKIPPED, attempts=0)

        logger.info(f"Running step '{step.name}': {step.description or step.kind.value}")
        attempts = 1
        if step.kind == StepKind.TRANSFER:
            self._transfer(step, session)
        elif step.kind == StepKind.HEALTH_CHECK:
            attempts = self._poll_health(step, session)
        else:
            assert step.command is not None
            session.execute_checked(step.command)
        return StepOutcome(step.name, StepStatus.SUCCEEDED, attempts=attempts)

    def _execute_plan(
        self,
        plan: Plan,
        session: BaseSession,
        report: RunReport,
        cancel: threading.Event | None = None,
    ) -> list[Step]:
        """Run plan steps strictly in sequence.

        Returns:
            Steps that ran (not skipped), in order

        Raises:
            DeploymentError: If the plan changes the artifact directory and
                no backup checkpoint was taken
            _StepFailure: On the first failed step or cancellation
        """
        if plan.mutating_steps and report.backup is None:
            names = ", ".join(s.name for s in plan.mutating_steps)
            raise DeploymentError(
                report.operation,
                f"plan for '{plan.deployment}' changes the artifact directory "
                f"({names}) but no backup was taken",
            )
        executed: list[Step] = []
        for step in plan:
            try:
                self._check_cancelled(cancel, step)
                outcome = self._run_step(step, session)
            except (RumiError, OSError) as exc:
                report.steps.append(StepOutcome(step.name, StepStatus.FAILED, detail=str(exc)))
                logger.error(f"Step '{step.name}' failed: {exc}")
                raise _StepFailure(step.name, exc, executed) from exc
            report.steps.append(outcome)
            if outcome.status == StepStatus.SUCCEEDED:
                executed.append(step)
        return executed

    def _undo_steps(
        self, executed: list[Step], session: BaseSession, report: RunReport
    ) -> None:
        """Run the rollback actions of executed steps in reverse, best effort."""
        for step in reversed(executed):
            if step.rollback is None:
                continue
            try:
                self._run_step(step.rollback, session)
                report.steps.append(StepOutcome(step.rollback.name, StepStatus.UNDONE))
            except (RumiError, OSError) as exc:
                self._warn(report, f"undo of step '{step.name}' failed: {exc}")

    def _teardown(
        self, plan: Plan, session: BaseSession, report: RunReport
    ) -> None:
        """Run every teardown step; failures become warnings."""
        for step in plan:
            try:
                report.steps.append(self._run_step(step, session))
            except (RumiError, OSError) as exc:
                report.steps.append(StepOutcome(step.name, StepStatus.FAILED, detail=str(exc)))
                self._warn(report, f"teardown step '{step.name}' failed: {exc}")

    # ------------------------------------------------------------------
    # Backups

    def _checkpoint(
        self,
        deployment: Deployment,
        session: BaseSession,
        report: RunReport,
        retention: RetentionClass = RetentionClass.AUTOMATIC,
    ) -> Backup:
        """Snapshot live state before any mutation.

        Raises:
            DeploymentFailedError: If the snapshot fails (nothing was changed)
        """
        self._transition(report, RunState.BACKING_UP)
        try:
            backup = self.backups.create_backup(deployment, session, retention=retention)
        except NoPriorStateError:
            backup = self.backups.create_empty_backup(deployment)
        except BackupError as exc:
            self._transition(report, RunState.FAILED)
            raise DeploymentFailedError(
                deployment.name, report.operation, None, rolled_back=False, cause=exc
            ) from exc
        report.backup = backup
        return backup

    def _restore_or_escalate(
        self,
        backup: Backup,
        session: BaseSession,
        report: RunReport,
        failed_step: str | None,
    ) -> None:
        try:
            self.backups.restore_backup(backup, session)
        except BackupError as exc:
            self._transition(report, RunState.FAILED)
            available = [b.id for b in self.backups.list_backups(report.deployment)]
            raise CriticalError(
                report.deployment, failed_step, str(exc), backups=available
            ) from exc

    def _fail(
        self,
        report: RunReport,
        failure: _StepFailure,
        session: BaseSession,
        backup: Backup,
        teardown: Plan | None = None,
    ) -> DeploymentFailedError:
        """Roll back after a step failure and return the error to raise."""
        self._transition(report, RunState.ROLLING_BACK)
        if teardown is not None:
            self._teardown(teardown, session, report)
            self._restore_or_escalate(backup, session, report, failure.step)
        else:
            self._restore_or_escalate(backup, session, report, failure.step)
            self._undo_steps(failure.executed, session, report)
        self._transition(report, RunState.FAILED)
        return DeploymentFailedError(
            report.deployment,
            report.operation,
            failure.step,
            rolled_back=True,
            cause=failure.cause,
        )

    # ------------------------------------------------------------------
    # Operations

    def plan(self, deployment: Deployment) -> Plan:
        """Run the planning phase only.

        Raises:
            PlanValidationError: If the profile cannot produce a plan
        """
        return build_plan(deployment, self.settings, self.backups.layout)

    def install(
        self, deployment: Deployment, cancel: threading.Event | None = None
    ) -> RunReport:
        """Provision a new deployment and commit revision ``r1``.

        On failure the partially created resources are torn down best effort,
        the artifact directory is restored to its pre-install state and the
        registry is left untouched.

        Raises:
            LockContentionError: If another run holds the deployment lock
            DeploymentError: If the deployment already exists
            PlanValidationError: If the profile is invalid
            DeploymentFailedError: If a step failed (remote state rolled back)
            CriticalError: If the rollback itself failed
        """
        with self._run("install", deployment.name) as report:
            existing = self.registry.get(deployment.name)
            if existing is not None and existing.is_deployed:
                raise DeploymentError(
                    "install",
                    f"deployment '{deployment.name}' is already installed; use update",
                )
            fresh = deployment.model_copy(
                update={"current_revision": None, "revisions": []}
            )
            report.plan = self.plan(fresh)
            digest = compute_artifact_digest(fresh.artifact)
            if self.dry_run:
                return self._finish_dry_run(report)

            with self.session_factory(fresh) as session:
                backup = self._checkpoint(fresh, session, report)
                self._transition(report, RunState.EXECUTING)
                try:
                    self._execute_plan(report.plan, session, report, cancel)
                except _StepFailure as failure:
                    teardown = build_teardown_plan(fresh, self.settings, self.backups.layout)
                    error = self._fail(report, failure, session, backup, teardown)
                    raise error from failure.cause

            self._transition(report, RunState.COMMITTING)
            now = _utcnow()
            committed = Deployment.model_validate(
                {
                    **fresh.model_dump(),
                    "current_revision": "r1",
                    "revisions": [
                        Revision(
                            id="r1",
                            created_at=now,
                            artifact_digest=digest,
                            artifact=fresh.artifact,
                        ).model_dump()
                    ],
                    "created_at": now,
                    "updated_at": now,
                }
            )
            self.registry.put(committed)
            if backup.empty:
                # nothing existed before r1, so there is nothing to restore
                self.backups.delete_backup(backup)
                report.backup = None
            report.revision = "r1"
            self._transition(report, RunState.DONE)
            return report

    def update(
        self,
        name: str,
        new_artifact: Path,
        cancel: threading.Event | None = None,
    ) -> RunReport:
        """Deploy a new artifact as a new active revision.

        The live state is backed up first. On failure the backup is
        restored, executed steps are undone and the registry is unchanged.

        Raises:
            LockContentionError: If another run holds the deployment lock
            DeploymentError: If the deployment has no active revision
            PlanValidationError: If the new artifact cannot produce a plan
            DeploymentFailedError: If a step failed (remote state rolled back)
            CriticalError: If the rollback itself failed
        """
        with self._run("update", name) as report:
            current = self._require("update", name)
            target = current.model_copy(update={"artifact": Path(new_artifact)})
            report.plan = self.plan(target)
            digest = compute_artifact_digest(target.artifact)
            if self.dry_run:
                return self._finish_dry_run(report)

            with self.session_factory(current) as session:
                backup = self._checkpoint(current, session, report)
                self._transition(report, RunState.EXECUTING)
                try:
                    self._execute_plan(report.plan, session, report, cancel)
                except _StepFailure as failure:
                    raise self._fail(report, failure, session, backup) from failure.cause

            self._transition(report, RunState.COMMITTING)
            now = _utcnow()
            new_id = current.next_revision_id()
            revisions = []
            for revision in current.revisions:
                if revision.id == current.current_revision:
                    revision = revision.model_copy(
                        update={
                            "status": RevisionStatus.SUPERSEDED,
                            "backup_id": backup.id,
                        }
                    )
                revisions.append(revision.model_dump())
            revisions.append(
                Revision(
                    id=new_id,
                    created_at=now,
                    artifact_digest=digest,
                    artifact=target.artifact,
                ).model_dump()
            )
            committed = Deployment.model_validate(
                {
                    **target.model_dump(),
                    "current_revision": new_id,
                    "revisions": revisions,
                    "updated_at": now,
                }
            )
            self.registry.put(committed)
            report.revision = new_id
            self._apply_retention(committed, report)
            self._transition(report, RunState.DONE)
            return report

    def _apply_retention(self, deployment: Deployment, report: RunReport) -> None:
        try:
            self.backups.cleanup(
                deployment.name, self.settings.backups.retention, deployment=deployment
            )
        except OSError as exc:
            self._warn(report, f"retention cleanup failed: {exc}")

    def _resolve_backup(self, operation: str, deployment: Deployment, revision: Revision) -> Backup:
        backup = None
        if revision.backup_id:
            backup = self.backups.get_backup(deployment.name, revision.backup_id)
        if backup is None:
            backup = self.backups.latest_for_revision(deployment.name, revision.id)
        if backup is None:
            raise DeploymentError(
                operation,
                f"no backup of revision '{revision.id}' is available for '{deployment.name}'",
            )
        return backup

    def _reactivate(
        self,
        report: RunReport,
        current: Deployment,
        source: Backup,
        session: BaseSession,
    ) -> Backup:
        """Snapshot live state, restore ``source`` and bring it live."""
        assert report.plan is not None
        snapshot = self._checkpoint(current, session, report)
        self._transition(report, RunState.EXECUTING)
        try:
            try:
                self.backups.restore_backup(source, session)
            except BackupError as exc:
                report.steps.append(
                    StepOutcome("restore_backup", StepStatus.FAILED, detail=str(exc))
                )
                raise _StepFailure("restore_backup", exc, []) from exc
            report.steps.append(StepOutcome("restore_backup", StepStatus.SUCCEEDED))
            self._execute_plan(report.plan, session, report)
        except _StepFailure as failure:
            raise self._fail(report, failure, session, snapshot) from failure.cause
        return snapshot

    def rollback(self, name: str, target_revision: str) -> RunReport:
        """Make an earlier revision active again.

        The live state is snapshotted and attached to the revision being
        replaced, so a later rollback forward is possible. History is never
        deleted.

        Raises:
            LockContentionError: If another run holds the deployment lock
            DeploymentError: If the revision is unknown, already active or
                has no backup
            DeploymentFailedError: If the restore failed (remote state rolled back)
            CriticalError: If the rollback itself failed
        """
        with self._run("rollback", name) as report:
            current = self._require("rollback", name)
            target_rev = current.get_revision(target_revision)
            if target_rev is None:
                raise DeploymentError(
                    "rollback", f"revision '{target_revision}' not found for '{name}'"
                )
            if target_rev.id == current.current_revision:
                raise DeploymentError(
                    "rollback", f"revision '{target_revision}' is already active"
                )
            source = self._resolve_backup("rollback", current, target_rev)
            target = current.model_copy(
                update={"artifact": target_rev.artifact or current.artifact}
            )
            report.plan = build_activation_plan(target, self.settings, self.backups.layout)
            if self.dry_run:
                return self._finish_dry_run(report)

            with self.session_factory(current) as session:
                snapshot = self._reactivate(report, current, source, session)

            self._transition(report, RunState.COMMITTING)
            revisions = []
            for revision in current.revisions:
                if revision.id == current.current_revision:
                    revision = revision.model_copy(
                        update={
                            "status": RevisionStatus.ROLLED_BACK,
                            "backup_id": snapshot.id,
                        }
                    )
                elif revision.id == target_rev.id:
                    revision = revision.model_copy(
                        update={"status": RevisionStatus.ACTIVE, "backup_id": source.id}
                    )
                revisions.append(revision.model_dump())
            committed = Deployment.model_validate(
                {
                    **target.model_dump(),
                    "current_revision": target_rev.id,
                    "revisions": revisions,
                    "updated_at": _utcnow(),
                }
            )
            self.registry.put(committed)
            report.revision = target_rev.id
            self._transition(report, RunState.DONE)
            return report

    def restore(self, name: str, backup_id: str) -> RunReport:
        """Restore a specific backup onto the live host.

        Used for manual recovery after a critical failure. Revision pointers
        are not changed.
        """
        with self._run("restore", name) as report:
            current = self._require("restore", name)
            source = self.backups.get_backup(name, backup_id)
            if source is None:
                raise DeploymentError(
                    "restore", f"backup '{backup_id}' not found for '{name}'"
                )
            report.plan = build_activation_plan(current, self.settings, self.backups.layout)
            if self.dry_run:
                return self._finish_dry_run(report)

            with self.session_factory(current) as session:
                self._reactivate(report, current, source, session)

            report.revision = current.current_revision
            self._transition(report, RunState.DONE)
            return report

    def delete(self, name: str) -> RunReport:
        """Tear down a deployment and forget it.

        Remote teardown is best effort: failures, including an unreachable
        host, are recorded as warnings and never block removing the backups
        and the registry entry.
        """
        with self._run("delete", name) as report:
            current = self.registry.get(name)
            if current is None:
                raise DeploymentError("delete", f"deployment '{name}' does not exist")
            report.plan = build_teardown_plan(current, self.settings, self.backups.layout)
            if self.dry_run:
                return self._finish_dry_run(report)

            self._transition(report, RunState.EXECUTING)
            try:
                session = self.session_factory(current)
            except RumiError as exc:
                self._warn(
                    report,
                    f"host unreachable, remote resources may be orphaned: {exc}",
                )
            else:
                with session:
                    self._teardown(report.plan, session, report)

            self._transition(report, RunState.COMMITTING)
            removed = self.backups.delete_all(name)
            logger.info(f"Removed {removed} backup(s) of '{name}'")
            self.registry.delete(name)
            self._transition(report, RunState.DONE)
            return report

    def snapshot(self, name: str) -> Backup:
        """Take a manual backup of the live state of a deployment."""
        with self._run("snapshot", name) as report:
            current = self._require("snapshot", name)
            with self.session_factory(current) as session:
                try:
                    backup = self.backups.create_backup(
                        current, session, retention=RetentionClass.MANUAL
                    )
                except BackupError as exc:
                    raise DeploymentError("snapshot", str(exc)) from exc
            report.backup = backup
            self._transition(report, RunState.DONE)
            return backup

    def prune(self, name: str, policy: RetentionPolicy | None = None) -> list[Backup]:
        """Apply a retention policy to a deployment's backups."""
        with self._run("prune", name) as report:
            deleted = self.backups.cleanup(
                name,
                policy or self.settings.backups.retention,
                deployment=self.registry.get(name),
            )
            self._transition(report, RunState.DONE)
            return deleted

    def service(self, name: str, action: str) -> RunReport:
        """Control the systemd unit of a server or Ethereum node deployment.

        ``status`` never fails on an inactive unit; its output is returned in
        ``report.output``. The other actions fail if systemctl does.

        Raises:
            DeploymentError: If the deployment runs no service, the action is
                unknown or systemctl failed
        """
        if action not in SERVICE_ACTIONS:
            raise DeploymentError("service", f"unknown service action '{action}'")
        with self._run("service", name) as report:
            current = self._require("service", name)
            if current.kind not in SERVICE_KINDS:
                raise DeploymentError(
                    "service",
                    f"deployment '{name}' is a {current.kind.value} and runs no service",
                )
            unit = self.backups.layout.unit_name(current)
            command = SERVICE_ACTIONS[action](unit)
            if self.dry_run:
                logger.info(f"[{name}] dry run, would run: {command}")
                self._transition(report, RunState.DONE)
                return report

            self._transition(report, RunState.EXECUTING)
            with self.session_factory(current) as session:
                try:
                    if action == "status":
                        result = session.execute(command)
                        report.output = result.stdout or result.stderr
                    else:
                        session.execute_checked(command)
                except SessionError as exc:
                    raise DeploymentError(
                        "service", f"{action} of {unit} failed: {exc}"
                    ) from exc
            logger.info(f"[{name}] {action} {unit}")
            self._transition(report, RunState.DONE)
            return report

    def delete_backup(self, name: str, backup_id: str) -> Backup:
        """Delete one backup that no revision depends on.

        Raises:
            DeploymentError: If the deployment or backup does not exist, or the
                backup is referenced by a revision or is the newest backup of
                the active revision
        """
        with self._run("delete_backup", name) as report:
            current = self.registry.get(name)
            if current is None:
                raise DeploymentError("delete_backup", f"deployment '{name}' does not exist")
            backup = self.backups.get_backup(name, backup_id)
            if backup is None:
                raise DeploymentError(
                    "delete_backup", f"backup '{backup_id}' not found for '{name}'"
                )
            if backup.id in self.backups.protected_ids(current):
                raise DeploymentError(
                    "delete_backup",
                    f"backup '{backup_id}' is protected: '{name}' may still roll back to it",
                )
            if not self.dry_run:
                self.backups.delete_backup(backup)
            self._transition(report, RunState.DONE)
            return backup
