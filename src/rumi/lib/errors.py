"""Custom exception hierarchy for rumi configuration and deployment runs."""

from __future__ import annotations

from collections.abc import Sequence


class RumiError(Exception):
    """Base exception for all rumi errors.

    All rumi-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI layer.
    """

    pass


class ConfigError(RumiError):
    """Exception raised for configuration errors.

    Raised when the settings file or the deployment registry cannot be
    loaded, parsed or validated.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class PlanValidationError(RumiError):
    """Exception raised when profile parameters cannot produce a valid plan.

    Always raised before any remote I/O takes place.

    Attributes:
        field: Profile field (dot notation) that failed validation
        message: Description of the problem
    """

    def __init__(self, field: str, message: str) -> None:
        """Create a plan validation error for a profile field."""
        self.field = field
        self.message = message
        super().__init__(f"Invalid plan parameter '{field}': {message}")


class SessionError(RumiError):
    """Base class for remote session failures."""

    pass


class RemoteConnectionError(SessionError):
    """Raised when the remote channel cannot be opened or became unusable.

    Not retried by the orchestrator; the CLI may retry the whole run.

    Attributes:
        host: Host the session was talking to
        message: Human-readable error message
    """

    def __init__(self, host: str, message: str) -> None:
        """Create a connection error for a host."""
        self.host = host
        self.message = message
        super().__init__(f"Connection to {host} failed: {message}")


class AuthError(SessionError):
    """Raised when authentication against the remote host is rejected.

    Authentication failures are fatal and never retried. The message never
    contains credentials.
    """

    def __init__(self, host: str, user: str, method: str) -> None:
        """Create an authentication error.

        Args:
            host: Host that rejected the credentials
            user: Remote user name
            method: Authentication method that was attempted (key, password, agent)
        """
        self.host = host
        self.user = user
        self.method = method
        super().__init__(
            f"Authentication failed for {user}@{host} using {method} authentication"
        )


class RemoteTimeoutError(SessionError):
    """Raised when a remote operation does not respond within its bound."""

    def __init__(self, operation: str, timeout: float | None) -> None:
        """Create a timeout error for a remote operation."""
        self.operation = operation
        self.timeout = timeout
        bound = f"{timeout:g}s" if timeout is not None else "the configured bound"
        super().__init__(f"Timed out after {bound}: {operation}")


class CommandFailedError(SessionError):
    """Raised when a remote command exits with a non-zero status.

    Attributes:
        command: The command that failed
        exit_code: Remote exit status
        stderr: Captured standard error
    """

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        """Create a command failure error."""
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"Command '{command}' exited with {exit_code}: {detail}")


class TransferError(SessionError):
    """Raised when an upload or download did not complete.

    A tree transfer may have been applied partially; callers treat this as a
    failed step.

    Attributes:
        path: Local or remote path being transferred
        transferred: Number of files that completed before the failure
    """

    def __init__(self, path: str, message: str, transferred: int = 0) -> None:
        """Create a transfer error."""
        self.path = path
        self.message = message
        self.transferred = transferred
        super().__init__(f"Transfer of {path} failed: {message}")


class BackupError(RumiError):
    """Raised when a snapshot cannot be created, read or restored."""

    def __init__(self, deployment: str, message: str) -> None:
        """Create a backup error for a deployment."""
        self.deployment = deployment
        self.message = message
        super().__init__(f"Backup error for '{deployment}': {message}")


class NoPriorStateError(BackupError):
    """Raised when there is no remote state to snapshot yet.

    Callers treat this as success with an empty backup.
    """

    def __init__(self, deployment: str, remote_path: str) -> None:
        """Create the error for a missing remote artifact path."""
        self.remote_path = remote_path
        super().__init__(deployment, f"remote path {remote_path} does not exist")


class CriticalError(RumiError):
    """Raised when automatic recovery is no longer possible.

    The message tells the operator which backups can be restored manually.

    Attributes:
        deployment: Deployment name
        step: Step that failed before recovery was attempted
        backups: Backup ids available for manual restore, newest first
    """

    def __init__(
        self,
        deployment: str,
        step: str | None,
        message: str,
        backups: Sequence[str] = (),
    ) -> None:
        """Create a critical error with manual recovery guidance."""
        self.deployment = deployment
        self.step = step
        self.message = message
        self.backups = list(backups)
        lines = [
            f"Deployment '{deployment}' is left inconsistent"
            + (f" after step '{step}' failed" if step else "")
            + f": {message}",
            "Automatic recovery is not possible. Restore manually with:",
        ]
        if self.backups:
            lines.extend(
                f"  rumi backup restore {deployment} {backup_id}"
                for backup_id in self.backups
            )
        else:
            lines.append("  (no backups are available for this deployment)")
        super().__init__("\n".join(lines))


class LockContentionError(RumiError):
    """Raised when another run holds the lock for a deployment."""

    def __init__(self, name: str) -> None:
        """Create a contention error for a deployment name."""
        self.name = name
        super().__init__(f"Another run is already operating on deployment '{name}'")


class RunCancelledError(RumiError):
    """Raised at a step boundary when the run was cancelled."""

    def __init__(self, step: str) -> None:
        """Create a cancellation error naming the next step."""
        self.step = step
        super().__init__(f"Run cancelled before step '{step}'")


class DeploymentError(RumiError):
    """Exception raised when a deployment operation cannot proceed.

    Attributes:
        operation: Operation that failed (install, update, rollback, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for an operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class DeploymentFailedError(DeploymentError):
    """Raised when a run failed after remote work started.

    Names the deployment, the failed step and the path that was taken
    (rolled back or aborted before any change).

    Attributes:
        deployment: Deployment name
        step: Name of the step that failed, or None for non-step phases
        rolled_back: Whether remote state was restored
        cause: Underlying exception
    """

    def __init__(
        self,
        deployment: str,
        operation: str,
        step: str | None,
        rolled_back: bool,
        cause: BaseException,
    ) -> None:
        """Create a failure report for a run."""
        self.deployment = deployment
        self.step = step
        self.rolled_back = rolled_back
        self.cause = cause
        where = f" at step '{step}'" if step else ""
        path = (
            "remote state was rolled back"
            if rolled_back
            else "no remote changes were made"
        )
        super().__init__(
            operation,
            f"'{deployment}' failed{where}: {cause}; {path}",
        )
