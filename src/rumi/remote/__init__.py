"""Remote sessions: authenticated channels to a single host.

Main components:
- BaseSession: command execution and file transfer contract
- SSHSession: paramiko implementation
- create_session: open a session for a configured host
"""

from rumi.models.settings import HostConfig, Settings
from rumi.remote.base import BaseSession, CommandResult
from rumi.remote.ssh import SSHSession


def create_session(host_config: HostConfig, settings: Settings) -> BaseSession:
    """Open a connected session for a host.

    Args:
        host_config: Connection settings for the host
        settings: Global settings supplying command and transfer timeouts

    Returns:
        A connected session; the caller owns it and must close it

    Raises:
        AuthError: If authentication is rejected
        RemoteConnectionError: If the host cannot be reached
    """
    session = SSHSession(
        host_config,
        command_timeout=settings.execution.command_timeout,
        transfer_timeout=settings.execution.transfer_timeout,
    )
    return session.connect()


__all__ = [
    "BaseSession",
    "CommandResult",
    "SSHSession",
    "create_session",
]
