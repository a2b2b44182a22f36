"""SSH sessions and retrying command execution.

Remote commands run over persistent paramiko sessions which are pooled
per machine by :class:`fleetshell.host.Host`.  This module holds the
session wrapper, the tagged :class:`RemoteResult`, and the bounded retry
loop; it knows nothing about pools.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence

import paramiko

from fleetshell.errors import FleetshellError

logger = logging.getLogger(__name__)

PING_COMMAND = "echo ping"
PING_REPLY = "ping"
RESET_COMMAND = "cd ~"

# Errors that mean the session itself is broken rather than the command.
SESSION_ERRORS = (paramiko.SSHException, OSError, EOFError)


@dataclass
class RemoteResult:
    """Result of a remote command execution.

    ``returncode`` is negative when no exit status was received (the
    transport failed); stderr then carries the error text.  Regular
    command output has stderr merged into stdout.
    """

    host: str
    returncode: int
    stdout: str
    stderr: str = ""
    command: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def transport_failed(self) -> bool:
        return self.returncode < 0

    @property
    def last_line(self) -> str:
        """Get the last non-empty line of stdout."""
        lines = [line for line in self.stdout.strip().splitlines() if line.strip()]
        return lines[-1] if lines else ""


class SSHConnectionError(FleetshellError):
    """Raised when no working session to a host could be obtained."""

    def __init__(self, host: str, attempts: int):
        self.host = host
        self.attempts = attempts
        super().__init__(
            "Unable to obtain working SSH connection to %s after %d attempts" % (host, attempts)
        )


class RemoteCommandError(FleetshellError):
    """Raised when a remote command still fails after its attempt budget."""

    def __init__(self, result: RemoteResult):
        self.result = result
        detail = (result.stderr or result.stdout).strip()[:200]
        super().__init__(
            "Command %r failed on %s (rc=%d): %s"
            % (result.command, result.host, result.returncode, detail)
        )


class Session:
    """One authenticated remote shell connection to a machine."""

    def __init__(self, host: str, client: paramiko.SSHClient):
        self.host = host
        self.client = client

    @classmethod
    def open(
            cls,
            host: str,
            user: str = "root",
            keys: Sequence[str] | None = None,
            connect_timeout: float = 5,
    ) -> Session:
        """Connect to *host*.

        Host keys are neither checked nor recorded: every machine in the
        fleet is trusted and gets reimaged often enough that a
        known_hosts file would only produce false alarms.

        Raises:
            paramiko.SSHException, OSError: when the connection cannot be made.
        """
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        connect_kwargs = {
            "username": user,
            "timeout": connect_timeout,
            "banner_timeout": connect_timeout,
            "auth_timeout": connect_timeout,
        }
        if keys:
            connect_kwargs["key_filename"] = list(keys)
            connect_kwargs["look_for_keys"] = False
        logger.debug("Opening SSH session to %s@%s", user, host)
        try:
            client.connect(host, **connect_kwargs)
        except SESSION_ERRORS:
            client.close()
            raise
        return cls(host, client)

    def run(self, command: str, timeout: float | None = None) -> RemoteResult:
        """Run *command* and return its combined output.

        Never raises for transport problems; they come back as a result
        with a negative return code.
        """
        t0 = time.monotonic()
        try:
            transport = self.client.get_transport()
            if transport is None or not transport.is_active():
                raise paramiko.SSHException("SSH transport is not active")
            channel = transport.open_session()
            try:
                channel.set_combine_stderr(True)
                if timeout:
                    channel.settimeout(timeout)
                channel.exec_command(command)
                with channel.makefile("rb") as stream:
                    output = stream.read().decode("utf-8", errors="replace")
                returncode = channel.recv_exit_status()
            finally:
                channel.close()
        except SESSION_ERRORS as e:
            elapsed = time.monotonic() - t0
            logger.debug("  SSH cmd <- %s ERROR (%.1fs): %s", self.host, elapsed, e)
            return RemoteResult(host=self.host, returncode=-1, stdout="",
                                stderr=str(e) or type(e).__name__, command=command)

        elapsed = time.monotonic() - t0
        logger.debug("  SSH cmd <- %s rc=%d (%.1fs)", self.host, returncode, elapsed)
        return RemoteResult(host=self.host, returncode=returncode, stdout=output, command=command)

    def close(self) -> None:
        self.client.close()


def command_succeeded(result: RemoteResult, check: bool = True) -> bool:
    """Whether *result* counts as a success.

    A transport failure always counts as a failure; a non-zero exit
    status only when *check* is set.
    """
    if result.transport_failed:
        return False
    return result.success or not check


def run_with_retry(
        session: Session,
        command: str,
        attempts: int | None = 3,
        check: bool = True,
        backoff: float = 1.0,
) -> RemoteResult:
    """Run one command, retrying it in place with linear backoff.

    The n-th retry waits ``n * backoff`` seconds.  Returns the first
    successful result, or the last failed one once *attempts* is used up.
    A falsy *attempts* means a single try.
    """
    attempts = max(1, int(attempts or 1))
    failures = 0
    while True:
        logger.debug("  SSH cmd -> %s: %s", session.host, command[:80])
        result = session.run(command)
        if command_succeeded(result, check):
            return result
        failures += 1
        if failures >= attempts:
            return result
        delay = failures * backoff
        logger.warning("Command \"%s\" failed on %s (rc=%d), re-trying after %.0fs",
                       command[:80], session.host, result.returncode, delay)
        time.sleep(delay)


def run_sequence(
        session: Session,
        commands: Sequence[str],
        attempts: int | None = 3,
        check: bool = True,
        backoff: float = 1.0,
) -> RemoteResult | None:
    """Run *commands* in order on one session.

    Stops at the first command that fails after its retries and returns
    that failed result; otherwise returns the result of the last command
    (``None`` for an empty sequence).
    """
    result = None
    for command in commands:
        result = run_with_retry(session, command, attempts=attempts, check=check, backoff=backoff)
        if not command_succeeded(result, check):
            return result
    return result
