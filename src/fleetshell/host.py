"""Host handles: one object per administered machine.

A :class:`Host` owns a pool of validated SSH sessions to its machine and
is the entry point for everything fleetshell does there: running
commands, listing and comparing directories, and copying trees to other
hosts.  Handles are obtained from a :class:`HostRegistry`, which
guarantees a single handle (and therefore a single pool) per address.
"""

from __future__ import annotations

import functools
import logging
import math
import shlex
import threading
from typing import Callable, Iterable, Mapping, Sequence, TYPE_CHECKING

from fleetshell.config import FleetshellConfig
from fleetshell.errors import FleetshellError
from fleetshell.orchestration.primitives import interface_ipv4, run_with_deadline
from fleetshell.orchestration.ssh import (
    PING_COMMAND,
    PING_REPLY,
    RESET_COMMAND,
    SESSION_ERRORS,
    RemoteCommandError,
    SSHConnectionError,
    Session,
    command_succeeded,
    run_sequence,
)
from fleetshell.scripts import read_script

if TYPE_CHECKING:
    from fleetshell.orchestration.listing import DirectoryListing

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], Session]


class ReadinessTimeoutError(FleetshellError):
    """Raised when a listener or relay FIFO does not show up in time."""

    pass


class ToolNotInstalledError(FleetshellError):
    """Raised when a required program is missing on a host."""

    pass


class Host:
    """A UNIX machine administered over SSH.

    Do not construct directly; use :meth:`HostRegistry.resolve`.
    """

    def __init__(
            self,
            address: str,
            config: FleetshellConfig | None = None,
            session_factory: SessionFactory | None = None,
    ):
        self._address = address
        self._config = config or FleetshellConfig.from_dict({})
        self._session_factory = session_factory or functools.partial(
            Session.open,
            user=self._config.ssh_user,
            keys=self._config.ssh_keys,
            connect_timeout=self._config.connect_timeout,
        )
        self._pool: list[Session] = []  # idle, validated sessions
        self._lock = threading.Lock()
        self._available: bool | None = None
        self._hostname: str | None = None
        self._cores: int | None = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def config(self) -> FleetshellConfig:
        return self._config

    @property
    def idle_sessions(self) -> int:
        with self._lock:
            return len(self._pool)

    def __str__(self) -> str:
        return self._address

    def __repr__(self) -> str:
        return "Host(%r)" % self._address

    # ------------------------------------------------------------------
    # Session pool
    # ------------------------------------------------------------------

    def borrow_session(self) -> Session:
        """Borrow a working session, opening a new one if the pool is empty.

        Every session is pinged before it is handed out; one that does not
        answer is closed and never returned to the pool.
        """
        attempts = self._config.session_attempts
        for attempt in range(1, attempts + 1):
            session = None
            with self._lock:
                if self._pool:
                    session = self._pool.pop(0)
                else:
                    try:
                        session = self._session_factory(self._address)
                    except SESSION_ERRORS as e:
                        self.output("Unable to SSH on attempt %d: %s" % (attempt, e))
                        continue

            result = session.run(PING_COMMAND)
            if result.transport_failed or result.stdout.strip() != PING_REPLY:
                self.output("Discarding nonfunctional SSH connection")
                session.close()
                continue

            self._available = True
            return session

        self._available = False
        raise SSHConnectionError(self._address, attempts)

    def release_session(self, session: Session) -> None:
        """Return a session to the idle pool after resetting its working directory."""
        result = session.run(RESET_COMMAND)
        if not command_succeeded(result):
            self.output("Discarding nonfunctional SSH connection")
            session.close()
            return
        with self._lock:
            self._pool.append(session)

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def execute(
            self,
            command: str | Sequence[str],
            attempts: int | None = None,
            check: bool = True,
    ) -> str:
        """Execute a command string (or sequence of them) on the host.

        Each command that fails is retried in place, up to *attempts* tries
        (default from config, normally 3) with a linear backoff.  Pass 1
        for commands that are not idempotent.  Commands always run in
        order and none is skipped.

        Args:
            command: Command string, or sequence of command strings.
            attempts: Attempt budget per command; ``None`` uses the
                configured default, any other falsy value means 1.
            check: Treat a non-zero exit status as a failure.

        Returns:
            Output of the last command executed.

        Raises:
            SSHConnectionError: if no working session could be obtained.
            RemoteCommandError: if a command still fails after its retries.
        """
        if attempts is None:
            attempts = self._config.retry_attempts
        commands = [command] if isinstance(command, str) else list(command)

        session = self.borrow_session()
        result = run_sequence(session, commands, attempts=attempts, check=check,
                              backoff=self._config.retry_backoff)
        if result is not None and not command_succeeded(result, check):
            session.close()
            raise RemoteCommandError(result)
        self.release_session(session)
        return result.stdout if result is not None else ""

    def execute_once(self, command: str | Sequence[str], check: bool = True) -> str:
        """Shortcut for commands that are not safe to retry."""
        return self.execute(command, attempts=1, check=check)

    def is_reachable(self) -> bool:
        """Return True if the host is accessible via SSH.

        The first call runs a no-op command to find out; later calls reuse
        the answer recorded by the session pool.
        """
        if self._available is None:
            try:
                self.execute(PING_COMMAND)
            except FleetshellError as e:
                logger.debug("Reachability check of %s failed: %s", self._address, e)
        return bool(self._available)

    def confirm_listening_on_port(self, port: int, timeout: float | None = None) -> bool:
        """Confirm that something is listening on *port* within *timeout* seconds.

        Raises:
            ReadinessTimeoutError: if nothing listens in time.
        """
        timeout = self._config.ready_timeout if timeout is None else timeout
        script = read_script("wait_port.sh").format(port=int(port), tries=max(1, math.ceil(timeout)))
        if not run_with_deadline(lambda: self.execute_once(script), timeout):
            raise ReadinessTimeoutError(
                "Nothing is listening on %s:%d after %s seconds" % (self._address, port, timeout)
            )
        return True

    def confirm_fifo_exists(self, path: str, timeout: float | None = None) -> bool:
        """Confirm that the named pipe *path* exists within *timeout* seconds.

        Raises:
            ReadinessTimeoutError: if the FIFO does not appear in time.
        """
        timeout = self._config.ready_timeout if timeout is None else timeout
        script = read_script("wait_fifo.sh").format(path=shlex.quote(path), tries=max(1, math.ceil(timeout)))
        if not run_with_deadline(lambda: self.execute_once(script), timeout):
            raise ReadinessTimeoutError(
                "FIFO %s not found on %s after %s seconds" % (path, self._address, timeout)
            )
        return True

    # ------------------------------------------------------------------
    # Directory copying / listing / comparison
    # ------------------------------------------------------------------

    def fast_copy_chain(self, base_dir: str, targets, files: str | Iterable[str] | None = None,
                        port: int | None = None, overwrite: bool = False,
                        ready_timeout: float | None = None) -> bool:
        """Copy *base_dir* (or *files* under it) to one or more hosts.

        See :func:`fleetshell.orchestration.copy_chain.fast_copy_chain`.
        Not idempotent; do not retry blindly.
        """
        from fleetshell.orchestration.copy_chain import fast_copy_chain
        return fast_copy_chain(self, base_dir, targets, files=files, port=port,
                               overwrite=overwrite, ready_timeout=ready_timeout)

    def compare_dir(self, base_dir: str, targets, files: str | Iterable[str] | None = None) -> bool:
        """Compare file existence and size between this host and *targets*."""
        from fleetshell.orchestration.listing import compare_trees
        return compare_trees(self, base_dir, targets, files=files)

    def dir_list(self, path: str | Sequence[str]) -> DirectoryListing:
        """Return a mapping of entry name to size (``DIRECTORY`` for subdirectories)."""
        from fleetshell.orchestration.listing import list_directory
        return list_directory(self, path)

    def dir_size(self, path: str) -> int:
        """Recursively compute the size in bytes of files under *path*."""
        from fleetshell.orchestration.listing import total_size
        return total_size(self, path)

    # ------------------------------------------------------------------
    # Misc one-shot wrappers
    # ------------------------------------------------------------------

    def service(self, operation: str, name: str) -> str:
        """Perform *operation* (start, stop, restart...) on service *name*.

        The command comes from the service-control plugin named by the
        ``service.manager`` config key.
        """
        from fleetshell.bootstrap import get_service_manager
        manager = get_service_manager(self._config.service_manager)
        return self.execute(manager.service_command(operation, name))

    def set_io_scheduler(self, name: str, device: str = "sda") -> str:
        """Change the I/O scheduler for *device* (e.g. 'deadline', 'noop')."""
        self.output("Setting I/O scheduler for %s to %s." % (device, name))
        return self.execute("echo %s >/sys/block/%s/queue/scheduler"
                            % (shlex.quote(name), shlex.quote(device)))

    def confirm_installed(self, program_name: str) -> bool:
        """Confirm that *program_name* is installed and on the shell path.

        Raises:
            ToolNotInstalledError: if ``which`` cannot find it.
        """
        out = self.execute("which %s" % shlex.quote(program_name), check=False)
        if not out.strip() or "no %s in " % program_name in out:
            raise ToolNotInstalledError(
                "%s not installed on %s, or missing from path" % (program_name, self._address)
            )
        return True

    def cores(self) -> int:
        """Number of (virtual) cores on the machine."""
        if self._cores is None:
            count = self.execute("cat /proc/cpuinfo | grep -c '^processor'", check=False).strip()
            self._cores = int(count) if count.isdigit() and int(count) > 0 else 1
        return self._cores

    def hostname(self) -> str:
        if self._hostname is None:
            self._hostname = self.execute("hostname").strip()
        return self._hostname

    def comment_out_ini(self, file: str, *prefixes: str) -> str:
        """Comment out lines of an ini file beginning with any of *prefixes*."""
        return self.toggle_ini(file, prefixes, False)

    def uncomment_out_ini(self, file: str, *prefixes: str) -> str:
        """Un-comment lines of an ini file beginning with any of *prefixes*.

        Prefixes must not include the ``#`` comment character.
        """
        return self.toggle_ini(file, prefixes, True)

    def toggle_ini(self, file: str, prefixes: Iterable[str], enable: bool) -> str:
        """Un-comment (*enable*) or comment out lines of an ini file."""
        commands = []
        for setting in prefixes:
            if enable:
                expr = r"s/^#(\s*%s\s*(=.*)?)$/\1/" % setting
            else:
                expr = r"s/^(\s*%s\s*(=.*)?)$/#\1/" % setting
            commands.append("sed -i -E %s %s" % (shlex.quote(expr), shlex.quote(file)))
        if not commands:
            return ""
        return self.execute("; ".join(commands))

    def output(self, message: str) -> str:
        """Log *message* tagged with this host's address and return the line."""
        message = str(message).strip() or "Completed (no output)"
        line = "[%s] %s" % (self._address, message)
        logger.info("%s", line)
        return line


class HostRegistry:
    """Maps addresses to their one and only :class:`Host` handle.

    Thread-safe; handles live as long as the registry.
    """

    def __init__(self, config: FleetshellConfig | None = None,
                 session_factory: SessionFactory | None = None):
        self.config = config or FleetshellConfig()
        self._session_factory = session_factory
        self._hosts: dict[str, Host] = {}
        self._lock = threading.Lock()

    def resolve(self, address: str | Host) -> Host:
        """Return the handle for *address*, creating it on first use.

        A :class:`Host` passed in is registered if its address is unknown.
        A different handle for an already registered address is rejected.
        """
        if isinstance(address, Host):
            with self._lock:
                host = self._hosts.setdefault(address.address, address)
            if host is not address:
                raise ValueError("Host %s is already registered with another handle" % address.address)
            return host
        address = address.strip()
        with self._lock:
            host = self._hosts.get(address)
            if host is None:
                host = Host(address, config=self.config, session_factory=self._session_factory)
                self._hosts[address] = host
                logger.debug("Registered host %s", address)
            return host

    def local(self, interface: str | None = None) -> Host:
        """Return the handle for this machine, addressed by *interface*'s IPv4 address.

        Defaults to the configured ``fleet.local_interface`` (bond0).
        """
        return self.resolve(interface_ipv4(interface or self.config.local_interface))

    def resolve_many(self, addresses: Iterable[str | Host]) -> list[Host]:
        return [self.resolve(a) for a in addresses]

    def resolve_targets(self, targets: str | Host | Iterable | Mapping) -> Host | list[Host] | dict[Host, str]:
        """Resolve a copy/compare *targets* argument whose hosts may be addresses."""
        if isinstance(targets, Mapping):
            return {self.resolve(h): d for h, d in targets.items()}
        if isinstance(targets, (str, Host)):
            return self.resolve(targets)
        return self.resolve_many(targets)

    def __contains__(self, address: str) -> bool:
        with self._lock:
            return address in self._hosts

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)

    def __iter__(self):
        with self._lock:
            return iter(list(self._hosts.values()))
