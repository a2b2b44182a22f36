"""Shared pytest fixtures for fleetshell tests.

The :class:`FakeFleet` stands in for real machines: it hands out fake
sessions whose ``run()`` answers the commands fleetshell issues (ping,
``ls``, ``which``, ``mkdir -p``...) from an in-memory directory tree per
machine, and records every command it sees in order.
"""

from __future__ import annotations

import copy
import itertools
import re
import shlex
import threading
from pathlib import Path
from typing import Callable

import pytest

from fleetshell.config import FleetshellConfig
from fleetshell.host import HostRegistry
from fleetshell.orchestration.listing import LS_COMMAND
from fleetshell.orchestration.ssh import RemoteResult


@pytest.fixture(autouse=True)
def isolate_stateful(tmp_path: Path, monkeypatch):
    """Redirect SAF stateful root to temp dir for test isolation.

    Also resets the bootstrap singleton between tests.
    """
    monkeypatch.setenv("STATEFUL_ROOT", str(tmp_path / "stateful"))
    import fleetshell.bootstrap
    fleetshell.bootstrap._variables = None
    yield
    fleetshell.bootstrap._variables = None


def _parts(path: str) -> list[str]:
    return [p for p in path.split("/") if p not in ("", ".")]


class FakeMachine:
    """In-memory filesystem and installed programs of one machine."""

    def __init__(self, address: str):
        self.address = address
        self.tree: dict = {}
        self.installed = {"pigz", "tar", "nc", "tee", "mkfifo"}

    def _node(self, path: str, create: bool = False):
        node = self.tree
        for part in _parts(path):
            if not isinstance(node, dict):
                return None
            if part not in node:
                if not create:
                    return None
                node[part] = {}
            node = node[part]
        return node

    def get(self, path: str):
        return self._node(path)

    def mkdir(self, path: str) -> dict:
        return self._node(path, create=True)

    def put(self, path: str, size: int) -> None:
        parts = _parts(path)
        parent = self._node("/".join(parts[:-1]), create=True)
        parent[parts[-1]] = size

    def ls(self, paths: list[str]) -> tuple[int, str]:
        """Render ``ls --color=never -1AgGF`` output for *paths*."""
        lines = []
        rc = 0
        for path in paths:
            node = self.get(path)
            if node is None:
                lines.append("ls: cannot access '%s': No such file or directory" % path)
                rc = 2
            elif isinstance(node, int):
                lines.append(_ls_line(path, node))
            else:
                if len(paths) > 1:
                    lines.append("%s:" % path)
                lines.append("total %d" % len(node))
                for name in sorted(node):
                    lines.append(_ls_line(name, node[name]))
        return rc, "\n".join(lines) + ("\n" if lines else "")


def _ls_line(name: str, node) -> str:
    if isinstance(node, dict):
        return "drwxr-xr-x 2 4096 Jan  1 12:00 %s/" % name
    return "-rw-r--r-- 1 %d Jan  1 12:00 %s" % (node, name)


Handler = Callable[["FakeSession", str], "RemoteResult | None"]


class FakeSession:
    """Session double; delegates every command to its fleet."""

    _ids = itertools.count(1)

    def __init__(self, fleet: FakeFleet, host: str):
        self.fleet = fleet
        self.host = host
        self.ident = next(self._ids)
        self.closed = False
        self.closed_event = threading.Event()

    def run(self, command: str, timeout: float | None = None) -> RemoteResult:
        return self.fleet.respond(self, command)

    def close(self) -> None:
        self.closed = True
        self.closed_event.set()


class FakeFleet:
    """A set of fake machines reachable through fake sessions."""

    def __init__(self):
        self.machines: dict[str, FakeMachine] = {}
        self.log: list[tuple[str, str, int]] = []  # (address, command, session id)
        self.opened: list[FakeSession] = []
        self.unreachable: set[str] = set()
        self._handlers: list[tuple[re.Pattern, Handler]] = []
        self._lock = threading.Lock()

    def machine(self, address: str) -> FakeMachine:
        with self._lock:
            if address not in self.machines:
                self.machines[address] = FakeMachine(address)
            return self.machines[address]

    def open_session(self, address: str) -> FakeSession:
        if address in self.unreachable:
            raise OSError("Connection refused")
        session = FakeSession(self, address)
        with self._lock:
            self.opened.append(session)
        return session

    def on(self, pattern: str, handler: Handler) -> None:
        """Answer commands matching *pattern* with *handler* (newest first).

        A handler returning None falls through to the default behaviour.
        """
        self._handlers.insert(0, (re.compile(pattern), handler))

    @staticmethod
    def result(session: FakeSession, command: str, rc: int = 0, out: str = "") -> RemoteResult:
        return RemoteResult(host=session.host, returncode=rc, stdout=out, command=command)

    # --- inspection ---

    def commands(self, address: str | None = None) -> list[str]:
        return [c for a, c, _ in self.log if address is None or a == address]

    def index(self, address: str, needle: str) -> int:
        """Position in the log of the first command on *address* containing *needle*."""
        for i, (a, c, _) in enumerate(self.log):
            if a == address and needle in c:
                return i
        raise AssertionError("%r never ran on %s" % (needle, address))

    # --- behaviour ---

    def replicate(self, source: str, source_dir: str, destinations: list[tuple[str, str]]) -> None:
        """Copy the contents of *source_dir* to each (address, directory)."""
        node = self.machine(source).get(source_dir)
        for address, directory in destinations:
            target = self.machine(address).mkdir(directory)
            target.update(copy.deepcopy(node))

    def respond(self, session: FakeSession, command: str) -> RemoteResult:
        with self._lock:
            self.log.append((session.host, command, session.ident))
        for pattern, handler in list(self._handlers):
            if pattern.search(command):
                result = handler(session, command)
                if result is not None:
                    return result

        machine = self.machine(session.host)
        if command == "echo ping":
            return self.result(session, command, out="ping\n")
        if command.startswith(LS_COMMAND):
            rc, out = machine.ls(shlex.split(command)[len(LS_COMMAND.split()):])
            return self.result(session, command, rc=rc, out=out)
        if command.startswith("which "):
            program = shlex.split(command)[1]
            if program in machine.installed:
                return self.result(session, command, out="/usr/bin/%s\n" % program)
            return self.result(session, command, rc=1, out="which: no %s in (/usr/bin:/bin)\n" % program)
        if command.startswith("mkdir -p "):
            machine.mkdir(shlex.split(command)[2])
            return self.result(session, command)
        return self.result(session, command)


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def config() -> FleetshellConfig:
    return FleetshellConfig.from_dict({})


@pytest.fixture
def registry(fleet: FakeFleet, config: FleetshellConfig) -> HostRegistry:
    """A HostRegistry whose hosts talk to the fake fleet."""
    return HostRegistry(config=config, session_factory=fleet.open_session)


@pytest.fixture
def v(tmp_path: Path):
    """Initialize fleetshell and return the Variables instance."""
    import fleetshell.bootstrap
    fleetshell.bootstrap._variables = None

    from fleetshell.bootstrap import init_fleetshell
    return init_fleetshell(log_level="WARNING")
