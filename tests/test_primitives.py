"""Tests for fleetshell.orchestration.primitives and fleetshell.scripts."""

from __future__ import annotations

import sys
import threading
from unittest import mock

import pytest

from fleetshell.errors import FleetshellError
from fleetshell.orchestration.primitives import execute_parallel, interface_ipv4, run_with_deadline
from fleetshell.orchestration.ssh import RemoteCommandError, RemoteResult
from fleetshell.scripts import read_script


# ---------------------------------------------------------------------------
# run_with_deadline
# ---------------------------------------------------------------------------

def test_deadline_finishes_in_time():
    assert run_with_deadline(lambda: "done", 1) is True


def test_deadline_overrun():
    release = threading.Event()
    try:
        assert run_with_deadline(lambda: release.wait(5), 0.1) is False
    finally:
        release.set()


def test_deadline_remote_failure_is_false():
    def gave_up():
        raise RemoteCommandError(RemoteResult("h", 1, "", command="wait"))

    assert run_with_deadline(gave_up, 1) is False


def test_deadline_other_errors_propagate():
    def broken():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        run_with_deadline(broken, 1)


# ---------------------------------------------------------------------------
# execute_parallel
# ---------------------------------------------------------------------------

def test_execute_parallel_all_hosts(registry, fleet):
    fleet.on(r"^hostname$", lambda s, c: fleet.result(s, c, out="%s.local\n" % s.host))
    hosts = registry.resolve_many(["a", "b", "c"])

    results = execute_parallel(hosts, "hostname")

    assert sorted(r.host for r in results) == ["a", "b", "c"]
    assert all(r.success for r in results)
    assert {r.host: r.stdout for r in results}["b"] == "b.local\n"


def test_execute_parallel_empty():
    assert execute_parallel([], "true") == []


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_execute_parallel_folds_failures(mock_sleep, registry, fleet):
    fleet.unreachable.add("down")
    fleet.on(r"^false$", lambda s, c: fleet.result(s, c, rc=1, out="nope\n") if s.host == "b" else None)
    hosts = registry.resolve_many(["a", "b", "down"])

    by_host = {r.host: r for r in execute_parallel(hosts, "false", attempts=1)}

    assert by_host["a"].success
    assert by_host["b"].returncode == 1
    assert by_host["down"].transport_failed
    assert "after 5 attempts" in by_host["down"].stderr


# ---------------------------------------------------------------------------
# interface_ipv4
# ---------------------------------------------------------------------------

@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="SIOCGIFADDR is Linux only")
def test_interface_ipv4_loopback():
    assert interface_ipv4("lo") == "127.0.0.1"


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="SIOCGIFADDR is Linux only")
def test_interface_ipv4_unknown():
    with pytest.raises(FleetshellError, match="nosuchif0"):
        interface_ipv4("nosuchif0")


# ---------------------------------------------------------------------------
# scripts
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("name", [
    "wait_port.sh", "wait_fifo.sh", "chain_tail.sh", "chain_relay_forward.sh",
    "chain_relay_listen.sh", "chain_send.sh", "chain_cleanup.sh",
])
def test_read_script(name):
    assert read_script(name).strip()


def test_wait_port_template():
    script = read_script("wait_port.sh").format(port=7000, tries=10)
    assert "seq 10" in script
    assert "grep -q ':7000 '" in script
    assert script.strip().endswith("exit 1")
