"""Tests for fleetshell.orchestration.ssh module."""

from __future__ import annotations

from unittest import mock

import paramiko
import pytest

from fleetshell.orchestration.ssh import (
    RemoteCommandError,
    RemoteResult,
    SSHConnectionError,
    Session,
    command_succeeded,
    run_sequence,
    run_with_retry,
)


class ScriptedSession:
    """Session double returning pre-baked return codes in order."""

    def __init__(self, returncodes, host="10.0.0.1"):
        self.host = host
        self.returncodes = list(returncodes)
        self.commands = []

    def run(self, command, timeout=None):
        self.commands.append(command)
        rc = self.returncodes.pop(0) if self.returncodes else 0
        return RemoteResult(host=self.host, returncode=rc, stdout="out %d\n" % len(self.commands),
                            command=command)


# ---------------------------------------------------------------------------
# RemoteResult
# ---------------------------------------------------------------------------

class TestRemoteResult:
    def test_success(self):
        assert RemoteResult("h", 0, "ok").success
        assert not RemoteResult("h", 1, "").success

    def test_transport_failed(self):
        r = RemoteResult("h", -1, "", stderr="Connection reset")
        assert r.transport_failed
        assert not r.success

    def test_last_line(self):
        r = RemoteResult("h", 0, "first\nsecond\n\n  \n")
        assert r.last_line == "second"

    def test_last_line_empty(self):
        assert RemoteResult("h", 0, "").last_line == ""


def test_command_succeeded_semantics():
    """Transport errors always fail; non-zero exit only fails when checked."""
    assert command_succeeded(RemoteResult("h", 0, ""))
    assert not command_succeeded(RemoteResult("h", 2, ""))
    assert command_succeeded(RemoteResult("h", 2, ""), check=False)
    assert not command_succeeded(RemoteResult("h", -1, ""), check=False)


def test_error_messages():
    err = SSHConnectionError("db1", 5)
    assert "db1" in str(err)
    assert "after 5 attempts" in str(err)

    result = RemoteResult("db1", 3, "boom\n", command="false")
    err = RemoteCommandError(result)
    assert err.result is result
    assert "rc=3" in str(err)
    assert "boom" in str(err)


# ---------------------------------------------------------------------------
# run_with_retry / run_sequence
# ---------------------------------------------------------------------------

@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_retry_succeeds_after_two_failures(mock_sleep):
    """Two failures then success: three runs, linear backoff of 1s then 2s."""
    session = ScriptedSession([1, 1, 0])
    result = run_with_retry(session, "service mysql restart", attempts=3)

    assert result.success
    assert session.commands == ["service mysql restart"] * 3
    assert mock_sleep.call_args_list == [mock.call(1.0), mock.call(2.0)]


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_retry_gives_up_after_budget(mock_sleep):
    session = ScriptedSession([1, 1, 1, 0])
    result = run_with_retry(session, "false", attempts=3)

    assert result.returncode == 1
    assert len(session.commands) == 3
    assert mock_sleep.call_count == 2


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_retry_single_attempt_no_sleep(mock_sleep):
    session = ScriptedSession([1])
    result = run_with_retry(session, "false", attempts=1)

    assert not result.success
    assert len(session.commands) == 1
    mock_sleep.assert_not_called()


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_retry_falsy_attempts_means_once(mock_sleep):
    session = ScriptedSession([1, 0])
    run_with_retry(session, "false", attempts=0)
    assert len(session.commands) == 1


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_retry_unchecked_nonzero_is_success(mock_sleep):
    session = ScriptedSession([2])
    result = run_with_retry(session, "ls /nope", attempts=3, check=False)

    assert result.returncode == 2
    assert len(session.commands) == 1
    mock_sleep.assert_not_called()


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_retry_custom_backoff(mock_sleep):
    session = ScriptedSession([1, 1, 0])
    run_with_retry(session, "x", attempts=3, backoff=0.5)
    assert mock_sleep.call_args_list == [mock.call(0.5), mock.call(1.0)]


@mock.patch("fleetshell.orchestration.ssh.time.sleep")
def test_run_sequence_stops_at_failure(mock_sleep):
    session = ScriptedSession([0, 1, 0])
    result = run_sequence(session, ["a", "b", "c"], attempts=1)

    assert result.returncode == 1
    assert session.commands == ["a", "b"]


def test_run_sequence_returns_last():
    session = ScriptedSession([0, 0])
    result = run_sequence(session, ["a", "b"])
    assert result.command == "b"
    assert result.stdout == "out 2\n"


def test_run_sequence_empty():
    assert run_sequence(ScriptedSession([]), []) is None


# ---------------------------------------------------------------------------
# Session (paramiko mocked)
# ---------------------------------------------------------------------------

def _mock_client(output=b"hello\n", returncode=0, active=True):
    client = mock.MagicMock()
    transport = client.get_transport.return_value
    transport.is_active.return_value = active
    channel = transport.open_session.return_value
    stream = mock.MagicMock()
    stream.__enter__.return_value = stream
    stream.read.return_value = output
    channel.makefile.return_value = stream
    channel.recv_exit_status.return_value = returncode
    return client, channel


class TestSession:
    def test_run_success(self):
        client, channel = _mock_client(b"hello\n", 0)
        result = Session("10.0.0.1", client).run("echo hello")

        assert result.success
        assert result.stdout == "hello\n"
        assert result.host == "10.0.0.1"
        assert result.command == "echo hello"
        channel.set_combine_stderr.assert_called_once_with(True)
        channel.exec_command.assert_called_once_with("echo hello")
        channel.close.assert_called_once()

    def test_run_nonzero(self):
        client, _ = _mock_client(b"No such file\n", 2)
        result = Session("h", client).run("ls /nope")
        assert result.returncode == 2
        assert not result.transport_failed

    def test_run_inactive_transport(self):
        client, _ = _mock_client(active=False)
        result = Session("h", client).run("true")
        assert result.transport_failed
        assert "not active" in result.stderr

    def test_run_transport_error(self):
        client, channel = _mock_client()
        channel.exec_command.side_effect = paramiko.SSHException("channel closed")
        result = Session("h", client).run("true")
        assert result.returncode == -1
        assert "channel closed" in result.stderr

    def test_run_timeout_applied(self):
        client, channel = _mock_client()
        Session("h", client).run("sleep 1", timeout=30)
        channel.settimeout.assert_called_once_with(30)

    @mock.patch("fleetshell.orchestration.ssh.paramiko.SSHClient")
    def test_open_connects(self, mock_client_cls):
        client = mock_client_cls.return_value
        session = Session.open("10.0.0.1", user="admin", keys=["/k/id_rsa"], connect_timeout=7)

        assert session.host == "10.0.0.1"
        assert session.client is client
        client.set_missing_host_key_policy.assert_called_once()
        args, kwargs = client.connect.call_args
        assert args == ("10.0.0.1",)
        assert kwargs["username"] == "admin"
        assert kwargs["key_filename"] == ["/k/id_rsa"]
        assert kwargs["look_for_keys"] is False
        assert kwargs["timeout"] == 7

    @mock.patch("fleetshell.orchestration.ssh.paramiko.SSHClient")
    def test_open_without_keys_uses_agent(self, mock_client_cls):
        client = mock_client_cls.return_value
        Session.open("h")
        _, kwargs = client.connect.call_args
        assert "key_filename" not in kwargs
        assert kwargs["username"] == "root"

    @mock.patch("fleetshell.orchestration.ssh.paramiko.SSHClient")
    def test_open_failure_closes_client(self, mock_client_cls):
        client = mock_client_cls.return_value
        client.connect.side_effect = OSError("No route to host")

        with pytest.raises(OSError):
            Session.open("h")
        client.close.assert_called_once()
