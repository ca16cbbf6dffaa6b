"""
Tests for the SSH executor and the command prober.

asyncssh.connect is replaced with an in-process fake connection so no
network access is needed.
"""

import asyncio
import errno
import socket
from types import SimpleNamespace

import asyncssh
import pytest

from services.credentials import SshTarget
from services.errors import CommandFailed, ConnectionFailed, ConnectionFailureReason, ErrorKind
from services.prober import CommandProber
from services.remote_executor import RemoteExecutor, classify_connect_error

TARGET = SshTarget(host_id=1, name="nas01", address="192.168.4.10", port=22, username="admin", password="secret")


class FakeConnection:
    def __init__(self, results):
        self.results = results
        self.commands = []
        self.closed = False

    async def run(self, command, check=False):
        self.commands.append(command)
        result = self.results[command]
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return await result()
        return result

    def close(self):
        self.closed = True

    async def wait_closed(self):
        return None


def completed(stdout="", exit_status=0, stderr=""):
    return SimpleNamespace(stdout=stdout, stderr=stderr, exit_status=exit_status)


@pytest.fixture
def fake_connect(monkeypatch):
    """Install a fake asyncssh.connect; returns the recorded connect kwargs."""
    state = {"results": {}, "calls": [], "error": None, "conn": None}

    async def connect(**kwargs):
        state["calls"].append(kwargs)
        if state["error"] is not None:
            raise state["error"]
        state["conn"] = FakeConnection(state["results"])
        return state["conn"]

    monkeypatch.setattr(asyncssh, "connect", connect)
    return state


class TestClassifyConnectError:

    @pytest.mark.parametrize(
        "exc, reason",
        [
            (asyncssh.PermissionDenied("bad password"), ConnectionFailureReason.AUTHENTICATION),
            (asyncssh.HostKeyNotVerifiable("unknown key"), ConnectionFailureReason.HOST_KEY),
            (asyncio.TimeoutError(), ConnectionFailureReason.TIMEOUT),
            (ConnectionRefusedError(), ConnectionFailureReason.REFUSED),
            (socket.gaierror(-2, "Name or service not known"), ConnectionFailureReason.UNREACHABLE),
            (OSError(errno.EHOSTUNREACH, "No route to host"), ConnectionFailureReason.UNREACHABLE),
            (RuntimeError("weird"), ConnectionFailureReason.OTHER),
        ],
    )
    def test_classification(self, exc, reason):
        assert classify_connect_error(exc) == reason


class TestRemoteExecutor:

    @pytest.mark.asyncio
    async def test_execute_trims_trailing_whitespace(self, fake_connect):
        fake_connect["results"]["hostname"] = completed("  nas01\n\n")
        output = await RemoteExecutor(connect_timeout=5, command_timeout=5).execute(TARGET, "hostname")
        assert output == "  nas01"
        assert fake_connect["conn"].closed is True

    @pytest.mark.asyncio
    async def test_password_auth_does_not_offer_keys(self, fake_connect):
        fake_connect["results"]["true"] = completed()
        await RemoteExecutor(connect_timeout=5, command_timeout=5, known_hosts="").execute(TARGET, "true")
        [kwargs] = fake_connect["calls"]
        assert kwargs["host"] == "192.168.4.10"
        assert kwargs["username"] == "admin"
        assert kwargs["password"] == "secret"
        assert kwargs["client_keys"] is None

    @pytest.mark.asyncio
    async def test_key_auth(self, fake_connect):
        fake_connect["results"]["true"] = completed()
        target = SshTarget(host_id=2, name="pve", address="192.168.4.2", port=2222, username="root",
                           private_key_path="/keys/id_ed25519")
        await RemoteExecutor(connect_timeout=5, command_timeout=5).execute(target, "true")
        [kwargs] = fake_connect["calls"]
        assert kwargs["port"] == 2222
        assert kwargs["client_keys"] == ["/keys/id_ed25519"]
        assert "password" not in kwargs

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_command_failed(self, fake_connect):
        fake_connect["results"]["docker ps"] = completed("", exit_status=127, stderr="docker: not found")
        with pytest.raises(CommandFailed) as exc_info:
            await RemoteExecutor(connect_timeout=5, command_timeout=5).execute(TARGET, "docker ps")
        assert exc_info.value.exit_status == 127
        assert exc_info.value.kind == ErrorKind.COMMAND_FAILED
        assert "docker: not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_command_timeout(self, fake_connect):
        async def hang():
            await asyncio.sleep(5)

        fake_connect["results"]["sleep 60"] = hang
        with pytest.raises(CommandFailed) as exc_info:
            await RemoteExecutor(connect_timeout=5, command_timeout=0.05).execute(TARGET, "sleep 60")
        assert exc_info.value.exit_status is None
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_lost_mid_command(self, fake_connect):
        fake_connect["results"]["uptime"] = asyncssh.ConnectionLost("reset by peer")
        with pytest.raises(ConnectionFailed):
            await RemoteExecutor(connect_timeout=5, command_timeout=5).execute(TARGET, "uptime")

    @pytest.mark.asyncio
    async def test_authentication_failure(self, fake_connect):
        fake_connect["error"] = asyncssh.PermissionDenied("bad password")
        with pytest.raises(ConnectionFailed) as exc_info:
            await RemoteExecutor(connect_timeout=5, command_timeout=5).execute(TARGET, "uptime")
        assert exc_info.value.reason == ConnectionFailureReason.AUTHENTICATION
        assert exc_info.value.kind == ErrorKind.CONNECTION_FAILED

    @pytest.mark.asyncio
    async def test_session_runs_commands_in_order_on_one_connection(self, fake_connect):
        fake_connect["results"].update({"a": completed("1"), "b": completed("2")})
        async with RemoteExecutor(connect_timeout=5, command_timeout=5).session(TARGET) as session:
            assert await session.run("a") == "1"
            assert await session.run("b") == "2"
        assert len(fake_connect["calls"]) == 1
        assert fake_connect["conn"].commands == ["a", "b"]


class RecordingRunner:
    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    async def run(self, command):
        self.calls.append(command)
        answer = self.answers.get(command)
        if answer is None:
            raise CommandFailed(command, 127)
        return answer


class TestCommandProber:

    @pytest.mark.asyncio
    async def test_fallback_stops_at_first_success(self):
        runner = RecordingRunner({"B": "output of B", "C": "output of C"})
        output = await CommandProber(runner).probe(["A", "B", "C"])
        assert output == "output of B"
        assert runner.calls == ["A", "B"]

    @pytest.mark.asyncio
    async def test_empty_output_moves_on(self):
        runner = RecordingRunner({"A": "   ", "B": "ok"})
        assert await CommandProber(runner).probe(["A", "B"]) == "ok"

    @pytest.mark.asyncio
    async def test_all_fail_is_unknown(self):
        runner = RecordingRunner({})
        assert await CommandProber(runner).probe(["A", "B"]) is None
        assert runner.calls == ["A", "B"]

    @pytest.mark.asyncio
    async def test_connection_failure_propagates(self):
        class DeadRunner:
            async def run(self, command):
                raise ConnectionFailed("10.0.0.1", ConnectionFailureReason.OTHER, "lost")

        with pytest.raises(ConnectionFailed):
            await CommandProber(DeadRunner()).probe(["A", "B"])

    @pytest.mark.asyncio
    async def test_succeeds_accepts_empty_output(self):
        runner = RecordingRunner({"command -v apt": ""})
        prober = CommandProber(runner)
        assert await prober.succeeds("command -v apt") is True
        assert await prober.succeeds("command -v yum") is False
