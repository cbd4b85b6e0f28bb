"""
Unit tests for MuninClient and PluginConfig.
Sockets are replaced by in-memory fakes fed with canned munin-node output.
"""
import io
import pytest
from unittest.mock import patch, MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from munin_exporter.munin.client import MuninClient, PluginConfig
from munin_exporter.munin.supervisor import ConnectionState
from munin_exporter.common.retry import RetryPolicy
from munin_exporter.common.exceptions import (
    MuninConnectionError,
    MuninProtocolError,
    MuninTransportError
)

BANNER = b"# munin node at web01.example.com\n"


class FakeSocket:
    """Socket stand-in: reads come from *data*, writes are recorded."""

    def __init__(self, data: bytes = b"", send_error: Exception = None):
        self.reader = io.BufferedReader(io.BytesIO(data))
        self.sent = []
        self.closed = False
        self.send_error = send_error

    def makefile(self, mode):
        return self.reader

    def sendall(self, payload):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)

    def close(self):
        self.closed = True


class ResettingReader(io.BufferedReader):
    """Buffered reader that fails with *error* after *lines_before_reset* lines."""

    def __init__(self, data: bytes, lines_before_reset: int, error: Exception = None):
        super().__init__(io.BytesIO(data))
        self.remaining = lines_before_reset
        self.error = error or ConnectionResetError(104, "Connection reset by peer")

    def readline(self, *args):
        if self.remaining == 0:
            raise self.error
        self.remaining -= 1
        return super().readline(*args)


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def client(sleep):
    return MuninClient("munin.test", 4949, RetryPolicy(interval=1, max_attempts=3, sleep=sleep))


def connected(client, *sockets):
    """Patch socket creation to hand out *sockets* in order and connect."""
    patcher = patch(
        "munin_exporter.munin.client.socket.create_connection",
        side_effect=list(sockets)
    )
    mock_create = patcher.start()
    client.connect()
    return patcher, mock_create


class TestPluginConfig:
    """Test config line classification"""

    def test_graph_key(self):
        cfg = PluginConfig("cpu")
        cfg.add("graph_title", "CPU usage")
        assert cfg.graph_config == {"graph_title": "CPU usage"}
        assert cfg.graph_title == "CPU usage"
        assert cfg.field_configs == {}

    def test_field_key(self):
        cfg = PluginConfig("cpu")
        cfg.add("user.label", "user")
        cfg.add("user.type", "DERIVE")
        assert cfg.field_configs == {"user": {"label": "user", "type": "DERIVE"}}
        assert cfg.fields == ["user"]

    def test_extra_dotted_segments_use_second_part(self):
        cfg = PluginConfig("if")
        cfg.add("rx.label.extra", "received")
        assert cfg.field_configs == {"rx": {"label": "received"}}

    def test_missing_title_is_empty(self):
        assert PluginConfig("x").graph_title == ""


class TestMuninClientConnect:
    """Test connect and banner validation"""

    def test_connect_reads_hostname(self, client):
        sock = FakeSocket(BANNER)
        patcher, mock_create = connected(client, sock)
        try:
            mock_create.assert_called_once_with(("munin.test", 4949))
            assert client.hostname == "web01.example.com"
            assert client.supervisor.state == ConnectionState.CONNECTED
        finally:
            patcher.stop()

    def test_unexpected_banner_raises(self, client):
        sock = FakeSocket(b"220 smtp ready\n")
        with patch("munin_exporter.munin.client.socket.create_connection", return_value=sock):
            with pytest.raises(MuninConnectionError, match="Unexpected line"):
                client.connect()
        assert sock.closed
        assert client.sock is None

    def test_empty_banner_raises(self, client):
        with patch("munin_exporter.munin.client.socket.create_connection",
                   return_value=FakeSocket(b"")):
            with pytest.raises(MuninConnectionError):
                client.connect()

    def test_refused_connection_raises(self, client):
        with patch("munin_exporter.munin.client.socket.create_connection",
                   side_effect=ConnectionRefusedError("refused")):
            with pytest.raises(MuninConnectionError, match="munin.test:4949"):
                client.connect()

    def test_close_sends_quit(self, client):
        sock = FakeSocket(BANNER)
        patcher, _ = connected(client, sock)
        patcher.stop()

        client.close()

        assert sock.sent == [b"quit\n"]
        assert sock.closed
        assert client.sock is None
        assert client.supervisor.state == ConnectionState.DISCONNECTED

    def test_close_without_connection(self, client):
        client.close()  # Should not raise


class TestMuninClientCommands:
    """Test list/config/fetch framing"""

    def _client_with(self, client, response: bytes):
        sock = FakeSocket(BANNER + response)
        patcher, _ = connected(client, sock)
        patcher.stop()
        return sock

    def test_list_plugins(self, client):
        sock = self._client_with(client, b"cpu load if_eth0\n")
        assert client.list_plugins() == ["cpu", "load", "if_eth0"]
        assert sock.sent == [b"list\n"]

    def test_list_error_line_raises(self, client):
        self._client_with(client, b"# Unknown command\n")
        with pytest.raises(MuninProtocolError, match="Error getting items"):
            client.list_plugins()

    def test_config_parses_graph_and_fields(self, client):
        sock = self._client_with(
            client,
            b"graph_title CPU usage\n"
            b"graph_vlabel %\n"
            b"# a comment\n"
            b"user.label user\n"
            b"user.info CPU time spent by normal programs\n"
            b"system.label system\n"
            b"system.type DERIVE\n"
            b".\n"
        )

        cfg = client.config("cpu")

        assert sock.sent == [b"config cpu\n"]
        assert cfg.graph_title == "CPU usage"
        assert cfg.graph_config["graph_vlabel"] == "%"
        assert cfg.field_configs["user"] == {
            "label": "user",
            "info": "CPU time spent by normal programs",
        }
        assert cfg.field_configs["system"]["type"] == "DERIVE"

    def test_config_skips_malformed_line(self, client):
        self._client_with(client, b"graph_title Load\nlonely\nload.label load\n.\n")
        cfg = client.config("load")
        assert cfg.fields == ["load"]

    def test_fetch_returns_value_lines(self, client):
        sock = self._client_with(
            client, b"# generated\nuser.value 12.5\nsystem.value 99\n.\n"
        )
        assert client.fetch("cpu") == ["user.value 12.5", "system.value 99"]
        assert sock.sent == [b"fetch cpu\n"]

    def test_crlf_line_endings(self, client):
        self._client_with(client, b"load.value 0.5\r\n.\r\n")
        assert client.fetch("load") == ["load.value 0.5"]

    def test_stream_end_inside_response_raises(self, client):
        self._client_with(client, b"user.value 1\n")
        with pytest.raises(MuninProtocolError, match="Stream ended"):
            client.fetch("cpu")

    def test_consecutive_commands_share_stream(self, client):
        self._client_with(client, b"cpu load\nload.value 1\n.\n")
        assert client.list_plugins() == ["cpu", "load"]
        assert client.fetch("load") == ["load.value 1"]


class TestMuninClientReconnect:
    """Test end-of-stream detection and re-issue of the command"""

    def test_fetch_reissued_once_after_reconnect(self, client, sleep):
        stale = FakeSocket(BANNER)  # node closes right after the banner
        fresh = FakeSocket(BANNER + b"user.value 12.5\n.\n")
        patcher, mock_create = connected(client, stale, fresh)
        try:
            lines = client.fetch("cpu")
        finally:
            patcher.stop()

        assert lines == ["user.value 12.5"]
        assert stale.sent == [b"fetch cpu\n"]
        assert stale.closed
        assert fresh.sent == [b"fetch cpu\n"]
        assert client.supervisor.attempts == 1
        assert client.supervisor.reconnects == 1
        assert mock_create.call_count == 2
        sleep.assert_not_called()

    def test_one_attempt_per_failed_connect(self, client, sleep):
        stale = FakeSocket(BANNER)
        fresh = FakeSocket(BANNER + b"load.value 1\n.\n")
        patcher, mock_create = connected(
            client,
            stale,
            ConnectionRefusedError("refused"),
            ConnectionRefusedError("refused"),
            fresh,
        )
        try:
            lines = client.fetch("load")
        finally:
            patcher.stop()

        assert lines == ["load.value 1"]
        assert client.supervisor.attempts == 3
        assert sleep.call_count == 2
        assert fresh.sent == [b"fetch load\n"]

    def test_broken_pipe_counts_as_stream_end(self, client):
        broken = FakeSocket(BANNER, send_error=BrokenPipeError("broken"))
        fresh = FakeSocket(BANNER + b"cpu\n")
        patcher, _ = connected(client, broken, fresh)
        try:
            assert client.list_plugins() == ["cpu"]
        finally:
            patcher.stop()
        assert broken.closed

    def test_bounded_policy_gives_up(self, client):
        stale = FakeSocket(BANNER)
        refused = [ConnectionRefusedError("refused")] * 3
        patcher, _ = connected(client, stale, *refused)
        try:
            with pytest.raises(MuninConnectionError):
                client.fetch("cpu")
        finally:
            patcher.stop()
        assert client.supervisor.state == ConnectionState.DISCONNECTED

    def test_other_socket_error_is_fatal(self, client):
        sock = FakeSocket(BANNER, send_error=OSError("bad file descriptor"))
        patcher, _ = connected(client, sock)
        patcher.stop()

        with pytest.raises(MuninTransportError):
            client.fetch("cpu")
        assert client.supervisor.attempts == 0


    def test_reset_while_reading_aborts_command_then_reconnects(self, client):
        stale = FakeSocket(BANNER + b"user.value 1\n")
        stale.reader = ResettingReader(BANNER + b"user.value 1\n", lines_before_reset=2)
        fresh = FakeSocket(BANNER + b"user.value 2\n.\n")
        patcher, mock_create = connected(client, stale, fresh)
        try:
            with pytest.raises(MuninProtocolError, match="Stream ended"):
                client.fetch("cpu")
            assert client.sock is None
            assert stale.closed
            assert client.supervisor.state == ConnectionState.DISCONNECTED

            lines = client.fetch("cpu")
        finally:
            patcher.stop()

        assert lines == ["user.value 2"]
        assert fresh.sent == [b"fetch cpu\n"]
        assert client.supervisor.reconnects == 1
        assert mock_create.call_count == 2

    def test_broken_pipe_while_reading_is_not_fatal(self, client):
        sock = FakeSocket(BANNER + b"cpu\n")
        sock.reader = ResettingReader(
            BANNER + b"cpu\n", lines_before_reset=1, error=BrokenPipeError(32, "Broken pipe")
        )
        patcher, _ = connected(client, sock)
        patcher.stop()

        with pytest.raises(MuninProtocolError):
            client.list_plugins()
