"""
munin-node protocol client.
Speaks the line-oriented text protocol over a single TCP connection and
transparently reconnects when the node closes the stream.
"""
import re
import socket
from typing import BinaryIO, Dict, List, Optional

from munin_exporter.common.exceptions import (
    MuninConnectionError,
    MuninProtocolError,
    MuninTransportError
)
from munin_exporter.common.logging_config import get_logger
from munin_exporter.common.retry import RetryPolicy
from munin_exporter.munin.supervisor import ConnectionSupervisor

logger = get_logger(__name__)

# expect: "# munin node at <hostname>"
BANNER_RE = re.compile(r"^# munin node at (.+)$")
END_MARKER = "."


class PluginConfig:
    """Parsed ``config <plugin>`` response"""

    def __init__(self, plugin: str):
        self.plugin = plugin
        self.graph_config: Dict[str, str] = {}
        self.field_configs: Dict[str, Dict[str, str]] = {}

    def add(self, key: str, value: str) -> None:
        """
        Store one ``key value`` pair.

        Keys of the form ``field.attribute`` go to the field's map, anything
        else is graph-level configuration.
        """
        key_parts = key.split(".")
        if len(key_parts) > 1:
            self.field_configs.setdefault(key_parts[0], {})[key_parts[1]] = value
        else:
            self.graph_config[key] = value

    @property
    def graph_title(self) -> str:
        return self.graph_config.get("graph_title", "")

    @property
    def fields(self) -> List[str]:
        return list(self.field_configs)


class MuninClient:
    """
    Client for a single munin-node.

    ``send()`` re-issues its command after a reconnect when the node has
    closed the stream, so only idempotent commands (list, config, fetch)
    go through it.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 4949,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize munin-node client.

        Args:
            host: munin-node host
            port: munin-node port
            retry_policy: Reconnect policy (default: every second, forever)
        """
        self.host = host
        self.port = port
        self.sock: Optional[socket.socket] = None
        self.reader: Optional[BinaryIO] = None
        self.hostname: Optional[str] = None
        self.supervisor = ConnectionSupervisor(self.connect, retry_policy)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self) -> None:
        """
        Open the connection and read the node's banner.

        Raises:
            MuninConnectionError: If the connection or banner check fails
        """
        self._drop()
        logger.info(f"Connecting to munin-node: {self.address}")

        try:
            sock = socket.create_connection((self.host, self.port))
        except OSError as e:
            raise MuninConnectionError(f"Could not connect to {self.address}: {e}") from e

        reader = sock.makefile("rb")
        try:
            head = reader.readline()
        except OSError as e:
            reader.close()
            sock.close()
            raise MuninConnectionError(f"Could not read banner from {self.address}: {e}") from e

        match = BANNER_RE.match(head.decode("utf-8", errors="replace").rstrip("\r\n"))
        if not match:
            reader.close()
            sock.close()
            raise MuninConnectionError(f"Unexpected line: {head!r}")

        self.sock = sock
        self.reader = reader
        self.hostname = match.group(1).strip()
        self.supervisor.mark_connected()
        logger.info(f"Found hostname: {self.hostname}", extra={"hostname": self.hostname})

    def _drop(self) -> None:
        """Close the socket without saying goodbye."""
        if self.reader is not None:
            try:
                self.reader.close()
            except OSError as e:
                logger.debug(f"Error closing reader: {e}")
        if self.sock is not None:
            try:
                self.sock.close()
            except OSError as e:
                logger.debug(f"Error closing socket: {e}")
        self.reader = None
        self.sock = None

    def close(self) -> None:
        """Send ``quit`` and close the connection."""
        if self.sock is None:
            return
        try:
            self.sock.sendall(b"quit\n")
        except OSError as e:
            logger.warning(f"Error during munin quit: {e}")
        finally:
            self._drop()
            self.supervisor.mark_disconnected()
            logger.info("munin-node connection closed")

    def _issue(self, command: str) -> bool:
        """
        Write *command* and wait for the first byte of its response.

        Returns:
            False if the node has closed the stream
        """
        try:
            self.sock.sendall(f"{command}\n".encode("utf-8"))
            return bool(self.reader.peek(1))
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Connection lost while sending '{command}': {e}")
            return False
        except OSError as e:
            raise MuninTransportError(f"Unexpected error sending '{command}': {e}") from e

    def send(self, command: str) -> BinaryIO:
        """
        Send one command line and return the reader positioned at its response.

        Reconnects and re-issues the command each time the stream turns out
        to be closed.

        Raises:
            MuninTransportError: On any other socket error
            MuninConnectionError: If a bounded reconnect policy gives up
        """
        while True:
            if self.sock is None:
                self.supervisor.reconnect()
            if self._issue(command):
                return self.reader
            logger.warning("not connected anymore, closing connection")
            self._drop()
            self.supervisor.reconnect()

    def _read_line(self) -> str:
        try:
            raw = self.reader.readline()
        except (BrokenPipeError, ConnectionResetError) as e:
            # next command sees sock None and reconnects
            self._drop()
            self.supervisor.mark_disconnected()
            raise MuninProtocolError(f"Stream ended inside a response: {e}") from e
        except OSError as e:
            raise MuninTransportError(f"Unexpected error reading response: {e}") from e
        if not raw:
            raise MuninProtocolError("Stream ended inside a response")
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def _read_block(self, command: str) -> List[str]:
        """Send *command* and collect its lines up to the ``.`` marker, minus comments."""
        self.send(command)
        lines = []
        while True:
            line = self._read_line()
            if line == END_MARKER:
                break
            if line.startswith("#"):
                continue
            lines.append(line)
        return lines

    def list_plugins(self) -> List[str]:
        """
        Return the plugin names advertised by ``list``.

        Raises:
            MuninProtocolError: If the node answers with a comment/error line
        """
        self.send("list")
        response = self._read_line()
        if response.startswith("#"):
            raise MuninProtocolError(f"Error getting items: {response}")
        return response.split()

    def config(self, plugin: str) -> PluginConfig:
        """Fetch and parse ``config <plugin>``."""
        plugin_config = PluginConfig(plugin)
        for line in self._read_block(f"config {plugin}"):
            parts = line.split()
            if len(parts) < 2:
                logger.warning(f"Line unexpected: {line!r}", extra={"plugin": plugin})
                continue
            plugin_config.add(parts[0], " ".join(parts[1:]))
        return plugin_config

    def fetch(self, plugin: str) -> List[str]:
        """Return the raw value lines of ``fetch <plugin>``."""
        return self._read_block(f"fetch {plugin}")

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()

