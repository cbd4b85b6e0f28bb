"""
Connection supervisor for the munin-node session.
Re-establishes a dropped connection under a fixed-delay retry policy.
"""
import threading
from enum import Enum
from typing import Callable, Optional

from munin_exporter.common.exceptions import MuninConnectionError
from munin_exporter.common.logging_config import get_logger
from munin_exporter.common.retry import RetryPolicy

logger = get_logger(__name__)


class ConnectionState(Enum):
    """Supervisor states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    """
    Drives ``DISCONNECTED → CONNECTING → CONNECTED`` for one connection.

    ``reconnect()`` blocks until ``connect_fn`` succeeds. With the default
    policy it never gives up; a bounded policy raises once exhausted.

    Usage:
        supervisor = ConnectionSupervisor(client.open, RetryPolicy(interval=1))
        supervisor.reconnect()
    """

    def __init__(
        self,
        connect_fn: Callable[[], None],
        policy: Optional[RetryPolicy] = None
    ):
        """
        Args:
            connect_fn: Opens the connection and validates the banner.
                        Raises MuninConnectionError or OSError on failure.
            policy: Retry policy (default: every second, forever)
        """
        self.connect_fn = connect_fn
        self.policy = policy or RetryPolicy()
        self.state = ConnectionState.DISCONNECTED
        self.attempts = 0
        self.reconnects = 0
        self._state_lock = threading.Lock()

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            self.state = state

    def mark_connected(self) -> None:
        """Record a connection opened outside the supervisor (startup)."""
        self._set_state(ConnectionState.CONNECTED)

    def mark_disconnected(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _attempt(self) -> None:
        self.attempts += 1
        self._set_state(ConnectionState.CONNECTING)
        try:
            self.connect_fn()
        except (MuninConnectionError, OSError) as e:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning(f"Couldn't reconnect: {e}")
            raise

    def reconnect(self) -> None:
        """
        Block until the connection is re-established.

        Raises:
            MuninConnectionError: If a bounded policy runs out of attempts
        """
        self.mark_disconnected()
        logger.info(f"Reconnecting with {self.policy!r}")

        try:
            self.policy.call(self._attempt, retry_on=(MuninConnectionError, OSError))
        except (MuninConnectionError, OSError) as e:
            raise MuninConnectionError(
                f"Giving up reconnecting after {self.policy.max_attempts} attempts: {e}"
            ) from e

        self.reconnects += 1
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Reconnected to munin-node")

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "connected": self.is_connected,
            "attempts": self.attempts,
            "reconnects": self.reconnects,
        }
