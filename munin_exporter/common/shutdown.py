"""
Graceful shutdown manager with ordered cleanup callbacks.
Turns SIGINT/SIGTERM into an orderly stop of the exporter between scrapes.
"""
import signal
import threading
from enum import Enum
from typing import Callable, List, Tuple

from munin_exporter.common.logging_config import get_logger

logger = get_logger(__name__)


class ShutdownState(Enum):
    """Shutdown manager states"""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownManager:
    """
    Runs registered cleanup callbacks once, lowest priority first.

    Priority levels:
        0-9:   Stop the scrape loop
        10-19: Stop the metrics server
        20-29: Close the munin-node connection

    In-flight munin reads are not interrupted; the scrape loop notices the
    stop request between passes.

    Usage:
        shutdown = ShutdownManager()
        shutdown.register(loop.stop, priority=0, name="scrape_loop")
        shutdown.register(client.close, priority=20, name="munin")
        shutdown.install_signal_handlers()
    """

    def __init__(self):
        self.state = ShutdownState.RUNNING
        self._callbacks: List[Tuple[int, str, Callable[[], None]]] = []
        self._state_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self.state == ShutdownState.RUNNING

    def register(
        self,
        callback: Callable[[], None],
        priority: int = 20,
        name: str = "unnamed"
    ) -> None:
        """
        Register a cleanup callback.

        Args:
            callback: Function to call during shutdown (no args)
            priority: Execution priority (lower = earlier)
            name: Descriptive name for logging
        """
        self._callbacks.append((priority, name, callback))
        self._callbacks.sort(key=lambda x: x[0])
        logger.debug(f"Registered shutdown callback: {name} (priority={priority})")

    def install_signal_handlers(self) -> None:
        """Install SIGINT and SIGTERM handlers."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        logger.info("Signal handlers installed (SIGINT, SIGTERM)")

    def _signal_handler(self, signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating shutdown...")
        self.initiate_shutdown()

    def initiate_shutdown(self) -> None:
        """
        Run every callback once. Later calls are ignored.
        A failing callback is logged and does not stop the others.
        """
        with self._state_lock:
            if self.state != ShutdownState.RUNNING:
                logger.warning("Shutdown already in progress, ignoring")
                return
            self.state = ShutdownState.SHUTTING_DOWN

        for priority, name, callback in self._callbacks:
            logger.info(f"Executing shutdown callback: {name} (priority={priority})")
            try:
                callback()
            except Exception as e:
                logger.error(f"Callback failed: {name} - {e}")

        with self._state_lock:
            self.state = ShutdownState.STOPPED

        logger.info("Shutdown complete")
