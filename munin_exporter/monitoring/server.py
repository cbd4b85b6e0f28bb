"""
HTTP server exposing the metric catalog for Prometheus to pull.
Runs in a daemon thread so scraping munin-node is never blocked by it.

Endpoints:
    GET <path>   - Prometheus exposition of the catalog registry
                   (text or OpenMetrics, gzip and ``name[]`` filtering)
    GET /health  - Liveness plus the munin-node connection status
"""
import json
import threading
import time
from http.server import ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional
from datetime import datetime, timezone
from urllib.parse import urlparse

from prometheus_client import CollectorRegistry
from prometheus_client.exposition import MetricsHandler

from munin_exporter.common.logging_config import get_logger

logger = get_logger(__name__)


class MetricsHTTPHandler(MetricsHandler):
    """
    prometheus_client's exposition handler restricted to one path, plus /health.

    Build per-server subclasses with ``MetricsHandler.factory(registry)``.
    """

    # Class-level configuration (set by MetricsServer)
    metrics_path: str = "/metrics"
    start_time: float = 0.0
    status_fn: Optional[Callable[[], Dict[str, Any]]] = None

    def do_GET(self):
        """Handle GET requests."""
        path = urlparse(self.path).path

        if path == self.metrics_path:
            super().do_GET()

        elif path == "/health":
            data = {
                "status": "alive",
                "uptime_seconds": round(time.time() - self.start_time, 1),
                "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            }
            if self.status_fn is not None:
                data["munin"] = self.status_fn()
            self._send_json(200, data)

        else:
            self._send_json(404, {"error": "Not found"})

    def _send_json(self, status_code: int, data: Dict[str, Any]):
        """Send JSON response."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class MetricsServer:
    """
    Threaded HTTP server for the Prometheus endpoint.

    Usage:
        server = MetricsServer(catalog.registry, host="0.0.0.0", port=8080)
        server.start()
        # ... scrape loop ...
        server.stop()
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        host: str = "0.0.0.0",
        port: int = 8080,
        path: str = "/metrics",
        status_fn: Optional[Callable[[], Dict[str, Any]]] = None
    ):
        """
        Args:
            registry: Registry rendered on every pull
            host: Address to bind
            port: HTTP port to listen on (0 picks a free port)
            path: Path serving the exposition format
            status_fn: Returns a JSON-able dict added to /health as ``munin``
        """
        if not path.startswith("/"):
            path = "/" + path
        self.registry = registry
        self.host = host
        self.port = port
        self.path = path
        self.status_fn = status_fn
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """
        Bind and serve in a daemon thread.

        Raises:
            OSError: If the address cannot be bound
        """
        handler = MetricsHTTPHandler.factory(self.registry)
        handler.metrics_path = self.path
        handler.start_time = time.time()
        if self.status_fn is not None:
            handler.status_fn = staticmethod(self.status_fn)

        self._server = ThreadingHTTPServer((self.host, self.port), handler)
        self._server.daemon_threads = True
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="metrics-server",
            daemon=True
        )
        self._thread.start()
        logger.info(
            f"Metrics server started on {self.host}:{self.port}  "
            f"→  http://localhost:{self.port}{self.path}"
        )

    def stop(self) -> None:
        """Stop the server and release the socket."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            logger.info("Metrics server stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
