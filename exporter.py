#!/usr/bin/env python3
"""
Munin Exporter - munin-node to Prometheus
Discovers munin-node plugins once, scrapes them on a fixed interval and
serves the latest values on a Prometheus metrics endpoint.
"""
import sys
import argparse
from typing import Optional, Sequence

from config.settings import settings, parse_ignore_list
from munin_exporter import __version__
from munin_exporter.common.logging_config import setup_logging, set_level
from munin_exporter.common.exceptions import (
    MuninConnectionError,
    MuninProtocolError,
    MuninTransportError,
    MetricRegistrationError,
    ConfigurationError
)
from munin_exporter.common.retry import RetryPolicy, create_retry_policy_from_config
from munin_exporter.common.shutdown import ShutdownManager
from munin_exporter.monitoring.metrics import MetricCatalog
from munin_exporter.monitoring.server import MetricsServer
from munin_exporter.munin.client import MuninClient
from munin_exporter.munin.catalog import CatalogBuilder
from munin_exporter.munin.scraper import Scraper, ScrapeLoop

VERSION_STRING = f"munin_exporter, version {__version__}"
COUNTER_NAMING_NOTE = (
    "Counter and derive fields are exposed with a _total suffix "
    "(cpu_system becomes cpu_system_total). Dashboards that query the bare "
    "counter name need updating."
)

logger = setup_logging(__name__, level=settings.logging.level if settings else "INFO")


class MuninExporter:
    """Wires the munin client, metric catalog, HTTP endpoint and scrape loop together"""

    def __init__(
        self,
        munin_host: str = "localhost",
        munin_port: int = 4949,
        listen_host: str = "0.0.0.0",
        listen_port: int = 8080,
        listen_path: str = "/metrics",
        metric_prefix: str = "",
        ignore_prefixes: Sequence[str] = (),
        scrape_interval: int = 60,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the exporter. Nothing touches the network until start().

        Args:
            munin_host: munin-node host
            munin_port: munin-node port
            listen_host: Address for the metrics endpoint
            listen_port: Port for the metrics endpoint
            listen_path: Path serving the metrics
            metric_prefix: Optional prefix for every field metric
            ignore_prefixes: Plugin name prefixes to skip
            scrape_interval: Seconds between scrapes
            retry_policy: Reconnect policy for munin-node
        """
        self.metric_prefix = metric_prefix
        self.ignore_prefixes = list(ignore_prefixes)
        self.scrape_interval = scrape_interval

        self.client = MuninClient(munin_host, munin_port, retry_policy)
        self.catalog = MetricCatalog()
        self.server = MetricsServer(
            self.catalog.registry,
            host=listen_host,
            port=listen_port,
            path=listen_path,
            status_fn=self.client.supervisor.get_status
        )
        self.scraper = Scraper(self.client, self.catalog, metric_prefix)
        self.loop = ScrapeLoop(self.scraper, interval=scrape_interval)

        self.shutdown = ShutdownManager()
        self.shutdown.register(self.loop.stop, priority=0, name="scrape_loop")
        self.shutdown.register(self.server.stop, priority=10, name="metrics_server")

    def start(self) -> None:
        """
        Connect, build the catalog and start serving.

        Raises:
            MuninConnectionError: If munin-node is unreachable
            MuninProtocolError: If discovery responses cannot be framed
            MetricRegistrationError: On a metric name collision
            OSError: If the metrics endpoint cannot bind
        """
        self.client.connect()

        builder = CatalogBuilder(
            self.client,
            self.catalog,
            metric_prefix=self.metric_prefix,
            ignore_prefixes=self.ignore_prefixes
        )
        builder.build()

        self.server.start()

    def run(self, max_passes: Optional[int] = None) -> None:
        """
        Main scrape loop.

        Raises:
            MuninTransportError: On an unrecoverable socket error
        """
        logger.info("=" * 60)
        logger.info("Munin Exporter Starting")
        logger.info(f"munin-node: {self.client.address} ({self.client.hostname})")
        logger.info(f"Plugins: {len(self.catalog.plugins)}")
        logger.info(f"Metrics: {len(self.catalog)}")
        logger.debug(f"Metric names: {', '.join(self.catalog.names())}")
        logger.info(f"Scrape interval: {self.scrape_interval}s")
        logger.info(f"Endpoint: http://{self.server.host}:{self.server.port}{self.server.path}")
        logger.info("=" * 60)

        self.loop.run(max_passes=max_passes)
        logger.info(f"Exporter stopped after {self.loop.passes} scrapes ({self.loop.failures} failed)")

    def cleanup(self) -> None:
        """Clean up resources"""
        logger.info("Cleaning up resources...")
        self.server.stop()
        self.client.close()
        logger.info("Cleanup complete")


def build_parser(cfg) -> argparse.ArgumentParser:
    """Command-line flags; defaults come from the environment settings."""
    parser = argparse.ArgumentParser(
        description="Munin Exporter - munin-node to Prometheus",
        epilog=COUNTER_NAMING_NOTE
    )
    parser.add_argument(
        "--munin-host",
        default=cfg.munin.host,
        help=f"munin-node host (default: {cfg.munin.host})"
    )
    parser.add_argument(
        "--munin-port",
        type=int,
        default=cfg.munin.port,
        help=f"munin-node port (default: {cfg.munin.port})"
    )
    parser.add_argument(
        "--munin-ignore",
        default=cfg.munin.ignore,
        help="Comma separated list of plugin prefixes to ignore"
    )
    parser.add_argument(
        "--metric-prefix",
        default=cfg.munin.metric_prefix,
        help="Prefix for every exported metric name"
    )
    parser.add_argument(
        "--scrape-interval",
        type=int,
        default=cfg.munin.scrape_interval_seconds,
        help=f"Seconds between scrapes (default: {cfg.munin.scrape_interval_seconds})"
    )
    parser.add_argument(
        "--listen-host",
        default=cfg.server.host,
        help=f"Address for the metrics endpoint (default: {cfg.server.host})"
    )
    parser.add_argument(
        "--listen-port",
        type=int,
        default=cfg.server.port,
        help=f"Port for the metrics endpoint (default: {cfg.server.port})"
    )
    parser.add_argument(
        "--listen-path",
        default=cfg.server.path,
        help=f"Path for the metrics endpoint (default: {cfg.server.path})"
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=cfg.logging.level.upper(),
        help=f"Log level (default: {cfg.logging.level})"
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show application version and exit"
    )
    return parser


def validate_args(args: argparse.Namespace) -> None:
    """
    Reject flag values the settings layer cannot check.

    Raises:
        ConfigurationError: On an out-of-range value
    """
    if args.scrape_interval < 1:
        raise ConfigurationError("--scrape-interval must be at least 1 second")
    if not 0 < args.munin_port < 65536:
        raise ConfigurationError(f"--munin-port out of range: {args.munin_port}")
    if not 0 <= args.listen_port < 65536:
        raise ConfigurationError(f"--listen-port out of range: {args.listen_port}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point"""
    if settings is None:
        logger.critical("Configuration could not be loaded, check the environment")
        return 1

    args = build_parser(settings).parse_args(argv)

    if args.version:
        print(VERSION_STRING)
        return 0

    try:
        validate_args(args)
    except ConfigurationError as e:
        logger.critical(str(e))
        return 1

    set_level(args.log_level)

    exporter = MuninExporter(
        munin_host=args.munin_host,
        munin_port=args.munin_port,
        listen_host=args.listen_host,
        listen_port=args.listen_port,
        listen_path=args.listen_path,
        metric_prefix=args.metric_prefix,
        ignore_prefixes=parse_ignore_list(args.munin_ignore),
        scrape_interval=args.scrape_interval,
        retry_policy=create_retry_policy_from_config(settings),
    )
    exporter.shutdown.install_signal_handlers()

    try:
        try:
            exporter.start()
        except MuninConnectionError as e:
            logger.critical(f"Could not connect to {exporter.client.address}: {e}")
            return 1
        except (MuninProtocolError, MetricRegistrationError) as e:
            logger.critical(f"Could not register metrics: {e}")
            return 1
        except OSError as e:
            logger.critical(f"Could not start metrics endpoint: {e}")
            return 1

        try:
            exporter.run()
        except MuninTransportError as e:
            logger.critical(f"Unexpected error: {e}")
            return 1
    finally:
        exporter.cleanup()

    return 0


if __name__ == "__main__":
    sys.exit(main())
