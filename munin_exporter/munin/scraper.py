"""
Scrape loop: periodically fetches every cataloged plugin from munin-node
and pushes the returned values into their metric holders.
"""
import re
import threading
import time
import uuid
from typing import Callable, List, Optional, Tuple

from munin_exporter.common.exceptions import MuninConnectionError, MuninProtocolError
from munin_exporter.common.logging_config import get_logger
from munin_exporter.monitoring.metrics import MetricCatalog
from munin_exporter.munin.catalog import metric_name

logger = get_logger(__name__)

# ASCII decimal float, optional exponent, or inf/infinity/nan; no digit separators
VALUE_RE = re.compile(
    r"^[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan)$",
    re.ASCII | re.IGNORECASE
)


def parse_fetch_line(line: str) -> Tuple[str, float]:
    """
    Parse one ``fetch`` line such as ``user.value 12.5``.

    Everything from the first ``.`` of the key on is dropped.

    Raises:
        ValueError: If the line is not exactly two tokens or the value is not numeric
    """
    parts = line.split()
    if len(parts) != 2:
        raise ValueError(f"unexpected line: {line!r}")
    key = parts[0].split(".")[0]
    if not VALUE_RE.match(parts[1]):
        raise ValueError(f"Couldn't parse value in line {line!r}, malformed?")
    return key, float(parts[1])


class Scraper:
    """
    One synchronous pass over every plugin in catalog order.

    Args:
        client: ``MuninClient`` used for ``fetch``
        catalog: Catalog built by ``CatalogBuilder``
        metric_prefix: Same prefix the catalog was built with
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        client,
        catalog: MetricCatalog,
        metric_prefix: str = "",
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.catalog = catalog
        self.metric_prefix = metric_prefix
        self.clock = clock

    def scrape_once(self, scrape_id: Optional[str] = None) -> int:
        """
        Fetch all plugins and update their holders.

        A protocol error aborts the pass; holders already updated keep
        their new values and the duration gauge is left untouched.

        Returns:
            Number of values written to holders

        Raises:
            MuninProtocolError: If a fetch response cannot be framed
        """
        start = self.clock()
        updated = 0

        for plugin in self.catalog.plugins:
            lines = self.client.fetch(plugin)
            updated += self._apply(plugin, lines, scrape_id)

        elapsed = max(0.0, self.clock() - start)
        self.catalog.observe_scrape_duration(self.client.hostname or "", elapsed)
        return updated

    def _apply(self, plugin: str, lines: List[str], scrape_id: Optional[str]) -> int:
        hostname = self.client.hostname or ""
        context = {"plugin": plugin, "hostname": hostname, "scrape_id": scrape_id}
        updated = 0

        for line in lines:
            try:
                field, value = parse_fetch_line(line)
            except ValueError as e:
                logger.warning(str(e), extra=context)
                continue

            name = metric_name(self.metric_prefix, plugin, field)
            holder = self.catalog.get(name)
            if holder is None:
                continue

            logger.debug(f"{name}: {holder.value} -> {value}", extra=context)
            holder.update(value, (hostname, plugin, field))
            updated += 1

        return updated


class ScrapeLoop:
    """
    Runs ``Scraper.scrape_once`` on a fixed wall-clock schedule.

    A failed pass is logged and the next pass still starts on its slot.
    If a pass overruns the interval, the schedule restarts from the end of
    that pass instead of firing the missed slots back to back.
    """

    def __init__(
        self,
        scraper: Scraper,
        interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            scraper: Scraper to invoke
            interval: Seconds between pass starts
            clock: Monotonic clock, injectable for tests
        """
        self.scraper = scraper
        self.interval = interval
        self.clock = clock
        self.passes = 0
        self.failures = 0
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Stop after the current pass."""
        self._stop_event.set()

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def run_pass(self) -> bool:
        """
        Execute a single pass.

        Returns:
            True if the pass completed
        """
        scrape_id = uuid.uuid4().hex[:12]
        self.passes += 1
        logger.info("Scraping", extra={"scrape_id": scrape_id})

        try:
            updated = self.scraper.scrape_once(scrape_id=scrape_id)
        except (MuninProtocolError, MuninConnectionError) as e:
            self.failures += 1
            logger.error(
                f"Error occurred when trying to fetch metrics: {e}",
                extra={"scrape_id": scrape_id}
            )
            return False

        logger.info(f"Scrape complete: {updated} values", extra={"scrape_id": scrape_id})
        return True

    def run(self, max_passes: Optional[int] = None) -> None:
        """
        Loop until ``stop()`` is called or *max_passes* passes have run.

        MuninTransportError propagates; the process cannot trust the
        stream after it.
        """
        next_run = self.clock()

        while not self._stop_event.is_set():
            self.run_pass()
            if max_passes is not None and self.passes >= max_passes:
                break

            next_run += self.interval
            delay = next_run - self.clock()
            if delay < 0:
                logger.warning(
                    f"Scrape overran the {self.interval}s interval by {-delay:.2f}s"
                )
                next_run = self.clock()
                delay = 0
            self._stop_event.wait(delay)
