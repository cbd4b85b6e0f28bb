"""
Prometheus metric model for values scraped from munin-node.

Every munin field becomes one ``MetricHolder`` registered on the catalog's
``CollectorRegistry``. A holder stores the last reported value together with
the label values it was reported under, and renders it as either a gauge or
a counter family on each Prometheus pull.

Usage:
    catalog = MetricCatalog()
    holder = MetricHolder("cpu_user", "CPU usage: user", MetricKind.GAUGE)
    catalog.register(holder)

    holder.update(12.5, ("web01", "cpu", "user"))
    catalog.observe_scrape_duration("web01", 0.42)
"""
import platform
import threading
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from prometheus_client import CollectorRegistry, Gauge
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from munin_exporter import __version__
from munin_exporter.common.exceptions import MetricRegistrationError
from munin_exporter.common.logging_config import get_logger

logger = get_logger(__name__)

# Variable labels carried by every field metric
FIELD_LABELS = ("hostname", "graphname", "muninlabel")

BUILD_INFO_NAME = "munin_exporter_build_info"
FETCH_TIME_NAME = "munin_exporter_fetch_time"


class MetricKind(Enum):
    """How a holder is exposed to Prometheus"""
    GAUGE = "gauge"
    COUNTER = "counter"


class MetricHolder(Collector):
    """
    Latest value of one munin field.

    The ``(value, label_values)`` pair is swapped under a per-holder lock so a
    concurrent pull never observes a value paired with stale labels. Until the
    first update the holder exposes its family without samples.
    """

    def __init__(
        self,
        name: str,
        description: str,
        kind: MetricKind,
        munin_type: Optional[str] = None,
        label_names: Sequence[str] = FIELD_LABELS,
    ) -> None:
        """
        Args:
            name: Canonical metric name
            description: HELP text
            kind: Gauge or counter, fixed for the holder's lifetime
            munin_type: Declared munin type, exported as the ``type`` label
            label_names: Variable label names
        """
        self.name = name
        self.description = description
        self.kind = kind
        self.munin_type = munin_type or kind.value
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()
        self._value: Optional[float] = None
        self._label_values: Tuple[str, ...] = ()

    def update(self, value: float, label_values: Sequence[str]) -> None:
        """Replace the stored value and the labels it is reported under."""
        label_values = tuple(label_values)
        if len(label_values) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, "
                f"got {len(label_values)}"
            )
        with self._lock:
            self._value = float(value)
            self._label_values = label_values

    def snapshot(self) -> Optional[Tuple[Tuple[str, ...], float]]:
        """Return ``(label_values, value)`` or None if never updated."""
        with self._lock:
            if self._value is None:
                return None
            return self._label_values, self._value

    @property
    def value(self) -> Optional[float]:
        snap = self.snapshot()
        return snap[1] if snap else None

    def _family(self) -> Metric:
        labels = ["type", *self.label_names]
        if self.kind is MetricKind.COUNTER:
            return CounterMetricFamily(self.name, self.description, labels=labels)
        return GaugeMetricFamily(self.name, self.description, labels=labels)

    def describe(self) -> List[Metric]:
        return [self._family()]

    def collect(self) -> Iterator[Metric]:
        family = self._family()
        snap = self.snapshot()
        if snap is not None:
            label_values, value = snap
            family.add_metric([self.munin_type, *label_values], value)
        yield family

    def __repr__(self) -> str:
        return f"MetricHolder({self.name!r}, kind={self.kind.value})"


class MetricCatalog:
    """
    Discovered plugins and the holders registered for their fields.

    Owns the ``CollectorRegistry`` the metrics endpoint serves, so the
    catalog builder, the scraper and the HTTP server all share one object.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.plugins: List[str] = []
        self._holders: Dict[str, MetricHolder] = {}
        self.build_info: Optional[Gauge] = None
        self.fetch_time: Optional[Gauge] = None

    def add_plugin(self, name: str) -> None:
        self.plugins.append(name)

    def register(self, holder: MetricHolder) -> MetricHolder:
        """
        Register *holder* under its canonical name.

        Raises:
            MetricRegistrationError: If the name is already taken
        """
        if holder.name in self._holders:
            raise MetricRegistrationError(
                f"Duplicate metric name '{holder.name}'"
            )
        try:
            self.registry.register(holder)
        except ValueError as e:
            raise MetricRegistrationError(
                f"Could not register '{holder.name}': {e}"
            ) from e

        self._holders[holder.name] = holder
        logger.info(
            f"Registered {holder.kind.value} {holder.name}: {holder.description}"
        )
        return holder

    def register_builtin_metrics(self) -> None:
        """Register the build info and scrape duration gauges."""
        try:
            self.build_info = Gauge(
                BUILD_INFO_NAME,
                "Munin exporter build info",
                ["type", "pythonversion", "version"],
                registry=self.registry,
            )
            self.fetch_time = Gauge(
                FETCH_TIME_NAME,
                "Time taken to fetch data from all registered munin plugins",
                ["type", "hostname"],
                registry=self.registry,
            )
        except ValueError as e:
            raise MetricRegistrationError(f"Could not register built-in metrics: {e}") from e

        self.build_info.labels(
            MetricKind.GAUGE.value, platform.python_version(), __version__
        ).set(1)

    def observe_scrape_duration(self, hostname: str, seconds: float) -> None:
        if self.fetch_time is None:
            raise RuntimeError("built-in metrics are not registered")
        self.fetch_time.labels(MetricKind.GAUGE.value, hostname).set(seconds)

    def get(self, name: str) -> Optional[MetricHolder]:
        return self._holders.get(name)

    def names(self) -> List[str]:
        return list(self._holders)

    def __contains__(self, name: str) -> bool:
        return name in self._holders

    def __len__(self) -> int:
        return len(self._holders)
