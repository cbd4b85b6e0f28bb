"""
Metric catalog builder.

Discovers munin plugins once at startup and registers one Prometheus
holder per plugin field. The naming helpers here are shared with the
scraper so both sides derive identical canonical names.
"""
from typing import Dict, Iterable, List, Optional, Sequence

from munin_exporter.common.logging_config import get_logger
from munin_exporter.monitoring.metrics import MetricCatalog, MetricHolder, MetricKind

logger = get_logger(__name__)

COUNTER_TYPES = ("counter", "derive")


def is_ignored(plugin: str, ignore_prefixes: Sequence[str]) -> bool:
    return any(plugin.startswith(prefix) for prefix in ignore_prefixes)


def filter_plugins(plugins: Iterable[str], ignore_prefixes: Sequence[str]) -> List[str]:
    """Keep the plugins no ignore prefix matches, preserving order."""
    return [p for p in plugins if not is_ignored(p, ignore_prefixes)]


def metric_name(prefix: Optional[str], plugin: str, field: str) -> str:
    """
    Canonical metric name for a plugin field.

    Example:
        metric_name("munin", "if_eth0", "rx-bytes") -> "munin_if_eth0_rx_bytes"
    """
    parts = [plugin, field]
    if prefix:
        parts.insert(0, prefix)
    return "_".join(parts).replace("-", "_")


def classify(field_config: Dict[str, str]) -> MetricKind:
    """``counter`` and ``derive`` fields are counters, everything else a gauge."""
    munin_type = field_config.get("type", "").lower()
    if munin_type in COUNTER_TYPES:
        return MetricKind.COUNTER
    return MetricKind.GAUGE


def describe(graph_title: str, field_config: Dict[str, str]) -> str:
    desc = f"{graph_title}: {field_config.get('label', '')}"
    info = field_config.get("info")
    if info:
        desc = f"{desc}, {info}"
    return desc


class CatalogBuilder:
    """
    Populates a ``MetricCatalog`` from munin-node's ``list`` and ``config``.

    Args:
        client: Connected ``MuninClient``
        catalog: Catalog to fill
        metric_prefix: Optional prefix for every metric name
        ignore_prefixes: Plugins starting with any of these are skipped
    """

    def __init__(
        self,
        client,
        catalog: MetricCatalog,
        metric_prefix: str = "",
        ignore_prefixes: Sequence[str] = ()
    ):
        self.client = client
        self.catalog = catalog
        self.metric_prefix = metric_prefix
        self.ignore_prefixes = list(ignore_prefixes)

        if "" in self.ignore_prefixes:
            logger.warning(
                "Ignore list contains an empty prefix; every plugin will be ignored"
            )

    def build(self) -> MetricCatalog:
        """
        Discover plugins and register their metrics. Call exactly once.

        Raises:
            MuninProtocolError: If list or config cannot be framed
            MetricRegistrationError: On a canonical-name collision
        """
        advertised = self.client.list_plugins()
        plugins = filter_plugins(advertised, self.ignore_prefixes)
        skipped = len(advertised) - len(plugins)
        logger.info(
            f"munin-node advertises {len(advertised)} plugins, "
            f"{skipped} ignored"
        )

        for plugin in plugins:
            self.catalog.add_plugin(plugin)
            self._register_plugin(plugin)

        self.catalog.register_builtin_metrics()
        logger.info(
            f"Catalog built: {len(self.catalog.plugins)} plugins, "
            f"{len(self.catalog)} metrics"
        )
        return self.catalog

    def _register_plugin(self, plugin: str) -> None:
        plugin_config = self.client.config(plugin)

        for field, field_config in plugin_config.field_configs.items():
            kind = classify(field_config)
            holder = MetricHolder(
                name=metric_name(self.metric_prefix, plugin, field),
                description=describe(plugin_config.graph_title, field_config),
                kind=kind,
                munin_type=field_config["type"].lower() if kind is MetricKind.COUNTER else None,
            )
            self.catalog.register(holder)
