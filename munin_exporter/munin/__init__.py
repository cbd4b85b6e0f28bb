"""munin-node protocol client, catalog builder and scrape loop"""
from munin_exporter.munin.client import MuninClient, PluginConfig
from munin_exporter.munin.supervisor import ConnectionSupervisor, ConnectionState
from munin_exporter.munin.catalog import CatalogBuilder, filter_plugins, metric_name, classify
from munin_exporter.munin.scraper import Scraper, ScrapeLoop, parse_fetch_line

__all__ = [
    "MuninClient",
    "PluginConfig",
    "ConnectionSupervisor",
    "ConnectionState",
    "CatalogBuilder",
    "filter_plugins",
    "metric_name",
    "classify",
    "Scraper",
    "ScrapeLoop",
    "parse_fetch_line",
]
