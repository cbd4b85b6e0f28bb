"""Munin to Prometheus metrics bridge."""

__version__ = "0.2.0"
