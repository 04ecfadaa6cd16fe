"""Prometheus exporter for Pgpool-II.

Polls ``SHOW <table>`` status tables over a single connection and republishes
them as metric families through ``prometheus_client``.
"""

__version__ = "1.2.0"

NAMESPACE = "pgpool2"

__all__ = ["NAMESPACE", "__version__"]
