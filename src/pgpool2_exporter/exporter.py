"""Scrape orchestration and the prometheus_client collector.

PgpoolExporter owns the connection, the compiled column mapping, the detected
server version and the scrape health metrics. Each collect runs one full,
sequential scrape of every status table.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from packaging.version import Version
from prometheus_client import Gauge
from prometheus_client.core import CounterMetricFamily, Metric

from pgpool2_exporter import NAMESPACE
from pgpool2_exporter.aggregators import AGGREGATORS, describe_families
from pgpool2_exporter.descriptors import CompiledMapping, compile_metric_maps
from pgpool2_exporter.infrastructure.db import ConnectionManager, PgpoolConnectionError
from pgpool2_exporter.metric_maps import METRIC_MAPS, MINIMUM_VERSIONS, ColumnMapping
from pgpool2_exporter.scraper import ScrapeResult, TableQueryError, scrape_table
from pgpool2_exporter.version import VersionDetectionError, query_version

logger = logging.getLogger(__name__)


class PgpoolExporter:
    """Collects Pgpool-II stats from one server and exports them as metric families."""

    def __init__(self, dsn: str, namespace: str = NAMESPACE,
                 metric_maps: Mapping[str, Mapping[str, ColumnMapping]] = METRIC_MAPS,
                 connection: Optional[ConnectionManager] = None,
                 connect_retry_interval: float = 5.0,
                 max_connect_attempts: Optional[int] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.dsn = dsn
        self.namespace = namespace
        self.metric_map: Dict[str, CompiledMapping] = compile_metric_maps(metric_maps, namespace)
        self.db = connection or ConnectionManager(dsn)
        self.server_version: Optional[Version] = None
        self._lock = threading.Lock()

        self.up = Gauge("up", "Whether the Pgpool-II server is up (1 for yes, 0 for no).",
                        namespace=namespace, registry=None)
        self.duration = Gauge("last_scrape_duration_seconds",
                              "Duration of the last scrape of metrics from Pgpool-II.",
                              namespace=namespace, registry=None)
        # exported without a _created series
        self.total_scrapes = 0
        self.error = Gauge("last_scrape_error",
                           "Whether the last scrape of metrics from Pgpool-II resulted in an error "
                           "(1 for error, 0 for success).",
                           namespace=namespace, registry=None)

        self.db.open_with_retry(connect_retry_interval, max_attempts=max_connect_attempts, sleep=sleep)
        self.detect_version()

    def detect_version(self) -> Optional[Version]:
        """Query the server version once; an unknown version disables gated tables."""
        try:
            self.server_version = query_version(self.db.connection)
        except VersionDetectionError as e:
            logger.error(f"Error detecting Pgpool-II version: {e}")
            self.server_version = None
        return self.server_version

    def table_enabled(self, table: str) -> bool:
        minimum = MINIMUM_VERSIONS.get(table)
        if minimum is None:
            return True
        return self.server_version is not None and self.server_version >= minimum

    def scrape(self) -> ScrapeResult:
        """Run one scrape and update the health metrics."""
        result = ScrapeResult()
        self.total_scrapes += 1
        begun = time.monotonic()
        try:
            try:
                self.db.ensure_live()
            except PgpoolConnectionError as e:
                result.connection_error = e
                self.up.set(0)
                self.error.set(1)
                return result

            self.up.set(1)
            self._scrape_tables(result)
            self.error.set(1 if result.errors else 0)
        finally:
            self.duration.set(time.monotonic() - begun)
        return result

    def _scrape_tables(self, result: ScrapeResult) -> None:
        conn = self.db.connection
        for table, mapping in self.metric_map.items():
            if not self.table_enabled(table):
                logger.debug(f"Skipping {table}: requires Pgpool-II {MINIMUM_VERSIONS[table]} or later")
                continue

            logger.debug(f"Querying namespace {table}")
            try:
                aggregator = AGGREGATORS.get(table)
                if aggregator is not None:
                    aggregator(conn, result, self.namespace)
                    continue
                nonfatal = scrape_table(conn, table, mapping, result)
            except TableQueryError as e:
                # a table disappeared; the other tables are still scraped
                result.errors[table] = e
                logger.info(f"namespace disappeared: {e}")
                continue

            for err in nonfatal:
                logger.info(f"error parsing: {err}")
            result.nonfatal.extend(nonfatal)

        if result.errors:
            logger.error(f"Error scraping Pgpool-II: {result.errors}")

    def _scrapes_family(self, value: Optional[float] = None) -> CounterMetricFamily:
        return CounterMetricFamily(f"{self.namespace}_scrapes_total",
                                   "Total number of times Pgpool-II has been scraped for metrics.",
                                   value=value)

    def _health_metrics(self) -> List[Metric]:
        return [*self.duration.collect(), *self.up.collect(),
                self._scrapes_family(float(self.total_scrapes)), *self.error.collect()]

    def collect(self) -> Iterator[Metric]:
        # concurrent pulls wait for the scrape in flight
        with self._lock:
            result = self.scrape()
            health = self._health_metrics()
        yield from result.metrics()
        yield from health

    def describe(self) -> Iterator[Metric]:
        """Describe every statically known family without querying the server."""
        for mapping in self.metric_map.values():
            for descriptor in mapping.descriptors():
                yield descriptor.new_family()
        yield from describe_families(self.namespace)
        yield from self.duration.describe()
        yield from self.up.describe()
        yield self._scrapes_family()
        yield from self.error.describe()

    def close(self) -> None:
        self.db.close()
