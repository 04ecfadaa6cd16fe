"""Slot aggregation for ``pool_processes`` and ``pool_pools``.

These tables list one row per frontend process or per backend pool slot, so
instead of mapping columns directly the rows are counted and grouped by the
database/user pair currently bound to each slot.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from prometheus_client.core import Metric

from pgpool2_exporter.conversion import to_label_string
from pgpool2_exporter.descriptors import GAUGE_TYPE, new_family
from pgpool2_exporter.scraper import RawRow, ScrapeResult, fetch_rows

PROCESS_LABELS = ("username", "database")
POOL_SLOT_LABELS = ("pool_pid", "pool_id", "backend_id", "username", "database")
PROCESS_ID_LABELS = ("pool_pid",)

# suffix -> (help, labels)
FRONTEND_FAMILIES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "frontend_total": ("Number of total child processed", ()),
    "frontend_used": ("Number of used child processes", PROCESS_LABELS),
    "frontend_used_ratio": ("Ratio of child processes to total processes", ()),
}

BACKEND_FAMILIES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "backend_by_process_total": ("Number of backend connection slots per child process", PROCESS_ID_LABELS),
    "backend_by_process_used": ("Number of backend connection slots in use", POOL_SLOT_LABELS),
    "backend_by_process_used_ratio": ("Ratio of used backend connection slots per child process", PROCESS_ID_LABELS),
    "backend_total": ("Number of total backend connection slots", ()),
    "backend_used": ("Number of used backend connection slots", ()),
    "backend_used_ratio": ("Ratio of used backend connection slots to total slots", ()),
}


def _ratio(used: int, total: int) -> float:
    # no slots at all reads as 0/0, i.e. NaN
    if total == 0:
        return math.nan if used == 0 else math.copysign(math.inf, used)
    return used / total


def _text(row: RawRow, column: str) -> str:
    return to_label_string(row.get(column))[0]


def _bound_pair(row: RawRow) -> Tuple[str, str]:
    return _text(row, "username"), _text(row, "database")


@dataclass
class FrontendUsage:
    total: int = 0
    used: int = 0
    by_user_db: Dict[Tuple[str, str], int] = field(default_factory=dict)

    @property
    def ratio(self) -> float:
        return _ratio(self.used, self.total)


def aggregate_processes(rows: Iterable[RawRow]) -> FrontendUsage:
    """Count frontend processes and group the used ones by (username, database)."""
    usage = FrontendUsage()
    for row in rows:
        usage.total += 1
        username, database = _bound_pair(row)
        if database and username:
            usage.used += 1
            key = (username, database)
            usage.by_user_db[key] = usage.by_user_db.get(key, 0) + 1
    return usage


@dataclass
class ProcessSlots:
    total: int = 0
    used: int = 0

    @property
    def ratio(self) -> float:
        return _ratio(self.used, self.total)


@dataclass
class BackendUsage:
    total: int = 0
    used: int = 0
    processes: Dict[str, ProcessSlots] = field(default_factory=dict)
    # pool_pid -> pool_id -> backend_id -> username -> database -> used slots
    groups: Dict[str, Dict[str, Dict[str, Dict[str, Dict[str, int]]]]] = field(default_factory=dict)

    @property
    def ratio(self) -> float:
        return _ratio(self.used, self.total)

    def used_slots(self) -> List[Tuple[Tuple[str, str, str, str, str], int]]:
        flat = []
        for pid, pools in self.groups.items():
            for pool_id, backends in pools.items():
                for backend_id, users in backends.items():
                    for username, databases in users.items():
                        for database, count in databases.items():
                            flat.append(((pid, pool_id, backend_id, username, database), count))
        return flat


def aggregate_pools(rows: Iterable[RawRow]) -> BackendUsage:
    """Count backend pool slots per process and group the used ones."""
    usage = BackendUsage()
    for row in rows:
        pid = _text(row, "pool_pid")
        slots = usage.processes.setdefault(pid, ProcessSlots())
        slots.total += 1
        usage.total += 1

        username, database = _bound_pair(row)
        if not (database and username):
            continue
        slots.used += 1
        usage.used += 1
        databases = (usage.groups.setdefault(pid, {})
                     .setdefault(_text(row, "pool_id"), {})
                     .setdefault(_text(row, "backend_id"), {})
                     .setdefault(username, {}))
        databases[database] = databases.get(database, 0) + 1
    return usage


def _family(result: ScrapeResult, namespace: str, families: Dict[str, Tuple[str, Tuple[str, ...]]],
            suffix: str) -> Metric:
    documentation, labels = families[suffix]
    return result.family(f"{namespace}_{suffix}", documentation, GAUGE_TYPE, labels)


def emit_processes(usage: FrontendUsage, result: ScrapeResult, namespace: str) -> None:
    used = _family(result, namespace, FRONTEND_FAMILIES, "frontend_used")
    for (username, database), count in usage.by_user_db.items():
        used.add_metric([username, database], float(count))
    _family(result, namespace, FRONTEND_FAMILIES, "frontend_total").add_metric([], float(usage.total))
    _family(result, namespace, FRONTEND_FAMILIES, "frontend_used_ratio").add_metric([], usage.ratio)


def emit_pools(usage: BackendUsage, result: ScrapeResult, namespace: str) -> None:
    by_process = _family(result, namespace, BACKEND_FAMILIES, "backend_by_process_used")
    for labels, count in usage.used_slots():
        by_process.add_metric(list(labels), float(count))

    totals = _family(result, namespace, BACKEND_FAMILIES, "backend_by_process_total")
    ratios = _family(result, namespace, BACKEND_FAMILIES, "backend_by_process_used_ratio")
    for pid, slots in usage.processes.items():
        totals.add_metric([pid], float(slots.total))
        ratios.add_metric([pid], slots.ratio)

    _family(result, namespace, BACKEND_FAMILIES, "backend_total").add_metric([], float(usage.total))
    _family(result, namespace, BACKEND_FAMILIES, "backend_used").add_metric([], float(usage.used))
    _family(result, namespace, BACKEND_FAMILIES, "backend_used_ratio").add_metric([], usage.ratio)


def scrape_processes(conn: Any, result: ScrapeResult, namespace: str) -> FrontendUsage:
    usage = aggregate_processes(fetch_rows(conn, "pool_processes"))
    emit_processes(usage, result, namespace)
    return usage


def scrape_pools(conn: Any, result: ScrapeResult, namespace: str) -> BackendUsage:
    usage = aggregate_pools(fetch_rows(conn, "pool_pools"))
    emit_pools(usage, result, namespace)
    return usage


def describe_families(namespace: str) -> List[Metric]:
    """Empty families for every aggregated metric, used by the describe phase."""
    return [
        new_family(f"{namespace}_{suffix}", documentation, GAUGE_TYPE, labels)
        for families in (FRONTEND_FAMILIES, BACKEND_FAMILIES)
        for suffix, (documentation, labels) in families.items()
    ]


AGGREGATORS = {
    "pool_processes": scrape_processes,
    "pool_pools": scrape_pools,
}
