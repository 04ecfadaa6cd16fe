"""Static column mapping for the Pgpool-II status tables.

Each table maps result columns to a usage (label, gauge, ...) and a help text.
The table is fixed: it is compiled into descriptors once per exporter.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

from packaging.version import Version


class ColumnUsage(Enum):
    DISCARD = "discard"            # Ignore this column
    LABEL = "label"                # Use this column as a label
    COUNTER = "counter"            # Use this column as a counter
    GAUGE = "gauge"                # Use this column as a gauge
    MAPPEDMETRIC = "mappedmetric"  # Map text values through ColumnMapping.mapping
    DURATION = "duration"          # Text duration, exported in milliseconds

    @classmethod
    def from_string(cls, value: str) -> "ColumnUsage":
        """Parse an upper-case usage token such as ``"GAUGE"``."""
        try:
            return cls[value]
        except KeyError:
            raise ValueError(f"wrong columnUsage given : {value}") from None


@dataclass(frozen=True)
class ColumnMapping:
    usage: ColumnUsage
    description: str
    mapping: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.usage, str):
            object.__setattr__(self, "usage", ColumnUsage.from_string(self.usage))
        elif not isinstance(self.usage, ColumnUsage):
            raise ValueError(f"wrong columnUsage given : {self.usage!r}")


DISCARD = ColumnUsage.DISCARD
LABEL = ColumnUsage.LABEL
GAUGE = ColumnUsage.GAUGE

_STATUS_HELP = "Backend node Status (1 for up or waiting, 0 for down or unused)"

METRIC_MAPS: Dict[str, Dict[str, ColumnMapping]] = {
    "pool_nodes": {
        "hostname": ColumnMapping(LABEL, "Backend hostname"),
        "port": ColumnMapping(LABEL, "Backend port"),
        "role": ColumnMapping(LABEL, "Role (primary or standby)"),
        "status": ColumnMapping(GAUGE, _STATUS_HELP),
        "select_cnt": ColumnMapping(GAUGE, "SELECT statement counts issued to each backend"),
        "replication_delay": ColumnMapping(GAUGE, "Replication delay"),
    },
    "pool_backend_stats": {
        "hostname": ColumnMapping(LABEL, "Backend hostname"),
        "port": ColumnMapping(LABEL, "Backend port"),
        "role": ColumnMapping(LABEL, "Role (primary or standby)"),
        "status": ColumnMapping(GAUGE, _STATUS_HELP),
        "select_cnt": ColumnMapping(GAUGE, "SELECT statement counts issued to each backend"),
        "insert_cnt": ColumnMapping(GAUGE, "INSERT statement counts issued to each backend"),
        "update_cnt": ColumnMapping(GAUGE, "UPDATE statement counts issued to each backend"),
        "delete_cnt": ColumnMapping(GAUGE, "DELETE statement counts issued to each backend"),
        "ddl_cnt": ColumnMapping(GAUGE, "DDL statement counts issued to each backend"),
        "other_cnt": ColumnMapping(GAUGE, "other statement counts issued to each backend"),
        "panic_cnt": ColumnMapping(GAUGE, "Panic message counts returned from backend"),
        "fatal_cnt": ColumnMapping(GAUGE, "Fatal message counts returned from backend"),
        "error_cnt": ColumnMapping(GAUGE, "Error message counts returned from backend"),
    },
    "pool_health_check_stats": {
        "hostname": ColumnMapping(LABEL, "Backend hostname"),
        "port": ColumnMapping(LABEL, "Backend port"),
        "role": ColumnMapping(LABEL, "Role (primary or standby)"),
        "status": ColumnMapping(GAUGE, _STATUS_HELP),
        "total_count": ColumnMapping(GAUGE, "Number of health check count in total"),
        "success_count": ColumnMapping(GAUGE, "Number of successful health check count in total"),
        "fail_count": ColumnMapping(GAUGE, "Number of failed health check count in total"),
        "skip_count": ColumnMapping(GAUGE, "Number of skipped health check count in total"),
        "retry_count": ColumnMapping(GAUGE, "Number of retried health check count in total"),
        "average_retry_count": ColumnMapping(GAUGE, "Number of average retried health check count in a health check session"),
        "max_retry_count": ColumnMapping(GAUGE, "Number of maximum retried health check count in a health check session"),
        "max_duration": ColumnMapping(GAUGE, "Maximum health check duration in Millie seconds"),
        "min_duration": ColumnMapping(GAUGE, "Minimum health check duration in Millie seconds"),
        "average_duration": ColumnMapping(GAUGE, "Average health check duration in Millie seconds"),
    },
    "pool_processes": {
        "pool_pid": ColumnMapping(DISCARD, "PID of Pgpool-II child processes"),
        "database": ColumnMapping(DISCARD, "Database name of the currently active backend connection"),
    },
    "pool_pools": {
        "pool_pid": ColumnMapping(DISCARD, "PID of Pgpool-II child processes"),
        "pool_id": ColumnMapping(DISCARD, "Pool identifier"),
        "backend_id": ColumnMapping(DISCARD, "Backend identifier"),
        "database": ColumnMapping(DISCARD, "Database name for this connection"),
        "username": ColumnMapping(DISCARD, "User name for this connection"),
    },
    "pool_cache": {
        "cache_hit_ratio": ColumnMapping(GAUGE, "Query cache hit ratio"),
        "num_hash_entries": ColumnMapping(GAUGE, "Number of total hash entries"),
        "used_hash_entries": ColumnMapping(GAUGE, "Number of used hash entries"),
        "num_cache_entries": ColumnMapping(GAUGE, "Number of used cache entries"),
        "used_cache_entries_size": ColumnMapping(GAUGE, "Total size of used cache size"),
        "free_cache_entries_size": ColumnMapping(GAUGE, "Total size of free cache size"),
    },
}

VERSION_42 = Version("4.2.0")

# Tables that only exist from the given Pgpool-II version onward.
MINIMUM_VERSIONS: Dict[str, Version] = {
    "pool_backend_stats": VERSION_42,
    "pool_health_check_stats": VERSION_42,
}

