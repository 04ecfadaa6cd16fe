"""Generic scraping of one status table through its compiled column mapping."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
from prometheus_client.core import Metric

from pgpool2_exporter.conversion import status_to_numeric, to_label_string
from pgpool2_exporter.descriptors import CompiledMapping, MetricDescriptor, new_family

RawRow = Dict[str, Any]

STATUS_COLUMN = "status"


class TableQueryError(Exception):
    """A status table could not be queried; fatal for that table only."""

    def __init__(self, table: str, message: str):
        super().__init__(f"{message}: {table}")
        self.table = table


class ColumnConversionError(Exception):
    """A single cell could not be converted; the sample is dropped."""

    def __init__(self, table: str, column: str, value: Any):
        super().__init__(f"Unexpected error parsing column: {table} {column} {value!r}")
        self.table = table
        self.column = column
        self.value = value


@dataclass
class ScrapeResult:
    """Metric families and errors produced by one scrape."""
    families: Dict[str, Metric] = field(default_factory=dict)
    errors: Dict[str, TableQueryError] = field(default_factory=dict)
    nonfatal: List[ColumnConversionError] = field(default_factory=list)
    connection_error: Optional[Exception] = None

    def family(self, name: str, documentation: str, metric_type: str,
               labels: Tuple[str, ...] = ()) -> Metric:
        existing = self.families.get(name)
        if existing is None:
            existing = self.families[name] = new_family(name, documentation, metric_type, labels)
        return existing

    def add_sample(self, descriptor: MetricDescriptor, label_values: Sequence[str], value: float) -> None:
        family = self.families.get(descriptor.name)
        if family is None:
            family = self.families[descriptor.name] = descriptor.new_family()
        family.add_metric(list(label_values), value)

    def metrics(self) -> List[Metric]:
        return list(self.families.values())


def fetch_rows(conn: Any, table: str) -> List[RawRow]:
    """Run ``SHOW <table>;`` and return rows keyed by column name."""
    query = f"SHOW {table};"
    try:
        with conn.cursor() as cur:
            cur.execute(query)
            if cur.description is None:
                raise TableQueryError(table, "Error retrieving column list for")
            columns = [d[0] for d in cur.description]
            records = cur.fetchall()
    except psycopg2.Error as e:
        raise TableQueryError(table, f"Error running query on database ({e})") from e
    return [dict(zip(columns, record)) for record in records]


def label_values_for(row: RawRow, labels: Sequence[str]) -> List[str]:
    # a missing label column yields an empty label value
    return [to_label_string(row.get(label))[0] for label in labels]


def emit_rows(table: str, mapping: CompiledMapping, rows: Sequence[RawRow],
              result: ScrapeResult) -> List[ColumnConversionError]:
    """Emit one sample per (row, mapped column); return the conversion errors."""
    errors: List[ColumnConversionError] = []
    for row in rows:
        labels = label_values_for(row, mapping.labels)
        for column, cell in row.items():
            descriptor = mapping.columns.get(column)
            if descriptor is None or descriptor.discard:
                continue

            if column == STATUS_COLUMN:
                text, ok = to_label_string(cell)
                if not ok:
                    errors.append(ColumnConversionError(table, column, cell))
                    continue
                result.add_sample(descriptor, labels, status_to_numeric(text))
                continue

            value, ok = descriptor.conversion(cell)
            if not ok:
                errors.append(ColumnConversionError(table, column, cell))
                continue
            result.add_sample(descriptor, labels, value)
    return errors


def scrape_table(conn: Any, table: str, mapping: CompiledMapping,
                 result: ScrapeResult) -> List[ColumnConversionError]:
    """Query one status table and emit its samples into ``result``.

    Raises TableQueryError when the query fails. Conversion failures are
    returned, the remaining columns of the row are still emitted.
    """
    rows = fetch_rows(conn, table)
    return emit_rows(table, mapping, rows, result)
