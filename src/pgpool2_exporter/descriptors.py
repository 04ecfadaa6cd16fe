"""Compile the static column mapping into metric descriptors.

Compilation happens once per exporter. Every non-label column of a table
shares the same ordered tuple of label names, which is also the order in
which label values are read from each row.
"""
from __future__ import annotations
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Tuple

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from pgpool2_exporter.conversion import to_float, to_label_string
from pgpool2_exporter.metric_maps import ColumnMapping, ColumnUsage

Conversion = Callable[[Any], Tuple[float, bool]]

GAUGE_TYPE = "gauge"
COUNTER_TYPE = "counter"

_DURATION_RE = re.compile(
    r"^((?P<hours>\d+)h)?((?P<minutes>\d+)m(?!s))?((?P<seconds>\d+)s)?((?P<milliseconds>\d+)ms)?$"
)


def _discarded(_: Any) -> Tuple[float, bool]:
    return math.nan, True


def parse_duration_ms(value: Any) -> Tuple[float, bool]:
    """Convert ``1h2m3s4ms`` style text (or plain seconds) to milliseconds."""
    text, ok = to_label_string(value)
    if not ok or text == "-1" or not text:
        return math.nan, False
    match = _DURATION_RE.match(text)
    if match and any(match.groupdict().values()):
        parts = {k: int(v) for k, v in match.groupdict().items() if v}
        ms = (parts.get("hours", 0) * 3600 + parts.get("minutes", 0) * 60
              + parts.get("seconds", 0)) * 1000.0 + parts.get("milliseconds", 0)
        return ms, True
    seconds, ok = to_float(text)
    if not ok or math.isnan(seconds):
        return math.nan, False
    return seconds * 1000.0, True


def _mapped(mapping: Mapping[str, float]) -> Conversion:
    def convert(value: Any) -> Tuple[float, bool]:
        text, ok = to_label_string(value)
        if ok and text in mapping:
            return float(mapping[text]), True
        return math.nan, False
    return convert


def new_family(name: str, documentation: str, metric_type: str, labels: Tuple[str, ...] = ()) -> Metric:
    if metric_type == COUNTER_TYPE:
        return CounterMetricFamily(name, documentation, labels=list(labels))
    return GaugeMetricFamily(name, documentation, labels=list(labels))


@dataclass(frozen=True)
class MetricDescriptor:
    """How one column of a status table becomes samples."""
    usage: ColumnUsage
    name: str = ""
    documentation: str = ""
    metric_type: str = GAUGE_TYPE
    labels: Tuple[str, ...] = ()
    conversion: Conversion = _discarded

    @property
    def discard(self) -> bool:
        return self.usage in (ColumnUsage.DISCARD, ColumnUsage.LABEL)

    def new_family(self) -> Metric:
        return new_family(self.name, self.documentation, self.metric_type, self.labels)


@dataclass(frozen=True)
class CompiledMapping:
    labels: Tuple[str, ...]
    columns: Dict[str, MetricDescriptor] = field(default_factory=dict)

    def descriptors(self):
        """Descriptors that produce samples."""
        return [d for d in self.columns.values() if not d.discard]


def compile_table(namespace: str, table: str, mappings: Mapping[str, ColumnMapping]) -> CompiledMapping:
    labels = tuple(column for column, m in mappings.items() if m.usage is ColumnUsage.LABEL)

    columns: Dict[str, MetricDescriptor] = {}
    for column, mapping in mappings.items():
        name = f"{namespace}_{table}_{column}"
        usage = mapping.usage
        if usage in (ColumnUsage.DISCARD, ColumnUsage.LABEL):
            columns[column] = MetricDescriptor(usage=usage)
        elif usage is ColumnUsage.COUNTER:
            columns[column] = MetricDescriptor(usage, name, mapping.description, COUNTER_TYPE, labels, to_float)
        elif usage is ColumnUsage.GAUGE:
            columns[column] = MetricDescriptor(usage, name, mapping.description, GAUGE_TYPE, labels, to_float)
        elif usage is ColumnUsage.MAPPEDMETRIC:
            columns[column] = MetricDescriptor(usage, name, mapping.description, GAUGE_TYPE, labels,
                                               _mapped(mapping.mapping))
        elif usage is ColumnUsage.DURATION:
            columns[column] = MetricDescriptor(usage, f"{name}_milliseconds", mapping.description,
                                               GAUGE_TYPE, labels, parse_duration_ms)
    return CompiledMapping(labels=labels, columns=columns)


def compile_metric_maps(metric_maps: Mapping[str, Mapping[str, ColumnMapping]],
                        namespace: str) -> Dict[str, CompiledMapping]:
    """Turn the column mapping table into per-table descriptor mappings."""
    return {
        table: compile_table(namespace, table, mappings)
        for table, mappings in metric_maps.items()
    }
