"""Prometheus series published by the exporter."""

from __future__ import annotations

from typing import Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge
from prometheus_client.metrics_core import Metric

from .process_metrics import CpuUnit, ResourceSample

INSTANCE_LABEL = "conf_name"

_SERIES_NAMES = {
    CpuUnit.SECONDS: ("cpu_time", "virtual_memory_usage", "resident_memory_usage"),
    CpuUnit.PERCENT: ("cpu_usage", "vsz_usage", "rss_usage"),
}

_SERIES_HELP = {
    CpuUnit.SECONDS: (
        "{ns} cumulative cpu time in seconds",
        "{ns} virtual memory usage in bytes",
        "{ns} resident memory usage in bytes",
    ),
    CpuUnit.PERCENT: (
        "{ns} cpu usage in percent, averaged over the sampling window",
        "{ns} virtual memory size in kilobytes",
        "{ns} resident set size in kilobytes",
    ),
}


class ExporterMetrics:
    """Per-instance resource series and the scrape failure counter.

    The series are registered on a private registry owned by this object, so
    several exporters (or tests) never share state. Which names are used
    depends on ``cpu_unit``: cumulative seconds and instantaneous percentages
    are never published under the same name.
    """

    def __init__(self, namespace: str = "fluentd", cpu_unit: CpuUnit = CpuUnit.SECONDS) -> None:
        self.namespace = namespace
        self.cpu_unit = cpu_unit
        self.registry = CollectorRegistry()
        cpu_name, virtual_name, resident_name = _SERIES_NAMES[cpu_unit]
        cpu_help, virtual_help, resident_help = (
            text.format(ns=namespace) for text in _SERIES_HELP[cpu_unit]
        )

        self.scrape_failures = Counter(
            "exporter_scrape_failures",
            f"Number of errors while scraping {namespace}.",
            namespace=namespace,
            registry=self.registry,
        )
        self.cpu = Gauge(
            cpu_name,
            cpu_help,
            [INSTANCE_LABEL],
            namespace=namespace,
            registry=self.registry,
        )
        self.virtual_memory = Gauge(
            virtual_name,
            virtual_help,
            [INSTANCE_LABEL],
            namespace=namespace,
            registry=self.registry,
        )
        self.resident_memory = Gauge(
            resident_name,
            resident_help,
            [INSTANCE_LABEL],
            namespace=namespace,
            registry=self.registry,
        )

    def record(self, name: str, sample: ResourceSample) -> None:
        if sample.cpu_unit is not self.cpu_unit:
            raise ValueError(
                f"Sample reports cpu in {sample.cpu_unit.value}, "
                f"these series expect {self.cpu_unit.value}"
            )
        self.cpu.labels(name).set(sample.cpu)
        self.virtual_memory.labels(name).set(sample.virtual_memory)
        self.resident_memory.labels(name).set(sample.resident_memory)

    def record_failure(self) -> None:
        self.scrape_failures.inc()

    def collect(self) -> Iterable[Metric]:
        return self.registry.collect()
