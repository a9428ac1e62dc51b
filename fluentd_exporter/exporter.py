"""Scrape coordination for the fluentd exporter."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Literal

from prometheus_client.metrics_core import Metric

from .discovery import InstanceExtractionError, extract_instance_ids, instance_name
from .metrics import ExporterMetrics
from .process_metrics import (
    PidResolutionError,
    ProcessInspector,
    ProcessTableError,
    SampleError,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class ScrapeResult:
    sampled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.failed


class FluentdExporter:
    """Custom Prometheus collector that scrapes fluentd processes on demand.

    Every ``collect()`` call discovers the running instances, samples each of
    them and returns the resulting series. Scrapes are serialized with a lock
    so the series are never written by two scrapes at once.

    A failure to read the process table, or a config token that cannot be
    extracted under the ``"fail"`` policy, aborts the scrape. A target whose
    pid cannot be resolved or sampled is skipped and the remaining targets
    are still sampled. Either way the failure counter is incremented once for
    that scrape.
    """

    def __init__(
        self,
        inspector: ProcessInspector,
        metrics: ExporterMetrics,
        *,
        primary_marker: str = "fluentd",
        secondary_marker: str = "td-agent",
        fallback_id: str = "td-agent",
        on_unmatched: Literal["fail", "skip"] = "fail",
    ) -> None:
        if inspector.cpu_unit is not metrics.cpu_unit:
            raise ValueError("Inspector and metrics disagree on the cpu unit")
        self.inspector = inspector
        self.metrics = metrics
        self.primary_marker = primary_marker
        self.secondary_marker = secondary_marker
        self.fallback_id = fallback_id
        self.on_unmatched = on_unmatched
        self._lock = threading.Lock()

    def describe(self) -> List[Metric]:
        return list(self.metrics.collect())

    def collect(self) -> List[Metric]:
        with self._lock:
            self._scrape()
            return list(self.metrics.collect())

    def scrape(self) -> ScrapeResult:
        with self._lock:
            return self._scrape()

    def _scrape(self) -> ScrapeResult:
        start = time.monotonic()
        result = ScrapeResult()
        try:
            lines = self.inspector.list_processes()
            instance_ids = extract_instance_ids(
                lines,
                primary_marker=self.primary_marker,
                secondary_marker=self.secondary_marker,
                fallback_id=self.fallback_id,
                on_unmatched=self.on_unmatched,
            )
            for instance_id in sorted(instance_ids):
                name = instance_name(instance_id)
                try:
                    pid = self.inspector.newest_pid(instance_id)
                    sample = self.inspector.sample(pid)
                except (PidResolutionError, SampleError) as exc:
                    LOGGER.warning(
                        "Skipping instance %s: %s", name, exc, extra={"instance": name}
                    )
                    result.failed.append(name)
                    continue
                self.metrics.record(name, sample)
                result.sampled.append(name)
        except (ProcessTableError, InstanceExtractionError) as exc:
            LOGGER.error("Error getting process info: %s", exc)
            result.aborted = True

        if not result.ok:
            self.metrics.record_failure()
        LOGGER.debug(
            "Scrape finished",
            extra={
                "sampled": len(result.sampled),
                "failed": len(result.failed),
                "aborted": result.aborted,
                "duration_s": round(time.monotonic() - start, 3),
            },
        )
        return result
