"""Process discovery and resource sampling backed by psutil."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol

import psutil

LOGGER = logging.getLogger(__name__)


class InspectorError(RuntimeError):
    """Base class for process inspection failures."""


class ProcessTableError(InspectorError):
    """Raised when the process table cannot be queried."""


class PidResolutionError(InspectorError):
    """Raised when no live process matches an instance pattern."""


class SampleError(InspectorError):
    """Raised when resource usage cannot be read for a pid."""


class CpuUnit(str, Enum):
    SECONDS = "seconds"
    PERCENT = "percent"


@dataclass(frozen=True)
class ResourceSample:
    """Resource usage of one process at one scrape.

    ``cpu`` is either cumulative CPU seconds or an instantaneous percentage;
    ``cpu_unit`` says which. Memory values are in the backend's native unit
    (bytes for psutil, KiB for pidstat).
    """

    cpu: float
    cpu_unit: CpuUnit
    virtual_memory: int
    resident_memory: int


class ProcessInspector(Protocol):
    cpu_unit: CpuUnit

    def list_processes(self) -> List[str]:
        ...

    def newest_pid(self, pattern: str) -> int:
        ...

    def sample(self, pid: int) -> ResourceSample:
        ...


def _format_line(name: str | None, cmdline: List[str] | None) -> str:
    args = " ".join(cmdline or [])
    return f"{name or ''} {args}".strip()


class PsutilInspector:
    """Read the process table and per-process statistics from the kernel."""

    cpu_unit = CpuUnit.SECONDS

    def __init__(self, process_name: str = "ruby") -> None:
        self.process_name = process_name

    def list_processes(self) -> List[str]:
        """Return one ``name args`` line per process named ``process_name``."""

        try:
            return [
                _format_line(proc.info.get("name"), proc.info.get("cmdline"))
                for proc in psutil.process_iter(["name", "cmdline"])
                if proc.info.get("name") == self.process_name
            ]
        except (psutil.Error, OSError) as exc:
            raise ProcessTableError("Failed to read the process table") from exc

    def newest_pid(self, pattern: str) -> int:
        own_pid = os.getpid()
        newest: tuple[float, int] | None = None
        try:
            for proc in psutil.process_iter(["pid", "cmdline", "create_time"]):
                info = proc.info
                if info.get("pid") == own_pid:
                    continue
                if pattern not in " ".join(info.get("cmdline") or []):
                    continue
                started = info.get("create_time") or 0.0
                if newest is None or started >= newest[0]:
                    newest = (started, info["pid"])
        except (psutil.Error, OSError) as exc:
            raise ProcessTableError("Failed to read the process table") from exc
        if newest is None:
            raise PidResolutionError(f"No process matches {pattern!r}")
        LOGGER.debug("Resolved instance pid", extra={"pattern": pattern, "pid": newest[1]})
        return newest[1]

    def sample(self, pid: int) -> ResourceSample:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                cpu_times = proc.cpu_times()
                memory = proc.memory_info()
        except psutil.Error as exc:
            raise SampleError(f"Cannot read statistics for pid {pid}") from exc
        return ResourceSample(
            cpu=float(cpu_times.user + cpu_times.system),
            cpu_unit=CpuUnit.SECONDS,
            virtual_memory=int(memory.vms),
            resident_memory=int(memory.rss),
        )
