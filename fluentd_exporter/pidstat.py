"""Process inspection through ``ps``, ``pgrep`` and ``pidstat``.

This backend shells out instead of reading the kernel interface directly.
``pidstat`` averages CPU usage over a short window, so its CPU value is a
percentage rather than cumulative seconds, and each sample blocks for the
length of that window.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Dict, List, Optional, Sequence

from .process_metrics import (
    CpuUnit,
    PidResolutionError,
    ProcessTableError,
    ResourceSample,
    SampleError,
)

LOGGER = logging.getLogger(__name__)

# pidstat -h prints a banner, a blank line and a header before the data row.
DATA_ROW_INDEX = 3


def parse_pidstat_output(
    output: str,
    cpu_column: int = 7,
    vsz_column: int = 11,
    rss_column: int = 12,
) -> ResourceSample:
    """Parse the data row of ``pidstat -h -u -r`` output."""

    lines = output.splitlines()
    if len(lines) <= DATA_ROW_INDEX:
        raise SampleError(f"pidstat output has {len(lines)} lines, expected a data row")
    fields = lines[DATA_ROW_INDEX].split()
    try:
        cpu = float(fields[cpu_column])
        vsz = int(fields[vsz_column])
        rss = int(fields[rss_column])
    except (IndexError, ValueError) as exc:
        raise SampleError(f"Malformed pidstat data row: {lines[DATA_ROW_INDEX]!r}") from exc
    return ResourceSample(cpu=cpu, cpu_unit=CpuUnit.PERCENT, virtual_memory=vsz, resident_memory=rss)


def _run(
    command: Sequence[str], env: Optional[Dict[str, str]] = None
) -> subprocess.CompletedProcess[str]:
    LOGGER.debug("Running command", extra={"command": " ".join(command)})
    return subprocess.run(list(command), capture_output=True, text=True, check=False, env=env)


class PidstatInspector:
    cpu_unit = CpuUnit.PERCENT

    def __init__(
        self,
        process_name: str = "ruby",
        interval: int = 5,
        count: int = 1,
        cpu_column: int = 7,
        vsz_column: int = 11,
        rss_column: int = 12,
    ) -> None:
        self.process_name = process_name
        self.interval = interval
        self.count = count
        self.cpu_column = cpu_column
        self.vsz_column = vsz_column
        self.rss_column = rss_column

    def list_processes(self) -> List[str]:
        try:
            result = _run(["ps", "-C", self.process_name, "-o", "comm=,args="])
        except OSError as exc:
            raise ProcessTableError("Failed to run ps") from exc
        # ps exits with 1 when nothing matched the selection.
        if result.returncode == 1 and not result.stdout.strip():
            return []
        if result.returncode != 0:
            raise ProcessTableError(
                f"ps exited with status {result.returncode}: {result.stderr.strip()}"
            )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def newest_pid(self, pattern: str) -> int:
        try:
            result = _run(["pgrep", "-n", "-f", pattern])
        except OSError as exc:
            raise PidResolutionError("Failed to run pgrep") from exc
        if result.returncode != 0:
            raise PidResolutionError(f"No process matches {pattern!r}")
        try:
            return int(result.stdout.strip())
        except ValueError as exc:
            raise PidResolutionError(f"Unexpected pgrep output: {result.stdout!r}") from exc

    def sample(self, pid: int) -> ResourceSample:
        command = [
            "pidstat",
            "-h",
            "-u",
            "-r",
            "-p",
            str(pid),
            str(self.interval),
            str(self.count),
        ]
        # sysstat prints numbers with the locale's decimal separator.
        try:
            result = _run(command, env={**os.environ, "LC_ALL": "C"})
        except OSError as exc:
            raise SampleError("Failed to run pidstat") from exc
        if result.returncode != 0:
            raise SampleError(
                f"pidstat exited with status {result.returncode} for pid {pid}: "
                f"{result.stderr.strip()}"
            )
        return parse_pidstat_output(
            result.stdout,
            cpu_column=self.cpu_column,
            vsz_column=self.vsz_column,
            rss_column=self.rss_column,
        )
