import subprocess

import pytest

from fluentd_exporter.pidstat import PidstatInspector, parse_pidstat_output
from fluentd_exporter.process_metrics import (
    CpuUnit,
    PidResolutionError,
    ProcessTableError,
    SampleError,
)

PIDSTAT_OUTPUT = (
    "Linux 6.1.0-13-amd64 (logs-01) \t10/19/2026 \t_x86_64_\t(4 CPU)\n"
    "\n"
    "#      Time   UID       PID    %usr %system  %guest   %wait    %CPU   CPU"
    "  minflt/s  majflt/s     VSZ     RSS   %MEM  Command\n"
    " 1760870400  1000      4242   10.00    2.50    0.00    0.00   12.50     1"
    "      0.00      0.00  204800   10240   0.03  ruby\n"
)


def _completed(args, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


def test_parse_reads_fixed_data_row():
    sample = parse_pidstat_output(PIDSTAT_OUTPUT)

    assert sample.cpu == 12.50
    assert sample.cpu_unit is CpuUnit.PERCENT
    assert sample.virtual_memory == 204800
    assert sample.resident_memory == 10240


def test_parse_rejects_short_output():
    short = "\n".join(PIDSTAT_OUTPUT.splitlines()[:3])

    with pytest.raises(SampleError):
        parse_pidstat_output(short)


def test_parse_rejects_non_numeric_field():
    broken = PIDSTAT_OUTPUT.replace("204800", "204k00")

    with pytest.raises(SampleError):
        parse_pidstat_output(broken)


def test_parse_rejects_missing_columns():
    with pytest.raises(SampleError):
        parse_pidstat_output(PIDSTAT_OUTPUT, rss_column=40)


def test_sample_runs_pidstat_with_window(monkeypatch):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _completed(args, stdout=PIDSTAT_OUTPUT)

    monkeypatch.setattr("fluentd_exporter.pidstat.subprocess.run", fake_run)

    sample = PidstatInspector(interval=5, count=1).sample(4242)

    assert calls == [["pidstat", "-h", "-u", "-r", "-p", "4242", "5", "1"]]
    assert (sample.cpu, sample.virtual_memory, sample.resident_memory) == (12.50, 204800, 10240)


def test_sample_runs_pidstat_in_c_locale(monkeypatch):
    envs = []

    def fake_run(args, **kwargs):
        envs.append(kwargs.get("env"))
        env = kwargs.get("env") or {}
        if env.get("LC_ALL") != "C":
            return _completed(args, stdout=PIDSTAT_OUTPUT.replace("12.50", "12,50"))
        return _completed(args, stdout=PIDSTAT_OUTPUT)

    monkeypatch.setenv("LANG", "de_DE.UTF-8")
    monkeypatch.setenv("LC_ALL", "de_DE.UTF-8")
    monkeypatch.setattr("fluentd_exporter.pidstat.subprocess.run", fake_run)

    sample = PidstatInspector().sample(4242)

    assert sample.cpu == 12.50
    assert envs[0]["LC_ALL"] == "C"
    assert envs[0]["LANG"] == "de_DE.UTF-8"


def test_sample_of_vanished_process_is_sample_error(monkeypatch):
    monkeypatch.setattr(
        "fluentd_exporter.pidstat.subprocess.run",
        lambda args, **kwargs: _completed(args, returncode=1, stdout=PIDSTAT_OUTPUT[:60]),
    )

    with pytest.raises(SampleError):
        PidstatInspector().sample(4242)


def test_sample_without_pidstat_installed(monkeypatch):
    def fake_run(args, **kwargs):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr("fluentd_exporter.pidstat.subprocess.run", fake_run)

    with pytest.raises(SampleError):
        PidstatInspector().sample(4242)


def test_list_processes_returns_lines(monkeypatch):
    stdout = (
        "ruby            /usr/bin/ruby /usr/local/bin/fluentd -c /etc/fluent/a.conf\n"
        "ruby            /usr/bin/ruby /usr/sbin/td-agent\n"
    )
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _completed(args, stdout=stdout)

    monkeypatch.setattr("fluentd_exporter.pidstat.subprocess.run", fake_run)

    lines = PidstatInspector(process_name="ruby").list_processes()

    assert calls == [["ps", "-C", "ruby", "-o", "comm=,args="]]
    assert len(lines) == 2
    assert lines[1].endswith("/usr/sbin/td-agent")


def test_list_processes_empty_when_nothing_selected(monkeypatch):
    monkeypatch.setattr(
        "fluentd_exporter.pidstat.subprocess.run",
        lambda args, **kwargs: _completed(args, returncode=1),
    )

    assert PidstatInspector().list_processes() == []


def test_list_processes_raises_on_ps_failure(monkeypatch):
    monkeypatch.setattr(
        "fluentd_exporter.pidstat.subprocess.run",
        lambda args, **kwargs: _completed(args, returncode=2, stderr="bad option"),
    )

    with pytest.raises(ProcessTableError):
        PidstatInspector().list_processes()


def test_newest_pid_uses_pgrep(monkeypatch):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _completed(args, stdout="4242\n")

    monkeypatch.setattr("fluentd_exporter.pidstat.subprocess.run", fake_run)

    assert PidstatInspector().newest_pid("a.conf") == 4242
    assert calls == [["pgrep", "-n", "-f", "a.conf"]]


def test_newest_pid_without_match(monkeypatch):
    monkeypatch.setattr(
        "fluentd_exporter.pidstat.subprocess.run",
        lambda args, **kwargs: _completed(args, returncode=1),
    )

    with pytest.raises(PidResolutionError):
        PidstatInspector().newest_pid("a.conf")
