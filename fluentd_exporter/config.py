"""Configuration loader for the exporter."""

from __future__ import annotations

from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExporterConfig(BaseSettings):
    """Pydantic-based configuration model."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    web_listen_address: str = ":9224"
    web_telemetry_path: str = "/metrics"

    namespace: str = "fluentd"
    process_name: str = "ruby"
    primary_marker: str = "fluentd"
    secondary_marker: str = "td-agent"
    fallback_instance: str = "td-agent"

    backend: Literal["procfs", "pidstat"] = "procfs"
    on_unmatched_config: Literal["fail", "skip"] = "fail"

    pidstat_interval: int = 5
    pidstat_count: int = 1
    pidstat_cpu_column: int = 7
    pidstat_vsz_column: int = 11
    pidstat_rss_column: int = 12

    exporter_log_level: str = "INFO"

    @field_validator("backend", "on_unmatched_config", mode="before")
    @classmethod
    def normalize_choice(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("pidstat_interval", "pidstat_count")
    @classmethod
    def positive_window(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("pidstat interval and count must be positive")
        return value

    @field_validator("pidstat_cpu_column", "pidstat_vsz_column", "pidstat_rss_column")
    @classmethod
    def non_negative_column(cls, value: int) -> int:
        if value < 0:
            raise ValueError("pidstat column indices must not be negative")
        return value

    @field_validator("web_telemetry_path")
    @classmethod
    def absolute_path(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("/"):
            raise ValueError("WEB_TELEMETRY_PATH must start with '/'")
        return value

    @field_validator("web_listen_address")
    @classmethod
    def validate_listen_address(cls, value: str) -> str:
        """Require a ``host:port`` pair; the host may be blank."""

        value = value.strip()
        _, sep, port = value.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError("WEB_LISTEN_ADDRESS must look like 'host:port' or ':port'")
        return value

    @property
    def listen_host(self) -> str:
        host = self.web_listen_address.rpartition(":")[0]
        return host.strip("[]")

    @property
    def listen_port(self) -> int:
        return int(self.web_listen_address.rpartition(":")[2])


def load_config(**overrides: object) -> ExporterConfig:
    """Load configuration from environment variables.

    Keyword overrides (for example values taken from command-line flags) win
    over the environment; ``None`` values are ignored.
    """

    values = {key: value for key, value in overrides.items() if value is not None}
    return ExporterConfig(**values)
