"""Exporter entrypoint."""

from __future__ import annotations

import argparse
import logging
import shutil
import socket
from typing import Any, Callable, Iterable, List, Optional, Tuple
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CollectorRegistry, disable_created_metrics, make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer

from .config import ExporterConfig, load_config
from .exporter import FluentdExporter
from .metrics import ExporterMetrics
from .pidstat import PidstatInspector
from .process_metrics import ProcessInspector, PsutilInspector

LOGGER = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>{namespace} Exporter</title></head>
<body>
<h1>{namespace} Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""

PIDSTAT_TOOLS = ("ps", "pgrep", "pidstat")

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]


def _resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


def build_inspector(config: ExporterConfig) -> ProcessInspector:
    if config.backend == "pidstat":
        return PidstatInspector(
            process_name=config.process_name,
            interval=config.pidstat_interval,
            count=config.pidstat_count,
            cpu_column=config.pidstat_cpu_column,
            vsz_column=config.pidstat_vsz_column,
            rss_column=config.pidstat_rss_column,
        )
    return PsutilInspector(process_name=config.process_name)


def build_exporter(config: ExporterConfig) -> FluentdExporter:
    inspector = build_inspector(config)
    metrics = ExporterMetrics(namespace=config.namespace, cpu_unit=inspector.cpu_unit)
    return FluentdExporter(
        inspector,
        metrics,
        primary_marker=config.primary_marker,
        secondary_marker=config.secondary_marker,
        fallback_id=config.fallback_instance,
        on_unmatched=config.on_unmatched_config,
    )


def create_app(exporter: FluentdExporter, config: ExporterConfig) -> WSGIApp:
    """Serve metrics on the telemetry path and the landing page everywhere else."""

    registry = CollectorRegistry()
    registry.register(exporter)
    metrics_app = make_wsgi_app(registry)
    page = LANDING_PAGE.format(
        namespace=config.namespace, metrics_path=config.web_telemetry_path
    ).encode("utf-8")

    def app(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        if environ.get("PATH_INFO") == config.web_telemetry_path:
            return metrics_app(environ, start_response)
        start_response(
            "200 OK",
            [("Content-Type", "text/html; charset=utf-8"), ("Content-Length", str(len(page)))],
        )
        return [page]

    return app


class _LoggingHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        LOGGER.debug("%s - %s", self.address_string(), format % args)


def _best_family(host: str, port: int) -> Tuple[socket.AddressFamily, str]:
    """Pick the socket family for ``host``; a blank host binds all IPv4 interfaces."""

    if not host:
        return socket.AF_INET, host
    family, _, _, _, sockaddr = socket.getaddrinfo(host, port)[0]
    return family, sockaddr[0]


def missing_tools(config: ExporterConfig) -> List[str]:
    if config.backend != "pidstat":
        return []
    return [tool for tool in PIDSTAT_TOOLS if shutil.which(tool) is None]


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="fluentd Exporter")
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        help="Address on which to expose metrics and web interface.",
    )
    parser.add_argument(
        "--web.telemetry-path",
        dest="telemetry_path",
        help="Path under which to expose metrics.",
    )
    parser.add_argument(
        "--backend",
        choices=("procfs", "pidstat"),
        help="Where process statistics are read from.",
    )
    parser.add_argument("--log-level", dest="log_level", help="Logging level.")
    parser.add_argument("--healthcheck", action="store_true", help="Run healthcheck and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(
            web_listen_address=args.listen_address,
            web_telemetry_path=args.telemetry_path,
            backend=args.backend,
            exporter_log_level=args.log_level,
        )
        logging.getLogger().setLevel(_resolve_log_level(config.exporter_log_level))
    except ValueError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        raise SystemExit(2) from exc

    if args.healthcheck:
        missing = missing_tools(config)
        if missing:
            LOGGER.error("Required tools not found on PATH: %s", ", ".join(missing))
            raise SystemExit(1)
        LOGGER.info("Configuration loaded for backend %s", config.backend)
        return

    # Only the documented series are exposed, no ``*_created`` samples.
    disable_created_metrics()
    exporter = build_exporter(config)
    app = create_app(exporter, config)

    class _Server(ThreadingWSGIServer):
        pass

    _Server.address_family, host = _best_family(config.listen_host, config.listen_port)
    server = make_server(
        host,
        config.listen_port,
        app,
        server_class=_Server,
        handler_class=_LoggingHandler,
    )
    LOGGER.info("Starting Server: %s", config.web_listen_address)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        LOGGER.info("Exporter stopped")
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
