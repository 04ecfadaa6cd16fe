"""HTTP surface: landing page and the Prometheus telemetry endpoint."""
from __future__ import annotations
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from pgpool2_exporter import __version__
from pgpool2_exporter.config import Settings, get_settings, mask_password, parse_listen_address
from pgpool2_exporter.exporter import PgpoolExporter

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

LANDING_PAGE = """<html>
<head><title>Pgpool-II Exporter</title></head>
<body>
<h1>Pgpool-II Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")


class LogfmtFormatter(logging.Formatter):
    """``ts=... level=... logger=... msg=...`` lines."""

    @staticmethod
    def _quote(value: str) -> str:
        if value and not any(c in value for c in ' "=\n'):
            return value
        return json.dumps(value)

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        fields = [
            ("ts", _timestamp(record)),
            ("level", record.levelname.lower()),
            ("logger", record.name),
            ("msg", msg),
        ]
        return " ".join(f"{key}={self._quote(value)}" for key, value in fields)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": _timestamp(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: str = "info", fmt: str = "logfmt") -> None:
    """Install a single stream handler on the root logger."""
    try:
        numeric = LOG_LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {level}") from None
    if fmt == "json":
        formatter: logging.Formatter = JsonFormatter()
    elif fmt == "logfmt":
        formatter = LogfmtFormatter()
    else:
        raise ValueError(f"unknown log format: {fmt}")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric)


def create_app(settings: Optional[Settings] = None, exporter: Optional[PgpoolExporter] = None) -> FastAPI:
    """Build the app. Without ``exporter`` one is created from ``settings`` at startup."""
    settings = settings or get_settings()
    registry = CollectorRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        collector = exporter
        if collector is None:
            dsn = settings.dsn()
            logger.info(f"Starting pgpool2_exporter version={__version__} dsn={mask_password(dsn)}")
            # blocks until the first connection succeeds
            collector = await run_in_threadpool(
                PgpoolExporter, dsn, connect_retry_interval=settings.connect_retry_interval)
        registry.register(collector)
        app.state.exporter = collector
        logger.info(f"Listening on address={settings.web_listen_address} path={settings.web_telemetry_path}")
        try:
            yield
        finally:
            registry.unregister(collector)
            collector.close()

    app = FastAPI(title="Pgpool-II Exporter", version=__version__, lifespan=lifespan)
    app.state.registry = registry

    @app.get("/", response_class=HTMLResponse)
    def landing():
        return LANDING_PAGE.format(path=settings.web_telemetry_path)

    @app.get(settings.web_telemetry_path)
    def metrics():
        data = generate_latest(registry)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


def run():  # pragma: no cover - thin wrapper
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    host, port = parse_listen_address(settings.web_listen_address)
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


if __name__ == "__main__":  # pragma: no cover
    run()
