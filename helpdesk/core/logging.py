"""Logging and tracing setup for the helpdesk API."""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from helpdesk.core.config import Settings

# Third-party loggers that only speak up at WARNING or above.
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio")

_active_provider: TracerProvider | None = None


class EnvironmentFilter(logging.Filter):
    """Stamp each record with the deployment environment for ``%(environment)s``."""

    def __init__(self, environment: str) -> None:
        super().__init__()
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self.environment
        return True


def otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` exporter headers, ignoring malformed pairs."""

    pairs = (item.split("=", 1) for item in (raw or "").split(",") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs if key.strip()}


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the console handler and return the ``helpdesk`` logger."""

    level = _level(settings.log_level)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "environment": {"()": EnvironmentFilter, "environment": settings.environment},
            },
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["environment"],
                }
            },
            "loggers": {
                "helpdesk": {"level": level},
                **{name: {"level": max(level, logging.WARNING)} for name in _QUIET_LOGGERS},
            },
            "root": {"handlers": ["console"], "level": level},
        }
    )
    return logging.getLogger("helpdesk")


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Export spans over OTLP/HTTP when ``otel_enabled`` is set."""

    global _active_provider

    if not settings.otel_enabled:
        return None
    if _active_provider is not None:
        return _active_provider

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=otlp_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
