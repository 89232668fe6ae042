"""Logging and Sentry setup for the compute engine."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

import sentry_sdk
import structlog
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from gitterm_compute.config import Settings, settings

if TYPE_CHECKING:
    from sentry_sdk.types import Event

DEFAULT_TRACES_SAMPLE_RATE = 0.2
DEV_TRACES_SAMPLE_RATE = 1.0

SENSITIVE_KEYS = ("password", "token", "secret", "access_key", "credentials")

# SDK loggers that log every request at INFO/DEBUG
NOISY_LOGGERS = ("botocore", "aiobotocore", "aioboto3", "httpx", "httpcore")


def _pre_chain() -> list[Any]:
    """Processors applied to structlog events and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]


def _renderers(json_format: bool) -> list[Any]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(
    service_name: str,
    log_level: int = logging.INFO,
    json_format: bool | None = None,
    app_settings: Settings | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib logging through one stdout handler.

    JSON is rendered unless ``json_format`` says otherwise or the settings
    environment is ``development``. Records from the AWS and HTTP SDKs go
    through the same formatter, capped at WARNING.
    """
    app = app_settings or settings
    if json_format is None:
        json_format = app.environment != "development"

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderers(json_format),
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_pre_chain(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            add_sentry_breadcrumb,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger(service_name)
    logger.debug("Logging configured", environment=app.environment, json=json_format)
    return cast("structlog.stdlib.BoundLogger", logger)


def add_sentry_breadcrumb(
    _logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Record structlog events as Sentry breadcrumbs.

    Warnings are breadcrumbs only; errors are captured by the logging integration.
    """
    standard_keys = {"event", "level", "timestamp", "logger", "filename", "lineno"}
    extra_data = {k: v for k, v in event_dict.items() if k not in standard_keys}

    sentry_sdk.add_breadcrumb(
        message=str(event_dict.get("event", "")),
        category="log",
        level=event_dict.get("level", method_name),
        data=_scrub(extra_data) if extra_data else None,
    )
    return event_dict


def _scrub(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: "[Filtered]" if any(s in key.lower() for s in SENSITIVE_KEYS) else value
        for key, value in data.items()
    }


@dataclass
class SentryConfig:
    """Configuration for Sentry SDK initialization."""

    service_name: str
    dsn: str | None = None
    environment: str | None = None
    release: str | None = None
    traces_sample_rate: float | None = None


def init_sentry(
    service_name: str,
    config: SentryConfig | None = None,
    app_settings: Settings | None = None,
) -> bool:
    """
    Initialize Sentry SDK for the compute engine.

    Args:
        service_name: Name of the service (e.g., 'gitterm-compute')
        config: Optional SentryConfig object with full configuration
        app_settings: Settings supplying the DSN and environment fallbacks

    Returns:
        True if Sentry was initialized, False if DSN was not provided
    """
    app = app_settings or settings
    cfg = config or SentryConfig(service_name=service_name)
    effective_dsn = cfg.dsn or app.sentry_dsn
    if not effective_dsn:
        return False

    effective_env = cfg.environment or app.environment
    traces_rate = cfg.traces_sample_rate
    if traces_rate is None:
        traces_rate = (
            DEFAULT_TRACES_SAMPLE_RATE if effective_env == "production" else DEV_TRACES_SAMPLE_RATE
        )

    def before_send(event: Event, _hint: dict[str, Any]) -> Event | None:
        extra = event.get("extra")
        if isinstance(extra, dict):
            event["extra"] = _scrub(extra)
        return event

    sentry_sdk.init(
        dsn=effective_dsn,
        environment=effective_env,
        release=cfg.release,
        traces_sample_rate=traces_rate,
        integrations=[
            HttpxIntegration(),
            AsyncioIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=before_send,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", service_name)
    return True
