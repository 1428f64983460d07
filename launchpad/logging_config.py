"""
Structured logging for relay submissions and automation passes.

Everything goes through structlog: JSON lines by default (cron runs, the API
in production) and a console renderer at DEBUG. Stdlib loggers used by the
provider clients are routed through the same formatter. Secret-bearing
fields are masked and endpoint URLs lose their query strings before
rendering, since several relays carry API keys there.
"""

import logging
import sys
from typing import Any, List, MutableMapping, Optional

import structlog

SECRET_KEYS = frozenset(
    {"authorization", "api_key", "auth_token", "private_key", "secret_key", "service_salt", "cron_secret", "blob"}
)
URL_KEYS = frozenset({"endpoint", "url", "status_url"})

QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def redact_event(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        lowered = key.lower()
        if lowered in SECRET_KEYS:
            event_dict[key] = "***"
        elif lowered in URL_KEYS and isinstance(event_dict[key], str):
            event_dict[key] = event_dict[key].split("?", 1)[0]
    return event_dict


def _processors(debug: bool) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if not debug:
        processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog and attach a single stdout handler to the root logger.

    Args:
        log_level: Level name; falls back to ``settings.log_level``
    """
    if log_level is None:
        from .config import settings

        log_level = settings.log_level

    level = getattr(logging, log_level.upper(), logging.INFO)
    debug = level <= logging.DEBUG
    processors = _processors(debug)

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Relay and RPC chatter drowns out pass summaries
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_pass_context(engine: str, pass_id: str) -> None:
    """Attach the automation pass identity to every log line in this context."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(engine=engine, pass_id=pass_id)
