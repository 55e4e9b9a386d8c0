"""Structured logging for revpi-tags.

Every module logs through `structlog.get_logger(__name__)` with key/value
fields. Domain objects passed as fields (tag addresses, tag types, tag
descriptors, raw image bytes) are rendered to short text by
`render_domain_values`, so console and JSON output show `13.2` rather
than a dataclass repr.

Settings are resolved in this order: explicit arguments (CLI options),
then REVPI_LOG_LEVEL / REVPI_LOG_FORMAT, then the `logging` section of
the configuration file.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

import structlog

from revpi_tags.domain.model.tags import Address, TagDescriptor, TagType

if TYPE_CHECKING:
    from revpi_tags.config.schema import LoggingConfig

LOG_LEVEL_ENV = "REVPI_LOG_LEVEL"
LOG_FORMAT_ENV = "REVPI_LOG_FORMAT"


def render_domain_values(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor turning domain objects into log-friendly text."""
    for key, value in event_dict.items():
        if isinstance(value, TagDescriptor):
            event_dict[key] = f"{value.name}@{value.address}"
        elif isinstance(value, Address):
            event_dict[key] = str(value)
        elif isinstance(value, TagType):
            event_dict[key] = value.value
        elif isinstance(value, (bytes, bytearray)):
            event_dict[key] = value.hex(" ")
    return event_dict


def resolve_settings(
    level: str | None = None,
    log_format: str | None = None,
    config: LoggingConfig | None = None,
) -> tuple[int, str]:
    """Pick the effective (level, format) pair.

    Unknown level names fall back to INFO; unknown formats to console.
    """
    level_name = level or os.environ.get(LOG_LEVEL_ENV) or (config.level if config else "INFO")
    format_name = (
        log_format or os.environ.get(LOG_FORMAT_ENV) or (config.format if config else "console")
    )
    log_level = logging.getLevelNamesMapping().get(level_name.strip().upper(), logging.INFO)
    format_name = format_name.strip().lower()
    return log_level, format_name if format_name == "json" else "console"


def setup_logging(
    level: str | None = None,
    log_format: str | None = None,
    *,
    config: LoggingConfig | None = None,
) -> None:
    """Route structlog through stdlib logging on stdout."""
    log_level, format_name = resolve_settings(level, log_format, config)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    logging.getLogger().setLevel(log_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        render_domain_values,
    ]
    if format_name == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LogContext:
    """Bind fields (for example the bridge namespace) to every log line in a block."""

    def __init__(self, **kwargs: Any) -> None:
        self._context = kwargs

    def __enter__(self) -> LogContext:
        structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self._context)
