from __future__ import annotations

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import sys
from typing import Final, Literal, cast


LOGGER_NAME: Final[str] = "hugstatus"
LOG_FILENAME: Final[str] = "hug-status.log"
_MAX_VALUE_LEN: Final[int] = 160
_LOG_BACKUP_DAYS: Final[int] = 14
_LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"

# Routing outcomes and service lifecycle; everything else needs "high".
_LOW_VERBOSITY_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "service_started",
        "service_stopping",
        "service_stopped",
        "pull_request_terminal",
        "completion_routed",
        "completion_record_dead_lettered",
        "notification_posted",
        "notification_reply_posted",
    }
)


VerboseMode = Literal["quiet", "low", "high"]
VERBOSE_MODES: Final[tuple[VerboseMode, ...]] = ("quiet", "low", "high")


def configure_logging(verbose: bool | str | None, *, log_dir: Path | None = None) -> None:
    """Route the ``hugstatus`` logger tree to stderr and, optionally, a daily file.

    ``verbose`` accepts ``True``/``False`` for high/quiet or one of
    ``quiet``, ``low`` and ``high``. Calling it again replaces previously
    installed handlers.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    mode = normalize_verbose_mode(verbose)
    if mode == "quiet":
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                log_dir / LOG_FILENAME,
                when="midnight",
                utc=True,
                backupCount=_LOG_BACKUP_DAYS,
                encoding="utf-8",
            )
        )
    for handler in handlers:
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        if mode == "low":
            handler.addFilter(_LowVerbosityFilter())
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def log_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.info(format_event(event, fields))


def log_warning(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.warning(format_event(event, fields))


def format_event(event: str, fields: dict[str, object]) -> str:
    rendered = [f"event={_render_value(event)}"]
    rendered.extend(f"{key}={_render_value(fields[key])}" for key in sorted(fields))
    return " ".join(rendered)


def normalize_verbose_mode(verbose: bool | str | None) -> VerboseMode:
    if verbose is None or verbose is False:
        return "quiet"
    if verbose is True:
        return "high"
    normalized = verbose.strip().lower()
    if normalized not in VERBOSE_MODES:
        raise ValueError(f"Unsupported verbose mode: {verbose!r}")
    return cast(VerboseMode, normalized)


def _render_value(value: object) -> str:
    if value is None:
        text = "null"
    elif isinstance(value, bool):
        text = str(value).lower()
    elif isinstance(value, int | float):
        text = str(value)
    elif isinstance(value, bytes):
        text = f"<bytes len={len(value)}>"
    elif isinstance(value, str):
        text = " ".join(value.split()) or "<empty>"
        if len(text) > _MAX_VALUE_LEN:
            text = f"{text[:_MAX_VALUE_LEN]}..."
    else:
        text = f"<{type(value).__name__}>"

    if "=" in text or any(ch.isspace() for ch in text):
        return json.dumps(text, ensure_ascii=False)
    return text


def _event_name(message: str) -> str | None:
    head, _, _ = message.partition(" ")
    if not head.startswith("event=") or head == "event=":
        return None
    return head.removeprefix("event=")


class _LowVerbosityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return _event_name(record.getMessage()) in _LOW_VERBOSITY_EVENTS
