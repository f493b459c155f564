from __future__ import annotations

import errno
import logging
import re
import sys
from typing import Any

import structlog

TELEGRAM_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
TELEGRAM_BARE_TOKEN_RE = re.compile(r"\b\d+:[A-Za-z0-9_-]{10,}\b")
URL_CREDENTIALS_RE = re.compile(r"(https?://)[^/@\s:]+:[^/@\s]+@")

# fields that may carry request urls or server responses
REDACTED_FIELDS = ("event", "url", "error", "body", "detail")


def redact_secrets(text: str) -> str:
    text = TELEGRAM_TOKEN_RE.sub("bot[REDACTED]", text)
    text = TELEGRAM_BARE_TOKEN_RE.sub("[REDACTED_TOKEN]", text)
    return URL_CREDENTIALS_RE.sub(r"\1[REDACTED]@", text)


def redact_token_processor(_, __, event_dict):
    """Strip bot tokens and basic-auth credentials from log output."""
    for key in REDACTED_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str):
            redacted = redact_secrets(value)
            if redacted != value:
                event_dict[key] = redacted
    return event_dict


class SafeStreamHandler(logging.StreamHandler):
    """Stream handler that goes quiet once stdout is a closed pipe."""

    def handleError(self, record: logging.LogRecord) -> None:
        exc = sys.exc_info()[1]
        broken = isinstance(exc, BrokenPipeError) or (
            isinstance(exc, OSError) and exc.errno == errno.EPIPE
        )
        if not broken:
            super().handleError(record)
            return
        try:
            self.stream.close()
        except OSError:
            pass


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_session_context(**values: Any) -> None:
    """Attach values such as ``session_id`` to every following log line."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def setup_logging(*, debug: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_token_processor,
            structlog.dev.ConsoleRenderer(colors=True)
            if debug
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        handlers=[SafeStreamHandler(sys.stdout)],
        level=logging.DEBUG if debug else logging.INFO,
        force=True,
    )

    # request lines would otherwise leak the bot token at debug level
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
