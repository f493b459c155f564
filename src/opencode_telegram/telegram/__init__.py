"""Telegram-specific clients and adapters."""

from .client import TelegramAPIError, TelegramClient, TelegramRetryAfter
from .parsing import parse_incoming_update, poll_incoming
from .types import TelegramCallbackQuery, TelegramIncomingMessage

__all__ = [
    "TelegramAPIError",
    "TelegramCallbackQuery",
    "TelegramClient",
    "TelegramIncomingMessage",
    "TelegramRetryAfter",
    "parse_incoming_update",
    "poll_incoming",
]
