from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class TelegramIncomingMessage:
    chat_id: int
    message_id: int
    text: str
    sender_id: int | None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class TelegramCallbackQuery:
    chat_id: int
    message_id: int
    callback_query_id: str
    data: str | None
    sender_id: int | None
    raw: dict[str, Any] | None = None


type TelegramIncomingUpdate = TelegramIncomingMessage | TelegramCallbackQuery
