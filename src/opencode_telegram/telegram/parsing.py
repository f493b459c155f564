from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

import anyio
import msgspec

from ..logging import get_logger
from .api_models import CallbackQuery, Message, Update
from .client import TelegramRetryAfter
from .types import (
    TelegramCallbackQuery,
    TelegramIncomingMessage,
    TelegramIncomingUpdate,
)

logger = get_logger(__name__)

ALLOWED_UPDATES = ["message", "callback_query"]
POLL_TIMEOUT_S = 50
POLL_RETRY_S = 2.0


class UpdatesClient(Protocol):
    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict] | None: ...


def parse_incoming_update(
    update: Update | dict[str, Any], *, chat_id: int | None = None
) -> TelegramIncomingUpdate | None:
    """Convert a raw update into a message or callback query for ``chat_id``.

    Updates from other chats, and messages without text, are dropped.
    """
    raw_message: dict[str, Any] | None = None
    raw_callback: dict[str, Any] | None = None
    if isinstance(update, dict):
        if isinstance(update.get("message"), dict):
            raw_message = update["message"]
        if isinstance(update.get("callback_query"), dict):
            raw_callback = update["callback_query"]
        try:
            update = msgspec.convert(update, type=Update)
        except msgspec.ValidationError:
            logger.debug("telegram.update.invalid")
            return None

    if update.message is not None:
        return _parse_incoming_message(update.message, chat_id=chat_id, raw=raw_message)
    if update.callback_query is not None:
        return _parse_callback_query(
            update.callback_query, chat_id=chat_id, raw=raw_callback
        )
    return None


def _parse_incoming_message(
    msg: Message, *, chat_id: int | None, raw: dict[str, Any] | None
) -> TelegramIncomingMessage | None:
    text = msg.text if msg.text is not None else msg.caption
    if text is None or msg.chat is None:
        return None
    if chat_id is not None and msg.chat.id != chat_id:
        logger.debug("telegram.update.foreign_chat", chat_id=msg.chat.id)
        return None
    return TelegramIncomingMessage(
        chat_id=msg.chat.id,
        message_id=msg.message_id,
        text=text,
        sender_id=msg.from_.id if msg.from_ is not None else None,
        raw=raw if raw is not None else msgspec.to_builtins(msg),
    )


def _parse_callback_query(
    query: CallbackQuery, *, chat_id: int | None, raw: dict[str, Any] | None
) -> TelegramCallbackQuery | None:
    msg = query.message
    if msg is None or msg.chat is None:
        return None
    if chat_id is not None and msg.chat.id != chat_id:
        logger.debug("telegram.update.foreign_chat", chat_id=msg.chat.id)
        return None
    return TelegramCallbackQuery(
        chat_id=msg.chat.id,
        message_id=msg.message_id,
        callback_query_id=query.id,
        data=query.data,
        sender_id=query.from_.id if query.from_ is not None else None,
        raw=raw if raw is not None else msgspec.to_builtins(query),
    )


async def poll_incoming(
    bot: UpdatesClient,
    *,
    chat_id: int | None = None,
    offset: int | None = None,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> AsyncIterator[TelegramIncomingUpdate]:
    while True:
        try:
            updates = await bot.get_updates(
                offset=offset,
                timeout_s=POLL_TIMEOUT_S,
                allowed_updates=ALLOWED_UPDATES,
            )
        except TelegramRetryAfter as exc:
            await sleep(exc.retry_after)
            continue
        if updates is None:
            logger.info("loop.get_updates.failed")
            await sleep(POLL_RETRY_S)
            continue
        logger.debug("loop.updates", updates=len(updates))
        for upd in updates:
            update_id = upd.get("update_id")
            if isinstance(update_id, int):
                offset = update_id + 1
            parsed = parse_incoming_update(upd, chat_id=chat_id)
            if parsed is not None:
                yield parsed
