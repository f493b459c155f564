from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import Any

import anyio
import httpx

from ..logging import get_logger

logger = get_logger(__name__)

_RETRY_AFTER_RE = re.compile(r"retry after (\d+)", re.IGNORECASE)
MAX_RETRY_AFTER_ATTEMPTS = 3


class TelegramRetryAfter(Exception):
    def __init__(self, retry_after: float) -> None:
        super().__init__(f"retry after {retry_after}")
        self.retry_after = retry_after


class TelegramAPIError(Exception):
    """A Bot API call that the server rejected with ``ok: false``."""

    def __init__(self, method: str, description: str, error_code: int | None = None):
        super().__init__(f"{method}: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code

    @property
    def is_not_modified(self) -> bool:
        return "message is not modified" in self.description.lower()

    @property
    def is_message_not_found(self) -> bool:
        return "message to edit not found" in self.description.lower()


def _retry_after_from_payload(payload: dict[str, Any]) -> float | None:
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    description = payload.get("description")
    if isinstance(description, str):
        return _retry_after_from_description(description)
    return None


def _retry_after_from_description(description: str) -> float | None:
    match = _RETRY_AFTER_RE.search(description)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class TelegramClient:
    def __init__(
        self,
        token: str,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        max_retry_after_attempts: int = MAX_RETRY_AFTER_ATTEMPTS,
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"https://api.telegram.org/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._sleep = sleep
        self._max_retry_after_attempts = max_retry_after_attempts

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(
        self,
        method: str,
        json_data: dict[str, Any],
        *,
        files: dict[str, tuple[str, bytes]] | None = None,
        raise_errors: bool = False,
    ) -> Any | None:
        logger.debug("telegram.request", method=method, payload=json_data)
        try:
            if files is not None:
                resp = await self._client.post(
                    f"{self._base}/{method}",
                    data={k: str(v) for k, v in json_data.items()},
                    files=files,
                )
            else:
                resp = await self._client.post(f"{self._base}/{method}", json=json_data)
        except httpx.HTTPError as e:
            url = getattr(e.request, "url", None)
            logger.error(
                "telegram.network_error",
                method=method,
                url=str(url) if url is not None else None,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return None

        payload = _json_or_none(resp)

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if resp.status_code == 429:
                retry_after = (
                    _retry_after_from_payload(payload)
                    if isinstance(payload, dict)
                    else _retry_after_from_description(resp.text)
                )
                if retry_after is not None:
                    logger.info(
                        "telegram.rate_limited",
                        method=method,
                        status=resp.status_code,
                        url=str(resp.request.url),
                        retry_after=retry_after,
                    )
                    raise TelegramRetryAfter(retry_after) from e
            if raise_errors and isinstance(payload, dict):
                description = payload.get("description")
                if isinstance(description, str):
                    raise TelegramAPIError(
                        method, description, payload.get("error_code")
                    ) from e
            logger.error(
                "telegram.http_error",
                method=method,
                status=resp.status_code,
                url=str(resp.request.url),
                error=str(e),
                body=resp.text,
            )
            return None

        if not isinstance(payload, dict):
            logger.error(
                "telegram.invalid_payload",
                method=method,
                url=str(resp.request.url),
                payload=payload,
            )
            return None

        if not payload.get("ok"):
            retry_after = _retry_after_from_payload(payload)
            if retry_after is not None:
                logger.info(
                    "telegram.rate_limited",
                    method=method,
                    url=str(resp.request.url),
                    retry_after=retry_after,
                )
                raise TelegramRetryAfter(retry_after)
            description = str(payload.get("description") or "")
            if raise_errors:
                raise TelegramAPIError(method, description, payload.get("error_code"))
            logger.error(
                "telegram.api_error",
                method=method,
                url=str(resp.request.url),
                payload=payload,
            )
            return None

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def _send(
        self,
        method: str,
        json_data: dict[str, Any],
        *,
        files: dict[str, tuple[str, bytes]] | None = None,
        raise_errors: bool = False,
    ) -> Any | None:
        """``_post`` for outbound calls: waits out rate limits and retries."""
        attempt = 0
        while True:
            try:
                return await self._post(
                    method, json_data, files=files, raise_errors=raise_errors
                )
            except TelegramRetryAfter as exc:
                attempt += 1
                if attempt > self._max_retry_after_attempts:
                    logger.error(
                        "telegram.retry_exhausted",
                        method=method,
                        attempts=attempt,
                        retry_after=exc.retry_after,
                    )
                    return None
                logger.info(
                    "telegram.retry_wait",
                    method=method,
                    attempt=attempt,
                    retry_after=exc.retry_after,
                )
                await self._sleep(exc.retry_after)

    async def get_updates(
        self,
        offset: int | None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict] | None:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        return await self._post("getUpdates", params)  # type: ignore[return-value]

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        disable_notification: bool | None = False,
        *,
        reply_markup: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> dict | None:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if disable_notification is not None:
            params["disable_notification"] = disable_notification
        if reply_to_message_id is not None:
            params["reply_to_message_id"] = reply_to_message_id
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        return await self._send("sendMessage", params)  # type: ignore[return-value]

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict | None:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        return await self._send(  # type: ignore[return-value]
            "editMessageText", params, raise_errors=True
        )

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        res = await self._send(
            "deleteMessage",
            {
                "chat_id": chat_id,
                "message_id": message_id,
            },
        )
        return bool(res)

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> bool:
        res = await self._send("sendChatAction", {"chat_id": chat_id, "action": action})
        return bool(res)

    async def pin_chat_message(
        self, chat_id: int, message_id: int, *, disable_notification: bool = True
    ) -> bool:
        res = await self._send(
            "pinChatMessage",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "disable_notification": disable_notification,
            },
        )
        return bool(res)

    async def unpin_all_chat_messages(self, chat_id: int) -> bool:
        res = await self._send("unpinAllChatMessages", {"chat_id": chat_id})
        return bool(res)

    async def answer_callback_query(
        self, callback_query_id: str, text: str | None = None
    ) -> bool:
        params: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            params["text"] = text
        res = await self._send("answerCallbackQuery", params)
        return bool(res)

    async def send_document(
        self,
        chat_id: int,
        filename: str,
        content: bytes,
        *,
        caption: str | None = None,
    ) -> dict | None:
        params: dict[str, Any] = {"chat_id": chat_id}
        if caption:
            params["caption"] = caption
        return await self._send(  # type: ignore[return-value]
            "sendDocument", params, files={"document": (filename, content)}
        )
