import json

import httpx
import pytest

from opencode_telegram.telegram import (
    TelegramAPIError,
    TelegramClient,
    TelegramRetryAfter,
)


def _ok(request: httpx.Request, result: object) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": result}, request=request)


@pytest.mark.anyio
async def test_telegram_429_raises_retry_after() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(
            429,
            json={
                "ok": False,
                "description": "retry",
                "parameters": {"retry_after": 3},
            },
            request=request,
        )

    transport = httpx.MockTransport(handler)

    client = httpx.AsyncClient(transport=transport)
    try:
        tg = TelegramClient("123:abcDEF_ghij", client=client)
        with pytest.raises(TelegramRetryAfter) as excinfo:
            await tg._post("sendMessage", {"chat_id": 1, "text": "hi"})
    finally:
        await client.aclose()

    assert excinfo.value.retry_after == 3
    assert len(calls) == 1


@pytest.mark.anyio
async def test_retry_after_parsed_from_description() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"ok": False, "description": "Too Many Requests: retry after 7"},
            request=request,
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        with pytest.raises(TelegramRetryAfter) as excinfo:
            await tg.get_updates(offset=None)

    assert excinfo.value.retry_after == 7


@pytest.mark.anyio
async def test_http_error_returns_none_on_500() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops", request=request)

    transport = httpx.MockTransport(handler)

    client = httpx.AsyncClient(transport=transport)
    try:
        tg = TelegramClient("123:abcDEF_ghij", client=client)
        result = await tg._post("getUpdates", {"timeout": 1})
        assert result is None
    finally:
        await client.aclose()


@pytest.mark.anyio
async def test_network_error_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        assert await tg.send_message(chat_id=1, text="hi") is None


@pytest.mark.anyio
async def test_telegram_empty_token_raises() -> None:
    with pytest.raises(ValueError, match="empty"):
        TelegramClient("")


@pytest.mark.anyio
async def test_close_owned_client() -> None:
    client = TelegramClient("123:abc")
    await client.close()


@pytest.mark.anyio
async def test_close_external_client() -> None:
    async with httpx.AsyncClient() as ext:
        client = TelegramClient("123:abc", client=ext)
        await client.close()
        assert not ext.is_closed


@pytest.mark.anyio
async def test_send_message_with_reply_markup() -> None:
    captured: dict | None = None

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal captured
        captured = json.loads(request.content)
        assert request.url.path == "/bot123:abc/sendMessage"
        return _ok(request, {"message_id": 123})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        result = await tg.send_message(
            chat_id=456,
            text="hello",
            reply_markup={"inline_keyboard": [[{"text": "btn", "callback_data": "x"}]]},
        )

    assert result == {"message_id": 123}
    assert captured == {
        "chat_id": 456,
        "text": "hello",
        "disable_notification": False,
        "reply_markup": {"inline_keyboard": [[{"text": "btn", "callback_data": "x"}]]},
    }


@pytest.mark.anyio
async def test_edit_message_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _ok(request, {"message_id": 123})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        result = await tg.edit_message_text(chat_id=456, message_id=789, text="edited")
        assert result == {"message_id": 123}


@pytest.mark.anyio
async def test_edit_message_text_raises_api_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "ok": False,
                "error_code": 400,
                "description": "Bad Request: message to edit not found",
            },
            request=request,
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        with pytest.raises(TelegramAPIError) as excinfo:
            await tg.edit_message_text(chat_id=456, message_id=789, text="edited")

    assert excinfo.value.is_message_not_found
    assert not excinfo.value.is_not_modified
    assert excinfo.value.error_code == 400
    assert excinfo.value.method == "editMessageText"


@pytest.mark.anyio
async def test_bool_methods() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path.rsplit("/", 1)[-1])
        return _ok(request, True)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        assert await tg.delete_message(chat_id=456, message_id=789)
        assert await tg.send_chat_action(chat_id=456)
        assert await tg.pin_chat_message(chat_id=456, message_id=789)
        assert await tg.unpin_all_chat_messages(chat_id=456)
        assert await tg.answer_callback_query("query123", text="Done!")

    assert paths == [
        "deleteMessage",
        "sendChatAction",
        "pinChatMessage",
        "unpinAllChatMessages",
        "answerCallbackQuery",
    ]


@pytest.mark.anyio
async def test_send_document_uses_multipart() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["content_type"] = request.headers["content-type"]
        captured["body"] = request.read()
        return _ok(request, {"message_id": 5})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        result = await tg.send_document(
            456, "edit_a.py.txt", b"+ new line", caption="a.py"
        )

    assert result == {"message_id": 5}
    assert str(captured["content_type"]).startswith("multipart/form-data")
    body = captured["body"]
    assert isinstance(body, bytes)
    assert b'filename="edit_a.py.txt"' in body
    assert b"+ new line" in body
    assert b'name="chat_id"' in body


@pytest.mark.anyio
async def test_get_updates_sends_offset_and_filters() -> None:
    captured: dict | None = None

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal captured
        captured = json.loads(request.content)
        return _ok(
            request,
            [
                {"update_id": 1, "message": {"text": "hello"}},
                {"update_id": 2, "message": {"text": "world"}},
            ],
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client)
        updates = await tg.get_updates(
            offset=10, timeout_s=5, allowed_updates=["message"]
        )

    assert updates is not None
    assert [u["update_id"] for u in updates] == [1, 2]
    assert captured == {"timeout": 5, "offset": 10, "allowed_updates": ["message"]}


def _rate_limited(request: httpx.Request, retry_after: int) -> httpx.Response:
    return httpx.Response(
        429,
        json={
            "ok": False,
            "description": f"Too Many Requests: retry after {retry_after}",
            "parameters": {"retry_after": retry_after},
        },
        request=request,
    )


@pytest.mark.anyio
async def test_send_waits_out_rate_limit_and_retries() -> None:
    attempts: list[str] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.url.path.rsplit("/", 1)[-1])
        if len(attempts) == 1:
            return _rate_limited(request, 2)
        return _ok(request, {"message_id": 9})

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client, sleep=fake_sleep)
        result = await tg.send_message(chat_id=1, text="final answer")

    assert result == {"message_id": 9}
    assert attempts == ["sendMessage", "sendMessage"]
    assert sleeps == [2.0]


@pytest.mark.anyio
async def test_edit_and_document_retry_after_rate_limit() -> None:
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        attempts.append(method)
        if attempts.count(method) == 1:
            return _rate_limited(request, 1)
        return _ok(request, {"message_id": 3})

    async def fake_sleep(delay: float) -> None:
        return None

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient("123:abc", client=client, sleep=fake_sleep)
        assert await tg.edit_message_text(1, 3, "edited") == {"message_id": 3}
        assert await tg.send_document(1, "a.txt", b"x") == {"message_id": 3}

    assert attempts == [
        "editMessageText",
        "editMessageText",
        "sendDocument",
        "sendDocument",
    ]


@pytest.mark.anyio
async def test_send_gives_up_after_repeated_rate_limits() -> None:
    attempts: list[int] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return _rate_limited(request, 5)

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        tg = TelegramClient(
            "123:abc", client=client, sleep=fake_sleep, max_retry_after_attempts=2
        )
        assert await tg.send_message(chat_id=1, text="hi") is None

    assert len(attempts) == 3
    assert sleeps == [5.0, 5.0]
