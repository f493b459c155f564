import json

import httpx
import pytest

from opencode_telegram.model import AgentInfo, FileChange, ModelInfo, SessionInfo
from opencode_telegram.opencode.client import OpenCodeClient
from opencode_telegram.opencode.errors import OpenCodeHTTPError, OpenCodeProtocolError
from opencode_telegram.opencode.schema import MessageUpdated, UnknownEvent


def _client(handler) -> tuple[OpenCodeClient, httpx.AsyncClient]:
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(base_url="http://opencode.test", transport=transport)
    return OpenCodeClient("http://opencode.test", client=http), http


@pytest.mark.anyio
async def test_send_prompt_builds_body() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"info": {}})

    client, http = _client(handler)
    try:
        await client.send_prompt(
            "s1",
            "fix it",
            "/work",
            model=ModelInfo("anthropic", "claude"),
            agent="plan",
            variant="high",
        )
        await client.send_prompt("s1", "again", "/work", model=ModelInfo("", ""))
    finally:
        await http.aclose()

    first, second = requests
    assert first.method == "POST"
    assert first.url.path == "/session/s1/message"
    assert first.url.params["directory"] == "/work"
    assert json.loads(first.content) == {
        "parts": [{"type": "text", "text": "fix it"}],
        "model": {"providerID": "anthropic", "modelID": "claude"},
        "agent": "plan",
        "variant": "high",
    }
    assert json.loads(second.content) == {
        "parts": [{"type": "text", "text": "again"}]
    }


@pytest.mark.anyio
async def test_replies_post_to_request_endpoints() -> None:
    seen: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json=True)

    client, http = _client(handler)
    try:
        await client.reply_question("q-1", [["A"], ["B", "C"]], "/work")
        await client.reply_permission("perm-1", "always", "/work")
    finally:
        await http.aclose()

    assert seen == [
        ("/question/q-1/reply", {"answers": [["A"], ["B", "C"]]}),
        ("/permission/perm-1/reply", {"reply": "always"}),
    ]


@pytest.mark.anyio
async def test_session_endpoints_convert_payloads() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/session" and request.method == "POST":
            return httpx.Response(200, json={"id": "s9", "title": "New", "version": "1"})
        if path == "/session/s9":
            return httpx.Response(200, json={"id": "s9", "title": "Renamed"})
        if path == "/session/s9/diff":
            return httpx.Response(
                200,
                json=[{"file": "a.py", "additions": 3, "deletions": 1, "before": ""}],
            )
        if path == "/session/s9/message":
            return httpx.Response(
                200,
                json=[
                    {
                        "info": {"id": "m1", "sessionID": "s9", "role": "assistant"},
                        "parts": [],
                    }
                ],
            )
        return httpx.Response(404)

    client, http = _client(handler)
    try:
        created = await client.create_session("/work")
        fetched = await client.get_session("s9", "/work")
        diff = await client.session_diff("s9", "/work")
        messages = await client.session_messages("s9", "/work")
    finally:
        await http.aclose()

    assert created == SessionInfo(id="s9", title="New", directory="/work")
    assert fetched.title == "Renamed"
    assert diff == [FileChange("a.py", 3, 1)]
    assert messages[0].info.role == "assistant"


@pytest.mark.anyio
async def test_config_providers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "providers": [
                    {
                        "id": "anthropic",
                        "models": {
                            "claude": {
                                "id": "claude",
                                "limit": {"context": 200000},
                                "variants": {"high": {}, "max": {"disabled": True}},
                            }
                        },
                    }
                ],
                "default": {"anthropic": "claude"},
            },
        )

    client, http = _client(handler)
    try:
        providers = await client.config_providers()
    finally:
        await http.aclose()

    model = providers.providers[0].models["claude"]
    assert model.limit is not None
    assert model.limit.context == 200000
    assert model.variants == {"high": {}, "max": {"disabled": True}}


@pytest.mark.anyio
async def test_http_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    client, http = _client(handler)
    try:
        with pytest.raises(OpenCodeHTTPError) as excinfo:
            await client.get_session("s1", "/work")
    finally:
        await http.aclose()

    assert excinfo.value.status == 500
    assert "boom" in str(excinfo.value)


@pytest.mark.anyio
async def test_invalid_payload_raises_protocol_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/session/s1":
            return httpx.Response(200, json={"title": "missing id"})
        return httpx.Response(200, content=b"not json")

    client, http = _client(handler)
    try:
        with pytest.raises(OpenCodeProtocolError):
            await client.get_session("s1", "/work")
        with pytest.raises(OpenCodeProtocolError):
            await client.session_diff("s1", "/work")
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_subscribe_events_decodes_stream() -> None:
    body = (
        ": connected\n\n"
        'data: {"type": "server.connected", "properties": {}}\n\n'
        "data: not json\n\n"
        'data: {"type": "message.updated", "properties": {"info": '
        '{"id": "m1", "sessionID": "s1", "role": "assistant"}}}\n\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["directory"] == "/work"
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=body.encode(),
        )

    client, http = _client(handler)
    try:
        async with client.subscribe_events("/work") as stream:
            assert stream is not None
            events = [event async for event in stream]
    finally:
        await http.aclose()

    assert isinstance(events[0], UnknownEvent)
    assert events[0].type == "server.connected"
    assert isinstance(events[1], MessageUpdated)
    assert events[1].properties.info.id == "m1"
    assert len(events) == 2


@pytest.mark.anyio
async def test_subscribe_events_without_stream_yields_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})

    client, http = _client(handler)
    try:
        async with client.subscribe_events("/work") as stream:
            assert stream is None
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_basic_auth_is_sent_when_password_set() -> None:
    client = OpenCodeClient("http://opencode.test/", username="me", password="pw")
    try:
        auth = client._client.auth
        assert isinstance(auth, httpx.BasicAuth)
    finally:
        await client.close()


@pytest.mark.anyio
async def test_agents_status_and_summarize() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/agent":
            return httpx.Response(
                200,
                json=[
                    {"name": "build", "mode": "primary", "builtIn": True},
                    {"name": "general", "mode": "subagent", "description": "helper"},
                    {"name": "title", "mode": "primary", "hidden": True},
                ],
            )
        if request.url.path == "/session/status":
            return httpx.Response(
                200, json={"s1": {"type": "busy"}, "s2": {"type": "retry", "attempt": 2}}
            )
        return httpx.Response(200, json=True)

    client, http = _client(handler)
    try:
        agents = await client.list_agents("/work")
        statuses = await client.session_status("/work")
        await client.summarize_session("s1", "/work", ModelInfo("anthropic", "claude"))
    finally:
        await http.aclose()

    assert agents == [
        AgentInfo("build", mode="primary"),
        AgentInfo("general", mode="subagent", description="helper"),
        AgentInfo("title", mode="primary", hidden=True),
    ]
    assert [a.name for a in agents if a.selectable] == ["build"]
    assert statuses == {"s1": "busy", "s2": "retry"}
    summarize = seen[-1]
    assert summarize.method == "POST"
    assert summarize.url.path == "/session/s1/summarize"
    assert summarize.url.params["directory"] == "/work"
    assert json.loads(summarize.content) == {
        "providerID": "anthropic",
        "modelID": "claude",
    }
