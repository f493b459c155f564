from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from opencode_telegram.model import (
    ModelInfo,
    PermissionRequest,
    Question,
    QuestionOption,
    SessionInfo,
)
from opencode_telegram.opencode.errors import OpenCodeHTTPError
from opencode_telegram.telegram.context import BridgeContext
from opencode_telegram.telegram.handlers.compact import NO_SESSION_TEXT
from opencode_telegram.telegram.handlers.question import start_poll
from opencode_telegram.telegram.loop import (
    CREATE_SESSION_ERROR_TEXT,
    CREATING_SESSION_TEXT,
    PROJECT_NOT_SELECTED_TEXT,
    PROMPT_SEND_ERROR_TEXT,
    SESSION_BUSY_TEXT,
    SESSION_MISMATCH_TEXT,
    UNKNOWN_CALLBACK_TEXT,
    handle_callback,
    handle_message,
    handle_prompt,
    route_update,
    run_main_loop,
    start_bridge,
)
from opencode_telegram.telegram.types import (
    TelegramCallbackQuery,
    TelegramIncomingMessage,
    TelegramIncomingUpdate,
)
from tests.fakes import CHAT_ID, FakeAgentApi, FakeBot, RecordingTaskGroup


def message(text: str) -> TelegramIncomingMessage:
    return TelegramIncomingMessage(
        chat_id=CHAT_ID, message_id=1, text=text, sender_id=7
    )


def callback(data: str | None) -> TelegramCallbackQuery:
    return TelegramCallbackQuery(
        chat_id=CHAT_ID,
        message_id=5,
        callback_query_id="cb-1",
        data=data,
        sender_id=7,
    )


@pytest.fixture
async def ctx(make_ctx: Callable[..., BridgeContext]) -> BridgeContext:
    ctx = make_ctx()
    await start_bridge(ctx)
    return ctx


@pytest.mark.anyio
async def test_start_bridge_initializes_managers(
    ctx: BridgeContext, task_group: RecordingTaskGroup
) -> None:
    assert ctx.keyboard.is_initialized
    assert ctx.pinned.is_initialized
    state = ctx.keyboard.state
    assert state is not None
    assert state.agent == "build"
    assert state.model == ModelInfo("anthropic", "claude")
    assert task_group.names() == []


@pytest.mark.anyio
async def test_start_bridge_resumes_saved_session(
    make_ctx: Callable[..., BridgeContext], task_group: RecordingTaskGroup
) -> None:
    ctx = make_ctx()
    ctx.store.set_session(SessionInfo("s1", "Session one", "/work"))

    await start_bridge(ctx)

    assert ctx.aggregator.current_session_id == "s1"
    assert ctx.aggregator.directory == "/work"
    assert task_group.names() == ["_subscribe"]


@pytest.mark.anyio
async def test_start_bridge_defaults_project_to_configured_directory(
    make_ctx: Callable[..., BridgeContext],
) -> None:
    ctx = make_ctx()
    ctx.store.set_project(None)

    await start_bridge(ctx)

    project = ctx.store.project()
    assert project is not None
    assert project.worktree == ctx.settings.opencode.directory


@pytest.mark.anyio
async def test_prompt_creates_session_and_sends(
    ctx: BridgeContext,
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
) -> None:
    await handle_prompt(ctx, "add a test")

    texts = fake_bot.sent_texts()
    assert texts[0] == CREATING_SESSION_TEXT
    assert texts[-1].endswith("Session created: Session one")
    assert fake_bot.called("send_message")[-1]["reply_markup"] is not None
    assert fake_api.called("create_session") == [("/work", None)]
    assert ctx.store.session() == SessionInfo("s1", "Session one", "/work")
    assert ctx.pinned.state.message_id is not None
    assert ctx.aggregator.current_session_id == "s1"

    assert task_group.names() == ["_subscribe", "session.prompt"]
    await task_group.run_named("session.prompt")
    assert fake_api.called("send_prompt") == [
        ("s1", "add a test", "/work", ModelInfo("anthropic", "claude"), "build", None)
    ]


@pytest.mark.anyio
async def test_prompt_reuses_existing_session(
    ctx: BridgeContext,
    fake_api: FakeAgentApi,
    fake_bot: FakeBot,
    task_group: RecordingTaskGroup,
) -> None:
    ctx.store.set_session(SessionInfo("s1", "Session one", "/work"))
    ctx.store.set_model(ModelInfo("anthropic", "claude", "high"))

    await handle_prompt(ctx, "again")

    assert fake_api.called("create_session") == []
    assert CREATING_SESSION_TEXT not in fake_bot.sent_texts()
    assert fake_bot.called("pin_chat_message")
    await task_group.run_named("session.prompt")
    (call,) = fake_api.called("send_prompt")
    assert call[-1] == "high"


@pytest.mark.anyio
async def test_mismatched_session_is_reset(
    ctx: BridgeContext,
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
) -> None:
    ctx.store.set_session(SessionInfo("old", "Old", "/elsewhere"))
    ctx.keyboard.update_context(150_000, 200_000)
    ctx.permissions.start(
        PermissionRequest(id="perm-1", session_id="old", permission="bash")
    )

    await handle_prompt(ctx, "hello")

    assert ctx.store.session() is None
    assert ctx.keyboard.context_info() is None
    assert ctx.keyboard.labels().context == "\N{BAR CHART} 0"
    assert not ctx.permissions.is_active
    assert not ctx.questions.is_active
    assert fake_bot.sent_texts() == [SESSION_MISMATCH_TEXT]
    assert fake_api.calls == []
    assert task_group.names() == []


@pytest.mark.anyio
async def test_session_creation_failure(
    ctx: BridgeContext,
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
) -> None:
    fake_api.errors["create_session"] = OpenCodeHTTPError(
        500, method="POST", url="/session"
    )

    await handle_prompt(ctx, "hello")

    assert fake_bot.sent_texts() == [CREATING_SESSION_TEXT, CREATE_SESSION_ERROR_TEXT]
    assert ctx.store.session() is None
    assert task_group.names() == []


@pytest.mark.anyio
async def test_prompt_without_project(
    ctx: BridgeContext, fake_bot: FakeBot, fake_api: FakeAgentApi
) -> None:
    ctx.store.set_project(None)

    await handle_prompt(ctx, "hello")

    assert fake_bot.sent_texts() == [PROJECT_NOT_SELECTED_TEXT]
    assert fake_api.calls == []


@pytest.mark.anyio
async def test_prompt_failure_is_reported(
    ctx: BridgeContext,
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
) -> None:
    ctx.store.set_session(SessionInfo("s1", "Session one", "/work"))
    fake_api.errors["send_prompt"] = RuntimeError("connection refused")

    await handle_prompt(ctx, "hello")
    await task_group.run_named("session.prompt")

    assert fake_bot.sent_texts()[-1] == PROMPT_SEND_ERROR_TEXT


@pytest.mark.anyio
async def test_commands_and_blank_messages_are_ignored(
    ctx: BridgeContext, fake_bot: FakeBot, fake_api: FakeAgentApi
) -> None:
    await handle_message(ctx, message("/start"))
    await handle_message(ctx, message("   "))

    assert fake_bot.calls == []
    assert fake_api.calls == []


@pytest.mark.anyio
async def test_keyboard_buttons_open_their_menus(
    ctx: BridgeContext, fake_bot: FakeBot, fake_api: FakeAgentApi
) -> None:
    labels = ctx.keyboard.labels()

    await handle_message(ctx, message(labels.agent))
    await handle_message(ctx, message(labels.model))
    await handle_message(ctx, message(labels.variant))
    await handle_message(ctx, message(labels.context))

    texts = fake_bot.sent_texts()
    assert texts[0].startswith("Current mode: Build")
    assert texts[1].startswith("Current model: anthropic/claude")
    assert texts[2].startswith("Current variant: Default")
    assert texts[3] == NO_SESSION_TEXT
    assert fake_api.called("list_agents") == [("/work",)]
    assert fake_api.called("send_prompt") == []


@pytest.mark.anyio
async def test_stale_keyboard_label_still_opens_menu(
    ctx: BridgeContext, fake_bot: FakeBot
) -> None:
    await handle_message(ctx, message("\N{CLIPBOARD} Plan Mode"))

    assert fake_bot.sent_texts()[0].startswith("Current mode: Build")


@pytest.mark.anyio
async def test_busy_session_refuses_new_prompt(
    ctx: BridgeContext,
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
) -> None:
    ctx.store.set_session(SessionInfo("s1", "Session one", "/work"))
    fake_api.statuses = {"s1": "busy", "s2": "idle"}

    await handle_prompt(ctx, "another task")

    assert fake_bot.sent_texts()[-1] == SESSION_BUSY_TEXT
    assert fake_api.called("session_status") == [("/work",)]
    assert "session.prompt" not in task_group.names()


@pytest.mark.anyio
async def test_status_failure_does_not_block_prompt(
    ctx: BridgeContext,
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
) -> None:
    ctx.store.set_session(SessionInfo("s1", "Session one", "/work"))
    fake_api.errors["session_status"] = OpenCodeHTTPError(
        500, method="GET", url="/session/status"
    )

    await handle_prompt(ctx, "go")

    assert SESSION_BUSY_TEXT not in fake_bot.sent_texts()
    assert "session.prompt" in task_group.names()


@pytest.mark.anyio
async def test_text_during_poll_answers_the_question(
    ctx: BridgeContext, task_group: RecordingTaskGroup, fake_api: FakeAgentApi
) -> None:
    question = Question(question="Name?", options=(QuestionOption("a"),))
    await start_poll(ctx, [question], "q-1")

    await handle_message(ctx, message("custom name"))

    await task_group.run_named("question.reply")
    assert fake_api.called("reply_question") == [("q-1", [["custom name"]], "/work")]
    assert fake_api.called("send_prompt") == []


@pytest.mark.anyio
async def test_plain_text_becomes_prompt(
    ctx: BridgeContext, task_group: RecordingTaskGroup
) -> None:
    await handle_message(ctx, message("  explain this  "))

    assert "session.prompt" in task_group.names()


@pytest.mark.anyio
async def test_unknown_callback_is_answered(
    ctx: BridgeContext, fake_bot: FakeBot
) -> None:
    await handle_callback(ctx, callback("mystery:1"))
    await handle_callback(ctx, callback(None))

    assert [call["text"] for call in fake_bot.called("answer_callback_query")] == [
        UNKNOWN_CALLBACK_TEXT,
        UNKNOWN_CALLBACK_TEXT,
    ]


@pytest.mark.anyio
async def test_route_update_contains_handler_failures(
    ctx: BridgeContext, fake_bot: FakeBot, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken(*args: Any, **kwargs: Any) -> bool:
        raise RuntimeError("telegram down")

    monkeypatch.setattr(fake_bot, "answer_callback_query", broken)

    await route_update(ctx, callback("mystery:1"))


@pytest.mark.anyio
async def test_main_loop_routes_polled_updates(
    make_ctx: Callable[..., BridgeContext],
    fake_bot: FakeBot,
    task_group: RecordingTaskGroup,
) -> None:
    ctx = make_ctx()
    seen: dict[str, Any] = {}

    async def poller(bot: Any, *, chat_id: int) -> AsyncIterator[TelegramIncomingUpdate]:
        seen["bot"] = bot
        seen["chat_id"] = chat_id
        yield callback("mystery:1")
        yield message("hello there")

    await run_main_loop(ctx, poller_fn=poller)

    assert seen == {"bot": fake_bot, "chat_id": CHAT_ID}
    assert ctx.keyboard.is_initialized
    assert fake_bot.called("answer_callback_query")[0]["text"] == UNKNOWN_CALLBACK_TEXT
    assert "session.prompt" in task_group.names()
