from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import httpx

from ..keyboard.manager import KeyboardButton, classify_keyboard_text
from ..logging import bind_session_context, get_logger
from ..model import DEFAULT_VARIANT, ModelInfo, ProjectInfo, SessionInfo
from ..opencode.errors import OpenCodeError
from .context import BridgeContext
from .handlers.compact import handle_compact_callback, show_compact_confirmation
from .handlers.permission import handle_permission_callback
from .handlers.question import handle_question_callback, handle_question_text_answer
from .handlers.selection import (
    handle_selection_callback,
    show_agent_menu,
    show_model_menu,
    show_variant_menu,
)
from .parsing import UpdatesClient, poll_incoming
from .types import TelegramCallbackQuery, TelegramIncomingMessage, TelegramIncomingUpdate
from .wiring import wire_events

logger = get_logger(__name__)

PROJECT_NOT_SELECTED_TEXT = "\N{BUILDING CONSTRUCTION} Project is not selected."
CREATING_SESSION_TEXT = "\N{ANTICLOCKWISE DOWNWARDS AND UPWARDS OPEN CIRCLE ARROWS} Creating a new session..."
CREATE_SESSION_ERROR_TEXT = (
    "\N{LARGE RED CIRCLE} Failed to create session. Check the OpenCode server."
)
SESSION_MISMATCH_TEXT = (
    "\N{WARNING SIGN}\N{VARIATION SELECTOR-16} Active session does not match the "
    "selected project, so it was reset. Send your prompt again to start a new session."
)
PROMPT_SEND_ERROR_TEXT = (
    "\N{LARGE RED CIRCLE} An error occurred while sending request to OpenCode."
)
SESSION_BUSY_TEXT = (
    "\N{HOURGLASS WITH FLOWING SAND} Agent is already running a task. "
    "Wait for it to finish before sending a new prompt."
)
UNKNOWN_CALLBACK_TEXT = "Unknown action"

type Poller = Callable[..., AsyncIterator[TelegramIncomingUpdate]]


def _session_created_text(title: str) -> str:
    return f"\N{WHITE HEAVY CHECK MARK} Session created: {title}"


async def handle_keyboard_press(ctx: BridgeContext, button: KeyboardButton) -> None:
    logger.debug("loop.keyboard_press", button=button)
    match button:
        case "agent":
            await show_agent_menu(ctx)
        case "model":
            await show_model_menu(ctx)
        case "variant":
            await show_variant_menu(ctx)
        case "context":
            await show_compact_confirmation(ctx)


async def start_bridge(ctx: BridgeContext) -> None:
    """Attach managers to the bot and resume the persisted session, if any."""
    settings = ctx.settings.opencode
    if ctx.store.project() is None:
        ctx.store.set_project(ProjectInfo(worktree=settings.directory))

    agent = ctx.store.agent(settings.default_agent)
    model = ctx.store.model(settings.default_model())

    async def send_typing() -> None:
        await ctx.bot.send_chat_action(ctx.chat_id, "typing")

    ctx.aggregator.attach(ctx.task_group, send_typing)
    ctx.keyboard.initialize(ctx.bot, ctx.chat_id, agent, model)
    ctx.pinned.initialize(ctx.bot, ctx.chat_id, ctx.task_group)

    session = ctx.store.session()
    if session is not None and session.directory:
        logger.info("loop.resume_session", session_id=session.id)
        ctx.aggregator.set_session(session.id, session.directory)
        bind_session_context(session_id=session.id)
        wire_events(ctx, session.directory)


async def _ensure_session(ctx: BridgeContext, project: ProjectInfo) -> SessionInfo | None:
    session = ctx.store.session()
    if session is not None and session.directory != project.worktree:
        logger.warning(
            "loop.session_mismatch",
            session_directory=session.directory,
            project_directory=project.worktree,
        )
        ctx.events.stop()
        ctx.store.set_session(None)
        ctx.aggregator.clear_session()
        ctx.questions.reset()
        ctx.permissions.clear()
        ctx.keyboard.clear_context()
        await ctx.pinned.clear()
        await ctx.notify(SESSION_MISMATCH_TEXT)
        return None

    if session is not None:
        if ctx.pinned.state.message_id is None:
            await ctx.pinned.on_session_change(session.id, session.title)
        return session

    await ctx.notify(CREATING_SESSION_TEXT)
    try:
        session = await ctx.api.create_session(project.worktree)
    except (OpenCodeError, httpx.HTTPError) as exc:
        logger.error(
            "loop.create_session_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        await ctx.notify(CREATE_SESSION_ERROR_TEXT)
        return None

    logger.info("loop.session_created", session_id=session.id, title=session.title)
    ctx.store.set_session(session)
    await ctx.pinned.on_session_change(session.id, session.title, project)
    await ctx.bot.send_message(
        ctx.chat_id,
        _session_created_text(session.title),
        reply_markup=ctx.keyboard.reply_markup(),
    )
    return session


async def _session_is_busy(ctx: BridgeContext, session: SessionInfo) -> bool:
    try:
        statuses = await ctx.api.session_status(session.directory)
    except (OpenCodeError, httpx.HTTPError) as exc:
        logger.warning(
            "loop.session_status_failed",
            session_id=session.id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return False
    return statuses.get(session.id) == "busy"


async def handle_prompt(ctx: BridgeContext, text: str) -> None:
    project = ctx.store.project()
    if project is None:
        await ctx.notify(PROJECT_NOT_SELECTED_TEXT)
        return

    session = await _ensure_session(ctx, project)
    if session is None:
        return

    ctx.aggregator.set_session(session.id, session.directory)
    bind_session_context(session_id=session.id)
    wire_events(ctx, session.directory)

    if await _session_is_busy(ctx, session):
        logger.info("loop.session_busy", session_id=session.id)
        await ctx.notify(SESSION_BUSY_TEXT)
        return

    settings = ctx.settings.opencode
    agent = ctx.store.agent(settings.default_agent)
    model = ctx.store.model(settings.default_model())
    variant = model.variant if model.variant != DEFAULT_VARIANT else None
    logger.info(
        "loop.prompt",
        session_id=session.id,
        agent=agent,
        model=model.label,
        variant=variant,
    )

    async def on_error(exc: Exception) -> None:
        await ctx.notify(PROMPT_SEND_ERROR_TEXT)

    ctx.spawn(
        "session.prompt",
        _send_prompt,
        ctx,
        session,
        text,
        model,
        agent,
        variant,
        on_error=on_error,
    )


async def _send_prompt(
    ctx: BridgeContext,
    session: SessionInfo,
    text: str,
    model: ModelInfo,
    agent: str,
    variant: str | None,
) -> None:
    await ctx.api.send_prompt(
        session.id,
        text,
        session.directory,
        model=model,
        agent=agent,
        variant=variant,
    )


async def handle_message(ctx: BridgeContext, msg: TelegramIncomingMessage) -> None:
    text = msg.text.strip()
    if not text:
        return
    if ctx.questions.is_active:
        await handle_question_text_answer(ctx, text)
        return
    if text.startswith("/"):
        logger.info("loop.command_ignored", command=text.split(maxsplit=1)[0])
        return
    button = classify_keyboard_text(text)
    if button is not None:
        await handle_keyboard_press(ctx, button)
        return
    await handle_prompt(ctx, text)


async def handle_callback(ctx: BridgeContext, query: TelegramCallbackQuery) -> None:
    if await handle_question_callback(ctx, query):
        return
    if await handle_permission_callback(ctx, query):
        return
    if await handle_selection_callback(ctx, query):
        return
    if await handle_compact_callback(ctx, query):
        return
    logger.debug("loop.callback_unhandled", data=query.data)
    await ctx.bot.answer_callback_query(query.callback_query_id, UNKNOWN_CALLBACK_TEXT)


async def route_update(ctx: BridgeContext, update: TelegramIncomingUpdate) -> None:
    try:
        match update:
            case TelegramCallbackQuery():
                await handle_callback(ctx, update)
            case TelegramIncomingMessage():
                await handle_message(ctx, update)
    except Exception as exc:
        logger.error(
            "loop.update_failed",
            update_type=update.__class__.__name__,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


async def run_main_loop(
    ctx: BridgeContext,
    *,
    poller_fn: Poller = poll_incoming,
) -> None:
    logger.info("telegram.loop.starting", chat_id=ctx.chat_id)
    await start_bridge(ctx)
    bot: UpdatesClient = ctx.bot
    async for update in poller_fn(bot, chat_id=ctx.chat_id):
        await route_update(ctx, update)
    logger.info("telegram.loop.stopped")
