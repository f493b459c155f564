"""Connect aggregator callbacks to Telegram and start the event subscription."""

from __future__ import annotations

from ..logging import get_logger
from ..model import (
    CodeFile,
    FileChange,
    PermissionRequest,
    Question,
    SessionInfo,
    TokensInfo,
    ToolInfo,
)
from ..opencode.errors import EventStreamUnavailable
from ..opencode.schema import OpenCodeEvent, SessionRecord, SessionUpdated, UnknownEvent
from ..summary.aggregator import SummaryCallbacks
from ..summary.formatter import format_summary, format_tool_info
from .context import BridgeContext
from .handlers.permission import show_permission_request
from .handlers.question import clear_poll, start_poll

logger = get_logger(__name__)

THINKING_TEXT = "\N{THOUGHT BALLOON} Thinking..."
STREAM_DISCONNECTED_TEXT = (
    "\N{LARGE RED CIRCLE} Event stream disconnected. "
    "Check the OpenCode server and restart the bot."
)


def _is_current_session(ctx: BridgeContext, session_id: str | None) -> bool:
    session = ctx.store.session()
    return session is not None and session_id is not None and session.id == session_id


def build_callbacks(ctx: BridgeContext) -> SummaryCallbacks:
    telegram = ctx.settings.telegram

    async def on_complete(session_id: str, text: str) -> None:
        if not _is_current_session(ctx, session_id):
            logger.debug("wiring.complete_other_session", session_id=session_id)
            return
        parts = format_summary(text)
        logger.debug("wiring.complete", session_id=session_id, parts=len(parts))
        for index, part in enumerate(parts):
            is_last = index == len(parts) - 1
            if is_last and ctx.keyboard.is_initialized:
                await ctx.bot.send_message(
                    ctx.chat_id, part, reply_markup=ctx.keyboard.reply_markup()
                )
            else:
                await ctx.bot.send_message(ctx.chat_id, part)

    async def on_tool(info: ToolInfo) -> None:
        if not telegram.show_tool_events:
            return
        if not _is_current_session(ctx, ctx.aggregator.current_session_id):
            return
        message = format_tool_info(info)
        if message:
            await ctx.bot.send_message(ctx.chat_id, message)

    async def on_tool_file(code_file: CodeFile) -> None:
        if ctx.store.session() is None:
            return
        logger.debug(
            "wiring.code_file",
            filename=code_file.filename,
            size=len(code_file.buffer),
        )
        await ctx.bot.send_document(
            ctx.chat_id,
            code_file.filename,
            code_file.buffer,
            caption=code_file.caption or None,
        )

    async def on_question(questions: list[Question], request_id: str) -> None:
        logger.info("wiring.question", request_id=request_id, questions=len(questions))
        await start_poll(ctx, questions, request_id)

    async def on_question_error() -> None:
        logger.info("wiring.question_error")
        await clear_poll(ctx)

    async def on_permission(request: PermissionRequest) -> None:
        await show_permission_request(ctx, request)

    async def on_thinking() -> None:
        if not telegram.show_thinking:
            return
        await ctx.notify(THINKING_TEXT)

    def on_tokens(tokens: TokensInfo) -> None:
        if not ctx.pinned.is_initialized:
            return
        limit = ctx.pinned.context_limit()
        if limit > 0:
            ctx.keyboard.update_context(tokens.context_size, limit)
        ctx.spawn("pinned.message_complete", ctx.pinned.on_message_complete, tokens)

    async def on_session_compacted(session_id: str, directory: str) -> None:
        if ctx.pinned.is_initialized:
            await ctx.pinned.on_session_compacted(session_id, directory)
            await ctx.keyboard.send_keyboard_update()

    async def on_session_diff(session_id: str, changes: list[FileChange]) -> None:
        if ctx.pinned.is_initialized:
            await ctx.pinned.on_session_diff(changes)

    def on_file_change(change: FileChange) -> None:
        if ctx.pinned.is_initialized:
            ctx.pinned.add_file_change(change)

    return SummaryCallbacks(
        on_complete=on_complete,
        on_tool=on_tool,
        on_tool_file=on_tool_file,
        on_question=on_question,
        on_question_error=on_question_error,
        on_permission=on_permission,
        on_thinking=on_thinking,
        on_tokens=on_tokens,
        on_session_compacted=on_session_compacted,
        on_session_diff=on_session_diff,
        on_file_change=on_file_change,
    )


def _on_session_updated(ctx: BridgeContext, info: SessionRecord) -> None:
    session = ctx.store.session()
    if session is None or info.id != session.id:
        return
    if not info.title or info.title == session.title:
        return
    logger.info("wiring.session_renamed", session_id=session.id, title=info.title)
    ctx.store.set_session(SessionInfo(session.id, info.title, session.directory))
    if ctx.pinned.is_initialized:
        ctx.spawn(
            "pinned.title_update", ctx.pinned.on_session_title_update, info.title
        )


async def _subscribe(ctx: BridgeContext, directory: str) -> None:
    async def on_event(event: OpenCodeEvent | UnknownEvent) -> None:
        if isinstance(event, SessionUpdated):
            _on_session_updated(ctx, event.properties.info)
        ctx.aggregator.process_event(event)

    try:
        await ctx.events.subscribe(directory, on_event)
    except EventStreamUnavailable as exc:
        logger.error("wiring.stream_disconnected", directory=directory, error=str(exc))
        await ctx.notify(STREAM_DISCONNECTED_TEXT)


def wire_events(ctx: BridgeContext, directory: str) -> bool:
    """Register every aggregator callback and subscribe to ``directory``.

    The subscription runs on the context task group. Returns False when there
    is no directory to subscribe to.
    """
    if not directory:
        logger.error("wiring.no_directory")
        return False

    ctx.aggregator.set_callbacks(build_callbacks(ctx))

    def on_keyboard_update(tokens_used: int, tokens_limit: int) -> None:
        logger.debug(
            "wiring.keyboard_context",
            tokens_used=tokens_used,
            tokens_limit=tokens_limit,
        )
        ctx.keyboard.update_context(tokens_used, tokens_limit)

    ctx.pinned.on_keyboard_update = on_keyboard_update

    logger.info("wiring.subscribe", directory=directory)
    ctx.task_group.start_soon(_subscribe, ctx, directory)
    return True
