"""Context button: confirm, then ask the server to summarize the session."""

from __future__ import annotations

from ...logging import get_logger
from ...model import ModelInfo, SessionInfo
from ..context import BridgeContext
from ..keyboards import COMPACT_PREFIX, compact_markup, parse_prefixed_callback
from ..types import TelegramCallbackQuery

logger = get_logger(__name__)

NO_SESSION_TEXT = (
    "\N{WARNING SIGN}\N{VARIATION SELECTOR-16} No active session. "
    "Send a prompt to start one."
)
SESSION_NOT_FOUND_TEXT = "Session not found"
COMPACTING_TEXT = "Compacting context..."
PROGRESS_TEXT = "\N{HOURGLASS WITH FLOWING SAND} Compacting context..."
SUCCESS_TEXT = "\N{WHITE HEAVY CHECK MARK} Context compacted successfully"
FAILED_TEXT = "\N{CROSS MARK} Context compaction failed"
CANCELLED_TEXT = "Cancelled"


def format_confirm_text(title: str) -> str:
    return (
        f'\N{BAR CHART} Context compaction for session "{title}"\n\n'
        "This will reduce context usage by removing old messages from history. "
        "Current task will not be interrupted.\n\n"
        "Continue?"
    )


async def show_compact_confirmation(ctx: BridgeContext) -> None:
    session = ctx.store.session()
    if session is None:
        await ctx.notify(NO_SESSION_TEXT)
        return
    await ctx.bot.send_message(
        ctx.chat_id,
        format_confirm_text(session.title),
        reply_markup=compact_markup(),
    )


async def _set_progress(ctx: BridgeContext, message_id: int | None, text: str) -> None:
    if message_id is None:
        await ctx.notify(text)
        return
    try:
        await ctx.bot.edit_message_text(ctx.chat_id, message_id, text)
    except Exception as exc:
        logger.warning(
            "compact.progress_update_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


async def _compact(
    ctx: BridgeContext,
    session: SessionInfo,
    directory: str,
    model: ModelInfo,
    progress_id: int | None,
) -> None:
    await ctx.api.summarize_session(session.id, directory, model)
    logger.info("compact.done", session_id=session.id)
    await _set_progress(ctx, progress_id, SUCCESS_TEXT)


async def handle_compact_callback(
    ctx: BridgeContext, query: TelegramCallbackQuery
) -> bool:
    action = parse_prefixed_callback(query.data or "", COMPACT_PREFIX)
    if action not in ("confirm", "cancel"):
        return False

    if action == "cancel":
        await ctx.bot.answer_callback_query(query.callback_query_id, CANCELLED_TEXT)
        await ctx.bot.delete_message(ctx.chat_id, query.message_id)
        return True

    session = ctx.store.session()
    directory = ctx.directory()
    if session is None or not directory:
        await ctx.bot.answer_callback_query(
            query.callback_query_id, SESSION_NOT_FOUND_TEXT
        )
        await ctx.notify(NO_SESSION_TEXT)
        await ctx.bot.delete_message(ctx.chat_id, query.message_id)
        return True

    await ctx.bot.answer_callback_query(query.callback_query_id, COMPACTING_TEXT)
    await ctx.bot.delete_message(ctx.chat_id, query.message_id)
    sent = await ctx.bot.send_message(ctx.chat_id, PROGRESS_TEXT)
    progress_id = int(sent["message_id"]) if sent is not None else None
    await ctx.bot.send_chat_action(ctx.chat_id, "typing")

    model = ctx.store.model(ctx.settings.opencode.default_model())
    logger.info("compact.start", session_id=session.id, model=model.label)

    async def on_error(exc: Exception) -> None:
        await _set_progress(ctx, progress_id, FAILED_TEXT)

    ctx.spawn(
        "session.compact",
        _compact,
        ctx,
        session,
        directory,
        model,
        progress_id,
        on_error=on_error,
    )
    return True
