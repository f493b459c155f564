from __future__ import annotations

from ...logging import get_logger
from ...model import PermissionReply, PermissionRequest
from ..context import BridgeContext
from ..keyboards import PERMISSION_PREFIX, parse_permission_callback, permission_markup
from ..types import TelegramCallbackQuery

logger = get_logger(__name__)

INACTIVE_TEXT = "Permission request is inactive"
STALE_TEXT = "This permission request was replaced by a newer one"
NO_REQUEST_TEXT = "Error: no active request"
SEND_FAILED_TEXT = "\N{CROSS MARK} Failed to send permission reply"

PERMISSION_NAMES = {
    "bash": "Bash",
    "edit": "Edit",
    "write": "Write",
    "read": "Read",
    "webfetch": "Web Fetch",
    "websearch": "Web Search",
    "glob": "File Search",
    "grep": "Content Search",
    "list": "List Directory",
    "task": "Task",
    "lsp": "LSP",
}

PERMISSION_EMOJIS = {
    "bash": "\N{HIGH VOLTAGE SIGN}",
    "edit": "\N{PENCIL}\N{VARIATION SELECTOR-16}",
    "write": "\N{MEMO}",
    "read": "\N{OPEN BOOK}",
    "webfetch": "\N{GLOBE WITH MERIDIANS}",
    "websearch": "\N{LEFT-POINTING MAGNIFYING GLASS}",
    "glob": "\N{FILE FOLDER}",
    "grep": "\N{RIGHT-POINTING MAGNIFYING GLASS}",
    "list": "\N{OPEN FILE FOLDER}",
    "task": "\N{GEAR}\N{VARIATION SELECTOR-16}",
    "lsp": "\N{WRENCH}",
}
DEFAULT_PERMISSION_EMOJI = "\N{CLOSED LOCK WITH KEY}"

REPLY_LABELS: dict[PermissionReply, str] = {
    "once": "Allowed once",
    "always": "Always allowed",
    "reject": "Rejected",
}


def format_permission_text(request: PermissionRequest) -> str:
    emoji = PERMISSION_EMOJIS.get(request.permission, DEFAULT_PERMISSION_EMOJI)
    name = PERMISSION_NAMES.get(request.permission, request.permission)
    lines = [f"{emoji} Permission request: {name}"]
    if request.patterns:
        lines.append("")
        lines.extend(request.patterns)
    return "\n".join(lines)


async def show_permission_request(ctx: BridgeContext, request: PermissionRequest) -> None:
    previous_message_id = ctx.permissions.message_id
    ctx.permissions.start(request)
    if previous_message_id is not None:
        await ctx.bot.delete_message(ctx.chat_id, previous_message_id)
    sent = await ctx.bot.send_message(
        ctx.chat_id,
        format_permission_text(request),
        reply_markup=permission_markup(),
    )
    if sent is None:
        logger.error("permission.send_failed", request_id=request.id)
        return
    ctx.permissions.set_message_id(int(sent["message_id"]))
    ctx.aggregator.stop_typing_indicator()


async def handle_permission_callback(
    ctx: BridgeContext, query: TelegramCallbackQuery
) -> bool:
    data = query.data or ""
    if not data.startswith(PERMISSION_PREFIX):
        return False
    reply = parse_permission_callback(data)
    manager = ctx.permissions
    if reply is None or not manager.is_active:
        await ctx.bot.answer_callback_query(query.callback_query_id, INACTIVE_TEXT)
        return True
    if query.message_id != manager.message_id:
        logger.info(
            "permission.stale_callback",
            message_id=query.message_id,
            active_message_id=manager.message_id,
            request_id=manager.request_id,
        )
        await ctx.bot.answer_callback_query(query.callback_query_id, STALE_TEXT)
        await ctx.bot.delete_message(ctx.chat_id, query.message_id)
        return True

    request_id = manager.request_id
    directory = ctx.directory()
    try:
        if not request_id or not directory:
            await ctx.bot.answer_callback_query(
                query.callback_query_id, NO_REQUEST_TEXT
            )
            return True

        logger.info("permission.reply", request_id=request_id, reply=reply)

        async def on_error(exc: Exception) -> None:
            await ctx.notify(SEND_FAILED_TEXT)

        ctx.spawn(
            "permission.reply",
            ctx.api.reply_permission,
            request_id,
            reply,
            directory,
            on_error=on_error,
        )
        ctx.aggregator.stop_typing_indicator()
        await ctx.bot.answer_callback_query(
            query.callback_query_id, REPLY_LABELS[reply]
        )
        await ctx.bot.delete_message(ctx.chat_id, query.message_id)
    finally:
        manager.clear()
    return True
