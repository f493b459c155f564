"""Poll flow: one message per question, answers submitted together at the end."""

from __future__ import annotations

from ...logging import get_logger
from ...model import Question, QuestionAnswer
from ..context import BridgeContext
from ..keyboards import parse_question_callback, question_markup
from ..types import TelegramCallbackQuery

logger = get_logger(__name__)

INACTIVE_TEXT = "Poll is inactive"
STALE_QUESTION_TEXT = "This question was already answered"
PROCESSING_ERROR_TEXT = "Processing error"
SELECT_ONE_TEXT = "Select at least one option"
ENTER_CUSTOM_TEXT = "Send your custom answer as a message"
CANCELLED_TEXT = "\N{CROSS MARK} Poll cancelled"
ALREADY_ANSWERED_TEXT = "Answer already received, please wait..."
NO_ANSWERS_TEXT = "\N{WHITE HEAVY CHECK MARK} Poll completed (no answers)"
NO_PROJECT_TEXT = "\N{CROSS MARK} No active project"
NO_REQUEST_TEXT = "\N{CROSS MARK} No active request"
SEND_FAILED_TEXT = "\N{CROSS MARK} Failed to send answers to agent"
MULTI_HINT = "\n(You can select multiple options)"


def format_question_text(question: Question, index: int, total: int) -> str:
    progress = f"{index + 1}/{total}" if total > 0 else ""
    title = " ".join(part for part in (progress, question.header) if part)
    header = f"{title}\n\n" if title else ""
    hint = MULTI_HINT if question.multiple else ""
    return f"{header}{question.question}{hint}"


def format_answers_summary(answers: list[QuestionAnswer]) -> str:
    lines = ["\N{WHITE HEAVY CHECK MARK} Poll completed!", ""]
    for index, item in enumerate(answers, start=1):
        lines.append(f"Question {index}:")
        lines.append(item.question)
        lines.append("")
        lines.append("Answer:")
        lines.append(item.answer)
        lines.append("")
    return "\n".join(lines).rstrip()


async def _delete_message(ctx: BridgeContext, message_id: int) -> None:
    try:
        await ctx.bot.delete_message(ctx.chat_id, message_id)
    except Exception as exc:
        logger.debug(
            "question.delete_failed",
            message_id=message_id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


async def start_poll(
    ctx: BridgeContext, questions: list[Question], request_id: str
) -> None:
    previous = ctx.questions.start(questions, request_id)
    for message_id in previous:
        await _delete_message(ctx, message_id)
    await show_current_question(ctx)


async def clear_poll(ctx: BridgeContext) -> None:
    for message_id in ctx.questions.message_ids:
        await _delete_message(ctx, message_id)
    ctx.questions.reset()


async def show_current_question(ctx: BridgeContext) -> None:
    manager = ctx.questions
    question = manager.current_question()
    if question is None:
        await show_poll_summary(ctx)
        return

    index = manager.current_index
    logger.debug("question.show", index=index, header=question.header)
    sent = await ctx.bot.send_message(
        ctx.chat_id,
        format_question_text(question, index, manager.total_questions),
        reply_markup=question_markup(
            question, index, manager.selected_options(index)
        ),
    )
    if sent is None:
        logger.error("question.send_failed", index=index)
        return
    manager.add_message_id(int(sent["message_id"]))
    ctx.aggregator.stop_typing_indicator()


async def _update_question_message(ctx: BridgeContext, message_id: int) -> None:
    manager = ctx.questions
    question = manager.current_question()
    if question is None:
        return
    index = manager.current_index
    try:
        await ctx.bot.edit_message_text(
            ctx.chat_id,
            message_id,
            format_question_text(question, index, manager.total_questions),
            reply_markup=question_markup(
                question, index, manager.selected_options(index)
            ),
        )
    except Exception as exc:
        logger.error(
            "question.update_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )


async def _show_next_question(ctx: BridgeContext) -> None:
    ctx.questions.next_question()
    if ctx.questions.has_next_question():
        await show_current_question(ctx)
    else:
        await show_poll_summary(ctx)


async def show_poll_summary(ctx: BridgeContext) -> None:
    manager = ctx.questions
    answers = manager.answered()
    logger.info(
        "question.poll_completed",
        answered=len(answers),
        total=manager.total_questions,
    )
    try:
        await _submit_answers(ctx)
        if answers:
            await ctx.notify(format_answers_summary(answers))
        else:
            await ctx.notify(NO_ANSWERS_TEXT)
    finally:
        manager.reset()


async def _submit_answers(ctx: BridgeContext) -> None:
    manager = ctx.questions
    directory = ctx.directory()
    request_id = manager.request_id
    if not directory:
        logger.error("question.no_directory")
        await ctx.notify(NO_PROJECT_TEXT)
        return
    if not request_id:
        logger.error("question.no_request")
        await ctx.notify(NO_REQUEST_TEXT)
        return

    answers = manager.collect_answers()
    logger.info("question.submit", request_id=request_id, answers=len(answers))

    async def on_error(exc: Exception) -> None:
        await ctx.notify(SEND_FAILED_TEXT)

    ctx.spawn(
        "question.reply",
        ctx.api.reply_question,
        request_id,
        answers,
        directory,
        on_error=on_error,
    )


async def handle_question_callback(
    ctx: BridgeContext, query: TelegramCallbackQuery
) -> bool:
    """Handle a ``question:*`` button press. Returns False for other data."""
    data = query.data or ""
    callback = parse_question_callback(data)
    if callback is None:
        return False
    logger.debug("question.callback", data=data)

    manager = ctx.questions
    if not manager.is_active:
        await ctx.bot.answer_callback_query(query.callback_query_id, INACTIVE_TEXT)
        return True
    if callback.question_index != manager.current_index:
        logger.info(
            "question.stale_callback",
            question_index=callback.question_index,
            current_index=manager.current_index,
        )
        await ctx.bot.answer_callback_query(
            query.callback_query_id, STALE_QUESTION_TEXT
        )
        await _delete_message(ctx, query.message_id)
        return True

    try:
        match callback.action:
            case "select":
                question = manager.current_question()
                if question is None or callback.option_index is None:
                    await ctx.bot.answer_callback_query(query.callback_query_id)
                    return True
                manager.select_option(callback.question_index, callback.option_index)
                if question.multiple:
                    await _update_question_message(ctx, query.message_id)
                    await ctx.bot.answer_callback_query(query.callback_query_id)
                else:
                    await ctx.bot.answer_callback_query(query.callback_query_id)
                    await _delete_message(ctx, query.message_id)
                    await _show_next_question(ctx)
            case "submit":
                if not manager.selected_answer(callback.question_index):
                    await ctx.bot.answer_callback_query(
                        query.callback_query_id, SELECT_ONE_TEXT
                    )
                    return True
                await ctx.bot.answer_callback_query(query.callback_query_id)
                await _delete_message(ctx, query.message_id)
                await _show_next_question(ctx)
            case "custom":
                await ctx.bot.answer_callback_query(
                    query.callback_query_id, ENTER_CUSTOM_TEXT
                )
            case "cancel":
                manager.cancel()
                try:
                    await ctx.bot.edit_message_text(
                        ctx.chat_id, query.message_id, CANCELLED_TEXT
                    )
                except Exception as exc:
                    logger.debug(
                        "question.cancel_edit_failed",
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                await ctx.bot.answer_callback_query(query.callback_query_id)
    except Exception as exc:
        logger.error(
            "question.callback_failed",
            data=data,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        await ctx.bot.answer_callback_query(
            query.callback_query_id, PROCESSING_ERROR_TEXT
        )
    return True


async def handle_question_text_answer(ctx: BridgeContext, text: str) -> None:
    manager = ctx.questions
    index = manager.current_index
    if manager.has_custom_answer(index):
        await ctx.notify(ALREADY_ANSWERED_TEXT)
        return

    logger.debug("question.text_answer", index=index)
    manager.set_custom_answer(index, text)
    message_ids = manager.message_ids
    if message_ids:
        await _delete_message(ctx, message_ids[-1])
    await _show_next_question(ctx)
