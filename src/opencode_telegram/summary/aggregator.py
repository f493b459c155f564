"""Turns the raw agent event feed into typed UI callbacks.

The aggregator is bound to at most one session. Assistant messages are
buffered per message id until a ``message.updated`` event carries a
completion time, at which point the last text fragment is reported. Tool
parts are reported once per call id. Everything else is a thin filter that
forwards session-scoped events to the matching callback.

``on_tokens`` and ``on_file_change`` run synchronously inside
``process_event``; all other callbacks are scheduled on the attached task
group and never block event processing.
"""

from __future__ import annotations

import hashlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import anyio
from anyio.abc import TaskGroup

from ..logging import get_logger
from ..model import (
    CodeFile,
    FileChange,
    PermissionRequest,
    Question,
    QuestionOption,
    TokensInfo,
    ToolInfo,
)
from ..opencode.schema import (
    MessageInfo,
    MessagePartUpdated,
    MessageUpdated,
    OpenCodeEvent,
    Part,
    PermissionAsked,
    PermissionInfo,
    PermissionReplied,
    QuestionAsked,
    QuestionInfo,
    QuestionRejected,
    QuestionReplied,
    SessionCompacted,
    SessionDiff,
    SessionIdle,
    SessionStatus,
    ToolState,
    UnknownEvent,
)
from .formatter import count_lines, prepare_code_file

logger = get_logger(__name__)

TYPING_INTERVAL_S = 4.0
DEFAULT_MAX_CODE_FILE_BYTES = 100 * 1024
MAX_COMPLETED_MESSAGES = 1000


@dataclass(slots=True)
class SummaryCallbacks:
    on_complete: Callable[[str, str], Awaitable[None]] | None = None
    on_tool: Callable[[ToolInfo], Awaitable[None]] | None = None
    on_tool_file: Callable[[CodeFile], Awaitable[None]] | None = None
    on_question: Callable[[list[Question], str], Awaitable[None]] | None = None
    on_question_error: Callable[[], Awaitable[None]] | None = None
    on_permission: Callable[[PermissionRequest], Awaitable[None]] | None = None
    on_thinking: Callable[[], Awaitable[None]] | None = None
    on_tokens: Callable[[TokensInfo], None] | None = None
    on_session_compacted: Callable[[str, str], Awaitable[None]] | None = None
    on_session_diff: Callable[[str, list[FileChange]], Awaitable[None]] | None = (
        None
    )
    on_file_change: Callable[[FileChange], None] | None = None


def _text_digest(text: str) -> str:
    return hashlib.blake2b(text.encode("utf-8"), digest_size=16).hexdigest()


def _to_questions(items: list[QuestionInfo]) -> list[Question]:
    return [
        Question(
            question=item.question,
            header=item.header,
            options=tuple(
                QuestionOption(label=opt.label, description=opt.description)
                for opt in item.options
            ),
            multiple=item.multiple,
        )
        for item in items
    ]


def _to_permission(info: PermissionInfo) -> PermissionRequest:
    return PermissionRequest(
        id=info.id,
        session_id=info.sessionID,
        permission=info.permission,
        patterns=tuple(info.patterns),
        metadata=dict(info.metadata),
    )


class SummaryAggregator:
    def __init__(
        self,
        *,
        max_code_file_bytes: int = DEFAULT_MAX_CODE_FILE_BYTES,
        typing_interval_s: float = TYPING_INTERVAL_S,
        max_completed: int = MAX_COMPLETED_MESSAGES,
    ) -> None:
        self.callbacks = SummaryCallbacks()
        self._max_code_file_bytes = max_code_file_bytes
        self._typing_interval_s = typing_interval_s
        self._max_completed = max_completed
        self._task_group: TaskGroup | None = None
        self._send_typing: Callable[[], Awaitable[None]] | None = None
        self._session_id: str | None = None
        self._directory: str | None = None
        self._parts: dict[str, list[str]] = {}
        self._pending: dict[str, list[str]] = {}
        self._roles: dict[str, str] = {}
        self._hashes: dict[str, set[str]] = {}
        # insertion ordered, oldest ids are evicted first
        self._completed: dict[str, None] = {}
        self._processed_tools: set[str] = set()
        self._typing = False
        self._typing_scope: anyio.CancelScope | None = None

    def attach(
        self,
        task_group: TaskGroup,
        send_typing: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._task_group = task_group
        self._send_typing = send_typing

    def set_callbacks(self, callbacks: SummaryCallbacks) -> None:
        self.callbacks = callbacks

    @property
    def current_session_id(self) -> str | None:
        return self._session_id

    @property
    def directory(self) -> str | None:
        return self._directory

    @property
    def is_typing(self) -> bool:
        return self._typing

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._parts)

    def set_session(self, session_id: str, directory: str | None = None) -> None:
        if session_id != self._session_id:
            logger.info(
                "aggregator.session_bound",
                session_id=session_id,
                previous=self._session_id,
            )
            self._clear_session()
            self._session_id = session_id
        if directory is not None:
            self._directory = directory

    def clear_session(self) -> None:
        self._clear_session()
        self._session_id = None

    def reset(self) -> None:
        self.clear_session()
        self._directory = None
        self._processed_tools.clear()
        self.callbacks = SummaryCallbacks()

    def _clear_session(self) -> None:
        self.stop_typing_indicator()
        self._parts.clear()
        self._pending.clear()
        self._roles.clear()
        self._hashes.clear()
        self._completed.clear()

    # -- typing indicator --

    def _start_typing_indicator(self) -> None:
        if self._typing:
            return
        self._typing = True
        if self._send_typing is None or self._task_group is None:
            return
        scope = anyio.CancelScope()
        self._typing_scope = scope
        self._task_group.start_soon(self._typing_loop, scope, self._send_typing)

    async def _typing_loop(
        self, scope: anyio.CancelScope, send_typing: Callable[[], Awaitable[None]]
    ) -> None:
        with scope:
            while True:
                try:
                    await send_typing()
                except Exception as exc:
                    logger.warning(
                        "aggregator.typing_failed",
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                await anyio.sleep(self._typing_interval_s)

    def stop_typing_indicator(self) -> None:
        self._typing = False
        scope = self._typing_scope
        self._typing_scope = None
        if scope is not None:
            scope.cancel()

    # -- callback dispatch --

    def _schedule(
        self, name: str, callback: Callable[..., Awaitable[None]] | None, *args: Any
    ) -> None:
        if callback is None:
            return
        if self._task_group is None:
            logger.warning("aggregator.no_task_group", callback=name)
            return
        self._task_group.start_soon(self._run_callback, name, callback, *args)

    async def _run_callback(
        self, name: str, callback: Callable[..., Awaitable[None]], *args: Any
    ) -> None:
        try:
            await callback(*args)
        except Exception as exc:
            logger.error(
                "aggregator.callback_failed",
                callback=name,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def _emit_file_change(self, change: FileChange) -> None:
        callback = self.callbacks.on_file_change
        if callback is None:
            return
        try:
            callback(change)
        except Exception as exc:
            logger.error(
                "aggregator.callback_failed",
                callback="on_file_change",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def _emit_tokens(self, tokens: TokensInfo) -> None:
        callback = self.callbacks.on_tokens
        if callback is None:
            return
        try:
            callback(tokens)
        except Exception as exc:
            logger.error(
                "aggregator.callback_failed",
                callback="on_tokens",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    # -- event handling --

    def process_event(self, event: OpenCodeEvent | UnknownEvent) -> None:
        try:
            self._dispatch(event)
        except Exception as exc:
            logger.error(
                "aggregator.event_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def _dispatch(self, event: OpenCodeEvent | UnknownEvent) -> None:
        session_id = self._session_id
        match event:
            case MessageUpdated(properties=props):
                self._handle_message_updated(props.info)
            case MessagePartUpdated(properties=props):
                self._handle_part_updated(props.part)
            case SessionIdle(properties=props) if props.sessionID == session_id:
                logger.info("aggregator.session_idle", session_id=session_id)
                self.stop_typing_indicator()
            case SessionCompacted(properties=props) if props.sessionID == session_id:
                self._handle_session_compacted(props.sessionID)
            case QuestionAsked(properties=request):
                if request.sessionID != session_id:
                    logger.debug(
                        "aggregator.question_other_session",
                        session_id=request.sessionID,
                        current=session_id,
                    )
                    return
                logger.info(
                    "aggregator.question_asked",
                    request_id=request.id,
                    questions=len(request.questions),
                )
                self._schedule(
                    "on_question",
                    self.callbacks.on_question,
                    _to_questions(request.questions),
                    request.id,
                )
            case SessionDiff(properties=props) if props.sessionID == session_id:
                changes = [
                    FileChange(file=d.file, additions=d.additions, deletions=d.deletions)
                    for d in props.diff
                ]
                logger.debug("aggregator.session_diff", files=len(changes))
                self._schedule(
                    "on_session_diff",
                    self.callbacks.on_session_diff,
                    props.sessionID,
                    changes,
                )
            case PermissionAsked(properties=info):
                if info.sessionID != session_id:
                    logger.debug(
                        "aggregator.permission_other_session",
                        session_id=info.sessionID,
                        current=session_id,
                    )
                    return
                logger.info(
                    "aggregator.permission_asked",
                    request_id=info.id,
                    permission=info.permission,
                    patterns=len(info.patterns),
                )
                self._schedule(
                    "on_permission", self.callbacks.on_permission, _to_permission(info)
                )
            case QuestionReplied(properties=props):
                logger.info("aggregator.question_replied", request_id=props.requestID)
            case QuestionRejected(properties=props):
                logger.info("aggregator.question_rejected", request_id=props.requestID)
            case PermissionReplied(properties=props):
                logger.info(
                    "aggregator.permission_replied",
                    request_id=props.requestID,
                    reply=props.reply,
                )
            case SessionStatus(properties=props):
                logger.debug(
                    "aggregator.session_status",
                    session_id=props.sessionID,
                    status=props.status,
                )
            case UnknownEvent(type=kind):
                logger.debug("aggregator.unhandled_event", event_type=kind)
            case _:
                logger.debug("aggregator.ignored_event")

    def _handle_message_updated(self, info: MessageInfo) -> None:
        if info.sessionID != self._session_id:
            return
        message_id = info.id
        if message_id in self._completed:
            logger.debug("aggregator.late_message_update", message_id=message_id)
            return

        self._roles[message_id] = info.role
        if info.role != "assistant":
            dropped = self._pending.pop(message_id, None)
            if dropped:
                logger.debug(
                    "aggregator.user_parts_dropped",
                    message_id=message_id,
                    parts=len(dropped),
                )
            return

        if message_id not in self._parts:
            self._parts[message_id] = []
            self._start_typing_indicator()
            self._schedule("on_thinking", self.callbacks.on_thinking)

        pending = self._pending.pop(message_id, None)
        if pending:
            self._parts[message_id].extend(pending)

        if info.time is None or not info.time.completed:
            return

        parts = self._parts.get(message_id) or []
        text = parts[-1] if parts else ""
        logger.debug(
            "aggregator.message_completed",
            message_id=message_id,
            text_length=len(text),
            parts=len(parts),
        )

        if info.tokens is not None:
            self._emit_tokens(
                TokensInfo(
                    input=info.tokens.input,
                    output=info.tokens.output,
                    reasoning=info.tokens.reasoning,
                    cache_read=info.tokens.cache.read,
                    cache_write=info.tokens.cache.write,
                )
            )

        if text:
            self._schedule(
                "on_complete", self.callbacks.on_complete, info.sessionID, text
            )

        self._parts.pop(message_id, None)
        self._roles.pop(message_id, None)
        self._hashes.pop(message_id, None)
        self._mark_completed(message_id)

        if not self._parts:
            self.stop_typing_indicator()

    def _mark_completed(self, message_id: str) -> None:
        self._completed[message_id] = None
        while len(self._completed) > self._max_completed:
            del self._completed[next(iter(self._completed))]

    def _handle_part_updated(self, part: Part) -> None:
        if part.sessionID != self._session_id:
            return
        if part.type == "text":
            if part.text:
                self._handle_text_part(part.messageID, part.text)
        elif part.type == "tool" and part.state is not None and part.callID:
            self._handle_tool_part(part, part.state)

    def _handle_text_part(self, message_id: str, text: str) -> None:
        if message_id in self._completed:
            return
        digest = _text_digest(text)
        hashes = self._hashes.setdefault(message_id, set())
        if digest in hashes:
            return
        hashes.add(digest)

        role = self._roles.get(message_id)
        if role == "assistant":
            if message_id not in self._parts:
                self._parts[message_id] = []
                self._start_typing_indicator()
            self._parts[message_id].append(text)
        elif role is None:
            self._pending.setdefault(message_id, []).append(text)

    def _handle_tool_part(self, part: Part, state: ToolState) -> None:
        call_id = part.callID or ""
        tool = part.tool or ""
        logger.debug(
            "aggregator.tool_event", call_id=call_id, tool=tool, status=state.status
        )

        if tool == "question" and state.status == "error":
            logger.info("aggregator.question_tool_failed", call_id=call_id)
            self._schedule("on_question_error", self.callbacks.on_question_error)
            return

        if state.status != "completed":
            return

        notified_key = f"notified-{call_id}"
        if notified_key not in self._processed_tools:
            self._processed_tools.add(notified_key)
            info = ToolInfo(
                message_id=part.messageID,
                call_id=call_id,
                tool=tool,
                status=state.status,
                input=state.input,
                title=state.title,
                metadata=state.metadata,
                output=state.output,
            )
            self._schedule("on_tool", self.callbacks.on_tool, info)

        file_key = f"file-{call_id}"
        if file_key in self._processed_tools:
            return
        self._processed_tools.add(file_key)

        if tool == "write":
            self._handle_write(state.input or {})
        elif tool == "edit":
            self._handle_edit(state.metadata or {})

    def _handle_write(self, input: dict[str, Any]) -> None:
        content = input.get("content")
        path = input.get("filePath")
        if not isinstance(content, str) or not isinstance(path, str):
            return
        code_file = prepare_code_file(
            content, path, "write", max_bytes=self._max_code_file_bytes
        )
        if code_file is not None:
            self._schedule("on_tool_file", self.callbacks.on_tool_file, code_file)
        self._emit_file_change(
            FileChange(file=path, additions=count_lines(content), deletions=0)
        )

    def _handle_edit(self, metadata: dict[str, Any]) -> None:
        filediff = metadata.get("filediff")
        diff = metadata.get("diff")
        if not isinstance(filediff, dict) or not isinstance(diff, str) or not diff:
            return
        path = filediff.get("file")
        if not isinstance(path, str) or not path:
            return
        code_file = prepare_code_file(
            diff, path, "edit", max_bytes=self._max_code_file_bytes
        )
        if code_file is not None:
            self._schedule("on_tool_file", self.callbacks.on_tool_file, code_file)
        self._emit_file_change(
            FileChange(
                file=path,
                additions=int(filediff.get("additions") or 0),
                deletions=int(filediff.get("deletions") or 0),
            )
        )

    def _handle_session_compacted(self, session_id: str) -> None:
        logger.info("aggregator.session_compacted", session_id=session_id)
        directory = self._directory
        if not directory:
            logger.warning("aggregator.compacted_no_directory", session_id=session_id)
            return
        self._schedule(
            "on_session_compacted",
            self.callbacks.on_session_compacted,
            session_id,
            directory,
        )
