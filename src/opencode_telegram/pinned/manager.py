"""Pinned status message for the current session.

The message shows the session title, project, model, context usage and the
files changed so far. Context usage is reconstructed from history as the
peak ``input + cache.read`` over assistant messages, while live completions
report the latest value. File changes from tool events add up per path; a
``session.diff`` snapshot replaces them unless it is empty.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath
from typing import Any, Protocol

import anyio
from anyio.abc import TaskGroup

from ..logging import get_logger
from ..model import FileChange, ModelInfo, ProjectInfo, SessionInfo, TokensInfo
from ..opencode.schema import MessageWithParts, ProvidersResponse
from ..state import StateStore
from ..summary.formatter import context_percent, count_lines, format_token_count
from ..telegram.client import TelegramAPIError

logger = get_logger(__name__)

DEFAULT_CONTEXT_LIMIT = 200_000
DEFAULT_SESSION_TITLE = "new session"
UNKNOWN_LABEL = "Unknown"
MAX_LISTED_FILES = 10
RENDER_DEBOUNCE_S = 0.5


class PinnedBot(Protocol):
    async def send_message(self, chat_id: int, text: str) -> dict | None: ...

    async def edit_message_text(
        self, chat_id: int, message_id: int, text: str
    ) -> dict | None: ...

    async def pin_chat_message(
        self, chat_id: int, message_id: int, *, disable_notification: bool = True
    ) -> bool: ...

    async def unpin_all_chat_messages(self, chat_id: int) -> bool: ...


class PinnedAgentApi(Protocol):
    async def session_messages(
        self, session_id: str, directory: str
    ) -> list[MessageWithParts]: ...

    async def session_diff(
        self, session_id: str, directory: str
    ) -> list[FileChange]: ...

    async def get_session(self, session_id: str, directory: str) -> SessionInfo: ...

    async def config_providers(
        self, directory: str | None = None
    ) -> ProvidersResponse: ...


@dataclass(slots=True)
class PinnedState:
    message_id: int | None = None
    session_id: str | None = None
    session_title: str = DEFAULT_SESSION_TITLE
    project_name: str = ""
    tokens_used: int = 0
    tokens_limit: int = 0
    last_updated: float = 0.0
    changed_files: list[FileChange] = field(default_factory=list)


def project_display_name(project: ProjectInfo | None) -> str:
    if project is None:
        return ""
    if project.name:
        return project.name
    return PurePosixPath(project.worktree.replace("\\", "/")).name


def relative_path(path: str, worktree: str | None) -> str:
    normalized = path.replace("\\", "/")
    if worktree:
        root = worktree.replace("\\", "/").rstrip("/")
        if normalized.startswith(root):
            relative = normalized[len(root) :].lstrip("/")
            return relative or normalized
    segments = normalized.split("/")
    if len(segments) <= 3:
        return normalized
    return ".../" + "/".join(segments[-3:])


def find_context_limit(providers: ProvidersResponse, model: ModelInfo) -> int | None:
    for provider in providers.providers:
        if provider.id != model.provider_id:
            continue
        info = provider.models.get(model.model_id)
        if info is not None and info.limit is not None and info.limit.context:
            return info.limit.context
    return None


def peak_context_size(messages: list[MessageWithParts]) -> int:
    peak = 0
    for message in messages:
        info = message.info
        if info.role != "assistant" or info.summary or info.tokens is None:
            continue
        peak = max(peak, info.tokens.input + info.tokens.cache.read)
    return peak


def file_changes_from_messages(messages: list[MessageWithParts]) -> list[FileChange]:
    files: dict[str, FileChange] = {}

    def add(path: str, additions: int, deletions: int) -> None:
        existing = files.get(path)
        if existing is None:
            files[path] = FileChange(file=path, additions=additions, deletions=deletions)
        else:
            existing.additions += additions
            existing.deletions += deletions

    for message in messages:
        for part in message.parts:
            state = part.state
            if part.type != "tool" or state is None or state.status != "completed":
                continue
            if part.tool == "edit":
                filediff: Any = (state.metadata or {}).get("filediff")
                if isinstance(filediff, dict) and filediff.get("file"):
                    add(
                        str(filediff["file"]),
                        int(filediff.get("additions") or 0),
                        int(filediff.get("deletions") or 0),
                    )
            elif part.tool == "write":
                input = state.input or {}
                path = input.get("filePath")
                content = input.get("content")
                if isinstance(path, str) and isinstance(content, str):
                    add(path, count_lines(content), 0)
    return list(files.values())


class PinnedMessageManager:
    def __init__(
        self,
        api: PinnedAgentApi,
        store: StateStore,
        *,
        current_model: Callable[[], ModelInfo],
        debounce_s: float = RENDER_DEBOUNCE_S,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api = api
        self._store = store
        self._current_model = current_model
        self._debounce_s = debounce_s
        self._sleep = sleep
        self._clock = clock
        self._bot: PinnedBot | None = None
        self._chat_id: int | None = None
        self._task_group: TaskGroup | None = None
        self._state = PinnedState()
        self._context_limit: int | None = None
        self._debounce_scope: anyio.CancelScope | None = None
        self.on_keyboard_update: Callable[[int, int], None] | None = None

    def initialize(self, bot: PinnedBot, chat_id: int, task_group: TaskGroup) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._task_group = task_group
        saved = self._store.pinned_message_id()
        if saved is not None:
            self._state.message_id = saved

    @property
    def is_initialized(self) -> bool:
        return self._bot is not None and self._chat_id is not None

    @property
    def state(self) -> PinnedState:
        return replace(
            self._state,
            changed_files=[replace(change) for change in self._state.changed_files],
        )

    def _directory(self) -> str | None:
        project = self._store.project()
        return project.worktree if project is not None else None

    # -- session lifecycle --

    async def on_session_change(
        self, session_id: str, title: str, project: ProjectInfo | None = None
    ) -> None:
        logger.info("pinned.session_changed", session_id=session_id, title=title)
        self._cancel_pending_render()
        self._state.tokens_used = 0
        self._state.session_id = session_id
        self._state.session_title = title or DEFAULT_SESSION_TITLE
        project = project or self._store.project()
        self._state.project_name = project_display_name(project) or UNKNOWN_LABEL

        await self._fetch_context_limit()
        self._notify_keyboard()

        self._state.changed_files = []
        await self._unpin_old_message()
        await self._create_pinned_message()
        await self._load_diffs(session_id)

    async def on_session_title_update(self, title: str) -> None:
        if title and title != self._state.session_title:
            logger.debug("pinned.title_updated", title=title)
            self._state.session_title = title
            await self._render()

    async def load_context_from_history(self, session_id: str, directory: str) -> None:
        try:
            messages = await self._api.session_messages(session_id, directory)
        except Exception as exc:
            logger.warning(
                "pinned.history_failed",
                session_id=session_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return
        self._state.tokens_used = peak_context_size(messages)
        self._state.session_id = session_id
        logger.info(
            "pinned.history_loaded",
            session_id=session_id,
            messages=len(messages),
            tokens_used=self._state.tokens_used,
        )
        await self._render()

    async def on_session_compacted(self, session_id: str, directory: str) -> None:
        logger.info("pinned.session_compacted", session_id=session_id)
        await self.load_context_from_history(session_id, directory)

    async def on_message_complete(self, tokens: TokensInfo) -> None:
        if self.context_limit() == 0:
            await self._fetch_context_limit()
        self._state.tokens_used = tokens.context_size
        logger.debug(
            "pinned.tokens_updated",
            tokens_used=self._state.tokens_used,
            tokens_limit=self._state.tokens_limit,
        )
        await self._refresh_session_title()
        await self._render()

    # -- file changes --

    async def on_session_diff(self, changes: list[FileChange]) -> None:
        if not changes and self._state.changed_files:
            logger.debug(
                "pinned.empty_diff_ignored", files=len(self._state.changed_files)
            )
            return
        self._state.changed_files = [replace(change) for change in changes]
        logger.debug("pinned.diff_replaced", files=len(changes))
        await self._render()

    def add_file_change(self, change: FileChange) -> None:
        for existing in self._state.changed_files:
            if existing.file == change.file:
                existing.additions += change.additions
                existing.deletions += change.deletions
                break
        else:
            self._state.changed_files.append(replace(change))
        logger.debug(
            "pinned.file_change",
            file=change.file,
            additions=change.additions,
            deletions=change.deletions,
            files=len(self._state.changed_files),
        )
        self._schedule_render()

    def _schedule_render(self) -> None:
        if self._task_group is None:
            logger.debug("pinned.render_skipped", reason="no_task_group")
            return
        self._cancel_pending_render()
        scope = anyio.CancelScope()
        self._debounce_scope = scope
        self._task_group.start_soon(self._debounced_render, scope)

    def _cancel_pending_render(self) -> None:
        scope = self._debounce_scope
        self._debounce_scope = None
        if scope is not None:
            scope.cancel()

    async def _debounced_render(self, scope: anyio.CancelScope) -> None:
        with scope:
            await self._sleep(self._debounce_s)
        if scope.cancel_called or self._debounce_scope is not scope:
            return
        self._debounce_scope = None
        await self._render()

    async def _load_diffs(self, session_id: str) -> None:
        directory = self._directory()
        if directory is None:
            logger.debug("pinned.diffs_skipped", reason="no_project")
            return
        try:
            changes = await self._api.session_diff(session_id, directory)
        except Exception as exc:
            logger.debug(
                "pinned.diff_failed",
                session_id=session_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            changes = []
        if changes:
            self._state.changed_files = changes
            logger.info("pinned.diffs_loaded", source="diff", files=len(changes))
            await self._render()
            return

        try:
            messages = await self._api.session_messages(session_id, directory)
        except Exception as exc:
            logger.debug(
                "pinned.messages_failed",
                session_id=session_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return
        changes = file_changes_from_messages(messages)
        if changes:
            self._state.changed_files = changes
            logger.info("pinned.diffs_loaded", source="messages", files=len(changes))
            await self._render()

    # -- context limit --

    def context_info(self) -> tuple[int, int] | None:
        limit = self._state.tokens_limit or self._context_limit or 0
        if limit == 0:
            return None
        return self._state.tokens_used, limit

    def context_limit(self) -> int:
        return self._context_limit or self._state.tokens_limit or 0

    async def refresh_context_limit(self) -> None:
        await self._fetch_context_limit()

    async def _fetch_context_limit(self) -> None:
        model = self._current_model()
        limit: int | None = None
        if not model.label:
            logger.warning("pinned.no_model", default_limit=DEFAULT_CONTEXT_LIMIT)
        else:
            try:
                providers = await self._api.config_providers(self._directory())
            except Exception as exc:
                logger.warning(
                    "pinned.providers_failed",
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
            else:
                limit = find_context_limit(providers, model)
                if limit is None:
                    logger.warning("pinned.model_not_found", model=model.label)
        self._context_limit = limit or DEFAULT_CONTEXT_LIMIT
        self._state.tokens_limit = self._context_limit

    async def _refresh_session_title(self) -> None:
        session = self._store.session()
        directory = self._directory()
        if session is None or directory is None:
            return
        try:
            info = await self._api.get_session(session.id, directory)
        except Exception as exc:
            logger.debug(
                "pinned.title_refresh_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return
        if info.title and info.title != self._state.session_title:
            self._state.session_title = info.title

    # -- rendering --

    def format_message(self) -> str:
        state = self._state
        model = self._current_model()
        used = format_token_count(state.tokens_used)
        limit = format_token_count(state.tokens_limit)
        percent = context_percent(state.tokens_used, state.tokens_limit)
        lines = [
            state.session_title,
            f"Project: {state.project_name}",
            f"Model: {model.label or UNKNOWN_LABEL}",
            f"Context: {used} / {limit} ({percent}%)",
        ]
        if state.changed_files:
            worktree = self._directory()
            total = len(state.changed_files)
            lines.append("")
            lines.append(f"Files ({total}):")
            for change in state.changed_files[:MAX_LISTED_FILES]:
                counts = []
                if change.additions > 0:
                    counts.append(f"+{change.additions}")
                if change.deletions > 0:
                    counts.append(f"-{change.deletions}")
                diff = f" ({' '.join(counts)})" if counts else ""
                lines.append(f"  {relative_path(change.file, worktree)}{diff}")
            if total > MAX_LISTED_FILES:
                lines.append(f"  ... and {total - MAX_LISTED_FILES} more")
        return "\n".join(lines)

    def _notify_keyboard(self) -> None:
        callback = self.on_keyboard_update
        if callback is None or self._state.tokens_limit <= 0:
            return
        try:
            callback(self._state.tokens_used, self._state.tokens_limit)
        except Exception as exc:
            logger.error(
                "pinned.keyboard_update_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    async def _create_pinned_message(self) -> None:
        if self._bot is None or self._chat_id is None:
            logger.warning("pinned.not_initialized")
            return
        try:
            sent = await self._bot.send_message(self._chat_id, self.format_message())
            if sent is None:
                logger.error("pinned.create_failed", reason="send_failed")
                return
            message_id = int(sent["message_id"])
            self._state.message_id = message_id
            self._state.last_updated = self._clock()
            self._store.set_pinned_message_id(message_id)
            await self._bot.pin_chat_message(
                self._chat_id, message_id, disable_notification=True
            )
        except Exception as exc:
            logger.error(
                "pinned.create_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return
        logger.info("pinned.created", message_id=message_id)

    async def _render(self) -> None:
        if self._bot is None or self._chat_id is None or self._state.message_id is None:
            return
        try:
            edited = await self._bot.edit_message_text(
                self._chat_id, self._state.message_id, self.format_message()
            )
        except TelegramAPIError as exc:
            if exc.is_not_modified:
                return
            if exc.is_message_not_found:
                logger.warning(
                    "pinned.message_missing", message_id=self._state.message_id
                )
                self._state.message_id = None
                self._store.clear_pinned_message_id()
                await self._create_pinned_message()
                return
            logger.error("pinned.edit_failed", error=exc.description)
            return
        except Exception as exc:
            logger.error(
                "pinned.edit_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return
        if edited is None:
            return
        self._state.last_updated = self._clock()
        self._notify_keyboard()

    async def _unpin_old_message(self) -> None:
        if self._bot is None or self._chat_id is None:
            return
        try:
            await self._bot.unpin_all_chat_messages(self._chat_id)
        except Exception as exc:
            logger.debug(
                "pinned.unpin_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
        self._state.message_id = None
        self._store.clear_pinned_message_id()

    async def clear(self) -> None:
        self._cancel_pending_render()
        await self._unpin_old_message()
        self._state = PinnedState()
        self._store.clear_pinned_message_id()
        logger.info("pinned.cleared")

    def reset(self) -> None:
        self._cancel_pending_render()
        self._bot = None
        self._chat_id = None
        self._task_group = None
        self._context_limit = None
        self.on_keyboard_update = None
        self._state = PinnedState()
