from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from anyio.abc import TaskGroup

from ..keyboard.manager import KeyboardManager
from ..logging import get_logger
from ..opencode.client import OpenCodeClient
from ..opencode.events import EventSource
from ..permission.manager import PermissionManager
from ..pinned.manager import PinnedMessageManager
from ..question.manager import QuestionManager
from ..settings import AppSettings
from ..state import StateStore
from ..summary.aggregator import SummaryAggregator
from .client import TelegramClient

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BridgeContext:
    """Everything the Telegram handlers share, built once per process."""

    bot: TelegramClient
    api: OpenCodeClient
    settings: AppSettings
    store: StateStore
    chat_id: int
    events: EventSource
    aggregator: SummaryAggregator
    questions: QuestionManager
    permissions: PermissionManager
    pinned: PinnedMessageManager
    keyboard: KeyboardManager
    task_group: TaskGroup

    def directory(self) -> str | None:
        session = self.store.session()
        if session is not None and session.directory:
            return session.directory
        project = self.store.project()
        return project.worktree if project is not None else None

    async def notify(self, text: str) -> None:
        try:
            await self.bot.send_message(self.chat_id, text)
        except Exception as exc:
            logger.error(
                "bridge.notify_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def spawn(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        on_error: Callable[[Exception], Awaitable[None]] | None = None,
    ) -> None:
        self.task_group.start_soon(self._run_background, name, func, args, on_error)

    async def _run_background(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...],
        on_error: Callable[[Exception], Awaitable[None]] | None,
    ) -> None:
        try:
            await func(*args)
        except Exception as exc:
            logger.error(
                "bridge.background_failed",
                task=name,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            if on_error is not None:
                await on_error(exc)
            return
        logger.debug("bridge.background_done", task=name)

    def reset(self) -> None:
        self.events.stop()
        self.aggregator.reset()
        self.questions.reset()
        self.permissions.reset()
        self.pinned.reset()
        self.keyboard.reset()
