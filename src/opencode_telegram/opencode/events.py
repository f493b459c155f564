from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Protocol

import anyio
import anyio.lowlevel

from ..logging import get_logger
from .client import EventStream
from .errors import EventStreamUnavailable
from .schema import OpenCodeEvent, UnknownEvent, event_type

logger = get_logger(__name__)

BASE_RECONNECT_DELAY_S = 1.0
MAX_RECONNECT_DELAY_S = 15.0

type EventCallback = Callable[[OpenCodeEvent | UnknownEvent], Awaitable[None]]


class EventClient(Protocol):
    def subscribe_events(
        self, directory: str
    ) -> AbstractAsyncContextManager[EventStream | None]: ...


def reconnect_delay(
    attempt: int,
    *,
    base_s: float = BASE_RECONNECT_DELAY_S,
    max_s: float = MAX_RECONNECT_DELAY_S,
) -> float:
    if attempt <= 0:
        return 0.0
    return min(base_s * 2 ** (attempt - 1), max_s)


class EventSource:
    """One logical subscription to the agent event feed.

    ``subscribe`` runs until ``stop`` is called or the server answers without
    an event stream. Transient failures and clean stream ends reconnect with
    exponential backoff. Each subscription owns one cancel scope that covers
    both the open stream and any backoff wait.
    """

    def __init__(
        self,
        client: EventClient,
        *,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        base_delay_s: float = BASE_RECONNECT_DELAY_S,
        max_delay_s: float = MAX_RECONNECT_DELAY_S,
    ) -> None:
        self._client = client
        self._sleep = sleep
        self._base_delay_s = base_delay_s
        self._max_delay_s = max_delay_s
        self._scope: anyio.CancelScope | None = None
        self._directory: str | None = None
        self._callback: EventCallback | None = None
        self._attempt = 0

    @property
    def is_listening(self) -> bool:
        return self._scope is not None and not self._scope.cancel_called

    @property
    def directory(self) -> str | None:
        return self._directory

    async def subscribe(self, directory: str, callback: EventCallback) -> None:
        if not directory:
            logger.warning("events.subscribe.no_directory")
            return

        if self.is_listening and self._directory == directory:
            self._callback = callback
            logger.debug("events.callback_replaced", directory=directory)
            return

        previous = self._scope
        if previous is not None:
            logger.info(
                "events.switch_directory",
                old_directory=self._directory,
                directory=directory,
            )
            previous.cancel()

        scope = anyio.CancelScope()
        self._scope = scope
        self._directory = directory
        self._callback = callback
        self._attempt = 0

        try:
            with scope:
                await self._run(scope, directory)
        finally:
            if self._scope is scope:
                self._clear()

    def stop(self) -> None:
        scope = self._scope
        self._clear()
        if scope is not None:
            scope.cancel()
            logger.info("events.stopped")

    def _clear(self) -> None:
        self._scope = None
        self._directory = None
        self._callback = None
        self._attempt = 0

    async def _run(self, scope: anyio.CancelScope, directory: str) -> None:
        while not scope.cancel_called:
            try:
                async with self._client.subscribe_events(directory) as stream:
                    if stream is None:
                        raise EventStreamUnavailable(
                            f"No event stream returned for {directory}"
                        )
                    self._attempt = 0
                    logger.info("events.connected", directory=directory)
                    await self._pump(scope, stream)
                logger.warning("events.stream_ended", directory=directory)
            except EventStreamUnavailable:
                logger.error("events.unavailable", directory=directory)
                raise
            except Exception as exc:
                logger.warning(
                    "events.stream_error",
                    directory=directory,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )

            if scope.cancel_called or self._scope is not scope:
                return
            self._attempt += 1
            delay = reconnect_delay(
                self._attempt, base_s=self._base_delay_s, max_s=self._max_delay_s
            )
            logger.info(
                "events.reconnect",
                directory=directory,
                attempt=self._attempt,
                delay_s=delay,
            )
            await self._sleep(delay)

    async def _pump(self, scope: anyio.CancelScope, stream: EventStream) -> None:
        async with anyio.create_task_group() as tg:
            async for event in stream:
                await anyio.lowlevel.checkpoint()
                if self._scope is not scope:
                    logger.debug("events.stale_dropped")
                    return
                callback = self._callback
                if callback is None:
                    continue
                tg.start_soon(self._deliver, callback, event)

    async def _deliver(
        self, callback: EventCallback, event: OpenCodeEvent | UnknownEvent
    ) -> None:
        try:
            await callback(event)
        except Exception as exc:
            logger.error(
                "events.callback_failed",
                event_type=event_type(event),
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
