"""HTTP and SSE client for the OpenCode server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import msgspec

from ..logging import get_logger
from ..model import (
    AgentInfo,
    FileChange,
    ModelInfo,
    PermissionReply,
    SessionInfo,
)
from ..utils.streams import iter_sse_data
from .errors import OpenCodeHTTPError, OpenCodeProtocolError
from .schema import (
    AgentRecord,
    FileDiff,
    MessageWithParts,
    OpenCodeEvent,
    ProvidersResponse,
    SessionRecord,
    SessionStatusRecord,
    UnknownEvent,
    decode_event,
)

logger = get_logger(__name__)

EVENT_STREAM_TIMEOUT = httpx.Timeout(10.0, read=None)

type EventStream = AsyncIterator[OpenCodeEvent | UnknownEvent]


class OpenCodeClient:
    def __init__(
        self,
        api_url: str,
        *,
        username: str = "opencode",
        password: str | None = None,
        timeout_s: float = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        auth = httpx.BasicAuth(username, password) if password else None
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"), auth=auth, timeout=timeout_s
        )
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        directory: str | None = None,
        json_data: dict[str, Any] | None = None,
        timeout: httpx.Timeout | float | None | object = httpx.USE_CLIENT_DEFAULT,
    ) -> Any:
        params = {"directory": directory} if directory else None
        logger.debug("opencode.request", method=method, path=path, directory=directory)
        resp = await self._client.request(
            method, path, params=params, json=json_data, timeout=timeout
        )
        if resp.status_code >= 400:
            raise OpenCodeHTTPError(
                resp.status_code,
                method=method,
                url=str(resp.request.url),
                detail=resp.text or resp.reason_phrase,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return msgspec.json.decode(resp.content)
        except msgspec.DecodeError as e:
            raise OpenCodeProtocolError(
                f"Invalid JSON from {method} {path}: {e}"
            ) from e

    @staticmethod
    def _convert[T](data: Any, type_: type[T], *, what: str) -> T:
        try:
            return msgspec.convert(data, type_)
        except msgspec.ValidationError as e:
            raise OpenCodeProtocolError(f"Unexpected {what} payload: {e}") from e

    @asynccontextmanager
    async def subscribe_events(
        self, directory: str
    ) -> AsyncIterator[EventStream | None]:
        """Open ``GET /event`` for ``directory``.

        Yields an async iterator of decoded events, or ``None`` when the server
        answers without an event stream.
        """
        async with self._client.stream(
            "GET",
            "/event",
            params={"directory": directory},
            headers={"Accept": "text/event-stream"},
            timeout=EVENT_STREAM_TIMEOUT,
        ) as resp:
            if resp.status_code >= 400:
                body = await resp.aread()
                raise OpenCodeHTTPError(
                    resp.status_code,
                    method="GET",
                    url=str(resp.request.url),
                    detail=body.decode("utf-8", errors="replace"),
                )
            content_type = resp.headers.get("content-type", "")
            if "text/event-stream" not in content_type:
                logger.error(
                    "opencode.events.no_stream",
                    directory=directory,
                    status=resp.status_code,
                    content_type=content_type,
                )
                yield None
                return
            yield self._iter_events(resp)

    async def _iter_events(self, resp: httpx.Response) -> EventStream:
        async for data in iter_sse_data(resp.aiter_text()):
            event = decode_event(data)
            if event is None:
                logger.debug("opencode.events.undecodable", data=data[:200])
                continue
            yield event

    async def reply_question(
        self, request_id: str, answers: list[list[str]], directory: str
    ) -> None:
        await self._request(
            "POST",
            f"/question/{request_id}/reply",
            directory=directory,
            json_data={"answers": answers},
        )

    async def reply_permission(
        self, request_id: str, reply: PermissionReply, directory: str
    ) -> None:
        await self._request(
            "POST",
            f"/permission/{request_id}/reply",
            directory=directory,
            json_data={"reply": reply},
        )

    async def send_prompt(
        self,
        session_id: str,
        text: str,
        directory: str,
        *,
        model: ModelInfo | None = None,
        agent: str | None = None,
        variant: str | None = None,
    ) -> Any:
        body: dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if model is not None and model.label:
            body["model"] = {
                "providerID": model.provider_id,
                "modelID": model.model_id,
            }
        if agent:
            body["agent"] = agent
        if variant:
            body["variant"] = variant
        # The server holds the request open until the reply is complete.
        return await self._request(
            "POST",
            f"/session/{session_id}/message",
            directory=directory,
            json_data=body,
            timeout=None,
        )

    async def create_session(
        self, directory: str, title: str | None = None
    ) -> SessionInfo:
        payload: dict[str, Any] = {}
        if title:
            payload["title"] = title
        data = await self._request(
            "POST", "/session", directory=directory, json_data=payload
        )
        record = self._convert(data, SessionRecord, what="session")
        return SessionInfo(
            id=record.id, title=record.title, directory=record.directory or directory
        )

    async def get_session(self, session_id: str, directory: str) -> SessionInfo:
        data = await self._request("GET", f"/session/{session_id}", directory=directory)
        record = self._convert(data, SessionRecord, what="session")
        return SessionInfo(
            id=record.id, title=record.title, directory=record.directory or directory
        )

    async def session_messages(
        self, session_id: str, directory: str
    ) -> list[MessageWithParts]:
        data = await self._request(
            "GET", f"/session/{session_id}/message", directory=directory
        )
        return self._convert(data or [], list[MessageWithParts], what="messages")

    async def session_diff(self, session_id: str, directory: str) -> list[FileChange]:
        data = await self._request(
            "GET", f"/session/{session_id}/diff", directory=directory
        )
        diffs = self._convert(data or [], list[FileDiff], what="diff")
        return [
            FileChange(file=d.file, additions=d.additions, deletions=d.deletions)
            for d in diffs
        ]

    async def config_providers(self, directory: str | None = None) -> ProvidersResponse:
        data = await self._request("GET", "/config/providers", directory=directory)
        return self._convert(data or {}, ProvidersResponse, what="providers")

    async def list_agents(self, directory: str) -> list[AgentInfo]:
        data = await self._request("GET", "/agent", directory=directory)
        records = self._convert(data or [], list[AgentRecord], what="agents")
        return [
            AgentInfo(
                name=r.name, mode=r.mode, hidden=r.hidden, description=r.description
            )
            for r in records
        ]

    async def session_status(self, directory: str) -> dict[str, str]:
        """Map of session id to status type (``idle``, ``busy`` or ``retry``)."""
        data = await self._request("GET", "/session/status", directory=directory)
        statuses = self._convert(
            data or {}, dict[str, SessionStatusRecord], what="session status"
        )
        return {session_id: status.type for session_id, status in statuses.items()}

    async def summarize_session(
        self, session_id: str, directory: str, model: ModelInfo
    ) -> None:
        # Compaction runs a model call, so the request can take a while.
        await self._request(
            "POST",
            f"/session/{session_id}/summarize",
            directory=directory,
            json_data={"providerID": model.provider_id, "modelID": model.model_id},
            timeout=None,
        )
