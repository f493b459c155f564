"""OpenCode server event schema.

msgspec structs for the ``GET /event`` server-sent-event feed. Every event is
``{"type": ..., "properties": {...}}``; the global bus additionally wraps it in
``{"directory": ..., "payload": {...}}``. Wire field names are kept as-is.
"""

from __future__ import annotations

from typing import Any

import msgspec


# -- Nested types --


class TimeInfo(msgspec.Struct, kw_only=True):
    created: float | None = None
    completed: float | None = None


class CacheTokens(msgspec.Struct, kw_only=True):
    read: int = 0
    write: int = 0


class Tokens(msgspec.Struct, kw_only=True):
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache: CacheTokens = msgspec.field(default_factory=CacheTokens)


class MessageInfo(msgspec.Struct, kw_only=True):
    id: str
    sessionID: str
    role: str  # "user" | "assistant"
    time: TimeInfo | None = None
    tokens: Tokens | None = None
    summary: Any = None
    providerID: str | None = None
    modelID: str | None = None


class ToolState(msgspec.Struct, kw_only=True):
    status: str  # "pending" | "running" | "completed" | "error"
    input: dict[str, Any] | None = None
    output: str | None = None
    title: str | None = None
    metadata: dict[str, Any] | None = None
    error: str | None = None


class Part(msgspec.Struct, kw_only=True):
    id: str
    sessionID: str
    messageID: str
    type: str  # "text" | "tool" | "reasoning" | "step-start" | ...
    text: str | None = None
    callID: str | None = None
    tool: str | None = None
    state: ToolState | None = None


class QuestionOptionInfo(msgspec.Struct, kw_only=True):
    label: str
    description: str = ""


class QuestionInfo(msgspec.Struct, kw_only=True):
    question: str
    header: str = ""
    options: list[QuestionOptionInfo] = []
    multiple: bool = False


class FileDiff(msgspec.Struct, kw_only=True):
    file: str
    additions: int = 0
    deletions: int = 0


# -- Event payloads --


class MessageUpdatedProps(msgspec.Struct, kw_only=True):
    info: MessageInfo


class PartUpdatedProps(msgspec.Struct, kw_only=True):
    part: Part
    delta: str | None = None


class SessionStatusProps(msgspec.Struct, kw_only=True):
    sessionID: str
    status: dict[str, Any] | None = None


class SessionRef(msgspec.Struct, kw_only=True):
    sessionID: str


class QuestionRequest(msgspec.Struct, kw_only=True):
    id: str
    sessionID: str
    questions: list[QuestionInfo] = []


class QuestionRepliedProps(msgspec.Struct, kw_only=True):
    sessionID: str
    requestID: str
    answers: list[list[str]] = []


class QuestionRejectedProps(msgspec.Struct, kw_only=True):
    sessionID: str
    requestID: str


class SessionDiffProps(msgspec.Struct, kw_only=True):
    sessionID: str
    diff: list[FileDiff] = []


class PermissionInfo(msgspec.Struct, kw_only=True):
    id: str
    sessionID: str
    permission: str
    patterns: list[str] = []
    metadata: dict[str, Any] = {}
    always: list[str] = []


class PermissionRepliedProps(msgspec.Struct, kw_only=True):
    sessionID: str
    requestID: str
    reply: str | None = None


class SessionUpdatedProps(msgspec.Struct, kw_only=True):
    info: SessionRecord


# -- REST responses --


class MessageWithParts(msgspec.Struct, kw_only=True):
    info: MessageInfo
    parts: list[Part] = []


class SessionRecord(msgspec.Struct, kw_only=True):
    id: str
    title: str = ""
    directory: str = ""


class ModelLimit(msgspec.Struct, kw_only=True):
    context: int = 0
    output: int = 0


class ProviderModel(msgspec.Struct, kw_only=True):
    id: str = ""
    name: str = ""
    limit: ModelLimit | None = None
    variants: dict[str, Any] = {}


class Provider(msgspec.Struct, kw_only=True):
    id: str
    name: str = ""
    models: dict[str, ProviderModel] = {}


class ProvidersResponse(msgspec.Struct, kw_only=True):
    providers: list[Provider] = []
    default: dict[str, str] = {}


class AgentRecord(msgspec.Struct, kw_only=True):
    name: str
    mode: str = "all"  # "primary" | "subagent" | "all"
    hidden: bool = False
    description: str = ""


class SessionStatusRecord(msgspec.Struct, kw_only=True):
    type: str = "idle"  # "idle" | "busy" | "retry"


# -- Top-level events (discriminated by "type" field) --


class MessageUpdated(msgspec.Struct, tag="message.updated", kw_only=True):
    properties: MessageUpdatedProps


class MessagePartUpdated(msgspec.Struct, tag="message.part.updated", kw_only=True):
    properties: PartUpdatedProps


class SessionStatus(msgspec.Struct, tag="session.status", kw_only=True):
    properties: SessionStatusProps


class SessionIdle(msgspec.Struct, tag="session.idle", kw_only=True):
    properties: SessionRef


class SessionCompacted(msgspec.Struct, tag="session.compacted", kw_only=True):
    properties: SessionRef


class SessionUpdated(msgspec.Struct, tag="session.updated", kw_only=True):
    properties: SessionUpdatedProps


class QuestionAsked(msgspec.Struct, tag="question.asked", kw_only=True):
    properties: QuestionRequest


class QuestionReplied(msgspec.Struct, tag="question.replied", kw_only=True):
    properties: QuestionRepliedProps


class QuestionRejected(msgspec.Struct, tag="question.rejected", kw_only=True):
    properties: QuestionRejectedProps


class SessionDiff(msgspec.Struct, tag="session.diff", kw_only=True):
    properties: SessionDiffProps


class PermissionAsked(msgspec.Struct, tag="permission.asked", kw_only=True):
    properties: PermissionInfo


class PermissionReplied(msgspec.Struct, tag="permission.replied", kw_only=True):
    properties: PermissionRepliedProps


type OpenCodeEvent = (
    MessageUpdated
    | MessagePartUpdated
    | SessionStatus
    | SessionIdle
    | SessionCompacted
    | SessionUpdated
    | QuestionAsked
    | QuestionReplied
    | QuestionRejected
    | SessionDiff
    | PermissionAsked
    | PermissionReplied
)

KNOWN_EVENT_TYPES = frozenset(
    {
        "message.updated",
        "message.part.updated",
        "session.status",
        "session.idle",
        "session.compacted",
        "session.updated",
        "question.asked",
        "question.replied",
        "question.rejected",
        "session.diff",
        "permission.asked",
        "permission.replied",
    }
)


class UnknownEvent(msgspec.Struct, kw_only=True):
    type: str
    properties: Any = None


def _unwrap(obj: dict[str, Any]) -> dict[str, Any]:
    payload = obj.get("payload")
    if "type" not in obj and isinstance(payload, dict):
        return payload
    return obj


def decode_event(data: bytes | str) -> OpenCodeEvent | UnknownEvent | None:
    """Decode one SSE data payload.

    Returns ``None`` for non-JSON or non-object data, ``UnknownEvent`` for
    unrecognized types and malformed payloads of known types.
    """
    try:
        obj = msgspec.json.decode(data)
    except msgspec.DecodeError:
        return None
    if not isinstance(obj, dict):
        return None
    obj = _unwrap(obj)
    kind = obj.get("type")
    if not isinstance(kind, str):
        return None
    properties = obj.get("properties")
    if kind not in KNOWN_EVENT_TYPES:
        return UnknownEvent(type=kind, properties=properties)
    try:
        return msgspec.convert(obj, OpenCodeEvent)
    except msgspec.ValidationError:
        return UnknownEvent(type=kind, properties=properties)


def event_type(event: OpenCodeEvent | UnknownEvent) -> str:
    if isinstance(event, UnknownEvent):
        return event.type
    return str(event.__struct_config__.tag)
