"""Domain types shared by the aggregator, the managers and the Telegram layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

PermissionReply: TypeAlias = Literal["once", "always", "reject"]

FileOperation: TypeAlias = Literal["write", "edit"]

DEFAULT_VARIANT = "default"


@dataclass(frozen=True, slots=True)
class TokensInfo:
    input: int
    output: int
    reasoning: int
    cache_read: int
    cache_write: int

    @property
    def context_size(self) -> int:
        return self.input + self.cache_read


@dataclass(slots=True)
class FileChange:
    file: str
    additions: int
    deletions: int


@dataclass(frozen=True, slots=True)
class ToolInfo:
    message_id: str
    call_id: str
    tool: str
    status: str
    input: dict[str, Any] | None = None
    title: str | None = None
    metadata: dict[str, Any] | None = None
    output: str | None = None


@dataclass(frozen=True, slots=True)
class CodeFile:
    buffer: bytes
    filename: str
    caption: str = ""


@dataclass(frozen=True, slots=True)
class QuestionOption:
    label: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class Question:
    question: str
    header: str = ""
    options: tuple[QuestionOption, ...] = ()
    multiple: bool = False


@dataclass(frozen=True, slots=True)
class QuestionAnswer:
    question: str
    answer: str


@dataclass(frozen=True, slots=True)
class PermissionRequest:
    id: str
    session_id: str
    permission: str
    patterns: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ModelInfo:
    provider_id: str
    model_id: str
    variant: str = DEFAULT_VARIANT

    @property
    def label(self) -> str:
        if not self.provider_id or not self.model_id:
            return ""
        return f"{self.provider_id}/{self.model_id}"


@dataclass(frozen=True, slots=True)
class ContextInfo:
    tokens_used: int
    tokens_limit: int


@dataclass(frozen=True, slots=True)
class ProjectInfo:
    worktree: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class SessionInfo:
    id: str
    title: str
    directory: str


@dataclass(frozen=True, slots=True)
class AgentInfo:
    name: str
    mode: str = "all"
    hidden: bool = False
    description: str = ""

    @property
    def selectable(self) -> bool:
        if self.hidden:
            return False
        return self.mode in ("primary", "all") or self.name == "ask"


@dataclass(frozen=True, slots=True)
class VariantInfo:
    id: str
    disabled: bool = False
