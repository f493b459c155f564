from __future__ import annotations

from pathlib import PurePath
from typing import Any

from ..logging import get_logger
from ..model import CodeFile, FileOperation, ToolInfo

logger = get_logger(__name__)

TELEGRAM_MESSAGE_LIMIT = 4096
MAX_TODOS = 20
FILE_HEADER_RULE = "=" * 60

_TOOL_ICONS = {
    "read": "\N{OPEN BOOK}",
    "write": "\N{PENCIL}\N{VARIATION SELECTOR-16}",
    "edit": "\N{PENCIL}\N{VARIATION SELECTOR-16}",
    "bash": "\N{PERSONAL COMPUTER}",
    "glob": "\N{FILE FOLDER}",
    "grep": "\N{LEFT-POINTING MAGNIFYING GLASS}",
    "task": "\N{ROBOT FACE}",
    "question": "\N{BLACK QUESTION MARK ORNAMENT}",
    "todoread": "\N{CLIPBOARD}",
    "todowrite": "\N{MEMO}",
    "webfetch": "\N{GLOBE WITH MERIDIANS}",
    "skill": "\N{GRADUATION CAP}",
}
_DEFAULT_TOOL_ICON = "\N{HAMMER AND WRENCH}\N{VARIATION SELECTOR-16}"

_TODO_MARKERS = {"completed": "x", "in_progress": "~", "pending": "  "}

_COMMON_DETAIL_FIELDS = ("query", "url", "name", "prompt", "text")


def split_text(text: str, max_length: int = TELEGRAM_MESSAGE_LIMIT) -> list[str]:
    parts: list[str] = []
    index = 0
    while index < len(text):
        end = index + max_length
        if end >= len(text):
            parts.append(text[index:])
            break
        break_at = text.rfind("\n", index, end + 1)
        if break_at > index:
            end = break_at + 1
        parts.append(text[index:end])
        index = end
    return parts


def format_summary(text: str) -> list[str]:
    if not text or not text.strip():
        return []
    return [part.strip() for part in split_text(text) if part.strip()]


def tool_icon(tool: str) -> str:
    return _TOOL_ICONS.get(tool, _DEFAULT_TOOL_ICON)


def _tool_details(tool: str, input: dict[str, Any] | None) -> str:
    if not input:
        return ""
    match tool:
        case "read" | "edit" | "write":
            path = input.get("path") or input.get("filePath")
            if isinstance(path, str):
                return path
        case "bash":
            command = input.get("command")
            if isinstance(command, str):
                return command
        case "grep" | "glob":
            pattern = input.get("pattern")
            if isinstance(pattern, str):
                return pattern
    for key in _COMMON_DETAIL_FIELDS:
        value = input.get(key)
        if isinstance(value, str):
            return value
    for key, value in input.items():
        if key != "description" and isinstance(value, str) and value:
            return value
    return ""


def _format_todos(todos: list[dict[str, Any]]) -> str:
    lines = []
    for todo in todos[:MAX_TODOS]:
        marker = _TODO_MARKERS.get(str(todo.get("status")), " ")
        lines.append(f"[{marker}] {todo.get('content', '')}")
    if len(todos) > MAX_TODOS:
        lines.append(f"({len(todos) - MAX_TODOS} more tasks)")
    return "\n".join(lines)


def count_lines(text: str) -> int:
    return len(text.split("\n"))


def _diff_counts(metadata: dict[str, Any] | None) -> str:
    if not metadata:
        return ""
    filediff = metadata.get("filediff")
    if not isinstance(filediff, dict):
        return ""
    parts = []
    additions = filediff.get("additions") or 0
    deletions = filediff.get("deletions") or 0
    if additions > 0:
        parts.append(f"+{additions}")
    if deletions > 0:
        parts.append(f"-{deletions}")
    return f" ({' '.join(parts)})" if parts else ""


def format_tool_info(info: ToolInfo) -> str | None:
    tool = info.tool
    icon = tool_icon(tool)
    metadata = info.metadata or {}

    todos = metadata.get("todos")
    if tool == "todowrite" and isinstance(todos, list) and todos:
        return f"{icon} {tool} ({len(todos)})\n{_format_todos(todos)}"

    input = info.input or {}
    details = info.title or _tool_details(tool, input)
    command = input.get("command")
    if tool == "bash" and isinstance(command, str):
        details = command

    description = input.get("description")
    prefix = f"{description}\n" if isinstance(description, str) else ""
    line_info = ""
    content = input.get("content")
    if tool == "write" and isinstance(content, str):
        line_info = f" (+{count_lines(content)})"
    elif tool == "edit":
        line_info = _diff_counts(metadata)

    details_str = f" {details}" if details else ""
    return f"{icon} {prefix}{tool}{details_str}{line_info}"


def format_diff(diff: str) -> str:
    lines = []
    for line in diff.split("\n"):
        if line.startswith(("@@", "---", "+++", "Index:", "\\ No newline")):
            continue
        if line.startswith("==="):
            continue
        if line.startswith("+"):
            lines.append("+ " + line[1:])
        elif line.startswith("-"):
            lines.append("- " + line[1:])
        else:
            lines.append(line)
    return "\n".join(lines)


def prepare_code_file(
    content: str,
    path: str,
    operation: FileOperation,
    *,
    max_bytes: int,
) -> CodeFile | None:
    body = format_diff(content) if operation == "edit" else content
    size = len(body.encode("utf-8"))
    if size > max_bytes:
        logger.debug(
            "formatter.file_too_large", path=path, size=size, max_bytes=max_bytes
        )
        return None
    title = "Write" if operation == "write" else "Edit"
    header = f"{title} File/Path: {path}\n{FILE_HEADER_RULE}\n\n"
    filename = f"{operation}_{PurePath(path).name}.txt"
    return CodeFile(buffer=(header + body).encode("utf-8"), filename=filename)


def format_token_count(count: int) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1000:
        return f"{round(count / 1000)}K"
    return str(count)


def context_percent(used: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return round(used / limit * 100)
