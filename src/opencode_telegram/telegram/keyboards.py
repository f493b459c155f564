"""Inline keyboards for polls, permission prompts and selection menus.

Each builder has a matching parser for the callback data it emits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, get_args

from ..keyboard.manager import AGENT_EMOJI, DEFAULT_AGENT_EMOJI
from ..model import AgentInfo, ModelInfo, PermissionReply, Question, VariantInfo

QUESTION_PREFIX = "question:"
PERMISSION_PREFIX = "permission:"
AGENT_PREFIX = "agent:"
MODEL_PREFIX = "model:"
VARIANT_PREFIX = "variant:"
NOOP_PREFIX = "noop:"
COMPACT_PREFIX = "compact:"
MAX_BUTTON_LENGTH = 60
MAX_MODEL_NAME_LENGTH = 40
# Telegram rejects callback_data longer than 64 bytes.
MAX_CALLBACK_DATA_BYTES = 64

QuestionAction = Literal["select", "submit", "custom", "cancel"]

SUBMIT_LABEL = "\N{WHITE HEAVY CHECK MARK} Done"
CUSTOM_LABEL = "\N{INPUT SYMBOL FOR LATIN LETTERS} Custom answer"
CANCEL_LABEL = "\N{CROSS MARK} Cancel"
COMPACT_CONFIRM_LABEL = "\N{WHITE HEAVY CHECK MARK} Yes, compact context"
SELECTED_ICON = "\N{WHITE HEAVY CHECK MARK} "

PERMISSION_BUTTONS: tuple[tuple[str, PermissionReply], ...] = (
    ("\N{WHITE HEAVY CHECK MARK} Allow", "once"),
    ("\N{OPEN LOCK} Always", "always"),
    ("\N{CROSS MARK} Reject", "reject"),
)


@dataclass(frozen=True, slots=True)
class QuestionCallback:
    action: QuestionAction
    question_index: int
    option_index: int | None = None


def button_text(label: str, description: str, *, selected: bool) -> str:
    text = f"{SELECTED_ICON}{label}" if selected else label
    if description and not selected:
        text = f"{text} - {description}"
    if len(text) > MAX_BUTTON_LENGTH:
        text = text[: MAX_BUTTON_LENGTH - 3] + "..."
    return text


def question_markup(
    question: Question, question_index: int, selected: frozenset[int]
) -> dict[str, Any]:
    rows: list[list[dict[str, str]]] = []
    for index, option in enumerate(question.options):
        rows.append(
            [
                {
                    "text": button_text(
                        option.label, option.description, selected=index in selected
                    ),
                    "callback_data": f"question:select:{question_index}:{index}",
                }
            ]
        )
    controls = []
    if question.multiple:
        controls.append(
            {"text": SUBMIT_LABEL, "callback_data": f"question:submit:{question_index}"}
        )
    controls.append(
        {"text": CUSTOM_LABEL, "callback_data": f"question:custom:{question_index}"}
    )
    controls.append(
        {"text": CANCEL_LABEL, "callback_data": f"question:cancel:{question_index}"}
    )
    rows.append(controls)
    return {"inline_keyboard": rows}


def parse_question_callback(data: str) -> QuestionCallback | None:
    if not data.startswith(QUESTION_PREFIX):
        return None
    parts = data.split(":")
    if len(parts) < 3 or parts[1] not in get_args(QuestionAction):
        return None
    try:
        question_index = int(parts[2])
        option_index = int(parts[3]) if len(parts) > 3 else None
    except ValueError:
        return None
    if parts[1] == "select" and option_index is None:
        return None
    return QuestionCallback(
        action=parts[1],  # type: ignore[arg-type]
        question_index=question_index,
        option_index=option_index,
    )


def permission_markup() -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": label, "callback_data": f"{PERMISSION_PREFIX}{reply}"}
                for label, reply in PERMISSION_BUTTONS
            ]
        ]
    }


def parse_permission_callback(data: str) -> PermissionReply | None:
    if not data.startswith(PERMISSION_PREFIX):
        return None
    reply = data[len(PERMISSION_PREFIX) :]
    if reply in get_args(PermissionReply):
        return reply  # type: ignore[return-value]
    return None


def _fits(callback_data: str) -> bool:
    return len(callback_data.encode("utf-8")) <= MAX_CALLBACK_DATA_BYTES


def display_name(name: str) -> str:
    return f"{name[:1].upper()}{name[1:]}"


def agent_markup(agents: list[AgentInfo], current: str) -> dict[str, Any]:
    rows = []
    for agent in agents:
        data = f"{AGENT_PREFIX}{agent.name}"
        if not _fits(data):
            continue
        emoji = AGENT_EMOJI.get(agent.name, DEFAULT_AGENT_EMOJI)
        if agent.name == current:
            text = f"{SELECTED_ICON}{emoji} {agent.name.upper()}"
        else:
            text = f"{emoji} {display_name(agent.name)}"
        rows.append([{"text": text, "callback_data": data}])
    return {"inline_keyboard": rows}


def short_model_name(model_id: str) -> str:
    if len(model_id) > MAX_MODEL_NAME_LENGTH:
        return model_id[: MAX_MODEL_NAME_LENGTH - 3] + "..."
    return model_id


def model_markup(models: list[ModelInfo], current: ModelInfo) -> dict[str, Any]:
    """One header row per provider followed by a row per model."""
    rows: list[list[dict[str, str]]] = []
    provider: str | None = None
    for model in models:
        data = f"{MODEL_PREFIX}{model.provider_id}:{model.model_id}"
        if not _fits(data):
            continue
        if model.provider_id != provider:
            provider = model.provider_id
            header = f"{NOOP_PREFIX}{provider}"
            rows.append(
                [
                    {
                        "text": f"-- {provider} --",
                        "callback_data": header if _fits(header) else NOOP_PREFIX,
                    }
                ]
            )
        selected = (model.provider_id, model.model_id) == (
            current.provider_id,
            current.model_id,
        )
        name = short_model_name(model.model_id)
        text = f"{SELECTED_ICON}{name}" if selected else name
        rows.append([{"text": text, "callback_data": data}])
    return {"inline_keyboard": rows}


def variant_markup(variants: list[VariantInfo], current: str) -> dict[str, Any]:
    rows = []
    for variant in variants:
        data = f"{VARIANT_PREFIX}{variant.id}"
        if not _fits(data):
            continue
        name = display_name(variant.id)
        text = f"{SELECTED_ICON}{name}" if variant.id == current else name
        rows.append([{"text": text, "callback_data": data}])
    return {"inline_keyboard": rows}


def compact_markup() -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {
                    "text": COMPACT_CONFIRM_LABEL,
                    "callback_data": f"{COMPACT_PREFIX}confirm",
                }
            ],
            [{"text": CANCEL_LABEL, "callback_data": f"{COMPACT_PREFIX}cancel"}],
        ]
    }


def parse_model_callback(data: str) -> ModelInfo | None:
    if not data.startswith(MODEL_PREFIX):
        return None
    # model ids may themselves contain ":"
    provider_id, sep, model_id = data[len(MODEL_PREFIX) :].partition(":")
    if not sep or not provider_id or not model_id:
        return None
    return ModelInfo(provider_id=provider_id, model_id=model_id)


def parse_prefixed_callback(data: str, prefix: str) -> str | None:
    if not data.startswith(prefix):
        return None
    return data[len(prefix) :] or None
