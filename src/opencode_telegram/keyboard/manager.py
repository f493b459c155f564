from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Protocol

from ..logging import get_logger
from ..model import DEFAULT_VARIANT, ContextInfo, ModelInfo
from ..summary.formatter import context_percent, format_token_count

logger = get_logger(__name__)

KEYBOARD_UPDATE_INTERVAL_S = 2.0
KEYBOARD_UPDATED_TEXT = "\N{KEYBOARD}\N{VARIATION SELECTOR-16} Keyboard updated"

AGENT_EMOJI = {
    "plan": "\N{CLIPBOARD}",
    "build": "\N{HAMMER AND WRENCH}\N{VARIATION SELECTOR-16}",
    "general": "\N{SPEECH BALLOON}",
    "explore": "\N{LEFT-POINTING MAGNIFYING GLASS}",
    "ask": "\N{THINKING FACE}",
}
DEFAULT_AGENT_EMOJI = "\N{ROBOT FACE}"
MODEL_EMOJI = "\N{ROBOT FACE}"
VARIANT_EMOJI = "\N{ELECTRIC LIGHT BULB}"
CONTEXT_EMOJI = "\N{BAR CHART}"

KeyboardButton = Literal["agent", "model", "variant", "context"]


class KeyboardBot(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict | None: ...


def agent_label(agent: str) -> str:
    emoji = AGENT_EMOJI.get(agent, DEFAULT_AGENT_EMOJI)
    return f"{emoji} {agent[:1].upper()}{agent[1:]} Mode"


def variant_label(variant: str) -> str:
    variant = variant or DEFAULT_VARIANT
    return f"{VARIANT_EMOJI} {variant[:1].upper()}{variant[1:]}"


def model_label(model: ModelInfo) -> str:
    return f"{MODEL_EMOJI} {model.label or 'No model'}"


def context_label(context: ContextInfo | None) -> str:
    if context is None or context.tokens_limit <= 0:
        return f"{CONTEXT_EMOJI} 0"
    used = format_token_count(context.tokens_used)
    limit = format_token_count(context.tokens_limit)
    percent = context_percent(context.tokens_used, context.tokens_limit)
    return f"{CONTEXT_EMOJI} {used} / {limit} ({percent}%)"


def classify_keyboard_text(text: str) -> KeyboardButton | None:
    """Which reply-keyboard button produced ``text``, matching by prefix.

    Labels go stale as soon as the selection changes, so an older keyboard
    still in the chat must be recognised as well.
    """
    emojis = (*AGENT_EMOJI.values(), DEFAULT_AGENT_EMOJI)
    if text.endswith(" Mode") and any(text.startswith(f"{e} ") for e in emojis):
        return "agent"
    if text.startswith(f"{MODEL_EMOJI} "):
        return "model"
    if text.startswith(f"{VARIANT_EMOJI} "):
        return "variant"
    if text.startswith(f"{CONTEXT_EMOJI} "):
        return "context"
    return None


@dataclass(frozen=True, slots=True)
class KeyboardLabels:
    agent: str
    model: str
    variant: str
    context: str


@dataclass(slots=True)
class KeyboardState:
    agent: str
    model: ModelInfo
    variant: str = DEFAULT_VARIANT
    context: ContextInfo | None = field(default=None)


class KeyboardManager:
    """Derived reply-keyboard state; only sending is rate limited."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        min_interval_s: float = KEYBOARD_UPDATE_INTERVAL_S,
    ) -> None:
        self._clock = clock
        self._min_interval_s = min_interval_s
        self._bot: KeyboardBot | None = None
        self._chat_id: int | None = None
        self._state: KeyboardState | None = None
        self._last_sent_at: float | None = None

    def initialize(
        self, bot: KeyboardBot, chat_id: int, agent: str, model: ModelInfo
    ) -> None:
        self._bot = bot
        self._chat_id = chat_id
        if self._state is None:
            self._state = KeyboardState(agent=agent, model=model, variant=model.variant)
            logger.debug(
                "keyboard.initialized",
                agent=agent,
                model=model.label,
                variant=model.variant,
                chat_id=chat_id,
            )

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> KeyboardState | None:
        return replace(self._state) if self._state is not None else None

    def _require_state(self, action: str) -> KeyboardState | None:
        if self._state is None:
            logger.warning("keyboard.not_initialized", action=action)
        return self._state

    def update_agent(self, agent: str) -> None:
        if (state := self._require_state("update_agent")) is not None:
            state.agent = agent

    def update_model(self, model: ModelInfo) -> None:
        if (state := self._require_state("update_model")) is not None:
            state.model = model
            state.variant = model.variant

    def update_variant(self, variant: str) -> None:
        if (state := self._require_state("update_variant")) is not None:
            state.variant = variant

    def update_context(self, tokens_used: int, tokens_limit: int) -> None:
        if (state := self._require_state("update_context")) is not None:
            state.context = ContextInfo(tokens_used=tokens_used, tokens_limit=tokens_limit)

    def clear_context(self) -> None:
        if (state := self._require_state("clear_context")) is not None:
            state.context = None

    def context_info(self) -> ContextInfo | None:
        return self._state.context if self._state is not None else None

    def labels(self) -> KeyboardLabels:
        state = self._state or KeyboardState(
            agent="build", model=ModelInfo(provider_id="", model_id="")
        )
        return KeyboardLabels(
            agent=agent_label(state.agent),
            model=model_label(state.model),
            variant=variant_label(state.variant),
            context=context_label(state.context),
        )

    def reply_markup(self) -> dict[str, Any]:
        labels = self.labels()
        return {
            "keyboard": [
                [{"text": labels.agent}, {"text": labels.model}],
                [{"text": labels.context}, {"text": labels.variant}],
            ],
            "resize_keyboard": True,
            "is_persistent": True,
        }

    async def send_keyboard_update(self, chat_id: int | None = None) -> bool:
        if self._bot is None:
            logger.warning("keyboard.no_bot")
            return False
        target = chat_id if chat_id is not None else self._chat_id
        if target is None:
            logger.warning("keyboard.no_chat")
            return False

        now = self._clock()
        if (
            self._last_sent_at is not None
            and now - self._last_sent_at < self._min_interval_s
        ):
            logger.debug("keyboard.update_throttled")
            return False
        self._last_sent_at = now

        try:
            await self._bot.send_message(
                target, KEYBOARD_UPDATED_TEXT, reply_markup=self.reply_markup()
            )
        except Exception as exc:
            logger.error(
                "keyboard.update_failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return False
        logger.debug("keyboard.update_sent", chat_id=target)
        return True

    def reset(self) -> None:
        self._bot = None
        self._chat_id = None
        self._state = None
        self._last_sent_at = None
