import pytest

from opencode_telegram.keyboard.manager import (
    KEYBOARD_UPDATED_TEXT,
    KeyboardManager,
    agent_label,
    classify_keyboard_text,
    context_label,
    model_label,
    variant_label,
)
from opencode_telegram.model import ContextInfo, ModelInfo
from tests.fakes import FakeBot


class Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_labels() -> None:
    assert agent_label("plan") == "\N{CLIPBOARD} Plan Mode"
    assert agent_label("custom") == "\N{ROBOT FACE} Custom Mode"
    assert model_label(ModelInfo("anthropic", "claude")) == (
        "\N{ROBOT FACE} anthropic/claude"
    )
    assert model_label(ModelInfo("", "")) == "\N{ROBOT FACE} No model"
    assert variant_label("") == "\N{ELECTRIC LIGHT BULB} Default"
    assert context_label(None) == "\N{BAR CHART} 0"
    assert context_label(ContextInfo(50_000, 200_000)) == (
        "\N{BAR CHART} 50K / 200K (25%)"
    )


def test_state_updates_require_initialization() -> None:
    manager = KeyboardManager()
    manager.update_agent("plan")
    assert manager.state is None
    assert not manager.is_initialized

    manager.initialize(FakeBot(), 42, "build", ModelInfo("a", "b", "high"))  # type: ignore[arg-type]
    manager.update_agent("plan")
    manager.update_context(1000, 4000)

    state = manager.state
    assert state is not None
    assert state.agent == "plan"
    assert state.variant == "high"
    assert manager.context_info() == ContextInfo(1000, 4000)

    manager.update_model(ModelInfo("x", "y"))
    assert manager.state.variant == "default"  # type: ignore[union-attr]
    manager.update_variant("max")
    manager.clear_context()
    assert manager.state.variant == "max"  # type: ignore[union-attr]
    assert manager.context_info() is None


def test_initialize_keeps_existing_state() -> None:
    manager = KeyboardManager()
    bot = FakeBot()
    manager.initialize(bot, 42, "build", ModelInfo("a", "b"))  # type: ignore[arg-type]
    manager.update_agent("plan")
    manager.initialize(bot, 42, "build", ModelInfo("a", "b"))  # type: ignore[arg-type]
    assert manager.state.agent == "plan"  # type: ignore[union-attr]


def test_reply_markup_layout() -> None:
    manager = KeyboardManager()
    manager.initialize(FakeBot(), 42, "build", ModelInfo("a", "b"))  # type: ignore[arg-type]
    markup = manager.reply_markup()
    labels = manager.labels()

    assert markup["keyboard"] == [
        [{"text": labels.agent}, {"text": labels.model}],
        [{"text": labels.context}, {"text": labels.variant}],
    ]
    assert markup["resize_keyboard"] is True
    assert markup["is_persistent"] is True


@pytest.mark.anyio
async def test_send_keyboard_update_is_throttled() -> None:
    bot = FakeBot()
    clock = Clock()
    manager = KeyboardManager(clock=clock)
    assert not await manager.send_keyboard_update()

    manager.initialize(bot, 42, "build", ModelInfo("a", "b"))  # type: ignore[arg-type]
    assert await manager.send_keyboard_update()
    clock.now += 1.0
    assert not await manager.send_keyboard_update()
    clock.now += 1.5
    assert await manager.send_keyboard_update(chat_id=7)

    sent = bot.called("send_message")
    assert [call["chat_id"] for call in sent] == [42, 7]
    assert sent[0]["text"] == KEYBOARD_UPDATED_TEXT
    assert sent[0]["reply_markup"] == manager.reply_markup()


def test_reset() -> None:
    manager = KeyboardManager()
    manager.initialize(FakeBot(), 42, "build", ModelInfo("a", "b"))  # type: ignore[arg-type]
    manager.reset()
    assert manager.state is None


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        (agent_label("build"), "agent"),
        (agent_label("custom"), "agent"),
        (model_label(ModelInfo("anthropic", "claude")), "model"),
        (model_label(ModelInfo("", "")), "model"),
        (variant_label("high"), "variant"),
        (context_label(ContextInfo(1_000, 200_000)), "context"),
        (context_label(None), "context"),
        ("build mode please", None),
        ("\N{BAR CHART}chart", None),
    ],
)
def test_classify_keyboard_text(text: str, expected: str | None) -> None:
    assert classify_keyboard_text(text) == expected
