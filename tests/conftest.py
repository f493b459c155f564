from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from opencode_telegram.keyboard.manager import KeyboardManager
from opencode_telegram.model import ModelInfo, ProjectInfo
from opencode_telegram.opencode.events import EventSource
from opencode_telegram.permission.manager import PermissionManager
from opencode_telegram.pinned.manager import PinnedMessageManager
from opencode_telegram.question.manager import QuestionManager
from opencode_telegram.settings import AppSettings
from opencode_telegram.state import StateStore
from opencode_telegram.summary.aggregator import SummaryAggregator
from opencode_telegram.telegram.context import BridgeContext
from tests.fakes import CHAT_ID, FakeAgentApi, FakeBot, RecordingTaskGroup


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def fake_api() -> FakeAgentApi:
    return FakeAgentApi()


@pytest.fixture
def task_group() -> RecordingTaskGroup:
    return RecordingTaskGroup()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    store = StateStore(tmp_path / "state.json")
    store.set_project(ProjectInfo(worktree="/work", name="work"))
    store.set_model(ModelInfo(provider_id="anthropic", model_id="claude"))
    return store


@pytest.fixture
def make_ctx(
    fake_bot: FakeBot,
    fake_api: FakeAgentApi,
    task_group: RecordingTaskGroup,
    store: StateStore,
) -> Callable[..., BridgeContext]:
    def _factory(**settings: Any) -> BridgeContext:
        app_settings = AppSettings.model_validate(
            {"telegram": {"bot_token": "123:abc", "chat_id": CHAT_ID, **settings}}
        )
        pinned = PinnedMessageManager(
            fake_api,
            store,
            current_model=lambda: store.model(ModelInfo("", "")),
        )
        return BridgeContext(
            bot=fake_bot,  # type: ignore[arg-type]
            api=fake_api,  # type: ignore[arg-type]
            settings=app_settings,
            store=store,
            chat_id=CHAT_ID,
            events=EventSource(fake_api),  # type: ignore[arg-type]
            aggregator=SummaryAggregator(),
            questions=QuestionManager(),
            permissions=PermissionManager(),
            pinned=pinned,
            keyboard=KeyboardManager(),
            task_group=task_group,  # type: ignore[arg-type]
        )

    return _factory
