from __future__ import annotations

import tempfile
from pathlib import Path

import msgspec

from .logging import get_logger
from .model import DEFAULT_VARIANT, ModelInfo, ProjectInfo, SessionInfo

logger = get_logger(__name__)

STATE_VERSION = 1
STATE_FILENAME = "state.json"


class _ProjectState(msgspec.Struct, forbid_unknown_fields=False):
    worktree: str
    name: str | None = None


class _SessionState(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    title: str = ""
    directory: str = ""


class _ModelState(msgspec.Struct, forbid_unknown_fields=False):
    provider_id: str
    model_id: str
    variant: str = DEFAULT_VARIANT


class _BotState(msgspec.Struct, forbid_unknown_fields=False):
    version: int = STATE_VERSION
    project: _ProjectState | None = None
    session: _SessionState | None = None
    agent: str | None = None
    model: _ModelState | None = None
    pinned_message_id: int | None = None


def resolve_state_path(config_path: Path) -> Path:
    return config_path.with_name(STATE_FILENAME)


class StateStore:
    """Runtime selections persisted next to the config file.

    Holds the current project, session, agent, model and the pinned status
    message id so they survive a restart. Every setter writes the file.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._state = self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> _BotState:
        if self._path is None or not self._path.exists():
            return _BotState()
        try:
            state = msgspec.json.decode(self._path.read_bytes(), type=_BotState)
        except (OSError, msgspec.DecodeError, msgspec.ValidationError) as exc:
            logger.warning(
                "state.load_failed",
                path=str(self._path),
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return _BotState()
        if state.version != STATE_VERSION:
            logger.warning(
                "state.version_mismatch",
                path=str(self._path),
                version=state.version,
                expected=STATE_VERSION,
            )
            return _BotState()
        return state

    def _save(self) -> None:
        if self._path is None:
            return
        payload = msgspec.json.encode(self._state)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tf:
                tmp_path = Path(tf.name)
                tf.write(payload)
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.error(
                "state.save_failed",
                path=str(self._path),
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    def project(self) -> ProjectInfo | None:
        project = self._state.project
        if project is None:
            return None
        return ProjectInfo(worktree=project.worktree, name=project.name)

    def set_project(self, project: ProjectInfo | None) -> None:
        self._state.project = (
            _ProjectState(worktree=project.worktree, name=project.name)
            if project is not None
            else None
        )
        self._save()

    def session(self) -> SessionInfo | None:
        session = self._state.session
        if session is None:
            return None
        return SessionInfo(id=session.id, title=session.title, directory=session.directory)

    def set_session(self, session: SessionInfo | None) -> None:
        self._state.session = (
            _SessionState(id=session.id, title=session.title, directory=session.directory)
            if session is not None
            else None
        )
        self._save()

    def agent(self, default: str) -> str:
        return self._state.agent or default

    def set_agent(self, agent: str) -> None:
        self._state.agent = agent
        self._save()

    def model(self, default: ModelInfo) -> ModelInfo:
        model = self._state.model
        if model is None:
            return default
        return ModelInfo(
            provider_id=model.provider_id,
            model_id=model.model_id,
            variant=model.variant,
        )

    def set_model(self, model: ModelInfo) -> None:
        self._state.model = _ModelState(
            provider_id=model.provider_id,
            model_id=model.model_id,
            variant=model.variant,
        )
        self._save()

    def pinned_message_id(self) -> int | None:
        return self._state.pinned_message_id

    def set_pinned_message_id(self, message_id: int | None) -> None:
        self._state.pinned_message_id = message_id
        self._save()

    def clear_pinned_message_id(self) -> None:
        self.set_pinned_message_id(None)
