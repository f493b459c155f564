from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from .config import ConfigError, apply_env_overrides, load_config
from .model import ModelInfo


class TelegramSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bot_token: SecretStr | None = None
    chat_id: int | None = None
    show_tool_events: bool = True
    show_thinking: bool = False


class OpenCodeSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_url: str = "http://localhost:4096"
    username: str = "opencode"
    password: SecretStr | None = None
    directory: str = Field(default_factory=lambda: str(Path.cwd()))
    model_provider: str = ""
    model_id: str = ""
    default_agent: str = "build"

    def default_model(self) -> ModelInfo:
        return ModelInfo(provider_id=self.model_provider, model_id=self.model_id)


class FilesSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_code_file_kb: int = Field(default=100, ge=1)

    @property
    def max_code_file_bytes(self) -> int:
        return self.max_code_file_kb * 1024


class AppSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    opencode: OpenCodeSettings = Field(default_factory=OpenCodeSettings)
    files: FilesSettings = Field(default_factory=FilesSettings)
    debug: bool = False

    def bot_token(self, config_path: Path) -> str:
        token = self.telegram.bot_token
        value = token.get_secret_value().strip() if token else ""
        if not value:
            raise ConfigError(f"Missing `telegram.bot_token` in {config_path}.")
        return value

    def chat_id(self, config_path: Path) -> int:
        chat_id = self.telegram.chat_id
        if chat_id is None:
            raise ConfigError(f"Missing `telegram.chat_id` in {config_path}.")
        return chat_id


def validate_settings_data(data: dict, *, config_path: Path) -> AppSettings:
    try:
        return AppSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc


def load_settings(path: str | Path | None = None) -> tuple[AppSettings, Path]:
    raw, config_path = load_config(path)
    settings = validate_settings_data(apply_env_overrides(raw), config_path=config_path)
    return settings, config_path
