from __future__ import annotations

import os
import tomllib
from pathlib import Path

ENV_BOT_TOKEN = "OPENCODE_TELEGRAM_BOT_TOKEN"
ENV_CHAT_ID = "OPENCODE_TELEGRAM_CHAT_ID"
ENV_API_URL = "OPENCODE_API_URL"
ENV_SERVER_USERNAME = "OPENCODE_SERVER_USERNAME"
ENV_SERVER_PASSWORD = "OPENCODE_SERVER_PASSWORD"

LOCAL_CONFIG_NAME = Path(".opencode-telegram") / "config.toml"
HOME_CONFIG_PATH = Path.home() / ".opencode-telegram" / "config.toml"


class ConfigError(RuntimeError):
    pass


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config(path: str | Path | None = None) -> tuple[dict, Path]:
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path

    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate

    raise ConfigError(
        f"Missing opencode-telegram config; create {HOME_CONFIG_PATH} or pass --config."
    )


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def apply_env_overrides(config: dict) -> dict:
    """Return a copy of ``config`` with environment variables applied.

    Environment variables take precedence over the config file.
    """
    merged = dict(config)
    telegram = dict(merged.get("telegram") or {})
    opencode = dict(merged.get("opencode") or {})

    token = _env(ENV_BOT_TOKEN)
    if token is not None:
        telegram["bot_token"] = token

    chat_id = _env(ENV_CHAT_ID)
    if chat_id is not None:
        try:
            telegram["chat_id"] = int(chat_id)
        except ValueError:
            raise ConfigError(
                f"Invalid {ENV_CHAT_ID} environment variable; expected an integer."
            ) from None

    api_url = _env(ENV_API_URL)
    if api_url is not None:
        opencode["api_url"] = api_url
    username = _env(ENV_SERVER_USERNAME)
    if username is not None:
        opencode["username"] = username
    password = _env(ENV_SERVER_PASSWORD)
    if password is not None:
        opencode["password"] = password

    merged["telegram"] = telegram
    merged["opencode"] = opencode
    return merged
