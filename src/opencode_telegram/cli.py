from __future__ import annotations

from functools import partial
from pathlib import Path

import anyio
import typer

from . import __version__
from .config import ConfigError
from .keyboard.manager import KeyboardManager
from .logging import get_logger, setup_logging
from .opencode.client import OpenCodeClient
from .opencode.events import EventSource
from .permission.manager import PermissionManager
from .pinned.manager import PinnedMessageManager
from .question.manager import QuestionManager
from .settings import AppSettings, load_settings
from .state import StateStore, resolve_state_path
from .summary.aggregator import SummaryAggregator
from .telegram.client import TelegramClient
from .telegram.context import BridgeContext
from .telegram.loop import run_main_loop

logger = get_logger(__name__)


def _print_version_and_exit() -> None:
    typer.echo(__version__)
    raise typer.Exit()


def _version_callback(value: bool) -> None:
    if value:
        _print_version_and_exit()


async def _run_bridge(
    settings: AppSettings, config_path: Path, token: str, chat_id: int
) -> None:
    opencode = settings.opencode
    store = StateStore(resolve_state_path(config_path))
    bot = TelegramClient(token)
    api = OpenCodeClient(
        opencode.api_url,
        username=opencode.username,
        password=opencode.password.get_secret_value() if opencode.password else None,
    )

    def current_model():
        return store.model(opencode.default_model())

    try:
        async with anyio.create_task_group() as tg:
            ctx = BridgeContext(
                bot=bot,
                api=api,
                settings=settings,
                store=store,
                chat_id=chat_id,
                events=EventSource(api),
                aggregator=SummaryAggregator(
                    max_code_file_bytes=settings.files.max_code_file_bytes
                ),
                questions=QuestionManager(),
                permissions=PermissionManager(),
                pinned=PinnedMessageManager(api, store, current_model=current_model),
                keyboard=KeyboardManager(),
                task_group=tg,
            )
            await run_main_loop(ctx)
            ctx.reset()
    finally:
        await bot.close()
        await api.close()


def run(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to config.toml (defaults to ./.opencode-telegram or ~/.opencode-telegram).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log at debug level with console output.",
    ),
) -> None:
    """Run the Telegram bridge for an OpenCode server."""
    try:
        settings, config_path = load_settings(config)
        token = settings.bot_token(config_path)
        chat_id = settings.chat_id(config_path)
    except ConfigError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1) from e

    setup_logging(debug=debug or settings.debug)
    logger.info(
        "bridge.starting",
        version=__version__,
        api_url=settings.opencode.api_url,
        config_path=str(config_path),
    )
    try:
        anyio.run(partial(_run_bridge, settings, config_path, token, chat_id))
    except KeyboardInterrupt:
        logger.info("bridge.interrupted")
        raise typer.Exit(code=130) from None


def create_app() -> typer.Typer:
    app = typer.Typer(add_completion=False, help="Telegram front-end for OpenCode.")
    app.command()(run)
    return app


def main() -> None:
    app = create_app()
    app()


if __name__ == "__main__":
    main()
