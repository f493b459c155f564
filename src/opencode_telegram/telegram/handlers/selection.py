"""Agent, model and variant menus opened from the reply keyboard."""

from __future__ import annotations

import httpx

from ...logging import get_logger
from ...model import DEFAULT_VARIANT, ModelInfo, VariantInfo
from ...opencode.errors import OpenCodeError
from ...opencode.schema import ProvidersResponse
from ..context import BridgeContext
from ..keyboards import (
    AGENT_PREFIX,
    MODEL_PREFIX,
    NOOP_PREFIX,
    VARIANT_PREFIX,
    agent_markup,
    display_name,
    model_markup,
    parse_model_callback,
    parse_prefixed_callback,
    variant_markup,
)
from ..types import TelegramCallbackQuery

logger = get_logger(__name__)

NO_PROJECT_TEXT = "\N{BUILDING CONSTRUCTION} Project is not selected."
NO_AGENTS_TEXT = "\N{WARNING SIGN}\N{VARIATION SELECTOR-16} No available modes"
AGENTS_ERROR_TEXT = "\N{LARGE RED CIRCLE} Failed to get modes list"
NO_MODELS_TEXT = "\N{WARNING SIGN}\N{VARIATION SELECTOR-16} No available models"
MODELS_ERROR_TEXT = "\N{LARGE RED CIRCLE} Failed to get models list"
SELECT_MODEL_FIRST_TEXT = "\N{WARNING SIGN}\N{VARIATION SELECTOR-16} Select a model first"
VARIANTS_ERROR_TEXT = "\N{LARGE RED CIRCLE} Failed to get variants list"
VARIANT_UNAVAILABLE_TEXT = "Variant is not available for this model"
INVALID_SELECTION_TEXT = "Invalid selection"


def _agent_menu_text(agent: str) -> str:
    return f"Current mode: {display_name(agent)}\n\nSelect mode:"


def _model_menu_text(model: ModelInfo) -> str:
    return f"Current model: {model.label or 'not selected'}\n\nSelect model:"


def _variant_menu_text(variant: str) -> str:
    return f"Current variant: {display_name(variant)}\n\nSelect variant:"


def available_models(providers: ProvidersResponse) -> list[ModelInfo]:
    return [
        ModelInfo(provider_id=provider.id, model_id=model_id)
        for provider in providers.providers
        for model_id in provider.models
    ]


def available_variants(providers: ProvidersResponse, model: ModelInfo) -> list[VariantInfo]:
    """``default`` first, then whatever the model declares."""
    variants = [VariantInfo(DEFAULT_VARIANT)]
    for provider in providers.providers:
        if provider.id != model.provider_id:
            continue
        found = provider.models.get(model.model_id)
        if found is None:
            continue
        for variant_id, info in found.variants.items():
            if variant_id == DEFAULT_VARIANT:
                continue
            disabled = isinstance(info, dict) and bool(info.get("disabled"))
            variants.append(VariantInfo(variant_id, disabled=disabled))
    return variants


def _current_agent(ctx: BridgeContext) -> str:
    return ctx.store.agent(ctx.settings.opencode.default_agent)


def _current_model(ctx: BridgeContext) -> ModelInfo:
    return ctx.store.model(ctx.settings.opencode.default_model())


def sync_keyboard_context(ctx: BridgeContext) -> None:
    info = ctx.pinned.context_info()
    if info is None:
        limit = ctx.pinned.context_limit()
        if limit <= 0:
            return
        info = (0, limit)
    ctx.keyboard.update_context(*info)


async def _fetch_providers(ctx: BridgeContext) -> ProvidersResponse | None:
    try:
        return await ctx.api.config_providers(ctx.directory())
    except (OpenCodeError, httpx.HTTPError) as exc:
        logger.error(
            "selection.providers_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return None


async def _confirm(
    ctx: BridgeContext, query: TelegramCallbackQuery, answer: str, text: str
) -> None:
    await ctx.bot.answer_callback_query(query.callback_query_id, answer)
    await ctx.bot.send_message(
        ctx.chat_id, text, reply_markup=ctx.keyboard.reply_markup()
    )
    await ctx.bot.delete_message(ctx.chat_id, query.message_id)


# -- menus --


async def show_agent_menu(ctx: BridgeContext) -> None:
    directory = ctx.directory()
    if not directory:
        await ctx.notify(NO_PROJECT_TEXT)
        return
    try:
        agents = await ctx.api.list_agents(directory)
    except (OpenCodeError, httpx.HTTPError) as exc:
        logger.error(
            "selection.agents_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        await ctx.notify(AGENTS_ERROR_TEXT)
        return
    agents = [agent for agent in agents if agent.selectable]
    logger.debug("selection.agent_menu", agents=len(agents))
    if not agents:
        await ctx.notify(NO_AGENTS_TEXT)
        return
    current = _current_agent(ctx)
    await ctx.bot.send_message(
        ctx.chat_id,
        _agent_menu_text(current),
        reply_markup=agent_markup(agents, current),
    )


async def show_model_menu(ctx: BridgeContext) -> None:
    providers = await _fetch_providers(ctx)
    if providers is None:
        await ctx.notify(MODELS_ERROR_TEXT)
        return
    models = available_models(providers)
    logger.debug("selection.model_menu", models=len(models))
    if not models:
        await ctx.notify(NO_MODELS_TEXT)
        return
    current = _current_model(ctx)
    await ctx.bot.send_message(
        ctx.chat_id,
        _model_menu_text(current),
        reply_markup=model_markup(models, current),
    )


async def show_variant_menu(ctx: BridgeContext) -> None:
    model = _current_model(ctx)
    if not model.label:
        await ctx.notify(SELECT_MODEL_FIRST_TEXT)
        return
    providers = await _fetch_providers(ctx)
    if providers is None:
        await ctx.notify(VARIANTS_ERROR_TEXT)
        return
    variants = [v for v in available_variants(providers, model) if not v.disabled]
    await ctx.bot.send_message(
        ctx.chat_id,
        _variant_menu_text(model.variant),
        reply_markup=variant_markup(variants, model.variant),
    )


# -- selections --


async def select_agent(
    ctx: BridgeContext, query: TelegramCallbackQuery, agent: str
) -> None:
    logger.info("selection.agent", agent=agent)
    ctx.store.set_agent(agent)
    ctx.keyboard.update_agent(agent)
    if ctx.pinned.context_limit() == 0:
        await ctx.pinned.refresh_context_limit()
    sync_keyboard_context(ctx)
    name = display_name(agent)
    await _confirm(
        ctx,
        query,
        f"Mode changed: {name}",
        f"\N{WHITE HEAVY CHECK MARK} Mode changed to: {name}",
    )


async def select_model(
    ctx: BridgeContext, query: TelegramCallbackQuery, model: ModelInfo
) -> None:
    logger.info("selection.model", model=model.label)
    ctx.store.set_model(model)
    ctx.keyboard.update_model(model)
    await ctx.pinned.refresh_context_limit()
    sync_keyboard_context(ctx)
    await _confirm(
        ctx,
        query,
        f"Model changed: {model.label}",
        f"\N{WHITE HEAVY CHECK MARK} Model changed to: {model.label}",
    )


async def select_variant(
    ctx: BridgeContext, query: TelegramCallbackQuery, variant: str
) -> None:
    model = _current_model(ctx)
    if not model.label:
        await ctx.bot.answer_callback_query(
            query.callback_query_id, SELECT_MODEL_FIRST_TEXT
        )
        return
    providers = await _fetch_providers(ctx)
    if providers is None:
        await ctx.bot.answer_callback_query(query.callback_query_id, VARIANTS_ERROR_TEXT)
        return
    enabled = {v.id for v in available_variants(providers, model) if not v.disabled}
    if variant not in enabled:
        logger.warning("selection.variant_unavailable", variant=variant, model=model.label)
        await ctx.bot.answer_callback_query(
            query.callback_query_id, VARIANT_UNAVAILABLE_TEXT
        )
        await ctx.bot.delete_message(ctx.chat_id, query.message_id)
        return

    logger.info("selection.variant", variant=variant, model=model.label)
    model = ModelInfo(model.provider_id, model.model_id, variant)
    ctx.store.set_model(model)
    ctx.keyboard.update_model(model)
    ctx.keyboard.update_variant(variant)
    name = display_name(variant)
    await _confirm(
        ctx,
        query,
        f"Variant changed: {name}",
        f"\N{WHITE HEAVY CHECK MARK} Variant changed to: {name}",
    )


async def handle_selection_callback(
    ctx: BridgeContext, query: TelegramCallbackQuery
) -> bool:
    """Handle agent, model, variant and header presses. False for other data."""
    data = query.data or ""
    if data.startswith(NOOP_PREFIX):
        await ctx.bot.answer_callback_query(query.callback_query_id)
        return True
    if data.startswith(AGENT_PREFIX):
        agent = parse_prefixed_callback(data, AGENT_PREFIX)
        if agent is None:
            await ctx.bot.answer_callback_query(
                query.callback_query_id, INVALID_SELECTION_TEXT
            )
            return True
        await select_agent(ctx, query, agent)
        return True
    if data.startswith(MODEL_PREFIX):
        model = parse_model_callback(data)
        if model is None:
            await ctx.bot.answer_callback_query(
                query.callback_query_id, INVALID_SELECTION_TEXT
            )
            return True
        await select_model(ctx, query, model)
        return True
    if data.startswith(VARIANT_PREFIX):
        variant = parse_prefixed_callback(data, VARIANT_PREFIX)
        if variant is None:
            await ctx.bot.answer_callback_query(
                query.callback_query_id, INVALID_SELECTION_TEXT
            )
            return True
        await select_variant(ctx, query, variant)
        return True
    return False
