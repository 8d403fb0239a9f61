"""Wiring a chat handler from persisted settings."""

from __future__ import annotations

import logging
from pathlib import Path

from ..ai.client import OpenAIModelGateway
from ..ai.orchestration.pipeline.invoke import ToolRegistry
from ..ai.orchestration.pipeline.stream import ModelGateway
from ..services.settings import Settings, SettingsStore
from ..utils.logging import LogConfig, setup_logging
from .handler import ChatRequestHandler

__all__ = ["apply_debug_logging", "build_gateway", "create_chat_handler"]

LOGGER = logging.getLogger(__name__)


def apply_debug_logging(
    settings: Settings,
    *,
    log_dir: Path | None = None,
    console: bool = True,
) -> Path:
    """Configure root logging at the level implied by ``settings.debug_logging``."""
    config = LogConfig.for_debug(settings.debug_logging, log_dir=log_dir, console=console)
    log_path = setup_logging(config)
    LOGGER.debug("Debug logging %s", "enabled" if settings.debug_logging else "disabled")
    return log_path


def build_gateway(settings: Settings) -> OpenAIModelGateway:
    return OpenAIModelGateway(settings.to_client_settings())


def create_chat_handler(
    registry: ToolRegistry,
    *,
    settings: Settings | None = None,
    store: SettingsStore | None = None,
    gateway: ModelGateway | None = None,
    log_dir: Path | None = None,
    console: bool = True,
) -> ChatRequestHandler:
    """Load settings, configure logging, and build a ready handler.

    Args:
        registry: Tools offered to the model.
        settings: Explicit settings; loaded from ``store`` (or the default
            store) when omitted.
        store: Settings store to load from.
        gateway: Gateway to use instead of one built from the settings.
        log_dir: Log directory override.
        console: Whether log records are mirrored to stderr.
    """
    if settings is None:
        settings = (store or SettingsStore()).load()
    apply_debug_logging(settings, log_dir=log_dir, console=console)
    if gateway is None:
        gateway = build_gateway(settings)
        LOGGER.info("Using model %s at %s", settings.model, settings.base_url)
    return ChatRequestHandler(gateway, registry, settings=settings)
