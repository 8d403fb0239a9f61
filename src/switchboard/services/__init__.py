"""Service layer helpers (settings persistence and secrets)."""

from .settings import (
    ConclusionSettings,
    LoopSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)

__all__ = [
    "ConclusionSettings",
    "LoopSettings",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]
