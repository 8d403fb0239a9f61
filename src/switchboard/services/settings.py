"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings
from ..ai.orchestration.pipeline.conclusion import (
    DEFAULT_ANALYSIS_KEYWORDS,
    DEFAULT_REQUIRED_SECTIONS,
    ConclusionEnforcer,
    ConclusionPolicy,
    KeywordClassifier,
)
from ..ai.orchestration.runner import RunnerConfig
from ..ai.orchestration.types import DEFAULT_MAX_ITERATIONS, DEFAULT_MAX_RESULT_BYTES, ToolMode, TruncationPolicy

__all__ = [
    "Settings",
    "LoopSettings",
    "ConclusionSettings",
    "SettingsStore",
    "SecretVault",
    "SecretProvider",
    "FernetSecretProvider",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".switchboard"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHBOARD_API_KEY": "api_key",
    "SWITCHBOARD_BASE_URL": "base_url",
    "SWITCHBOARD_MODEL": "model",
    "SWITCHBOARD_ORGANIZATION": "organization",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHBOARD_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHBOARD_REQUEST_TIMEOUT": "request_timeout",
    "SWITCHBOARD_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHBOARD_HISTORY_LIMIT": "history_limit",
}
# Environment overrides that land inside the nested loop settings.
_LOOP_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SWITCHBOARD_MAX_ITERATIONS": "max_iterations",
    "SWITCHBOARD_MAX_RESULT_CHARS": "max_result_chars",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class LoopSettings:
    """Bounds and behaviour of the tool loop."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_result_chars: int = DEFAULT_MAX_RESULT_BYTES
    tool_mode: str = ToolMode.AUTO.value
    announce_cancellation: bool = False

    def to_runner_config(self) -> RunnerConfig:
        try:
            mode = ToolMode(self.tool_mode)
        except ValueError:
            LOGGER.warning("Unknown tool_mode '%s'; defaulting to %s.", self.tool_mode, ToolMode.AUTO.value)
            mode = ToolMode.AUTO
        return RunnerConfig(
            max_iterations=max(1, self.max_iterations),
            tool_mode=mode,
            announce_cancellation=self.announce_cancellation,
        )

    def to_truncation_policy(self) -> TruncationPolicy:
        return TruncationPolicy(max_bytes=max(0, self.max_result_chars))


@dataclass(slots=True)
class ConclusionSettings:
    """Controls the supplementary round that completes analysis answers."""

    enabled: bool = True
    keywords: list[str] = field(default_factory=lambda: list(DEFAULT_ANALYSIS_KEYWORDS))
    required_sections: list[str] = field(default_factory=lambda: list(DEFAULT_REQUIRED_SECTIONS))

    def build_enforcer(self) -> ConclusionEnforcer | None:
        """Return an enforcer for these settings, or None when disabled."""
        if not self.enabled or not self.required_sections:
            return None
        return ConclusionEnforcer(
            classifier=KeywordClassifier(self.keywords),
            policy=ConclusionPolicy(required_sections=tuple(self.required_sections)),
        )


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    system_prompt: str = ""
    history_limit: int = 10
    tool_name_prefixes: list[str] = field(default_factory=list)
    debug_logging: bool = False
    loop: LoopSettings = field(default_factory=LoopSettings)
    conclusion: ConclusionSettings = field(default_factory=ConclusionSettings)

    def to_client_settings(self) -> ClientSettings:
        """Return the subset of settings the model gateway needs."""
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            temperature=self.temperature,
            default_headers=dict(self.default_headers) or None,
            metadata={str(k): str(v) for k, v in self.metadata.items()} or None,
            debug_logging=self.debug_logging,
        )


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts sensitive strings for settings persistence.

    Stored tokens carry a ``<provider>:`` prefix so a future backend can
    coexist with values written by an older one.
    """

    def __init__(
        self,
        *,
        key_path: Path | None = None,
        provider: SecretProvider | None = None,
    ) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._provider = provider or FernetSecretProvider(self._key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        payload = self._provider.encrypt(secret)
        return f"{self._provider.name}:{payload}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, self._provider.name):
            raise ValueError(f"Unknown secret backend '{prefix}'")
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, needs_migration = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            data = _filter_fields(payload)
            data["loop"] = _nested(LoopSettings, data.get("loop"))
            data["conclusion"] = _nested(ConclusionSettings, data.get("conclusion"))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)
            LOGGER.debug("Settings loaded from %s", self._path)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
            LOGGER.debug("API key encrypted via %s backend", self._vault.strategy)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {f.name for f in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            parsed = _env_number(env_name, int)
            if parsed is not None:
                overrides[field_name] = parsed
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            parsed = _env_number(env_name, float)
            if parsed is not None:
                overrides[field_name] = parsed

        loop_overrides: Dict[str, Any] = {}
        for env_name, field_name in _LOOP_INT_ENV_OVERRIDES.items():
            parsed = _env_number(env_name, int)
            if parsed is not None:
                loop_overrides[field_name] = parsed
        if loop_overrides:
            overrides["loop"] = replace(settings.loop, **loop_overrides)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {f.name for f in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _nested(cls: type, payload: Any) -> Any:
    if not isinstance(payload, Mapping):
        return cls()
    allowed = {f.name for f in fields(cls)}
    try:
        return cls(**{key: value for key, value in payload.items() if key in allowed})
    except TypeError:
        LOGGER.warning("Ignoring malformed %s payload", cls.__name__)
        return cls()


def _env_number(env_name: str, kind: type) -> Any:
    value = os.environ.get(env_name)
    if value is None:
        return None
    try:
        return kind(value)
    except ValueError:
        LOGGER.warning("Environment override %s=%s is not a valid %s", env_name, value, kind.__name__)
        return None


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
