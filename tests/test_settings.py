"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from switchboard.ai.orchestration.types import ToolMode
from switchboard.services.settings import (
    ConclusionSettings,
    LoopSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    assert _store(tmp_path).load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        organization="acme",
        default_headers={"X-Test": "1"},
        tool_name_prefixes=["telemetry_"],
        loop=LoopSettings(max_iterations=4, max_result_chars=5_000),
        conclusion=ConclusionSettings(keywords=["analyze"], required_sections=["Summary"]),
    )

    store.save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original


def test_api_key_is_encrypted_on_disk(tmp_path: Path) -> None:
    store = _store(tmp_path)

    store.save(Settings(api_key="super-secret"))
    payload = json.loads(store.path.read_text(encoding="utf-8"))

    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in store.path.read_text(encoding="utf-8")
    assert payload["secret_backend"] == "fernet"


def test_load_plaintext_api_key_migrates(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(json.dumps({"api_key": "legacy", "model": "m"}), encoding="utf-8")

    settings = store.load()
    payload = json.loads(store.path.read_text(encoding="utf-8"))

    assert settings.api_key == "legacy"
    assert settings.model == "m"
    assert "api_key" not in payload
    assert "api_key_ciphertext" in payload


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text("{not json", encoding="utf-8")

    assert store.load() == Settings()


def test_unknown_fields_are_ignored(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(
        json.dumps({"model": "m", "theme": "dark", "loop": {"max_iterations": 3, "legacy": True}}),
        encoding="utf-8",
    )

    settings = store.load()

    assert settings.model == "m"
    assert settings.loop.max_iterations == 3


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SWITCHBOARD_MODEL", "env-model")
    monkeypatch.setenv("SWITCHBOARD_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("SWITCHBOARD_TEMPERATURE", "0.7")
    monkeypatch.setenv("SWITCHBOARD_MAX_ITERATIONS", "5")
    monkeypatch.setenv("SWITCHBOARD_HISTORY_LIMIT", "not-a-number")

    settings = _store(tmp_path).load()

    assert settings.model == "env-model"
    assert settings.debug_logging is True
    assert settings.temperature == 0.7
    assert settings.loop.max_iterations == 5
    assert settings.history_limit == 10


def test_cli_overrides_skip_unknown_and_none(tmp_path: Path) -> None:
    settings = _store(tmp_path).load(overrides={"model": "cli", "base_url": None, "bogus": 1})

    assert settings.model == "cli"
    assert settings.base_url == Settings().base_url


class TestDerivedConfig:
    def test_runner_config(self):
        config = LoopSettings(max_iterations=3, tool_mode="required", announce_cancellation=True).to_runner_config()

        assert config.max_iterations == 3
        assert config.tool_mode is ToolMode.REQUIRED
        assert config.announce_cancellation is True

    def test_unknown_tool_mode_falls_back(self):
        assert LoopSettings(tool_mode="sometimes").to_runner_config().tool_mode is ToolMode.AUTO

    def test_truncation_policy(self):
        assert LoopSettings(max_result_chars=123).to_truncation_policy().max_bytes == 123

    def test_disabled_conclusion_has_no_enforcer(self):
        assert ConclusionSettings(enabled=False).build_enforcer() is None
        assert ConclusionSettings(required_sections=[]).build_enforcer() is None

    def test_enforcer_uses_configured_sections(self):
        enforcer = ConclusionSettings(required_sections=["Summary"]).build_enforcer()

        assert enforcer is not None
        assert enforcer.policy.required_sections == ("Summary",)

    def test_client_settings(self):
        client = Settings(api_key="k", model="m", metadata={"team": "ops"}).to_client_settings()

        assert client.api_key == "k"
        assert client.model == "m"
        assert client.metadata == {"team": "ops"}
        assert client.default_headers is None


def test_vault_rejects_foreign_backend(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")

    with pytest.raises(ValueError):
        vault.decrypt("dpapi:abc")


def test_vault_roundtrip(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")

    assert vault.decrypt(vault.encrypt("secret")) == "secret"
    assert vault.encrypt("") == ""


@pytest.mark.parametrize(
    "value, expected",
    [("", ""), ("abc", "***"), ("sk-1234567890", "sk*********90")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
