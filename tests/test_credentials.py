from __future__ import annotations

from helpers import make_settings
from monke.core.credentials import CredentialStore, env_var_name, resolve_api_key


def test_runtime_override_wins(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(env_var_name("openai"), "env-key")
    settings = make_settings(tmp_path, api_keys={"openai": "config-key"})
    store = CredentialStore(settings.credentials_path)
    store.set("openai", "runtime-key")
    assert resolve_api_key(settings, "openai", store) == "runtime-key"


def test_config_before_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(env_var_name("openai"), "env-key")
    settings = make_settings(tmp_path, api_keys={"openai": "config-key"})
    assert resolve_api_key(settings, "openai") == "config-key"


def test_environment_only_outside_production(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(env_var_name("claude"), "env-key")
    assert resolve_api_key(make_settings(tmp_path), "claude") == "env-key"
    assert resolve_api_key(make_settings(tmp_path, environment="production"), "claude") == ""


def test_store_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "nested" / "credentials.json"
    CredentialStore(path).set("openai", "sk-1")
    assert CredentialStore(path).get("openai") == "sk-1"
    assert CredentialStore(path).clear("openai") is True
    assert CredentialStore(path).clear("openai") is False
    assert CredentialStore(path).get("openai") is None


def test_unreadable_store_is_ignored(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text("{not json", encoding="utf-8")
    assert CredentialStore(path).get("openai") is None
