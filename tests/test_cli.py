from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from helpers import FakeAIService, FakeSynthesizer
from monke import cli as cli_module
from monke.core.config import get_settings
from monke.core.credentials import CredentialStore

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch):
    creds = tmp_path / "credentials.json"
    monkeypatch.setenv("MONKE_CREDENTIALS_PATH", str(creds))
    monkeypatch.setenv("MONKE_API_KEYS", json.dumps({"openai": "sk-from-config"}))
    get_settings.cache_clear()
    yield creds
    get_settings.cache_clear()


def test_cli_help():
    result = runner.invoke(cli_module.cli, ["--help"])
    assert result.exit_code == 0
    for command in ("serve", "proxy", "talk", "config", "key"):
        assert command in result.output


def test_config_print_masks_secrets(cli_env):
    result = runner.invoke(cli_module.cli, ["config", "print"])
    assert result.exit_code == 0
    assert "sk-from-config" not in result.output
    data = json.loads(result.output)
    assert data["api_keys"] == "***"
    assert data["credentials_path"] == str(cli_env)


def test_key_set_and_clear(cli_env):
    result = runner.invoke(cli_module.cli, ["key", "set", "claude", "sk-ant-1"])
    assert result.exit_code == 0
    assert "Key stored for claude" in result.output
    assert CredentialStore(cli_env).get("claude") == "sk-ant-1"

    result = runner.invoke(cli_module.cli, ["key", "clear", "claude"])
    assert result.exit_code == 0
    assert "Key removed for claude" in result.output
    assert CredentialStore(cli_env).get("claude") is None

    result = runner.invoke(cli_module.cli, ["key", "clear", "claude"])
    assert "MONKE_CLAUDE_API_KEY" in result.output


def test_talk_runs_simulated_turns(cli_env, monkeypatch):
    monkeypatch.setattr(
        "monke.core.llm.create_ai_service",
        lambda settings, store=None: FakeAIService(settings, reply="**Ooh** I love bananas!"),
    )
    monkeypatch.setattr(
        "monke.voice.tts.create_synthesizer",
        lambda settings: FakeSynthesizer(settings, manual=False),
    )
    result = runner.invoke(cli_module.cli, ["talk", "--say", "Hi Monke", "--say", "Bye Monke", "-n", "2"])
    assert result.exit_code == 0, result.output
    assert "[you] Hi Monke" in result.output
    assert "[you] Bye Monke" in result.output
    assert result.output.count("[monke] Ooh I love bananas!") == 2
    assert "[state] speaking" in result.output
