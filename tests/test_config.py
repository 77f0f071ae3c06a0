"""
Tests for config loading.
Run with: pytest tests/test_config.py
"""

import pytest

from switchboard import config


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.delenv("SWITCHBOARD_CONFIG", raising=False)
    config.reset_config()
    yield
    config.reset_config()


def test_env_vars_resolved(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_SB_KEY", "sk-secret")
    monkeypatch.delenv("TEST_SB_MISSING", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "providers:\n"
        "  openai:\n"
        "    api_key: ${TEST_SB_KEY}\n"
        "  ollama:\n"
        "    url: ${TEST_SB_MISSING}\n"
    )

    cfg = config.load_config(path)

    assert cfg["providers"]["openai"]["api_key"] == "sk-secret"
    assert cfg["providers"]["ollama"]["url"] == ""


def test_defaults_fill_missing_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("turn:\n  timeout: 30\n")

    cfg = config.load_config(path)

    assert cfg["turn"]["timeout"] == 30
    assert cfg["turn"]["history_limit"] == 50
    assert cfg["server"]["port"] == 8000
    assert cfg["storage"]["sqlite_path"] == "./data/switchboard.db"
    assert cfg["pricing"] == {}


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert config.load_config(path)["logging"]["level"] == "INFO"


def test_env_override_path_and_cache(tmp_path, monkeypatch):
    path = tmp_path / "alt.yaml"
    path.write_text("server:\n  port: 9001\n")
    monkeypatch.setenv("SWITCHBOARD_CONFIG", str(path))

    assert config.get_config()["server"]["port"] == 9001
    path.write_text("server:\n  port: 9002\n")
    assert config.get_config()["server"]["port"] == 9001

    config.reset_config()
    assert config.get_config()["server"]["port"] == 9002


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(tmp_path / "nope.yaml")
