"""
Tests for the command-line interface.
Run with: pytest tests/test_cli.py
"""

import pytest

from switchboard import cli
from switchboard import config
from switchboard.storage.models import Message


@pytest.fixture
def cli_config(tmp_path, monkeypatch):
    """Point the CLI at a temp config and ledger."""
    db = tmp_path / "cli.db"
    path = tmp_path / "config.yaml"
    path.write_text(
        f"storage:\n  sqlite_path: {db}\n"
        "providers:\n  openai:\n    api_key: sk-test\n"
    )
    monkeypatch.setenv("SWITCHBOARD_CONFIG", str(path))
    config.reset_config()
    yield db
    config.reset_config()


@pytest.mark.parametrize("name", ["dial", "serve", "start"])
def test_dial_aliases(name):
    args = cli.build_parser().parse_args([name, "--port", "9000"])
    assert args.func is cli.cmd_dial
    assert args.port == 9000


@pytest.mark.parametrize("name,func", [
    ("lineup", "cmd_lineup"), ("models", "cmd_lineup"),
    ("reconcile", "cmd_reconcile"), ("audit", "cmd_reconcile"),
    ("flash", "cmd_flash"), ("stats", "cmd_flash"),
])
def test_aliases(name, func):
    args = cli.build_parser().parse_args([name])
    assert args.func is getattr(cli, func)


def test_lineup_lists_configured_models(cli_config, capsys):
    cli.main(["lineup"])
    out = capsys.readouterr().out
    assert "gpt-4o" in out
    assert "claude" not in out


def test_reconcile_balanced(cli_config, capsys):
    cli.main(["reconcile"])
    assert "balance" in capsys.readouterr().out


def test_reconcile_drift_exits_then_repairs(cli_config, store, conversation, capsys):
    from switchboard.storage.sqlite_store import SQLiteStore

    ledger = SQLiteStore(str(cli_config))
    ledger.create_user(store.get_user("u1"))
    ledger.create_conversation(conversation)
    ledger.store_message(Message(conversation_id=conversation.id, role="assistant",
                                 content="a", input_tokens=4, output_tokens=4, cost=1))

    with pytest.raises(SystemExit) as exc:
        cli.main(["audit"])
    assert exc.value.code == 1
    assert "--repair" in capsys.readouterr().out

    cli.main(["audit", "--repair"])
    assert "repaired" in capsys.readouterr().out
    assert ledger.get_conversation(conversation.id).total_tokens == 8


def test_flash(cli_config, capsys):
    cli.main(["stats", "--days", "7"])
    assert "Last 7 days" in capsys.readouterr().out
