"""Unit tests for main.py -- the appgate command line."""

from unittest.mock import patch

import pytest

import main
from auth.store import UserStore
from core.config import Settings


@pytest.fixture
def db_settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    settings = Settings(secret_key="k" * 32, database_url=f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    return settings


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "usage: appgate" in capsys.readouterr().out


def test_migrate(db_settings: Settings, capsys) -> None:
    assert main.main(["migrate"]) == 0
    assert "schema version" in capsys.readouterr().out


def test_seed_admin(db_settings: Settings) -> None:
    assert main.main(["seed-admin", "--email", "Root@Example.com", "--password", "AdminPass1!"]) == 0
    store = UserStore(db_settings.database_url)
    try:
        admin = store.get_by_email("root@example.com")
        assert admin.is_admin and admin.approved
    finally:
        store.close()


def test_seed_admin_rejects_short_password(db_settings: Settings) -> None:
    assert main.main(["seed-admin", "--email", "root@example.com", "--password", "short"]) == 1


def test_seed_admin_prompts_for_password(db_settings: Settings) -> None:
    with patch("main.getpass.getpass", return_value="PromptedPass1") as prompt:
        assert main.main(["seed-admin", "--email", "ask@example.com"]) == 0
    prompt.assert_called_once()


def test_serve_runs_uvicorn() -> None:
    with patch("uvicorn.run") as run:
        assert main.main(["serve", "--port", "9000"]) == 0
    run.assert_called_once_with("asgi:app", host="127.0.0.1", port=9000, reload=False)
