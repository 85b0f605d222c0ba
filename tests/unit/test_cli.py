"""Unit tests for the offline ``python -m usagewatch`` subcommands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from usagewatch.__main__ import main
from usagewatch.orchestrator.commands import CommandHandler
from usagewatch.storage.credentials import FileCredentialStore


@pytest.fixture()
def data_dir(clean_env: None, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("CREDENTIALS_PATH", str(tmp_path / "credentials.json"))
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "usage.db"))
    monkeypatch.setenv("STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setenv("STATS_PATH", str(tmp_path / "stats.json"))
    return tmp_path


class TestCredentialsCommands:
    def test_login_then_logout(self, data_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        store = FileCredentialStore(data_dir / "credentials.json")

        assert main(["login", "--org-id", "org-1", "--token", "token-abc"]) == 0
        creds = store.load()
        assert creds is not None
        assert creds.organization_id == "org-1"

        assert main(["logout"]) == 0
        assert store.load() is None
        assert "Credentials removed." in capsys.readouterr().out

    def test_login_rejects_bad_token(self, data_dir: Path) -> None:
        assert main(["login", "--org-id", "org-1", "--token", "bad token"]) == 1
        assert not (data_dir / "credentials.json").exists()

    def test_commands_go_through_command_handler(
        self, data_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        save = AsyncMock()
        clear = AsyncMock()
        monkeypatch.setattr(CommandHandler, "save_credentials", save)
        monkeypatch.setattr(CommandHandler, "clear_credentials", clear)

        assert main(["login", "--org-id", "org-1", "--token", "token-abc"]) == 0
        assert main(["logout"]) == 0

        save.assert_awaited_once_with("org-1", "token-abc")
        clear.assert_awaited_once_with()


class TestHistoryCommands:
    def test_cleanup_and_history_on_empty_db(
        self, data_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["cleanup", "--days", "7"]) == 0
        assert main(["history", "--range", "1h"]) == 0

        out = capsys.readouterr().out
        assert "Deleted 0 records older than 7 days." in out
        assert "0 records." in out

    def test_cleanup_rejects_zero_days(self, data_dir: Path) -> None:
        assert main(["cleanup", "--days", "0"]) == 1


class TestConfiguration:
    def test_half_configured_credentials_exit_1(
        self, data_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ORGANIZATION_ID", "org-1")
        assert main(["logout"]) == 1

    def test_invalid_log_level_exit_1(self, data_dir: Path) -> None:
        assert main(["--log-level", "CHATTY", "logout"]) == 1

    def test_once_without_credentials_is_not_an_error(self, data_dir: Path) -> None:
        assert main(["once"]) == 0
