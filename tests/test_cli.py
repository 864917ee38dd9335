"""Tests for the pairing CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from pairgate.cli import commands
from pairgate.cli.commands import app
from pairgate.pairing.store import FilePairingStore

runner = CliRunner()


@pytest.fixture
def file_store(tmp_path: Path, monkeypatch) -> FilePairingStore:
    store = FilePairingStore(credentials_dir=tmp_path / "credentials")
    monkeypatch.setattr(commands, "_build_store", lambda: store)
    return store


class TestPairingRevoke:
    @pytest.mark.parametrize("user_id", ["42", "telegram:42", "tg:42", " TG:42 "])
    def test_prefixed_ids_revoke(self, file_store, user_id):
        file_store.add_allow_from("telegram", "42")

        result = runner.invoke(app, ["pairing", "revoke", "telegram", user_id])

        assert result.exit_code == 0
        assert "Revoked access for 42" in result.output
        assert file_store.read_allow_from("telegram") == []

    def test_not_in_allow_list(self, file_store):
        result = runner.invoke(app, ["pairing", "revoke", "telegram", "99"])
        assert result.exit_code == 0
        assert "not in the allow list" in result.output

    def test_invalid_channel(self, file_store):
        result = runner.invoke(app, ["pairing", "revoke", "bad channel!", "42"])
        assert result.exit_code == 1
        assert "Invalid channel" in result.output


class TestPairingAllowed:
    def test_lists_entries(self, file_store):
        file_store.add_allow_from("sms", "+15550100")
        result = runner.invoke(app, ["pairing", "allowed", "sms"])
        assert result.exit_code == 0
        assert "+15550100" in result.output
