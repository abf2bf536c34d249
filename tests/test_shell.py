"""
Tests for the interactive shell's handling of unsaved changes.

Input is scripted by replacing prompt_toolkit's prompt; running out of
scripted lines behaves like Ctrl-D.
"""
import os

import pytest

import royalguard
from guard.config import Settings
from guard.database import VaultDatabase

from .conftest import MASTER_PASSWORD


@pytest.fixture
def app(vault_path, fast_kdf):
    shell = royalguard.Royalguard(Settings(vault_path=vault_path, kdf=fast_kdf))
    shell.db.create(MASTER_PASSWORD)
    yield shell
    shell.cleanup()


@pytest.fixture
def script(monkeypatch):
    """Feed prompt() from a list of lines, raising EOFError when it runs out."""
    lines = []

    def fake_prompt(message, **kwargs):
        if not lines:
            raise EOFError
        return lines.pop(0)

    monkeypatch.setattr(royalguard, "prompt", fake_prompt)
    return lines


@pytest.fixture
def broken_disk(monkeypatch):
    """Make every vault write fail until `broken_disk["on"]` is cleared."""
    state = {"on": True}
    real_replace = os.replace

    def replace(src, dst):
        if state["on"]:
            raise OSError(28, "No space left on device")
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", replace)
    return state


def reopened_names(vault_path, fast_kdf):
    database = VaultDatabase(vault_path, fast_kdf)
    database.unlock(MASTER_PASSWORD)
    names = database.vault.names
    database.close()
    return names


# --- Test Save Command ---

class TestSaveCommand:

    def test_save_after_failed_write(self, app, script, broken_disk, vault_path, fast_kdf, capsys):
        script.extend(["set gmail user = me"])
        app.run()
        assert "Not saved" in capsys.readouterr().out
        assert app.db.dirty

        broken_disk["on"] = False
        assert app.save_vault()
        assert not app.db.dirty
        assert reopened_names(vault_path, fast_kdf) == ["gmail"]

    def test_save_command_in_loop(self, app, script, broken_disk, vault_path, fast_kdf, capsys):
        app.handle("set gmail user = me")
        assert app.db.dirty
        broken_disk["on"] = False

        script.extend(["save", "exit"])
        app.run()
        assert "Vault saved" in capsys.readouterr().out
        assert not app.db.dirty
        assert reopened_names(vault_path, fast_kdf) == ["gmail"]

    def test_nothing_to_save(self, app, capsys):
        assert app.save_vault()
        assert "Nothing to save" in capsys.readouterr().out


# --- Test Exit With Unsaved Changes ---

class TestExit:

    def test_exit_flushes_pending_change(self, app, broken_disk, script, vault_path, fast_kdf):
        app.handle("set gmail user = me")
        broken_disk["on"] = False

        script.extend(["exit"])
        app.run()
        assert not app.db.dirty
        assert reopened_names(vault_path, fast_kdf) == ["gmail"]

    def test_end_of_input_flushes_pending_change(self, app, broken_disk, script, vault_path, fast_kdf):
        app.handle("set gmail user = me")
        broken_disk["on"] = False

        app.run()
        assert reopened_names(vault_path, fast_kdf) == ["gmail"]

    def test_exit_confirmed_discards(self, app, script, broken_disk, vault_path, fast_kdf):
        script.extend(["set gmail user = me", "exit", "y"])
        app.run()
        assert app.db.dirty
        assert script == []

        broken_disk["on"] = False
        assert reopened_names(vault_path, fast_kdf) == []

    def test_exit_declined_keeps_session(self, app, broken_disk, monkeypatch, vault_path, fast_kdf):
        lines = ["set gmail user = me", "exit", "n"]

        def scripted(message, **kwargs):
            if lines:
                return lines.pop(0)
            # Disk comes back after the user declines to leave
            broken_disk["on"] = False
            raise EOFError

        monkeypatch.setattr(royalguard, "prompt", scripted)
        app.run()
        assert not app.db.dirty
        assert reopened_names(vault_path, fast_kdf) == ["gmail"]

    def test_end_of_input_during_confirmation(self, app, script, broken_disk, capsys):
        script.extend(["set gmail user = me"])
        app.run()
        out = capsys.readouterr().out
        assert "unsaved changes discarded" in out
        assert "Vault locked" in out
