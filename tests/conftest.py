"""
Shared fixtures for the royalguard test suite.

Key derivation uses the cheapest Argon2id parameters the library accepts so
the suite runs quickly; nothing here touches the real clipboard.
"""
import pytest

from guard.crypto import KDF_ARGON2ID, KdfParams
from guard.database import VaultDatabase
from guard.records import Field
from guard.vault import Vault


MASTER_PASSWORD = "correct horse battery staple"


@pytest.fixture
def fast_kdf():
    """Argon2id with one pass over 8 KiB on one lane."""
    return KdfParams(KDF_ARGON2ID, iterations=1, memory_cost=8, lanes=1)


@pytest.fixture
def vault_path(tmp_path):
    return str(tmp_path / "test.rgv")


@pytest.fixture
def vault():
    """A vault holding gmail, github and bank records."""
    v = Vault()
    v.set("gmail", [
        Field("user", "me@gmail.com"),
        Field("pass", "hunter2", sensitive=True),
        Field("url", "mail.google.com"),
    ])
    v.set("github", [
        Field("user", "octocat"),
        Field("pass", "s3cret", sensitive=True),
        Field("url", "https://github.com"),
    ])
    v.set("bank", [
        Field("user", "alice"),
        Field("pin", "1234", sensitive=True),
    ])
    return v


@pytest.fixture
def db(vault_path, fast_kdf):
    """A freshly created, open database on a temporary path."""
    database = VaultDatabase(vault_path, fast_kdf)
    database.create(MASTER_PASSWORD)
    yield database
    database.close()


class FakeClipboard:
    def __init__(self):
        self.content = ""

    def copy(self, text):
        self.content = text

    def paste(self):
        return self.content


@pytest.fixture
def clipboard(monkeypatch):
    """Replace pyperclip's copy/paste with an in-memory clipboard."""
    import pyperclip

    fake = FakeClipboard()
    monkeypatch.setattr(pyperclip, "copy", fake.copy)
    monkeypatch.setattr(pyperclip, "paste", fake.paste)
    return fake
