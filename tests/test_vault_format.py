"""
Tests for the envelope codec and atomic vault file.
"""
import os
import struct

import pytest

from guard.crypto import KDF_PBKDF2_SHA256, NONCE_SIZE, KdfParams
from guard.errors import CorruptVaultError, NoVaultError, VaultIOError
from guard.vault_format import (
    MAX_ARGON2_ITERATIONS, MAX_PBKDF2_ITERATIONS, EnvelopeFormat, VaultEnvelope, VaultFile,
)


@pytest.fixture
def envelope(fast_kdf):
    return VaultEnvelope(
        salt=os.urandom(32),
        nonce=os.urandom(NONCE_SIZE),
        ciphertext=os.urandom(64),
        kdf=fast_kdf,
    )


# --- Test Envelope Encoding ---

class TestEnvelopeFormat:

    def test_encode_decode(self, envelope):
        assert EnvelopeFormat.decode(EnvelopeFormat.encode(envelope)) == envelope

    def test_starts_with_magic(self, envelope):
        assert EnvelopeFormat.encode(envelope).startswith(EnvelopeFormat.MAGIC)

    def test_associated_data_is_prefix(self, envelope):
        data = EnvelopeFormat.encode(envelope)
        assert data.startswith(envelope.associated_data)
        assert data[len(envelope.associated_data):][:NONCE_SIZE] == envelope.nonce

    def test_unknown_version(self, envelope):
        data = bytearray(EnvelopeFormat.encode(envelope))
        data[len(EnvelopeFormat.MAGIC)] = 9
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(bytes(data))

    def test_truncated(self, envelope):
        data = EnvelopeFormat.encode(envelope)
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(data[:30])

    def test_bad_kdf_params(self, envelope):
        data = bytearray(EnvelopeFormat.encode(envelope))
        data[18] = 0  # lanes
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(bytes(data))

    @pytest.mark.parametrize("offset,value", [
        (10, 0xFFFFFFFF),                 # iterations
        (10, MAX_ARGON2_ITERATIONS + 1),
        (14, 0xFFFFFFFF),                 # memory cost
    ])
    def test_excessive_kdf_cost(self, envelope, offset, value):
        data = bytearray(EnvelopeFormat.encode(envelope))
        struct.pack_into("<I", data, offset, value)
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(bytes(data))

    def test_excessive_lanes(self, envelope):
        data = bytearray(EnvelopeFormat.encode(envelope))
        struct.pack_into("<I", data, 14, 1024 * 1024)
        data[18] = 65
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(bytes(data))

    def test_highest_accepted_cost(self, envelope):
        data = bytearray(EnvelopeFormat.encode(envelope))
        struct.pack_into("<I", data, 10, MAX_ARGON2_ITERATIONS)
        assert EnvelopeFormat.decode(bytes(data)).kdf.iterations == MAX_ARGON2_ITERATIONS

    def test_excessive_pbkdf2_iterations(self):
        kdf = KdfParams(KDF_PBKDF2_SHA256, MAX_PBKDF2_ITERATIONS + 1, 0, 0)
        data = EnvelopeFormat.associated_data(kdf, os.urandom(16)) + os.urandom(NONCE_SIZE + 32)
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(data)

    def test_legacy_layout_detected(self):
        data = os.urandom(16) + os.urandom(NONCE_SIZE) + os.urandom(40)
        envelope = EnvelopeFormat.decode(data)
        assert envelope.is_legacy
        assert envelope.kdf == KdfParams.legacy()
        assert envelope.salt == data[:16]
        assert envelope.associated_data is None

    def test_too_short_for_anything(self):
        with pytest.raises(CorruptVaultError):
            EnvelopeFormat.decode(b"tiny")

    def test_legacy_is_read_only(self):
        legacy = EnvelopeFormat.decode(os.urandom(60))
        with pytest.raises(ValueError):
            EnvelopeFormat.encode(legacy)


# --- Test Vault File ---

class TestVaultFile:

    def test_save_and_load(self, vault_path, envelope):
        vault_file = VaultFile(vault_path)
        vault_file.save(envelope)
        assert vault_file.exists()
        assert vault_file.load() == envelope

    def test_missing_file(self, vault_path):
        with pytest.raises(NoVaultError):
            VaultFile(vault_path).load()

    def test_unreadable_path(self, tmp_path):
        with pytest.raises(VaultIOError):
            VaultFile(str(tmp_path)).load()

    def test_no_temp_files_left(self, tmp_path, envelope):
        VaultFile(str(tmp_path / "v.rgv")).save(envelope)
        assert os.listdir(tmp_path) == ["v.rgv"]

    def test_crash_before_rename_keeps_previous(self, tmp_path, envelope, monkeypatch, fast_kdf):
        path = str(tmp_path / "v.rgv")
        vault_file = VaultFile(path)
        vault_file.save(envelope)

        replacement = VaultEnvelope(
            salt=os.urandom(32), nonce=os.urandom(NONCE_SIZE),
            ciphertext=os.urandom(80), kdf=fast_kdf,
        )

        def crash(src, dst):
            raise OSError(5, "simulated crash")

        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(VaultIOError):
            vault_file.save(replacement)
        monkeypatch.undo()

        assert vault_file.load() == envelope
        assert os.listdir(tmp_path) == ["v.rgv"]

    def test_creates_parent_directory(self, tmp_path, envelope):
        path = tmp_path / "nested" / "dir" / "v.rgv"
        VaultFile(str(path)).save(envelope)
        assert path.exists()
