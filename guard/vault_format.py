"""
Royalguard Vault File Format

The vault is persisted as a single envelope: the KDF parameters and salt
needed to re-derive the key, the AEAD nonce, and the ciphertext of the JSON
payload.

Version 1 layout (little-endian):
    Bytes 0-7:    Magic bytes b'RGVAULT\\0'
    Byte 8:       Format version
    Byte 9:       KDF identifier (1 = Argon2id)
    Bytes 10-13:  KDF iterations / time cost (uint32)
    Bytes 14-17:  KDF memory cost in KiB (uint32)
    Byte 18:      KDF lanes
    Byte 19:      Salt length
    Byte 20:      Nonce length
    [salt][nonce][ciphertext + 16-byte tag]

Everything before the nonce is passed to AES-GCM as associated data, so a
modified header fails authentication just like a modified ciphertext.

Legacy layout (files written by earlier releases, no magic):
    [salt (16)][nonce (12)][ciphertext + tag], PBKDF2-HMAC-SHA256 key

Writes go to a temporary file in the vault's directory which then atomically
replaces the vault, so an interrupted save never leaves a half-written file.
"""

import logging
import os
import struct
import tempfile
from dataclasses import dataclass
from typing import Optional

from .crypto import (
    KDF_ARGON2ID, KDF_PBKDF2_SHA256, LEGACY_SALT_SIZE, NONCE_SIZE, TAG_SIZE,
    KdfParams,
)
from .errors import CorruptVaultError, NoVaultError, VaultIOError

logger = logging.getLogger("royalguard.storage")

# Shortest salt Argon2 accepts
MIN_SALT_SIZE = 8

# Highest KDF costs accepted from a header. The header is only authenticated
# after the key is derived, so larger values are treated as corruption.
MAX_ARGON2_ITERATIONS = 64
MAX_ARGON2_MEMORY_COST = 4 * 1024 * 1024  # KiB (4 GiB)
MAX_ARGON2_LANES = 64
MAX_PBKDF2_ITERATIONS = 10_000_000

# ==============================================================================
# ENVELOPE FORMAT CONSTANTS AND UTILITY CLASS
# ==============================================================================

@dataclass(frozen=True)
class VaultEnvelope:
    """
    The encrypted vault as stored on disk.

    version 0 marks a legacy headerless file; it is only ever read, the next
    save writes FORMAT_VERSION.
    """

    salt: bytes
    nonce: bytes
    ciphertext: bytes
    kdf: KdfParams = KdfParams()
    version: int = 1

    @property
    def is_legacy(self) -> bool:
        return self.version == EnvelopeFormat.LEGACY_VERSION

    @property
    def associated_data(self) -> Optional[bytes]:
        """Header bytes authenticated together with the ciphertext."""
        if self.is_legacy:
            return None
        return EnvelopeFormat.associated_data(self.kdf, self.salt)


class EnvelopeFormat:
    """
    Static class containing envelope constants and (de)serialization helpers.
    """

    # Magic bytes identifying royalguard vault files
    MAGIC = b'RGVAULT\x00'

    # Format version (increment for breaking changes)
    FORMAT_VERSION = 1

    # Version number given to headerless files from earlier releases
    LEGACY_VERSION = 0

    # magic, version, kdf id, iterations, memory cost, lanes, salt len, nonce len
    HEADER_STRUCT = struct.Struct('<8sBBIIBBB')

    @staticmethod
    def associated_data(kdf: KdfParams, salt: bytes) -> bytes:
        """
        Build the header prefix (through the salt) for a version 1 envelope.

        Raises:
            struct.error: If a parameter does not fit its header slot
        """
        header = EnvelopeFormat.HEADER_STRUCT.pack(
            EnvelopeFormat.MAGIC,
            EnvelopeFormat.FORMAT_VERSION,
            kdf.algorithm,
            kdf.iterations,
            kdf.memory_cost,
            kdf.lanes,
            len(salt),
            NONCE_SIZE,
        )
        return header + salt

    @staticmethod
    def encode(envelope: VaultEnvelope) -> bytes:
        """
        Serialize an envelope to the version 1 byte layout.

        Raises:
            ValueError: For legacy envelopes or a nonce of the wrong size
        """
        if envelope.is_legacy:
            raise ValueError("legacy envelopes are read-only")
        if len(envelope.nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
        return envelope.associated_data + envelope.nonce + envelope.ciphertext

    @staticmethod
    def decode(data: bytes) -> VaultEnvelope:
        """
        Parse envelope bytes, detecting the legacy layout by the missing magic.

        Raises:
            CorruptVaultError: Truncated data, unknown version or bad sizes
        """
        if not data.startswith(EnvelopeFormat.MAGIC):
            return EnvelopeFormat._decode_legacy(data)

        header_size = EnvelopeFormat.HEADER_STRUCT.size
        if len(data) < header_size:
            raise CorruptVaultError("vault file is truncated")

        (_, version, kdf_id, iterations, memory_cost, lanes,
         salt_len, nonce_len) = EnvelopeFormat.HEADER_STRUCT.unpack_from(data)

        if version != EnvelopeFormat.FORMAT_VERSION:
            raise CorruptVaultError(f"unsupported vault format version {version}")
        if kdf_id not in (KDF_ARGON2ID, KDF_PBKDF2_SHA256):
            raise CorruptVaultError(f"unknown key derivation id {kdf_id}")
        if nonce_len != NONCE_SIZE:
            raise CorruptVaultError("unexpected nonce size")
        if salt_len < MIN_SALT_SIZE:
            raise CorruptVaultError("salt is too short")

        kdf = KdfParams(kdf_id, iterations, memory_cost, lanes)
        try:
            kdf.validate()
        except ValueError as exc:
            raise CorruptVaultError(f"bad key derivation parameters: {exc}") from exc
        EnvelopeFormat._check_cost(kdf)

        salt_end = header_size + salt_len
        nonce_end = salt_end + nonce_len
        if len(data) < nonce_end + TAG_SIZE:
            raise CorruptVaultError("vault file is truncated")

        return VaultEnvelope(
            salt=data[header_size:salt_end],
            nonce=data[salt_end:nonce_end],
            ciphertext=data[nonce_end:],
            kdf=kdf,
            version=version,
        )

    @staticmethod
    def _check_cost(kdf: KdfParams) -> None:
        if kdf.algorithm == KDF_PBKDF2_SHA256:
            if kdf.iterations > MAX_PBKDF2_ITERATIONS:
                raise CorruptVaultError("key derivation cost out of range")
            return
        if (kdf.iterations > MAX_ARGON2_ITERATIONS
                or kdf.memory_cost > MAX_ARGON2_MEMORY_COST
                or kdf.lanes > MAX_ARGON2_LANES):
            raise CorruptVaultError("key derivation cost out of range")

    @staticmethod
    def _decode_legacy(data: bytes) -> VaultEnvelope:
        nonce_end = LEGACY_SALT_SIZE + NONCE_SIZE
        if len(data) < nonce_end + TAG_SIZE:
            raise CorruptVaultError("not a royalguard vault file")
        return VaultEnvelope(
            salt=data[:LEGACY_SALT_SIZE],
            nonce=data[LEGACY_SALT_SIZE:nonce_end],
            ciphertext=data[nonce_end:],
            kdf=KdfParams.legacy(),
            version=EnvelopeFormat.LEGACY_VERSION,
        )

# ==============================================================================
# VAULT FILE HANDLER
# ==============================================================================

class VaultFile:
    """
    Handler for the on-disk vault envelope.

    Instance Attributes:
        filepath (str): Path to the vault file
    """

    def __init__(self, filepath: str):
        self.filepath = os.path.abspath(os.path.expanduser(filepath))

    def exists(self) -> bool:
        return os.path.exists(self.filepath)

    def load(self) -> VaultEnvelope:
        """
        Read and parse the vault envelope.

        Raises:
            NoVaultError: The file does not exist (first run)
            VaultIOError: The file exists but cannot be read
            CorruptVaultError: The contents are not a vault envelope
        """
        try:
            with open(self.filepath, 'rb') as f:
                data = f.read()
        except FileNotFoundError:
            raise NoVaultError(self.filepath) from None
        except OSError as exc:
            raise VaultIOError(f"cannot read vault ({exc.strerror or exc})", self.filepath) from exc

        envelope = EnvelopeFormat.decode(data)
        logger.debug("loaded vault envelope v%d (%d bytes)", envelope.version, len(data))
        return envelope

    def save(self, envelope: VaultEnvelope) -> None:
        """
        Atomically write the envelope.

        Process:
            1. Write to a temporary file in the same directory
            2. Flush and fsync it
            3. os.replace() it over the vault file

        Raises:
            VaultIOError: Any filesystem failure; the previous vault file is
                left untouched and the temporary file is removed
        """
        data = EnvelopeFormat.encode(envelope)
        directory = os.path.dirname(self.filepath)

        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                prefix='.' + os.path.basename(self.filepath) + '.',
                suffix='.tmp',
                dir=directory,
            )
        except OSError as exc:
            raise VaultIOError(f"cannot write vault ({exc.strerror or exc})", self.filepath) from exc

        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.filepath)
        except OSError as exc:
            try:
                os.remove(temp_path)
            except OSError:
                logger.warning("could not remove temporary file %s", temp_path)
            raise VaultIOError(f"cannot write vault ({exc.strerror or exc})", self.filepath) from exc

        self._sync_directory(directory)
        logger.debug("saved vault envelope (%d bytes)", len(data))

    @staticmethod
    def _sync_directory(directory: str) -> None:
        # Persist the rename itself; not supported on every platform
        if not hasattr(os, 'O_DIRECTORY'):
            return
        try:
            fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            logger.debug("directory fsync not supported for %s", directory)
        finally:
            os.close(fd)
