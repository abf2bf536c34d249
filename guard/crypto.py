"""
Cryptographic operations for Royalguard.

This module provides the primitives the vault is sealed with:
- Key derivation from the master password using Argon2id (memory-hard KDF)
  followed by an HKDF-SHA256 expansion
- Authenticated encryption using AES-256-GCM with a fresh random nonce per call
- PBKDF2-HMAC-SHA256 derivation for reading legacy vault files
- Best-effort erasure of key material held in mutable buffers

Decryption never returns partial plaintext: any tag mismatch (wrong password,
altered nonce, ciphertext or associated data) raises AuthenticationError.
"""

import ctypes
import os
from dataclasses import dataclass
from typing import Optional, Tuple

# AEAD and KDF primitives
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.argon2 import Argon2id
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError

# ==============================================================================
# CRYPTOGRAPHIC CONSTANTS
# ==============================================================================

# Argon2id salt length for new vaults
SALT_SIZE = 32

# AES-GCM nonce and tag lengths
NONCE_SIZE = 12
TAG_SIZE = 16

# AES-256 key length
KEY_SIZE = 32

# Default Argon2id cost: 2 passes over 100 MiB (in KiB) on 4 lanes
ARGON2_TIME_COST = 2
ARGON2_MEMORY_COST = 102400
ARGON2_PARALLELISM = 4

# HKDF context binding the derived key to its purpose
HKDF_INFO = b"royalguard vault encryption"

# Legacy vault files: PBKDF2-HMAC-SHA256, 100k iterations, 16-byte salt
LEGACY_PBKDF2_ITERATIONS = 100_000
LEGACY_SALT_SIZE = 16

# KDF identifiers stored in the vault header
KDF_ARGON2ID = 1
KDF_PBKDF2_SHA256 = 2


@dataclass(frozen=True)
class KdfParams:
    """
    Key derivation parameters, stored alongside the salt in the vault header.

    For Argon2id `iterations` is the time cost, `memory_cost` is in KiB and
    `lanes` the parallelism. For PBKDF2 only `iterations` is used.
    """

    algorithm: int = KDF_ARGON2ID
    iterations: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST
    lanes: int = ARGON2_PARALLELISM

    @classmethod
    def legacy(cls) -> "KdfParams":
        return cls(KDF_PBKDF2_SHA256, LEGACY_PBKDF2_ITERATIONS, 0, 0)

    def validate(self) -> None:
        """
        Raises:
            ValueError: If the parameters cannot drive the chosen KDF
        """
        if self.algorithm == KDF_ARGON2ID:
            if self.iterations < 1 or self.lanes < 1:
                raise ValueError("Argon2id needs at least one iteration and one lane")
            if self.memory_cost < 8 * self.lanes:
                raise ValueError("Argon2id memory cost must be at least 8 KiB per lane")
        elif self.algorithm == KDF_PBKDF2_SHA256:
            if self.iterations < 1:
                raise ValueError("PBKDF2 needs at least one iteration")
        else:
            raise ValueError(f"unknown KDF algorithm {self.algorithm}")

# ==============================================================================
# KEY DERIVATION FUNCTIONS
# ==============================================================================

def derive_key(password: str, salt: bytes, params: Optional[KdfParams] = None) -> bytes:
    """
    Derive the vault encryption key from the master password.

    The same password, salt and parameters always yield the same key.

    Args:
        password (str): Master password (encoded to UTF-8)
        salt (bytes): Salt stored in the vault header
        params (KdfParams, optional): KDF selection and cost; defaults to
            Argon2id with the module defaults

    Returns:
        bytes: KEY_SIZE-byte AES-256 key

    Security Notes:
        - Argon2id resists GPU/ASIC attacks through its memory cost
        - The HKDF step binds the key to its purpose
        - The derived key is never written to disk
    """
    params = params or KdfParams()
    params.validate()

    if params.algorithm == KDF_PBKDF2_SHA256:
        return derive_legacy_key(password, salt, params.iterations)

    kdf = Argon2id(
        salt=salt,
        length=KEY_SIZE,
        iterations=params.iterations,
        memory_cost=params.memory_cost,
        lanes=params.lanes,
    )

    # Memory-hard stretch, then expand
    key_material = kdf.derive(password.encode("utf-8"))

    return derive_hkdf_key(key_material, HKDF_INFO)


def derive_hkdf_key(key_material: bytes, info: bytes) -> bytes:
    """
    Expand Argon2 output into the AES key with HKDF-SHA256.

    Args:
        key_material (bytes): Raw Argon2id output
        info (bytes): Purpose label mixed into the expansion

    Returns:
        bytes: KEY_SIZE-byte key
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,  # the Argon2 step is already salted
        info=info,
    )
    return hkdf.derive(key_material)


def derive_legacy_key(password: str, salt: bytes,
                      iterations: int = LEGACY_PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a key the way legacy (headerless) vault files were sealed.

    Args:
        password (str): Master password
        salt (bytes): 16-byte salt from the start of the legacy file
        iterations (int): PBKDF2 iteration count

    Returns:
        bytes: 32-byte AES-256 key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def generate_salt(size: int = SALT_SIZE) -> bytes:
    """
    Fresh random salt for a new (or re-keyed) vault.

    Returns:
        bytes: `size` bytes from os.urandom()
    """
    return os.urandom(size)

# ==============================================================================
# SYMMETRIC ENCRYPTION / DECRYPTION
# ==============================================================================

def _normalize_aes_key(key: bytes) -> bytes:
    """
    Check the key length and return it as immutable bytes.

    Raises:
        ValueError: If key is not exactly KEY_SIZE bytes
    """
    if len(key) != KEY_SIZE:
        raise ValueError("Encryption key must be 32 bytes for AES-256")
    return bytes(key)


def encrypt(
    key: bytes,
    plaintext: bytes,
    associated_data: Optional[bytes] = None,
) -> Tuple[bytes, bytes]:
    """
    Seal plaintext with AES-256-GCM under a new random nonce.

    Args:
        key (bytes): 32-byte AES-256 key
        plaintext (bytes): Data to encrypt
        associated_data (bytes, optional): Bytes bound to the ciphertext
            without being encrypted (the vault header)

    Returns:
        Tuple[bytes, bytes]: (nonce, ciphertext)
            - nonce: 12-byte random nonce, fresh for every call
            - ciphertext: Encrypted data with the 16-byte tag appended
    """
    key = _normalize_aes_key(key)

    # A nonce is never reused with the same key
    nonce = os.urandom(NONCE_SIZE)

    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)

    return nonce, ciphertext


def decrypt(
    key: bytes,
    nonce: bytes,
    ciphertext: bytes,
    associated_data: Optional[bytes] = None,
) -> bytes:
    """
    Verify the tag and open an AES-256-GCM ciphertext.

    Args:
        key (bytes): 32-byte AES-256 key
        nonce (bytes): Nonce returned by encrypt()
        ciphertext (bytes): Encrypted data with appended tag
        associated_data (bytes, optional): AAD given at encryption time

    Returns:
        bytes: Plaintext, only after the tag verified

    Raises:
        AuthenticationError: Wrong key, or nonce / ciphertext / AAD altered
    """
    key = _normalize_aes_key(key)

    if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        raise AuthenticationError()

    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag:
        raise AuthenticationError() from None

# ==============================================================================
# SECURE MEMORY MANAGEMENT
# ==============================================================================

def secure_erase_bytes(data: bytearray) -> None:
    """
    Zero a key buffer in place.

    Only bytearray buffers can be wiped; immutable bytes or str copies of
    the key stay in memory until collected.
    """
    if not data:
        return

    # Overwrite through the buffer protocol first
    for i in range(len(data)):
        data[i] = 0

    # then once more at the C level
    ctypes.memset(
        ctypes.addressof(ctypes.c_char.from_buffer(data)),
        0,
        len(data)
    )
