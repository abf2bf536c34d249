"""
Royalguard Database Operations

This module ties the in-memory Vault to its encrypted file. A VaultDatabase
is the session context object: it is created for one vault path, holds the
derived key and the unlocked Vault from a successful unlock (or create) until
close(), and seals the Vault back to disk whenever save() is called.

Lifecycle:
    VaultDatabase(path) --create()/unlock()--> open --save()*--> --close()--> closed

`dirty` tells whether the open vault has changes the file does not hold yet
(including a legacy file that still has to be rewritten).

Unlock fails closed: a wrong password or an altered file raises
AuthenticationError and leaves the database without a vault or key.
"""

import hmac
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from .crypto import (
    KdfParams, decrypt, derive_key, encrypt, generate_salt, secure_erase_bytes,
)
from .errors import AuthenticationError, CorruptVaultError, VaultIOError
from .records import Field, Record
from .vault import Vault
from .vault_format import EnvelopeFormat, VaultEnvelope, VaultFile

logger = logging.getLogger("royalguard.database")

# Version tag written into the decrypted payload
PAYLOAD_VERSION = 1

# ==============================================================================
# VAULT DATABASE CLASS
# ==============================================================================

class VaultDatabase:
    """
    Encrypted vault session bound to one file.

    Attributes:
        vault_file (VaultFile): Low-level envelope reader/writer
        kdf_params (KdfParams): Parameters used when sealing a new salt
        vault (Vault): The unlocked vault (None until create/unlock)
    """

    def __init__(self, db_path: str, kdf_params: Optional[KdfParams] = None):
        self.vault_file = VaultFile(db_path)
        self.kdf_params = kdf_params or KdfParams()
        self.vault: Optional[Vault] = None
        self._key: Optional[bytearray] = None
        self._salt: Optional[bytes] = None
        self._sealed_kdf: Optional[KdfParams] = None
        # Vault revision held by the file; None until the file matches memory
        self._saved_revision: Optional[int] = None

    @property
    def db_path(self) -> str:
        return self.vault_file.filepath

    @property
    def is_open(self) -> bool:
        return self.vault is not None and self._key is not None

    @property
    def dirty(self) -> bool:
        """True while the open vault holds changes the file does not."""
        return self.is_open and self.vault.revision != self._saved_revision

    def __enter__(self) -> "VaultDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ==========================================================================
    # VAULT CREATION AND UNLOCK
    # ==========================================================================

    def create(self, master_password: str) -> Vault:
        """
        Create a new, empty vault file sealed with the master password.

        Returns:
            Vault: The new (empty) unlocked vault

        Raises:
            VaultIOError: The file already exists or cannot be written
        """
        if self.vault_file.exists():
            raise VaultIOError("vault already exists", self.db_path)

        self._rekey(master_password)
        self.vault = Vault()
        try:
            self.save()
        except VaultIOError:
            self.close()
            raise

        logger.info("created vault %s", self.db_path)
        return self.vault

    def unlock(self, master_password: str) -> Vault:
        """
        Decrypt the vault file with the master password.

        The stored salt and KDF parameters are reused to re-derive the key.
        Legacy files are re-keyed with a fresh salt and the current KDF so the
        next save writes the current format.

        Returns:
            Vault: The unlocked vault

        Raises:
            NoVaultError: No vault file (first run)
            VaultIOError: The file cannot be read
            AuthenticationError: Wrong password or tampered file
        """
        envelope = self.vault_file.load()

        key = bytearray(derive_key(master_password, envelope.salt, envelope.kdf))
        try:
            plaintext = decrypt(key, envelope.nonce, envelope.ciphertext,
                                envelope.associated_data)
        except AuthenticationError:
            secure_erase_bytes(key)
            logger.warning("unlock failed for %s", self.db_path)
            raise

        try:
            payload = json.loads(plaintext.decode("utf-8"))
            vault = _vault_from_payload(payload, legacy=envelope.is_legacy)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            secure_erase_bytes(key)
            raise CorruptVaultError("vault payload is unreadable") from exc

        if envelope.is_legacy:
            secure_erase_bytes(key)
            self._rekey(master_password)
            logger.info("legacy vault %s will be upgraded on the next save", self.db_path)
            self._saved_revision = None
        else:
            self._key = key
            self._salt = envelope.salt
            self._sealed_kdf = envelope.kdf
            self._saved_revision = vault.revision

        self.vault = vault
        logger.info("unlocked vault %s (%d records)", self.db_path, len(vault))
        return vault

    def _rekey(self, master_password: str) -> None:
        if self._key is not None:
            secure_erase_bytes(self._key)
        self._salt = generate_salt()
        self._sealed_kdf = self.kdf_params
        self._key = bytearray(derive_key(master_password, self._salt, self.kdf_params))

    # ==========================================================================
    # PERSISTENCE
    # ==========================================================================

    def save(self) -> None:
        """
        Encrypt the current vault with a fresh nonce and write it atomically.

        Raises:
            RuntimeError: The database is not open
            VaultIOError: The write failed; the previous file stays valid and
                the in-memory vault is unchanged, so the save can be retried
        """
        if not self.is_open:
            raise RuntimeError("vault is not unlocked")

        payload = {"version": PAYLOAD_VERSION}
        payload.update(self.vault.to_dict())
        plaintext = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        associated_data = EnvelopeFormat.associated_data(self._sealed_kdf, self._salt)
        nonce, ciphertext = encrypt(self._key, plaintext, associated_data)

        self.vault_file.save(VaultEnvelope(
            salt=self._salt,
            nonce=nonce,
            ciphertext=ciphertext,
            kdf=self._sealed_kdf,
        ))
        self._saved_revision = self.vault.revision

    def verify_password(self, master_password: str) -> bool:
        """Check a password against the open vault's key (constant-time compare)."""
        if not self.is_open:
            raise RuntimeError("vault is not unlocked")
        candidate = derive_key(master_password, self._salt, self._sealed_kdf)
        return hmac.compare_digest(candidate, bytes(self._key))

    def change_master_password(self, new_password: str) -> None:
        """
        Re-seal the vault under a new password with a fresh salt.

        Raises:
            RuntimeError: The database is not open
            VaultIOError: The write failed (the old password remains valid on disk)
        """
        if not self.is_open:
            raise RuntimeError("vault is not unlocked")

        previous = (self._key, self._salt, self._sealed_kdf)
        self._key = None
        self._rekey(new_password)
        try:
            self.save()
        except VaultIOError:
            secure_erase_bytes(self._key)
            self._key, self._salt, self._sealed_kdf = previous
            raise
        secure_erase_bytes(previous[0])
        logger.info("master password changed for %s", self.db_path)

    def close(self) -> None:
        """Erase the key from memory and drop the unlocked vault."""
        if self._key is not None:
            secure_erase_bytes(self._key)
        self._key = None
        self._salt = None
        self.vault = None
        self._saved_revision = None

# ==============================================================================
# PAYLOAD CONVERSION
# ==============================================================================

def _vault_from_payload(payload: Any, legacy: bool) -> Vault:
    if legacy:
        return _vault_from_legacy(payload)
    if not isinstance(payload, dict):
        raise ValueError("vault payload must be an object")
    return Vault.from_dict(payload)


def _vault_from_legacy(payload: Any) -> Vault:
    """
    Convert a legacy payload (a list of records, or an object with a
    "records" list) whose fields use "attr" for the key. Only current field
    values are carried over.
    """
    items: List[Dict[str, Any]]
    if isinstance(payload, dict):
        items = payload.get("records", [])
    else:
        items = payload

    records = []
    for item in items:
        fields = [
            Field(str(f["attr"]), str(f["value"]), bool(f.get("sensitive", False)))
            for f in item.get("fields", [])
        ]
        records.append(Record(
            name=str(item["name"]),
            id=uuid.UUID(str(item["id"])),
            fields={f.key: f for f in fields},
        ))
    return Vault.from_records(records)
