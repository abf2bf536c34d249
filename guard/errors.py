"""
Royalguard Error Taxonomy

Every failure the core can signal derives from GuardError so the shell can
report it per command and keep going. Position-carrying errors (LexError,
ParseError) point at the offending character offset of the command text.

Recoverable at the command boundary:
- LexError, ParseError (and InvalidPattern)
- RecordNotFound, FieldNotFound, RecordExists
- VaultIOError raised while persisting

Fatal to session startup:
- AuthenticationError (and CorruptVaultError)
- NoVaultError
- VaultIOError raised while loading
"""

from typing import Optional


class GuardError(Exception):
    """Base class for all royalguard errors."""


# ==============================================================================
# COMMAND TEXT ERRORS
# ==============================================================================

class LexError(GuardError):
    """An unterminated string literal or an unrecognised character."""

    def __init__(self, message: str, position: int):
        super().__init__(message)
        self.message = message
        self.position = position

    def __str__(self) -> str:
        return f"{self.message} (at position {self.position})"


class ParseError(GuardError):
    """A grammar violation in a filter expression or command."""

    def __init__(self, message: str, position: int):
        super().__init__(message)
        self.message = message
        self.position = position

    def __str__(self) -> str:
        return f"{self.message} (at position {self.position})"


class InvalidPattern(ParseError):
    """The right-hand side of `matches` is not a valid regular expression."""

    def __init__(self, pattern: str, reason: str, position: int):
        super().__init__(f"invalid pattern {pattern!r}: {reason}", position)
        self.pattern = pattern
        self.reason = reason


# ==============================================================================
# VAULT ERRORS
# ==============================================================================

class RecordNotFound(GuardError):
    """No live record (or tombstone, for history lookups) has that name."""

    def __init__(self, name: str):
        super().__init__(f"'{name}' not found")
        self.name = name


class RecordExists(GuardError):
    """A live record already uses the requested name."""

    def __init__(self, name: str):
        super().__init__(f"'{name}' already exists")
        self.name = name


class FieldNotFound(GuardError):
    """The record exists but has no field with that key."""

    def __init__(self, name: str, key: str):
        super().__init__(f"'{name}' has no field '{key}'")
        self.name = name
        self.key = key


# ==============================================================================
# UNLOCK AND STORAGE ERRORS
# ==============================================================================

class AuthenticationError(GuardError):
    """Wrong master password, or the stored ciphertext was altered."""

    def __init__(self, message: str = "master password incorrect or vault tampered"):
        super().__init__(message)


class CorruptVaultError(AuthenticationError):
    """The vault file is not a readable envelope (truncated, unknown version)."""


class NoVaultError(GuardError):
    """There is no vault file yet (first run)."""

    def __init__(self, path: str):
        super().__init__(f"no vault at {path}")
        self.path = path


class VaultIOError(GuardError):
    """Reading or writing the vault file failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message}: {self.path}"
        return self.message
