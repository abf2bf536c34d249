"""
Royalguard core: filter language, record vault and encrypted storage
"""

__version__ = "1.0.0"

from .commands import CommandResult, execute, parse_command, run
from .database import VaultDatabase
from .errors import (
    AuthenticationError, CorruptVaultError, FieldNotFound, GuardError,
    InvalidPattern, LexError, NoVaultError, ParseError, RecordExists,
    RecordNotFound, VaultIOError,
)
from .evaluator import matches
from .lexer import Token, TokenKind, tokenize
from .parser import parse, parse_filter
from .records import Field, HistoryEntry, HistoryKind, Record
from .vault import Vault
