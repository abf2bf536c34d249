"""
Royalguard Command Language

Parses one line of shell input into a command object and applies it to an
unlocked VaultDatabase.

    set|add <name> [[sensitive|secret] <field> [sensitive|secret] = <value>]...
    del|delete <name> [<field>...]
    show all | show <name> | show <filter>
    reveal all | reveal <name> | reveal <filter>
    history <name>
    reveal history <name>
    copy <name> <field>
    rename <old> <new>
    import <path>

Command words come out of the lexer as identifiers and are matched here
case-insensitively. Every mutating command is persisted before execute()
returns; if persisting fails the VaultIOError propagates and the in-memory
change stays, so the next successful save writes it.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from .database import VaultDatabase
from .errors import ParseError
from .export_import import import_file
from .filters import FieldRef, FilterExpr, Operator, Predicate
from .lexer import TokenKind, tokenize
from .parser import Parser
from .records import Field, HistoryEntry, Record
from .vault import ImportReport

logger = logging.getLogger("royalguard.commands")

# Command words and their aliases
COMMAND_WORDS = {
    'set': 'set',
    'add': 'set',
    'del': 'delete',
    'delete': 'delete',
    'show': 'show',
    'reveal': 'reveal',
    'history': 'history',
    'copy': 'copy',
    'rename': 'rename',
    'import': 'import',
}

# Listing keyword for show/reveal
ALL_WORD = 'all'

# ==============================================================================
# COMMAND TYPES
# ==============================================================================

@dataclass(frozen=True)
class SetCommand:
    name: str
    fields: Tuple[Field, ...] = ()


@dataclass(frozen=True)
class DeleteCommand:
    """Delete a whole record, or only `keys` when any are given."""

    name: str
    keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ShowCommand:
    """List matching records; `expr` None means every record."""

    expr: Optional[FilterExpr] = None
    reveal: bool = False


@dataclass(frozen=True)
class HistoryCommand:
    name: str
    reveal: bool = False


@dataclass(frozen=True)
class CopyCommand:
    name: str
    key: str


@dataclass(frozen=True)
class RenameCommand:
    old: str
    new: str


@dataclass(frozen=True)
class ImportCommand:
    path: str


Command = Union[
    SetCommand, DeleteCommand, ShowCommand, HistoryCommand,
    CopyCommand, RenameCommand, ImportCommand,
]

MUTATING = (SetCommand, DeleteCommand, RenameCommand, ImportCommand)


@dataclass
class CommandResult:
    """
    Outcome of one executed command.

    Only the attributes relevant to the command are filled in: `records` for
    set/show/reveal/rename, `history` for history, `copied` for copy (the
    resolved value, for the caller to place on the clipboard), `report` for
    import. `message` is a short human summary.
    """

    message: str = ""
    records: List[Record] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)
    copied: Optional[str] = None
    report: Optional[ImportReport] = None
    saved: bool = False

# ==============================================================================
# PARSING
# ==============================================================================

def parse_command(text: str) -> Command:
    """
    Parse one command line.

    Raises:
        LexError: Unterminated string or unrecognised character
        ParseError: Unknown command word or malformed arguments
        InvalidPattern: A `matches` pattern in a show/reveal filter is invalid
    """
    parser = Parser(tokenize(text))

    head = parser.current()
    if head.kind is not TokenKind.IDENTIFIER:
        raise parser.error("a command")
    word = COMMAND_WORDS.get(head.text.lower())
    if word is None:
        raise ParseError(f"unknown command '{head.text}'", head.position)
    parser.advance()

    if word == 'set':
        name, fields = parser.parse_record_spec()
        return SetCommand(name, tuple(fields))

    if word == 'delete':
        name = parser.expect_name()
        keys = []
        while not parser.at_end():
            keys.append(parser.expect_name("a field name"))
        return DeleteCommand(name, tuple(keys))

    if word in ('show', 'reveal'):
        return _parse_listing(parser, reveal=(word == 'reveal'))

    if word == 'history':
        command = HistoryCommand(parser.expect_name())
    elif word == 'copy':
        command = CopyCommand(parser.expect_name(), parser.expect_name("a field name"))
    elif word == 'rename':
        command = RenameCommand(parser.expect_name(), parser.expect_name("a new record name"))
    else:
        command = ImportCommand(parser.expect_name("a file path"))

    _expect_end(parser)
    return command


def _parse_listing(parser: Parser, reveal: bool) -> Command:
    first = parser.current()
    if first.kind is TokenKind.END:
        raise parser.error("'all', a record name or a filter")

    if reveal and first.kind is TokenKind.IDENTIFIER and first.text.lower() == 'history' \
            and parser.peek().kind is not TokenKind.END:
        parser.advance()
        command = HistoryCommand(parser.expect_name(), reveal=True)
        _expect_end(parser)
        return command

    if first.is_value and parser.peek().kind is TokenKind.END:
        parser.advance()
        if first.kind is TokenKind.IDENTIFIER and first.text.lower() == ALL_WORD:
            return ShowCommand(None, reveal)
        return ShowCommand(Predicate(FieldRef.record_name(), Operator.IS, first.text), reveal)

    return ShowCommand(parser.parse(), reveal)


def _expect_end(parser: Parser) -> None:
    if not parser.at_end():
        token = parser.current()
        raise ParseError(f"unexpected {token.describe()}", token.position)

# ==============================================================================
# EXECUTION
# ==============================================================================

def execute(command: Command, db: VaultDatabase) -> CommandResult:
    """
    Apply a parsed command to an unlocked database.

    Raises:
        RecordNotFound, FieldNotFound, RecordExists: Reported per command
        VaultIOError: The change was applied in memory but could not be saved
    """
    vault = db.vault
    if vault is None:
        raise RuntimeError("vault is not unlocked")

    if isinstance(command, SetCommand):
        record = vault.set(command.name, command.fields)
        result = CommandResult(f"'{record.name}' saved", records=[record.copy(masked=True)])

    elif isinstance(command, DeleteCommand):
        if command.keys:
            record = vault.delete_fields(command.name, command.keys)
            result = CommandResult(f"'{record.name}' updated", records=[record.copy(masked=True)])
        else:
            vault.delete(command.name)
            result = CommandResult(f"'{command.name}' deleted")

    elif isinstance(command, ShowCommand):
        records = vault.reveal(command.expr) if command.reveal else vault.show(command.expr)
        result = CommandResult(f"{len(records)} record(s)", records=records)

    elif isinstance(command, HistoryCommand):
        entries = vault.history(command.name, reveal=command.reveal)
        result = CommandResult(f"{len(entries)} history entries", history=entries)

    elif isinstance(command, CopyCommand):
        value = vault.field_value(command.name, command.key)
        result = CommandResult(f"'{command.name}' {command.key} resolved", copied=value)

    elif isinstance(command, RenameCommand):
        record = vault.rename(command.old, command.new)
        result = CommandResult(
            f"'{command.old}' renamed to '{command.new}'", records=[record.copy(masked=True)]
        )

    elif isinstance(command, ImportCommand):
        report = import_file(vault, command.path)
        result = CommandResult(f"{report.imported} record(s) imported", report=report)

    else:
        raise TypeError(f"not a command: {command!r}")

    if isinstance(command, MUTATING):
        db.save()
        result.saved = True
        logger.debug("persisted after %s", type(command).__name__)

    return result


def run(text: str, db: VaultDatabase) -> CommandResult:
    """Parse and execute one command line."""
    return execute(parse_command(text), db)
