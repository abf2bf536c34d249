"""
Royalguard Import Module
Bulk record loading from plain text files

One record per line, in the same form as the arguments of `set`:

    'gmail' user = 'me@gmail.com' pass sensitive = 'hunter2'
"""

import logging
from typing import Iterable, List

from .errors import LexError, ParseError, VaultIOError
from .lexer import tokenize
from .parser import Parser
from .vault import ImportEntry, ImportFailure, ImportReport, Vault

logger = logging.getLogger("royalguard.import")


def parse_import_line(text: str, line: int = 0) -> ImportEntry:
    """
    Parse one import line

    Args:
        text: Line content
        line: 1-based line number carried into failure reports

    Raises:
        LexError, ParseError: Malformed line
    """
    parser = Parser(tokenize(text))
    name, fields = parser.parse_record_spec()
    return ImportEntry(line, name, fields)


def import_entries(vault: Vault, lines: Iterable[str]) -> ImportReport:
    """
    Apply import lines to the vault

    Blank lines are skipped. A line that fails to parse or is rejected by the
    vault is reported with its line number; the other lines still apply.

    Returns:
        ImportReport with failures ordered by line number
    """
    entries: List[ImportEntry] = []
    failures: List[ImportFailure] = []

    for number, text in enumerate(lines, start=1):
        if not text.strip():
            continue
        try:
            entries.append(parse_import_line(text, number))
        except (LexError, ParseError) as exc:
            failures.append(ImportFailure(number, str(exc)))

    report = vault.import_entries(entries)
    report.failures = sorted(failures + report.failures, key=lambda f: f.line)

    logger.info("imported %d records (%d lines rejected)",
                report.imported, len(report.failures))
    return report


def import_file(vault: Vault, path: str) -> ImportReport:
    """
    Import records from a UTF-8 text file

    Raises:
        VaultIOError: File missing, unreadable or not UTF-8
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.read().splitlines()
    except OSError as exc:
        raise VaultIOError(f"cannot read import file ({exc.strerror or exc})", path) from exc
    except UnicodeDecodeError as exc:
        raise VaultIOError("import file is not valid UTF-8", path) from exc

    return import_entries(vault, lines)
