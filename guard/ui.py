"""
Royalguard User Interface Components

Display and clipboard helpers for the interactive shell:
- One-line record rendering with sensitive values masked
- History listings
- Import reports
- Clipboard copy with auto-clear

Dependencies: pyperclip for cross-platform clipboard support
"""

import logging
import threading
import time
from typing import List

import pyperclip

from .records import MASK, HistoryEntry, HistoryKind, Record
from .vault import ImportReport

logger = logging.getLogger("royalguard.ui")

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"

# ==============================================================================
# MESSAGE HELPERS
# ==============================================================================

def success(message: str) -> None:
    print(f"[+] {message}")


def error(message: str) -> None:
    print(f"[-] {message}")


def info(message: str) -> None:
    print(f"[i] {message}")

# ==============================================================================
# RECORD DISPLAY FUNCTIONS
# ==============================================================================

def _quote(text: str) -> str:
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


def format_record(record: Record) -> str:
    """
    Render a record on one line, in the same syntax `set` accepts.

    Values arrive already masked (or not) from the vault. Masked values are
    printed bare, everything else quoted.

    Example Output:
        'gmail' user='me@gmail.com' pass=*****
    """
    parts = [_quote(record.name)]
    for f in record.fields.values():
        value = f.value if f.value == MASK and f.sensitive else _quote(f.value)
        parts.append(f"{f.key}={value}")
    return " ".join(parts)


def display_records(records: List[Record]) -> None:
    if not records:
        error("No records found")
        return
    for record in records:
        print(format_record(record))


def format_history_entry(entry: HistoryEntry) -> str:
    """
    Render one history line.

    Example Output:
        2024/05/01 10:22:13  pass changed, was *****
        2024/05/02 08:00:00  record deleted  'gmail' user='me' pass=*****
    """
    stamp = entry.timestamp.astimezone().strftime(TIMESTAMP_FORMAT)

    if entry.kind is HistoryKind.FIELD_SET:
        return f"{stamp}  {entry.field_key} changed, was {_shown(entry)}"
    if entry.kind is HistoryKind.FIELD_DELETED:
        return f"{stamp}  {entry.field_key} deleted, was {_shown(entry)}"
    if entry.kind is HistoryKind.RECORD_RENAMED:
        return f"{stamp}  renamed from {_quote(entry.prior_value or '')}"

    fields = " ".join(
        f"{f.key}={f.value if f.sensitive and f.value == MASK else _quote(f.value)}"
        for f in entry.snapshot
    )
    return f"{stamp}  record deleted  {fields}".rstrip()


def _shown(entry: HistoryEntry) -> str:
    if entry.prior_sensitive and entry.prior_value == MASK:
        return entry.prior_value
    return _quote(entry.prior_value or "")


def display_history(name: str, entries: List[HistoryEntry]) -> None:
    if not entries:
        info(f"No history for '{name}'")
        return
    print(f"History of '{name}' (oldest first)")
    print("-" * 50)
    for entry in entries:
        print(format_history_entry(entry))


def display_import_report(report: ImportReport) -> None:
    success(f"{report.imported} record(s) imported")
    for failure in report.failures:
        error(f"line {failure.line}: {failure.reason}")

# ==============================================================================
# CLIPBOARD MANAGEMENT
# ==============================================================================

def copy_to_clipboard(text: str, timeout: int = 30) -> bool:
    """
    Copy text to system clipboard with optional auto-clear timeout.

    Args:
        text (str): The text to copy to clipboard
        timeout (int): Seconds after which to clear the clipboard; 0 disables
            auto-clear

    Returns:
        bool: True if text was successfully copied, False otherwise

    Security Features:
        - Only clears if the clipboard still holds the copied text
        - Uses a daemon thread so it never blocks exit
    """
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        logger.warning("clipboard unavailable: %s", e)
        return False

    if timeout > 0:
        def clear_clipboard():
            time.sleep(timeout)
            try:
                if pyperclip.paste() == text:
                    pyperclip.copy("")
            except pyperclip.PyperclipException as e:
                logger.debug("could not clear clipboard: %s", e)

        clear_thread = threading.Thread(target=clear_clipboard, daemon=True)
        clear_thread.start()

    return True
