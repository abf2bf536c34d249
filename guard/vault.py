"""
Royalguard In-Memory Vault

Owns every record between unlock and exit and is the only place records are
changed. Each operation validates its input first and then commits all of its
changes in one step, so a failed call leaves the vault untouched.

Record lifecycle:
    absent --set--> live --set/del fields/rename--> live --del--> tombstoned

Tombstoned records keep their history (ending in a RECORD_DELETED entry) and
remain reachable through history(), but are never returned by show/reveal and
never modified again. Setting a deleted name creates a brand new record.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from .errors import FieldNotFound, RecordExists, RecordNotFound
from .evaluator import matches
from .filters import FilterExpr
from .records import Field, HistoryEntry, HistoryKind, Record, utcnow

logger = logging.getLogger("royalguard.vault")

# (key, value, sensitive) or a ready Field
FieldSpec = Union[Field, Tuple[str, str, bool]]


class ImportEntry(NamedTuple):
    """One parsed import line waiting to be applied."""

    line: int
    name: str
    fields: Sequence[FieldSpec]


class ImportFailure(NamedTuple):
    line: int
    reason: str


@dataclass
class ImportReport:
    imported: int = 0
    failures: List[ImportFailure] = field(default_factory=list)


def _to_field(spec: FieldSpec) -> Field:
    if isinstance(spec, Field):
        return spec
    key, value, sensitive = spec
    return Field(str(key), str(value), bool(sensitive))


class Vault:
    """
    The unlocked collection of records, keyed by name.

    Iteration order of show/reveal is the order records were created (a
    rename keeps the record's position).
    """

    def __init__(self):
        self._records: Dict[str, Record] = {}
        self._tombstones: List[Record] = []
        # Bumped on every successful mutation
        self.revision = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: str) -> bool:
        return name in self._records

    @property
    def names(self) -> List[str]:
        return list(self._records)

    def _live(self, name: str) -> Record:
        try:
            return self._records[name]
        except KeyError:
            raise RecordNotFound(name) from None

    def _touch(self, record: Record) -> None:
        record.updated_at = utcnow()
        self.revision += 1

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    def set(self, name: str, fields: Iterable[FieldSpec] = ()) -> Record:
        """
        Create a record or update its fields.

        For every supplied field whose key already exists with a different
        value or sensitivity, a FIELD_SET entry with the previous value is
        appended before overwriting. New keys are inserted without history.
        A field identical to the current one is left alone.

        Args:
            name (str): Record name (created if absent)
            fields: Ordered (key, value, sensitive) triples or Field objects

        Returns:
            Record: Detached copy of the record after the update

        Raises:
            ValueError: Empty name, empty key or the same key given twice
        """
        new_fields = [_to_field(spec) for spec in fields]

        if not name:
            raise ValueError("record name must not be empty")
        seen = set()
        for f in new_fields:
            if not f.key:
                raise ValueError("field key must not be empty")
            if f.key in seen:
                raise ValueError(f"field '{f.key}' given more than once")
            seen.add(f.key)

        record = self._records.get(name)
        created = record is None
        if created:
            record = Record(name=name)

        now = utcnow()
        current = dict(record.fields)
        appended: List[HistoryEntry] = []

        for f in new_fields:
            previous = current.get(f.key)
            if previous == f:
                continue
            if previous is not None:
                appended.append(HistoryEntry(
                    timestamp=now,
                    kind=HistoryKind.FIELD_SET,
                    field_key=f.key,
                    prior_value=previous.value,
                    prior_sensitive=previous.sensitive,
                ))
            current[f.key] = f

        # Commit
        record.fields = current
        record.history = record.history + tuple(appended)
        if created:
            self._records[name] = record
            logger.debug("created record %r", name)
        self._touch(record)

        return record.copy()

    def delete(self, name: str) -> Record:
        """
        Delete a whole record, keeping its history in the tombstone list.

        Returns:
            Record: Detached copy of the tombstoned record

        Raises:
            RecordNotFound: If no live record has that name
        """
        record = self._live(name)

        entry = HistoryEntry(
            timestamp=utcnow(),
            kind=HistoryKind.RECORD_DELETED,
            snapshot=tuple(record.fields.values()),
        )
        record.history = record.history + (entry,)
        record.fields = {}

        del self._records[name]
        self._tombstones.append(record)
        self._touch(record)
        logger.debug("tombstoned record %r", name)

        return record.copy()

    def delete_fields(self, name: str, keys: Iterable[str]) -> Record:
        """
        Remove fields from a live record.

        Each removed field gets a FIELD_DELETED entry carrying its last value.
        Keys the record does not have are ignored.

        Raises:
            RecordNotFound: If no live record has that name
        """
        record = self._live(name)

        now = utcnow()
        current = dict(record.fields)
        appended: List[HistoryEntry] = []

        for key in keys:
            previous = current.pop(key, None)
            if previous is None:
                continue
            appended.append(HistoryEntry(
                timestamp=now,
                kind=HistoryKind.FIELD_DELETED,
                field_key=key,
                prior_value=previous.value,
                prior_sensitive=previous.sensitive,
            ))

        if appended:
            record.fields = current
            record.history = record.history + tuple(appended)
            self._touch(record)

        return record.copy()

    def rename(self, old: str, new: str) -> Record:
        """
        Give a live record a new name, recording the old one in history.

        Raises:
            RecordNotFound: `old` is not a live record
            RecordExists: `new` is already a live record
            ValueError: `new` is empty
        """
        if not new:
            raise ValueError("record name must not be empty")
        record = self._live(old)
        if new in self._records:
            raise RecordExists(new)

        entry = HistoryEntry(
            timestamp=utcnow(),
            kind=HistoryKind.RECORD_RENAMED,
            prior_value=old,
            prior_sensitive=False,
        )

        # Rebuild the mapping so the record keeps its position
        self._records = {
            (new if key == old else key): value for key, value in self._records.items()
        }
        record.name = new
        record.history = record.history + (entry,)
        self._touch(record)

        return record.copy()

    def import_entries(self, entries: Iterable[ImportEntry]) -> ImportReport:
        """
        Apply a batch of set operations, isolating failures per entry.

        Returns:
            ImportReport: Count of applied entries and one failure per
                rejected entry (with its line number)
        """
        report = ImportReport()
        for entry in entries:
            try:
                self.set(entry.name, entry.fields)
            except ValueError as exc:
                report.failures.append(ImportFailure(entry.line, str(exc)))
                continue
            report.imported += 1
        logger.debug(
            "import applied %d entries, %d failed", report.imported, len(report.failures)
        )
        return report

    # ==========================================================================
    # QUERIES
    # ==========================================================================

    def get(self, name: str, reveal: bool = False) -> Record:
        return self._live(name).copy(masked=not reveal)

    def _select(self, expr: Optional[FilterExpr], masked: bool) -> List[Record]:
        return [
            record.copy(masked=masked)
            for record in self._records.values()
            if expr is None or matches(expr, record)
        ]

    def show(self, expr: Optional[FilterExpr] = None) -> List[Record]:
        """Live records matching `expr` (all when None), sensitive values masked."""
        return self._select(expr, masked=True)

    def reveal(self, expr: Optional[FilterExpr] = None) -> List[Record]:
        """Live records matching `expr` (all when None), actual values."""
        return self._select(expr, masked=False)

    def field_value(self, name: str, key: str) -> str:
        """
        Resolve the actual value of one field (for copying).

        Raises:
            RecordNotFound: No live record has that name
            FieldNotFound: The record has no such field
        """
        record = self._live(name)
        field_ = record.fields.get(key)
        if field_ is None:
            raise FieldNotFound(name, key)
        return field_.value

    def history(self, ref: str, reveal: bool = False) -> List[HistoryEntry]:
        """
        History of a record, oldest entry first.

        `ref` is looked up as a live record name, then as the name of the most
        recently deleted record, then as a record id.

        Args:
            ref (str): Record name or id
            reveal (bool): When False, prior values that were sensitive are masked

        Raises:
            RecordNotFound: Nothing matches `ref`
        """
        record = self._find_any(ref)
        if reveal:
            return list(record.history)
        return [entry.masked() for entry in record.history]

    def _find_any(self, ref: str) -> Record:
        if ref in self._records:
            return self._records[ref]

        for record in reversed(self._tombstones):
            if record.name == ref:
                return record

        try:
            wanted = uuid.UUID(ref)
        except ValueError:
            raise RecordNotFound(ref) from None

        for record in list(self._records.values()) + self._tombstones:
            if record.id == wanted:
                return record
        raise RecordNotFound(ref)

    # ==========================================================================
    # SERIALIZATION
    # ==========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self._records.values()],
            "tombstones": [r.to_dict() for r in self._tombstones],
        }

    @classmethod
    def from_records(cls, records: Iterable[Record],
                     tombstones: Iterable[Record] = ()) -> "Vault":
        """
        Raises:
            ValueError: Two live records share a name
        """
        vault = cls()
        for record in records:
            if record.name in vault._records:
                raise ValueError(f"duplicate record name {record.name!r}")
            vault._records[record.name] = record
        vault._tombstones = list(tombstones)
        return vault

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vault":
        return cls.from_records(
            (Record.from_dict(item) for item in data.get("records", [])),
            (Record.from_dict(item) for item in data.get("tombstones", [])),
        )
