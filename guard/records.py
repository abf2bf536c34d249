"""
Royalguard Record Model

Data types held by the vault:
- Field: one named value, optionally sensitive
- HistoryEntry: immutable log line recording a prior value or a deletion
- Record: a named group of fields plus its append-only history

Records serialize to plain JSON-compatible dictionaries for the encrypted
vault payload. Timestamps are timezone-aware UTC datetimes stored in ISO 8601.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Replacement text for sensitive values in masked views
MASK = "*****"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# FIELD
# ==============================================================================

@dataclass(frozen=True)
class Field:
    key: str
    value: str
    sensitive: bool = False

    def masked(self) -> "Field":
        """Copy with the value replaced by MASK when sensitive."""
        if not self.sensitive:
            return self
        return replace(self, value=MASK)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "value": self.value, "sensitive": self.sensitive}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Field":
        return cls(
            key=str(data["key"]),
            value=str(data["value"]),
            sensitive=bool(data.get("sensitive", False)),
        )


# ==============================================================================
# HISTORY
# ==============================================================================

class HistoryKind(Enum):
    FIELD_SET = "field_set"
    FIELD_DELETED = "field_deleted"
    RECORD_DELETED = "record_deleted"
    RECORD_RENAMED = "record_renamed"


@dataclass(frozen=True)
class HistoryEntry:
    """
    One immutable history line.

    FIELD_SET / FIELD_DELETED carry the field key and its value and
    sensitivity just before the change. RECORD_DELETED carries a snapshot of
    the fields the record held when it was deleted. RECORD_RENAMED carries
    the previous name as prior_value.
    """

    timestamp: datetime
    kind: HistoryKind
    field_key: Optional[str] = None
    prior_value: Optional[str] = None
    prior_sensitive: Optional[bool] = None
    snapshot: Tuple[Field, ...] = ()

    def masked(self) -> "HistoryEntry":
        """Copy with sensitive prior values (and snapshot values) masked."""
        prior_value = self.prior_value
        if self.prior_sensitive and prior_value is not None:
            prior_value = MASK
        return replace(
            self,
            prior_value=prior_value,
            snapshot=tuple(f.masked() for f in self.snapshot),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
        }
        if self.field_key is not None:
            data["field_key"] = self.field_key
        if self.prior_value is not None:
            data["prior_value"] = self.prior_value
        if self.prior_sensitive is not None:
            data["prior_sensitive"] = self.prior_sensitive
        if self.snapshot:
            data["snapshot"] = [f.to_dict() for f in self.snapshot]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            kind=HistoryKind(data["kind"]),
            field_key=data.get("field_key"),
            prior_value=data.get("prior_value"),
            prior_sensitive=data.get("prior_sensitive"),
            snapshot=tuple(Field.from_dict(f) for f in data.get("snapshot", [])),
        )


# ==============================================================================
# RECORD
# ==============================================================================

@dataclass
class Record:
    """
    A named credential entry.

    `id` is assigned once at creation and never changes. `fields` keeps
    insertion order. `history` is a tuple and only ever replaced by a longer
    tuple ending in the new entry.
    """

    name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    fields: Dict[str, Field] = field(default_factory=dict)
    history: Tuple[HistoryEntry, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def get(self, key: str) -> Optional[str]:
        field_ = self.fields.get(key)
        return field_.value if field_ is not None else None

    def copy(self, masked: bool = False) -> "Record":
        """Detached copy; with masked=True sensitive values become MASK."""
        fields = {
            key: (f.masked() if masked else f) for key, f in self.fields.items()
        }
        return replace(self, fields=fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields.values()],
            "history": [h.to_dict() for h in self.history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        fields = [Field.from_dict(f) for f in data.get("fields", [])]
        return cls(
            name=str(data["name"]),
            id=uuid.UUID(data["id"]),
            fields={f.key: f for f in fields},
            history=tuple(HistoryEntry.from_dict(h) for h in data.get("history", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
