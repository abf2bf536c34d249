"""
Tests for the in-memory Vault.

Tests cover:
- set: creation, updates, history of prior values, validation
- del: whole records (tombstones) and single fields
- rename
- show/reveal redaction and filtering
- history lookup by name, deleted name and id
- import with per-entry isolation
- dict serialization
"""
import pytest

from guard.errors import FieldNotFound, RecordExists, RecordNotFound
from guard.parser import parse_filter
from guard.records import MASK, Field, HistoryKind
from guard.vault import ImportEntry, Vault


# --- Test Set ---

class TestSet:

    def test_create_record(self):
        vault = Vault()
        record = vault.set("gmail", [("user", "me", False)])
        assert record.name == "gmail"
        assert record.get("user") == "me"
        assert record.history == ()
        assert "gmail" in vault

    def test_create_without_fields(self):
        vault = Vault()
        vault.set("empty")
        assert vault.names == ["empty"]

    def test_history_accumulates_prior_values(self):
        vault = Vault()
        vault.set("gmail", [("pass", "a", False)])
        vault.set("gmail", [("pass", "b", False)])
        record = vault.set("gmail", [("pass", "c", False)])

        assert record.get("pass") == "c"
        assert [h.prior_value for h in record.history] == ["a", "b"]
        assert all(h.kind is HistoryKind.FIELD_SET for h in record.history)
        assert all(h.field_key == "pass" for h in record.history)

    def test_new_key_has_no_history(self, vault):
        record = vault.set("gmail", [("phone", "555", False)])
        assert record.history == ()
        assert list(record.fields) == ["user", "pass", "url", "phone"]

    def test_identical_value_is_noop(self, vault):
        record = vault.set("gmail", [Field("user", "me@gmail.com")])
        assert record.history == ()

    def test_sensitivity_change_is_recorded(self, vault):
        record = vault.set("gmail", [Field("user", "me@gmail.com", sensitive=True)])
        assert len(record.history) == 1
        assert record.history[0].prior_sensitive is False

    def test_updated_at_advances(self, vault):
        before = vault.get("gmail").updated_at
        after = vault.set("gmail", [("user", "other", False)]).updated_at
        assert after >= before

    def test_id_is_stable(self, vault):
        original = vault.get("gmail").id
        assert vault.set("gmail", [("user", "x", False)]).id == original

    @pytest.mark.parametrize("name,fields", [
        ("", []),
        ("gmail", [("", "x", False)]),
        ("gmail", [("a", "1", False), ("a", "2", False)]),
    ])
    def test_invalid_input_leaves_vault_untouched(self, vault, name, fields):
        before = vault.to_dict()
        with pytest.raises(ValueError):
            vault.set(name, fields)
        assert vault.to_dict() == before

    def test_returned_record_is_detached(self, vault):
        record = vault.set("gmail", [("user", "x", False)])
        record.fields.clear()
        assert vault.get("gmail").get("user") == "x"


# --- Test Delete ---

class TestDelete:

    def test_delete_record(self, vault):
        vault.delete("bank")
        assert "bank" not in vault
        assert all(r.name != "bank" for r in vault.show())

    def test_delete_keeps_history_in_tombstone(self, vault):
        vault.delete("bank")
        history = vault.history("bank", reveal=True)
        assert history[-1].kind is HistoryKind.RECORD_DELETED
        assert {f.key: f.value for f in history[-1].snapshot} == {"user": "alice", "pin": "1234"}

    def test_delete_unknown(self, vault):
        with pytest.raises(RecordNotFound):
            vault.delete("nope")

    def test_set_after_delete_creates_new_record(self, vault):
        old_id = vault.get("bank").id
        vault.delete("bank")
        record = vault.set("bank", [("user", "bob", False)])
        assert record.id != old_id
        assert record.history == ()

    def test_delete_field(self, vault):
        record = vault.delete_fields("gmail", ["pass"])
        assert "pass" not in record.fields
        entry = record.history[-1]
        assert entry.kind is HistoryKind.FIELD_DELETED
        assert entry.field_key == "pass"
        assert entry.prior_value == "hunter2"

    def test_deleted_field_in_revealed_history(self, vault):
        vault.delete_fields("gmail", ["pass"])
        history = vault.history("gmail", reveal=True)
        assert any(
            h.kind is HistoryKind.FIELD_DELETED and h.prior_value == "hunter2" for h in history
        )

    def test_delete_missing_field_is_ignored(self, vault):
        record = vault.delete_fields("gmail", ["phone"])
        assert record.history == ()

    def test_delete_field_unknown_record(self, vault):
        with pytest.raises(RecordNotFound):
            vault.delete_fields("nope", ["pass"])


# --- Test Rename ---

class TestRename:

    def test_rename(self, vault):
        record = vault.rename("gmail", "google")
        assert record.name == "google"
        assert "gmail" not in vault
        assert record.history[-1].kind is HistoryKind.RECORD_RENAMED
        assert record.history[-1].prior_value == "gmail"

    def test_rename_keeps_position(self, vault):
        vault.rename("gmail", "google")
        assert vault.names == ["google", "github", "bank"]

    def test_rename_to_existing(self, vault):
        with pytest.raises(RecordExists):
            vault.rename("gmail", "bank")

    def test_rename_unknown(self, vault):
        with pytest.raises(RecordNotFound):
            vault.rename("nope", "other")

    def test_rename_to_empty(self, vault):
        with pytest.raises(ValueError):
            vault.rename("gmail", "")


# --- Test Show and Reveal ---

class TestShowReveal:

    def test_show_masks_sensitive(self, vault):
        gmail = vault.show(parse_filter(". is gmail"))[0]
        assert gmail.get("pass") == MASK
        assert gmail.get("user") == "me@gmail.com"

    def test_reveal_returns_values(self, vault):
        gmail = vault.reveal(parse_filter(". is gmail"))[0]
        assert gmail.get("pass") == "hunter2"

    def test_show_all_in_creation_order(self, vault):
        assert [r.name for r in vault.show()] == ["gmail", "github", "bank"]

    def test_show_filter(self, vault):
        records = vault.show(parse_filter("url contains github or user is alice"))
        assert [r.name for r in records] == ["github", "bank"]

    def test_show_no_match(self, vault):
        assert vault.show(parse_filter("user is nobody")) == []

    def test_show_does_not_expose_internal_state(self, vault):
        vault.show()[0].fields.clear()
        assert vault.get("gmail", reveal=True).get("pass") == "hunter2"

    def test_field_value(self, vault):
        assert vault.field_value("gmail", "pass") == "hunter2"

    def test_field_value_missing_field(self, vault):
        with pytest.raises(FieldNotFound):
            vault.field_value("gmail", "phone")

    def test_field_value_missing_record(self, vault):
        with pytest.raises(RecordNotFound):
            vault.field_value("nope", "pass")


# --- Test History ---

class TestHistory:

    def test_history_is_masked_by_default(self, vault):
        vault.set("gmail", [Field("pass", "new", sensitive=True)])
        assert vault.history("gmail")[0].prior_value == MASK
        assert vault.history("gmail", reveal=True)[0].prior_value == "hunter2"

    def test_non_sensitive_history_not_masked(self, vault):
        vault.set("gmail", [("user", "new", False)])
        assert vault.history("gmail")[0].prior_value == "me@gmail.com"

    def test_tombstone_snapshot_masked(self, vault):
        vault.delete("gmail")
        snapshot = {f.key: f.value for f in vault.history("gmail")[-1].snapshot}
        assert snapshot["pass"] == MASK
        assert snapshot["user"] == "me@gmail.com"

    def test_history_by_id(self, vault):
        record_id = vault.get("bank").id
        vault.delete("bank")
        vault.set("bank", [("user", "bob", False)])
        history = vault.history(str(record_id))
        assert history[-1].kind is HistoryKind.RECORD_DELETED

    def test_live_name_wins_over_tombstone(self, vault):
        vault.delete("bank")
        vault.set("bank", [("user", "bob", False)])
        assert vault.history("bank") == []

    def test_history_unknown(self, vault):
        with pytest.raises(RecordNotFound):
            vault.history("nope")


# --- Test Import ---

class TestImport:

    def test_import_applies_entries(self):
        vault = Vault()
        report = vault.import_entries([
            ImportEntry(1, "gmail", [("user", "me", False)]),
            ImportEntry(2, "github", [("user", "octo", False)]),
        ])
        assert report.imported == 2
        assert report.failures == []
        assert vault.names == ["gmail", "github"]

    def test_bad_entry_is_isolated(self):
        vault = Vault()
        report = vault.import_entries([
            ImportEntry(1, "gmail", [("user", "me", False)]),
            ImportEntry(2, "", [("user", "x", False)]),
            ImportEntry(3, "github", [("user", "octo", False)]),
        ])
        assert report.imported == 2
        assert [f.line for f in report.failures] == [2]
        assert vault.names == ["gmail", "github"]

    def test_reimport_adds_no_history(self, vault):
        entry = ImportEntry(1, "bank", [("user", "alice", False), Field("pin", "1234", True)])
        vault.import_entries([entry])
        vault.import_entries([entry])
        assert vault.history("bank") == []


# --- Test Serialization ---

class TestSerialization:

    def test_round_trip_keeps_everything(self, vault):
        vault.set("gmail", [Field("pass", "new", sensitive=True)])
        vault.delete("bank")

        restored = Vault.from_dict(vault.to_dict())

        assert restored.names == vault.names
        assert restored.get("gmail", reveal=True) == vault.get("gmail", reveal=True)
        assert restored.history("gmail", reveal=True) == vault.history("gmail", reveal=True)
        assert restored.history("bank", reveal=True) == vault.history("bank", reveal=True)

    def test_duplicate_names_rejected(self, vault):
        data = vault.to_dict()
        data["records"].append(data["records"][0])
        with pytest.raises(ValueError):
            Vault.from_dict(data)
