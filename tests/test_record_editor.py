"""
Unit tests for the Record Editor.

Tests cover:
- Drafts are isolated from the rendered record
- Saves send only changed fields plus the identifying key
- Failures leave the owning collection untouched and name the record/fields
- Bulk update / delete
"""
from unittest.mock import MagicMock

import pytest

from catalog_inspector.core.error_taxonomy import ErrorCategory, StorageError
from catalog_inspector.core.field_renderer import render_record
from catalog_inspector.core.record_editor import (
    EditDraft,
    RecordCollection,
    RecordEditor,
    WriteResult,
)
from catalog_inspector.core.schema_registry import SchemaRegistry


class FakeStorage:
    """In-memory stand-in for the storage collaborator."""

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.updates = []
        self.deletes = []

    def update_record(self, entity_kind, record_id, partial):
        self.updates.append((entity_kind, record_id, dict(partial)))
        if record_id in self.fail_ids:
            return WriteResult(False, entity_kind, record_id, list(partial), error="row locked")
        return WriteResult(True, entity_kind, record_id, list(partial))

    def delete_record(self, entity_kind, record_id):
        self.deletes.append((entity_kind, record_id))
        if record_id in self.fail_ids:
            return WriteResult(False, entity_kind, record_id, error="row locked", action="delete")
        return WriteResult(True, entity_kind, record_id, action="delete")


@pytest.fixture
def registry():
    return SchemaRegistry.from_yaml()


@pytest.fixture
def recipes():
    return [
        {"id": "r1", "name_common": "Soup", "difficulty": "hard", "servings": 4,
         "ingredients": ["leek", "potato"], "source": "import"},
        {"id": "r2", "name_common": "Salad", "difficulty": "easy", "servings": 2},
    ]


@pytest.fixture
def collection(recipes):
    return RecordCollection("recipes", recipes)


class TestDraft:
    """Tests for EditDraft."""

    def test_draft_is_deep_copy(self, registry, collection):
        editor = RecordEditor(registry, FakeStorage())
        original = collection.get("r1")
        draft = editor.begin_edit("recipes", original)

        draft.get("ingredients").append("cream")
        assert original["ingredients"] == ["leek", "potato"]

    def test_changed_fields(self):
        draft = EditDraft("recipes", "r1", {"a": 1, "b": [1]})
        draft.set("b", [1])
        assert draft.changed_fields() == {}
        draft.set("a", 2)
        draft.set("c", "new")
        assert draft.changed_fields() == {"a": 2, "c": "new"}
        draft.discard()
        assert not draft.is_dirty

    def test_immutable_fields_not_editable(self, registry, collection):
        editor = RecordEditor(registry, FakeStorage())
        draft = editor.begin_edit("recipes", collection.get("r1"))
        with pytest.raises(ValueError, match="not editable"):
            draft.set("source", "manual")

    def test_waitlist_draft_keyed_by_email(self, registry):
        editor = RecordEditor(registry, FakeStorage())
        draft = editor.begin_edit("waitlist", {"email": "a@x.io", "name": "Ann"})
        assert draft.record_id == "a@x.io"
        with pytest.raises(ValueError):
            draft.set("email", "b@x.io")


class TestSave:
    """Tests for RecordEditor.save."""

    def test_round_trip_sends_only_changed_field(self, registry, collection):
        """Fetch, render, edit one field, save: the payload holds just that field."""
        storage = FakeStorage()
        editor = RecordEditor(registry, storage)
        record = collection.get("r1")
        render_record(registry, "recipes", record)

        draft = editor.begin_edit("recipes", record)
        draft.set("difficulty", "medium")
        result = editor.save(draft, collection)

        assert result.success
        assert storage.updates == [("recipes", "r1", {"difficulty": "medium"})]
        assert result.notification == "Saved difficulty on recipes 'r1'"

    def test_success_merges_copy(self, registry, collection):
        editor = RecordEditor(registry, FakeStorage())
        before = collection.get("r1")
        draft = editor.begin_edit("recipes", before)
        draft.set("servings", 6)
        editor.save(draft, collection)

        assert collection.get("r1")["servings"] == 6
        assert collection.get("r1") is not before
        assert before["servings"] == 4
        assert not draft.is_dirty

    def test_no_changes_is_noop(self, registry, collection):
        storage = FakeStorage()
        editor = RecordEditor(registry, storage)
        result = editor.save(editor.begin_edit("recipes", collection.get("r1")), collection)
        assert result.success
        assert storage.updates == []

    def test_rejected_write_leaves_collection(self, registry, collection):
        storage = FakeStorage(fail_ids={"r1"})
        editor = RecordEditor(registry, storage)
        draft = editor.begin_edit("recipes", collection.get("r1"))
        draft.set("difficulty", "easy")
        draft.set("servings", 1)

        result = editor.save(draft, collection)

        assert not result.success
        assert collection.get("r1")["difficulty"] == "hard"
        assert draft.is_dirty
        assert result.notification == "Failed to save difficulty, servings on recipes 'r1': row locked"

    def test_raising_storage_is_classified(self, registry, collection):
        storage = MagicMock()
        storage.update_record.side_effect = StorageError("boom", status_code=503)
        editor = RecordEditor(registry, storage)
        draft = editor.begin_edit("recipes", collection.get("r2"))
        draft.set("servings", 3)

        result = editor.save(draft, collection)

        assert not result.success
        assert result.classified.category == ErrorCategory.STORAGE_UNAVAILABLE
        assert result.error == "Record storage is temporarily unavailable."
        assert result.fields == ["servings"]
        assert collection.get("r2")["servings"] == 2

    def test_missing_id(self, registry):
        storage = FakeStorage()
        editor = RecordEditor(registry, storage)
        draft = editor.begin_edit("recipes", {"name_common": "Orphan"})
        draft.set("servings", 1)
        result = editor.save(draft)
        assert not result.success
        assert storage.updates == []


class TestDeleteAndBulk:
    """Tests for delete, bulk_update and bulk_delete."""

    def test_delete_removes_on_success(self, registry, collection):
        editor = RecordEditor(registry, FakeStorage())
        result = editor.delete("recipes", "r2", collection)
        assert result.notification == "Deleted recipes 'r2'"
        assert collection.get("r2") is None
        assert len(collection) == 1

    def test_failed_delete_keeps_record(self, registry, collection):
        editor = RecordEditor(registry, FakeStorage(fail_ids={"r2"}))
        result = editor.delete("recipes", "r2", collection)
        assert not result.success
        assert collection.get("r2") is not None

    def test_bulk_update(self, registry, collection, caplog):
        storage = FakeStorage(fail_ids={"r2"})
        editor = RecordEditor(registry, storage)
        results = editor.bulk_update("recipes", collection.records, "difficulty", "medium", collection)

        assert [r.success for r in results] == [True, False]
        assert [u[2] for u in storage.updates] == [{"difficulty": "medium"}, {"difficulty": "medium"}]
        assert collection.get("r1")["difficulty"] == "medium"
        assert collection.get("r2")["difficulty"] == "easy"
        assert "1/2 failed" in caplog.text

    def test_bulk_delete(self, registry, collection):
        storage = FakeStorage()
        editor = RecordEditor(registry, storage)
        results = editor.bulk_delete("recipes", ["r1", "r2"], collection)
        assert all(r.success for r in results)
        assert len(collection) == 0

    def test_bulk_update_of_locked_field_fails_per_record(self, registry, collection):
        storage = FakeStorage()
        editor = RecordEditor(registry, storage)

        results = editor.bulk_update("recipes", collection.records, "id", "zzz", collection)

        assert [r.success for r in results] == [False, False]
        assert [r.record_id for r in results] == ["r1", "r2"]
        assert all(r.classified.category == ErrorCategory.WRITE_REJECTED for r in results)
        assert "not editable" in results[0].notification
        assert storage.updates == []
        assert collection.get("r1")["id"] == "r1"
