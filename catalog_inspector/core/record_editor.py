"""
Record Editor

Edits never touch the rendered record. begin_edit() hands out a deep-copied
EditDraft; save() sends only the fields that differ from the original (the
record id travels separately as the identifying key), and merges them into
the owning RecordCollection only after the storage collaborator accepts the
write. A failed write leaves both the collection and the draft untouched and
comes back as a WriteResult naming the record and fields involved.

Usage:
    editor = RecordEditor(registry, storage_client)
    draft = editor.begin_edit("recipes", record)
    draft.set("difficulty", "easy")
    result = editor.save(draft, collection)
    if not result.success:
        print(result.notification)
"""
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from catalog_inspector.core.error_taxonomy import ClassifiedError, ErrorCategory, InspectorError, classify_error
from catalog_inspector.core.schema_registry import SchemaRegistry, ValueKind, View

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of one update or delete against the storage collaborator."""
    success: bool
    entity_kind: str
    record_id: Optional[str]
    fields: List[str] = field(default_factory=list)
    error: Optional[str] = None
    action: str = "update"
    classified: Optional[ClassifiedError] = None

    @property
    def notification(self) -> str:
        target = f"{self.entity_kind} '{self.record_id}'"
        if self.action == "delete":
            if self.success:
                return f"Deleted {target}"
            return f"Failed to delete {target}: {self.error}"
        field_list = ", ".join(self.fields) if self.fields else "no fields"
        if self.success:
            return f"Saved {field_list} on {target}"
        return f"Failed to save {field_list} on {target}: {self.error}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "entity_kind": self.entity_kind,
            "record_id": self.record_id,
            "fields": list(self.fields),
            "error": self.error,
            "action": self.action,
            "notification": self.notification,
        }


class RecordStorage(Protocol):
    """The write half of the record storage collaborator."""

    def update_record(self, entity_kind: str, record_id: str, partial: Dict[str, Any]) -> WriteResult:
        ...

    def delete_record(self, entity_kind: str, record_id: str) -> WriteResult:
        ...


class RecordCollection:
    """
    The owning record set for one entity kind.

    Accepted edits replace the stored record with a merged copy; the old
    dict object is never modified.
    """

    def __init__(self, entity_kind: str, records: Iterable[Dict[str, Any]] = (), id_field: str = "id"):
        self.entity_kind = entity_kind
        self.id_field = id_field
        self.records: List[Dict[str, Any]] = list(records)

    def __len__(self) -> int:
        return len(self.records)

    def _index_of(self, record_id: str) -> Optional[int]:
        for i, record in enumerate(self.records):
            if str(record.get(self.id_field)) == str(record_id):
                return i
        return None

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        index = self._index_of(record_id)
        return self.records[index] if index is not None else None

    def merge(self, record_id: str, fields: Dict[str, Any]) -> bool:
        index = self._index_of(record_id)
        if index is None:
            logger.warning(f"Cannot merge into {self.entity_kind} '{record_id}': not in collection")
            return False
        self.records[index] = {**self.records[index], **copy.deepcopy(fields)}
        return True

    def remove(self, record_id: str) -> bool:
        index = self._index_of(record_id)
        if index is None:
            return False
        del self.records[index]
        return True


class EditDraft:
    """A private, deep-copied working version of one record."""

    def __init__(
        self,
        entity_kind: str,
        record_id: Optional[str],
        record: Dict[str, Any],
        editable_keys: Optional[Iterable[str]] = None,
    ):
        self.entity_kind = entity_kind
        self.record_id = record_id
        self.original = copy.deepcopy(record)
        self.values = copy.deepcopy(record)
        self.editable_keys = set(editable_keys) if editable_keys else None

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any):
        if self.editable_keys is not None and key not in self.editable_keys:
            raise ValueError(f"Field '{key}' is not editable on {self.entity_kind}")
        self.values[key] = value

    def changed_fields(self) -> Dict[str, Any]:
        """Fields whose draft value differs from the original."""
        return {
            key: value for key, value in self.values.items()
            if key not in self.original or self.original[key] != value
        }

    @property
    def is_dirty(self) -> bool:
        return bool(self.changed_fields())

    def discard(self):
        self.values = copy.deepcopy(self.original)


class RecordEditor:
    """Drafts, partial saves and bulk operations over the storage collaborator."""

    def __init__(self, registry: SchemaRegistry, storage: RecordStorage):
        self.registry = registry
        self.storage = storage

    def begin_edit(self, entity_kind: str, record: Dict[str, Any]) -> EditDraft:
        editable = [
            spec.key for spec in self.registry.get_fields_for_view(entity_kind, View.EDIT)
            if spec.value_kind != ValueKind.IMMUTABLE_TEXT
        ]
        return EditDraft(
            entity_kind=entity_kind,
            record_id=self.registry.get_record_id(entity_kind, record),
            record=record,
            editable_keys=editable or None,
        )

    def _failure(self, exc: Exception, entity_kind: str, record_id: Optional[str],
                 fields: List[str], action: str) -> WriteResult:
        classified = classify_error(
            exc,
            operation=f"{action}_record",
            context={"entity_kind": entity_kind, "record_id": record_id, "fields": fields},
        )
        logger.error(f"{action.capitalize()} of {entity_kind} '{record_id}' failed: {exc}")
        return WriteResult(
            success=False,
            entity_kind=entity_kind,
            record_id=record_id,
            fields=fields,
            error=classified.user_message,
            action=action,
            classified=classified,
        )

    def _rejected(self, exc: ValueError, entity_kind: str, record_id: Optional[str], field_key: str) -> WriteResult:
        classified = InspectorError(
            str(exc),
            category=ErrorCategory.WRITE_REJECTED,
            context={"entity_kind": entity_kind, "record_id": record_id, "fields": [field_key]},
        ).classify()
        return WriteResult(
            success=False,
            entity_kind=entity_kind,
            record_id=record_id,
            fields=[field_key],
            error=str(exc),
            classified=classified,
        )

    def save(self, draft: EditDraft, collection: Optional[RecordCollection] = None) -> WriteResult:
        """
        Send the draft's changed fields and merge them on success.

        No changes means a successful no-op with no collaborator call.
        """
        changes = draft.changed_fields()
        fields = list(changes.keys())
        if not changes:
            return WriteResult(success=True, entity_kind=draft.entity_kind, record_id=draft.record_id)

        if not draft.record_id:
            return WriteResult(
                success=False,
                entity_kind=draft.entity_kind,
                record_id=None,
                fields=fields,
                error="Record has no identifying key",
            )

        try:
            result = self.storage.update_record(draft.entity_kind, draft.record_id, changes)
        except Exception as e:
            return self._failure(e, draft.entity_kind, draft.record_id, fields, "update")

        result.fields = fields
        if not result.success:
            logger.error(f"Storage rejected update of {draft.entity_kind} '{draft.record_id}': {result.error}")
            return result

        if collection is not None:
            collection.merge(draft.record_id, changes)
        draft.original = copy.deepcopy(draft.values)
        logger.info(f"Saved {', '.join(fields)} on {draft.entity_kind} '{draft.record_id}'")
        return result

    def delete(self, entity_kind: str, record_id: str,
               collection: Optional[RecordCollection] = None) -> WriteResult:
        try:
            result = self.storage.delete_record(entity_kind, record_id)
        except Exception as e:
            return self._failure(e, entity_kind, record_id, [], "delete")

        if result.success:
            if collection is not None:
                collection.remove(record_id)
            logger.info(f"Deleted {entity_kind} '{record_id}'")
        else:
            logger.error(f"Storage rejected delete of {entity_kind} '{record_id}': {result.error}")
        return result

    def bulk_update(
        self,
        entity_kind: str,
        records: Iterable[Dict[str, Any]],
        field_key: str,
        value: Any,
        collection: Optional[RecordCollection] = None,
    ) -> List[WriteResult]:
        """
        Set one field to one value on several records, one write each.

        A field the edit view does not expose fails every record without
        calling storage.
        """
        results = []
        for record in records:
            draft = self.begin_edit(entity_kind, record)
            try:
                draft.set(field_key, value)
            except ValueError as e:
                results.append(self._rejected(e, entity_kind, draft.record_id, field_key))
                continue
            results.append(self.save(draft, collection))
        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning(f"Bulk update of '{field_key}' on {entity_kind}: {failed}/{len(results)} failed")
        return results

    def bulk_delete(
        self,
        entity_kind: str,
        record_ids: Iterable[str],
        collection: Optional[RecordCollection] = None,
    ) -> List[WriteResult]:
        results = [self.delete(entity_kind, record_id, collection) for record_id in record_ids]
        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning(f"Bulk delete on {entity_kind}: {failed}/{len(results)} failed")
        return results
