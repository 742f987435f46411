"""
Record Storage Client

HTTP collaborator for the hosted record store.

This module handles:
1. Collection reads over the REST table API (limit + ordering)
2. Batched id lookups for linked-entity resolution
3. Partial updates and deletes through the admin function endpoints

Reads raise StorageError on failure. Writes never raise: they come back as a
WriteResult carrying the server's error message.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from catalog_inspector.config.settings import StorageConfig, get_config
from catalog_inspector.core.error_taxonomy import ConfigurationError, StorageError
from catalog_inspector.core.record_editor import WriteResult
from catalog_inspector.core.schema_registry import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)

WAITLIST_KIND = "waitlist"


class RecordStorageClient:
    """
    Record storage API client.

    Catalog tables are read through the REST endpoint; the waitlist and all
    writes go through the admin function, which enforces admin access.
    """

    def __init__(self, config: Optional[StorageConfig] = None, registry: Optional[SchemaRegistry] = None):
        self.config = config or get_config().storage
        self.registry = registry or get_schema_registry()
        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create authenticated session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(self._get_auth_headers())
        return self._session

    def _get_auth_headers(self) -> Dict[str, str]:
        token = self.config.access_token or self.config.api_key
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _table(self, entity_kind: str) -> str:
        table = self.registry.table_for(entity_kind)
        if table is None:
            raise StorageError(f"Unknown entity kind '{entity_kind}'", status_code=400,
                               context={"entity_kind": entity_kind})
        return table

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("error", "message"):
                if body.get(key):
                    return str(body[key])
        return f"HTTP {response.status_code}"

    def _get(self, url: str, params: Dict[str, Any]) -> Any:
        try:
            response = self._get_session().get(url, params=params, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            logger.error(f"Storage request failed: {e}")
            raise StorageError(f"Storage request failed: {e}") from e
        if not response.ok:
            message = self._error_message(response)
            logger.error(f"Storage read {url} returned {response.status_code}: {message}")
            raise StorageError(message, status_code=response.status_code, context={"url": url})
        return response.json()

    def _post(self, path: str, payload: Dict[str, Any], entity_kind: Optional[str] = None) -> Dict[str, Any]:
        """POST to an admin function endpoint; raises StorageError on failure."""
        url = f"{self.config.functions_url}/{path}"
        try:
            response = self._get_session().post(url, json=payload, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            logger.error(f"Storage request failed: {e}")
            raise StorageError(f"Storage request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not response.ok or (isinstance(body, dict) and body.get("success") is False):
            message = self._error_message(response) if not response.ok else str(body.get("error") or "Rejected")
            raise StorageError(message, status_code=response.status_code,
                               context={"path": path, "entity_kind": entity_kind})
        return body if isinstance(body, dict) else {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_collection(self, entity_kind: str) -> List[Dict[str, Any]]:
        """Fetch a whole collection (up to the configured limit)."""
        if entity_kind == WAITLIST_KIND:
            body = self._get(f"{self.config.functions_url}/admin/waitlist", params={})
            records = body.get("users", []) if isinstance(body, dict) else body
        else:
            order = "category.asc,name_common.asc" if entity_kind == "elements" else "created_at.desc"
            records = self._get(
                f"{self.config.rest_url}/{self._table(entity_kind)}",
                params={"select": "*", "order": order, "limit": self.config.fetch_limit},
            )
        records = records or []
        logger.info(f"Fetched {len(records)} {entity_kind} record(s)")
        return records

    def fetch_by_ids(self, entity_kind: str, ids: List[str], columns: List[str]) -> List[Dict[str, Any]]:
        """Batched lookup of specific ids, returning only the requested columns."""
        if not ids:
            return []
        id_list = ",".join(str(i) for i in ids)
        rows = self._get(
            f"{self.config.rest_url}/{self._table(entity_kind)}",
            params={"select": ",".join(columns), "id": f"in.({id_list})"},
        )
        logger.debug(f"Resolved {len(rows or [])}/{len(ids)} {entity_kind} id(s)")
        return rows or []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_record(self, entity_kind: str, record_id: str, partial: Dict[str, Any]) -> WriteResult:
        """Send a partial update; only the given fields are written."""
        fields = list(partial.keys())
        try:
            if entity_kind == WAITLIST_KIND:
                self._post("admin/waitlist/update", {"email": record_id, "updates": partial}, entity_kind)
            else:
                self._post("admin/catalog/update", {
                    "table": self._table(entity_kind),
                    "id": record_id,
                    "updates": partial,
                }, entity_kind)
        except StorageError as e:
            logger.error(f"Update of {entity_kind} '{record_id}' failed: {e}")
            return WriteResult(False, entity_kind, record_id, fields, error=str(e), classified=e.classify())

        logger.info(f"Updated {entity_kind} '{record_id}': {', '.join(fields)}")
        return WriteResult(True, entity_kind, record_id, fields)

    def delete_record(self, entity_kind: str, record_id: str) -> WriteResult:
        try:
            if entity_kind == WAITLIST_KIND:
                self._post("admin/waitlist/delete", {"email": record_id}, entity_kind)
            else:
                self._post("admin/catalog/delete", {"table": self._table(entity_kind), "id": record_id}, entity_kind)
        except StorageError as e:
            logger.error(f"Delete of {entity_kind} '{record_id}' failed: {e}")
            return WriteResult(False, entity_kind, record_id, error=str(e), action="delete",
                               classified=e.classify())

        logger.info(f"Deleted {entity_kind} '{record_id}'")
        return WriteResult(True, entity_kind, record_id, action="delete")


# Factory function
def get_storage_client(
    config: Optional[StorageConfig] = None,
    registry: Optional[SchemaRegistry] = None,
) -> RecordStorageClient:
    """Factory function to get a configured storage client."""
    config = config or get_config().storage
    if not config.is_configured:
        raise ConfigurationError(
            "Record storage is not configured",
            context={"base_url": config.base_url or None},
        )
    return RecordStorageClient(config, registry)
