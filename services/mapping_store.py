"""
Mapping store: Supabase table access shared by the mapping services.

Owns two storage concerns so the services don't:
- JSON columns (confidence factors, blocking issues, candidate lists)
  are serialized on write and parsed on read.
- upsert() with a preservation predicate, so "never clobber a human
  decision" and "never overwrite a synced validation" are enforced in
  one place.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
import structlog

from config import get_supabase_client
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)

JSON_COLUMNS = {
    "confidence_factors",
    "blocking_issues",
    "all_candidates",
    "matching_criteria_used",
}


class UpsertAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    PRESERVED = "preserved"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_human_decision(row: dict) -> bool:
    """Approved and rejected mappings belong to a reviewer."""
    return row.get("mapping_status") in ("approved", "rejected")


def is_synced(row: dict) -> bool:
    return row.get("validation_status") == "synced"


def _serialize(data: dict) -> dict:
    out = {}
    for key, value in data.items():
        if key in JSON_COLUMNS and value is not None and not isinstance(value, str):
            out[key] = json.dumps(value, default=str)
        elif isinstance(value, Enum):
            out[key] = value.value
        else:
            out[key] = value
    return out


def _deserialize(row: dict) -> dict:
    out = dict(row)
    for key in JSON_COLUMNS:
        value = out.get(key)
        if isinstance(value, str):
            try:
                out[key] = json.loads(value) if value else None
            except ValueError:
                logger.warning("json_column_unreadable", column=key)
                out[key] = None
    return out


class MappingStore:
    """CRUD over the mapping tables with JSON handling and guarded upsert."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()

    def _apply_filters(self, query, filters: Optional[dict], in_filters: Optional[dict]):
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        for column, values in (in_filters or {}).items():
            query = query.in_(column, list(values))
        return query

    def find(
        self,
        table: str,
        filters: Optional[dict] = None,
        in_filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        """
        Select rows matching equality and IN filters.

        Args:
            table: Table name
            filters: column -> value equality filters
            in_filters: column -> iterable of allowed values
            order_by: Sort column
            desc: Sort descending
            limit: Max rows (None = all)
            offset: Rows to skip (only with limit)
        """
        try:
            query = self._apply_filters(self.db.table(table).select("*"), filters, in_filters)
            if order_by:
                query = query.order(order_by, desc=desc)
            if limit is not None:
                query = query.range(offset, offset + limit - 1)
            result = query.execute()
            return [_deserialize(row) for row in result.data or []]

        except Exception as e:
            logger.error("store_select_failed", table=table, error=str(e))
            raise DatabaseError("select", str(e), {"table": table})

    def find_one(self, table: str, filters: dict) -> Optional[dict]:
        rows = self.find(table, filters=filters, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, data: dict) -> dict:
        now = utc_now()
        payload = _serialize({"created_date": now, "last_modified_date": now, **data})
        try:
            result = self.db.table(table).insert(payload).execute()
            return _deserialize(result.data[0]) if result.data else _deserialize(payload)

        except Exception as e:
            logger.error("store_insert_failed", table=table, error=str(e))
            raise DatabaseError("insert", str(e), {"table": table})

    def update(self, table: str, filters: dict, data: dict) -> list[dict]:
        payload = _serialize({**data, "last_modified_date": utc_now()})
        try:
            query = self._apply_filters(self.db.table(table).update(payload), filters, None)
            result = query.execute()
            return [_deserialize(row) for row in result.data or []]

        except Exception as e:
            logger.error("store_update_failed", table=table, error=str(e))
            raise DatabaseError("update", str(e), {"table": table})

    def delete(self, table: str, filters: Optional[dict] = None, in_filters: Optional[dict] = None) -> int:
        """Delete matching rows. Returns the number deleted."""
        try:
            query = self._apply_filters(self.db.table(table).delete(), filters, in_filters)
            result = query.execute()
            return len(result.data or [])

        except Exception as e:
            logger.error("store_delete_failed", table=table, error=str(e))
            raise DatabaseError("delete", str(e), {"table": table})

    def upsert(
        self,
        table: str,
        key: dict,
        data: dict,
        preserve_if: Optional[Callable[[dict], bool]] = None,
    ) -> tuple[Optional[dict], UpsertAction]:
        """
        Insert or update the row identified by key.

        Args:
            table: Table name
            key: Equality filters identifying at most one row
            data: Column values to write (key columns are added on insert)
            preserve_if: When it returns True for the existing row, the
                write is skipped and the row returned unchanged

        Returns:
            (row, action)
        """
        existing = self.find_one(table, key)

        if existing is None:
            return self.insert(table, {**key, **data}), UpsertAction.INSERTED

        if preserve_if is not None and preserve_if(existing):
            logger.debug("store_upsert_preserved", table=table, key=key)
            return existing, UpsertAction.PRESERVED

        rows = self.update(table, key, data)
        return (rows[0] if rows else {**existing, **data}), UpsertAction.UPDATED


_store: Optional[MappingStore] = None


def get_mapping_store() -> MappingStore:
    """Get or create mapping store instance."""
    global _store
    if _store is None:
        _store = MappingStore()
    return _store
