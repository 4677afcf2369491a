"""SQLite document storage.

Each collection is a table of ``(id, type, doc)`` where ``doc`` is the JSON
document and ``type`` holds the discriminator for shared collections.
Field filters use the JSON1 functions so that a condition matches either an
equal scalar or an array containing the value. Unique fields are enforced
with expression indexes on ``json_extract``, scoped by ``type``.
"""

import json
import re
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any

from typeforge.core.types import new_entity_id
from typeforge.persistence.storage import CollectionInfo, DuplicateKeyError

_INDEX_NAME_RE = re.compile(r"index '([^']+)'")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_path(field_key: str) -> str:
    return '$."' + field_key.replace('"', '""') + '"'


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _bind(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class SQLiteStorage:
    """SQLite storage adapter keeping entities as JSON documents."""

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None
        self._tables: set[str] = set()
        # index name -> field key, for mapping IntegrityError back to a field
        self._index_fields: dict[str, str] = {}

    def connect(self) -> None:
        """Establish database connection."""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    async def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            self._tables.clear()

    def _connection(self) -> sqlite3.Connection:
        if not self.conn:
            raise RuntimeError("Database not connected")
        return self.conn

    def _ensure_table(self, collection: str) -> None:
        if collection in self._tables:
            return
        conn = self._connection()
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {_quote(collection)} "
            "(id TEXT PRIMARY KEY, type TEXT, doc TEXT NOT NULL)"
        )
        conn.commit()
        self._tables.add(collection)

    async def ensure_collection(self, info: CollectionInfo, unique_fields: list[str]) -> None:
        """Create the backing table and per-type unique indexes."""
        self._ensure_table(info.collection)
        conn = self._connection()
        scope = info.discriminator[1] if info.discriminator else None
        for field_key in unique_fields:
            index_name = f"uniq__{info.collection}__{scope or 'all'}__{field_key}"
            where = f" WHERE type = {_literal(scope)}" if scope else ""
            conn.execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS {_quote(index_name)} "
                f"ON {_quote(info.collection)} "
                f"(json_extract(doc, {_literal(_json_path(field_key))})){where}"
            )
            self._index_fields[index_name] = field_key
        conn.commit()

    async def find_existing(self, info: CollectionInfo, ids: list[str]) -> list[str]:
        if not ids:
            return []
        rows = self._select(info, {"id": {"$in": list(ids)}}, columns="id")
        return [row["id"] for row in rows]

    async def find(
        self,
        info: CollectionInfo,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = self._select(info, filter or {}, sort=sort, skip=skip, limit=limit)
        return [self._to_public(row) for row in rows]

    async def count(self, info: CollectionInfo, filter: dict[str, Any] | None = None) -> int:
        rows = self._select(info, filter or {}, columns="COUNT(*) AS n")
        return rows[0]["n"] if rows else 0

    async def insert(self, info: CollectionInfo, doc: dict[str, Any]) -> str:
        self._ensure_table(info.collection)
        body = {k: v for k, v in doc.items() if k != "id"}
        doc_id = new_entity_id()
        type_value = info.discriminator[1] if info.discriminator else None
        self._write(
            info,
            f"INSERT INTO {_quote(info.collection)} (id, type, doc) VALUES (?, ?, ?)",
            [doc_id, type_value, json.dumps(body, default=_json_default)],
        )
        return doc_id

    async def update_fields(
        self,
        info: CollectionInfo,
        id: str,
        patch: dict[str, Any],
        unset: tuple[str, ...] = (),
    ) -> bool:
        current = self._load(info, id)
        if current is None:
            return False
        current.update({k: v for k, v in patch.items() if k != "id"})
        for field_key in unset:
            current.pop(field_key, None)
        self._store(info, id, current)
        return True

    async def pull_from_array(
        self, info: CollectionInfo, id: str, field: str, value: Any
    ) -> bool:
        current = self._load(info, id)
        if current is None or not isinstance(current.get(field), list):
            return False
        current[field] = [v for v in current[field] if v != _bind(value)]
        self._store(info, id, current)
        return True

    async def delete(self, info: CollectionInfo, id: str) -> bool:
        self._ensure_table(info.collection)
        where, values = self._where(info, {"id": id})
        cursor = self._write(info, f"DELETE FROM {_quote(info.collection)}{where}", values)
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _select(
        self,
        info: CollectionInfo,
        filter: dict[str, Any],
        columns: str = "id, doc",
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[sqlite3.Row]:
        self._ensure_table(info.collection)
        where, values = self._where(info, filter)

        order_clause = ""
        if sort:
            parts = []
            for field_key, direction in sort:
                dir_sql = "DESC" if direction < 0 else "ASC"
                if field_key == "id":
                    parts.append(f"id {dir_sql}")
                else:
                    parts.append(f"json_extract(doc, ?) {dir_sql}")
                    values.append(_json_path(field_key))
            order_clause = f" ORDER BY {', '.join(parts)}"

        page_clause = ""
        if limit is not None or skip:
            page_clause = " LIMIT ? OFFSET ?"
            values.extend([limit if limit is not None else -1, skip])

        sql = f"SELECT {columns} FROM {_quote(info.collection)}{where}{order_clause}{page_clause}"
        return self._connection().execute(sql, values).fetchall()

    def _where(self, info: CollectionInfo, filter: dict[str, Any]) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        values: list[Any] = []
        if info.discriminator:
            conditions.append("type = ?")
            values.append(info.discriminator[1])
        for field_key, cond in filter.items():
            sql_cond, vals = self._build_condition(field_key, cond)
            conditions.append(sql_cond)
            values.extend(vals)
        if not conditions:
            return "", values
        return f" WHERE {' AND '.join(conditions)}", values

    def _build_condition(self, field_key: str, cond: Any) -> tuple[str, list[Any]]:
        """Build SQL condition from filter condition."""
        if isinstance(cond, dict) and "$in" in cond:
            options = [_bind(v) for v in cond["$in"]]
            if not options:
                return "0", []
            placeholders = ", ".join("?" for _ in options)
            if field_key == "id":
                return f"id IN ({placeholders})", options
            return (
                f"EXISTS (SELECT 1 FROM json_each(doc, ?) WHERE json_each.value IN ({placeholders}))",
                [_json_path(field_key), *options],
            )
        if isinstance(cond, dict) and "$ne" in cond:
            if field_key == "id":
                return "id != ?", [cond["$ne"]]
            return (
                "NOT EXISTS (SELECT 1 FROM json_each(doc, ?) WHERE json_each.value = ?)",
                [_json_path(field_key), _bind(cond["$ne"])],
            )
        if field_key == "id":
            return "id = ?", [cond]
        return (
            "EXISTS (SELECT 1 FROM json_each(doc, ?) WHERE json_each.value = ?)",
            [_json_path(field_key), _bind(cond)],
        )

    def _load(self, info: CollectionInfo, id: str) -> dict[str, Any] | None:
        rows = self._select(info, {"id": id}, columns="doc")
        if not rows:
            return None
        return json.loads(rows[0]["doc"])

    def _store(self, info: CollectionInfo, id: str, body: dict[str, Any]) -> None:
        where, values = self._where(info, {"id": id})
        self._write(
            info,
            f"UPDATE {_quote(info.collection)} SET doc = ?{where}",
            [json.dumps(body, default=_json_default), *values],
        )

    def _write(self, info: CollectionInfo, sql: str, values: list[Any]) -> sqlite3.Cursor:
        conn = self._connection()
        try:
            cursor = conn.execute(sql, values)
        except sqlite3.IntegrityError as e:
            conn.rollback()
            match = _INDEX_NAME_RE.search(str(e))
            field_key = self._index_fields.get(match.group(1)) if match else None
            if field_key is None:
                raise
            raise DuplicateKeyError(info.collection, field_key) from e
        conn.commit()
        return cursor

    def _to_public(self, row: sqlite3.Row) -> dict[str, Any]:
        return {"id": row["id"], **json.loads(row["doc"])}
