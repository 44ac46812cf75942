"""SQLite persistence: one JSON document per (collection, id) row."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from hopbunny.ledger.errors import ConflictError, NotFoundError, StoreUnavailable
from hopbunny.storage.base import DocumentStore, check_field
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


def _like_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteStore(DocumentStore):
    def __init__(self, path: str):
        self.path = path
        self.conn: sqlite3.Connection | None = None

    def init(self) -> None:
        if self.conn:
            return
        try:
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                  collection TEXT NOT NULL,
                  id TEXT NOT NULL,
                  data TEXT NOT NULL,
                  PRIMARY KEY (collection, id)
                )
                """
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open {self.path}") from e
        logger.info("SQLite store ready at %s", self.path)

    async def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _db(self) -> sqlite3.Connection:
        if not self.conn:
            raise StoreUnavailable("store is not open")
        return self.conn

    @staticmethod
    def _out(doc_id: str, raw: str) -> dict[str, Any]:
        return {**json.loads(raw), "id": doc_id}

    def _read(self, collection: str, doc_id: str) -> str | None:
        row = self._db().execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return row[0] if row else None

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            raw = self._read(collection, doc_id)
        except sqlite3.Error as e:
            raise StoreUnavailable("Error reading document") from e
        return self._out(doc_id, raw) if raw is not None else None

    async def create_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps({k: v for k, v in data.items() if k != "id"})
        conn = self._db()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
                    (collection, doc_id, body),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Document already exists", {"collection": collection, "id": doc_id}) from e
        except sqlite3.Error as e:
            raise StoreUnavailable("Error creating document") from e
        return self._out(doc_id, body)

    async def update_document(self, collection: str, doc_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        conn = self._db()
        try:
            with conn:
                raw = self._read(collection, doc_id)
                if raw is None:
                    raise NotFoundError("Document not found", {"collection": collection, "id": doc_id})
                cur = json.loads(raw)
                cur.update({k: v for k, v in patch.items() if k != "id"})
                body = json.dumps(cur)
                conn.execute(
                    "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                    (body, collection, doc_id),
                )
        except sqlite3.Error as e:
            raise StoreUnavailable("Error updating document") from e
        return self._out(doc_id, body)

    async def list_documents(
        self,
        collection: str,
        *,
        where: dict[str, Any] | None = None,
        search: tuple[str, str] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for k, v in (where or {}).items():
            clauses.append("json_extract(data, ?) = ?")
            params.extend([f"$.{check_field(k)}", v])
        if search:
            fld, text = search
            clauses.append("json_extract(data, ?) LIKE ? ESCAPE '\\'")
            params.extend([f"$.{check_field(fld)}", f"%{_like_escape(text)}%"])
        where_sql = " AND ".join(clauses)

        sql = f"SELECT id, data FROM documents WHERE {where_sql}"
        page_params = list(params)
        if order_by:
            sql += f" ORDER BY json_extract(data, ?) {'DESC' if descending else 'ASC'}, id"
            page_params.append(f"$.{check_field(order_by)}")
        if limit is not None or offset:
            sql += " LIMIT ? OFFSET ?"
            page_params.extend([-1 if limit is None else int(limit), max(0, int(offset))])

        try:
            db = self._db()
            total = db.execute(f"SELECT COUNT(*) FROM documents WHERE {where_sql}", params).fetchone()[0]
            rows = db.execute(sql, page_params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable("Error listing documents") from e
        return [self._out(r[0], r[1]) for r in rows], int(total)
