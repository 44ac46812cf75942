"""In-memory document store."""

from __future__ import annotations

import copy
from typing import Any

from hopbunny.ledger.errors import ConflictError, NotFoundError
from hopbunny.storage.base import DocumentStore, check_field, sort_key


class MemoryStore(DocumentStore):
    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _coll(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _out(doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return {**copy.deepcopy(data), "id": doc_id}

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        data = self._coll(collection).get(doc_id)
        if data is None:
            return None
        return self._out(doc_id, data)

    async def create_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        coll = self._coll(collection)
        if doc_id in coll:
            raise ConflictError("Document already exists", {"collection": collection, "id": doc_id})
        stored = {k: v for k, v in copy.deepcopy(data).items() if k != "id"}
        coll[doc_id] = stored
        return self._out(doc_id, stored)

    async def update_document(self, collection: str, doc_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        coll = self._coll(collection)
        cur = coll.get(doc_id)
        if cur is None:
            raise NotFoundError("Document not found", {"collection": collection, "id": doc_id})
        cur.update({k: v for k, v in copy.deepcopy(patch).items() if k != "id"})
        return self._out(doc_id, cur)

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
        rows = [self._out(doc_id, data) for doc_id, data in self._coll(collection).items()]
        for k, v in (where or {}).items():
            check_field(k)
            rows = [r for r in rows if r.get(k) == v]
        if search:
            fld, text = search
            check_field(fld)
            needle = text.lower()
            rows = [r for r in rows if needle in str(r.get(fld) or "").lower()]
        if order_by:
            check_field(order_by)
            rows.sort(key=lambda r: sort_key(r.get(order_by)), reverse=descending)
        total = len(rows)
        start = max(0, int(offset))
        end = None if limit is None else start + max(0, int(limit))
        return rows[start:end], total
