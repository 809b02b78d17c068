"""Record store and object storage used by the Storage and Input stages.

Two backends each: an in-memory one for local runs and tests, and one speaking
the Supabase REST surface (PostgREST for rows, Storage API for files).
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A record-store or object-storage call failed."""


class RecordStore(Protocol):
    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def get(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete(self, table: str, record_id: str) -> None:
        ...


class ObjectStorage(Protocol):
    async def upload(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        ...

    async def remove(self, bucket: str, path: str) -> None:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------- in-memory ----------------
class MemoryRecordStore:
    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(record)
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("created_at", _now_iso())
        row["updated_at"] = row["created_at"]
        rows = self._tables.setdefault(table, {})
        if row["id"] in rows:
            raise StoreError(f"duplicate key value violates unique constraint on {table}.id")
        rows[row["id"]] = row
        return copy.deepcopy(row)

    async def get(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        rows = self._tables.get(table, {}).values()
        out = [r for r in rows if all(r.get(k) == v for k, v in filters.items())]
        return copy.deepcopy(sorted(out, key=lambda r: r.get("created_at") or "", reverse=True))

    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._tables.get(table, {})
        if record_id not in rows:
            raise StoreError(f"Record {record_id} not found in {table}")
        row = rows[record_id]
        row.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))
        row["updated_at"] = _now_iso()
        return copy.deepcopy(row)

    async def delete(self, table: str, record_id: str) -> None:
        rows = self._tables.get(table, {})
        if rows.pop(record_id, None) is None:
            raise StoreError(f"Record {record_id} not found in {table}")


class MemoryObjectStorage:
    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        if (bucket, path) in self.objects:
            raise StoreError("The resource already exists")
        self.objects[(bucket, path)] = bytes(content)
        return f"memory://{bucket}/{path}"

    async def remove(self, bucket: str, path: str) -> None:
        self.objects.pop((bucket, path), None)


# ---------------- Supabase REST ----------------
def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("msg")
        if message:
            return str(message)
    return f"Request failed with status {response.status_code}"


class _SupabaseBase:
    def __init__(self, url: str, key: str, *, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url or not key:
            raise ValueError("Supabase URL and key are required")
        self._url = url.rstrip("/")
        self._key = key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {"apikey": self._key, "Authorization": f"Bearer {self._key}"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise StoreError(_error_message(exc.response)) from exc
            except httpx.HTTPError as exc:
                raise StoreError(f"Storage request failed: {exc}") from exc
        return response


class SupabaseRecordStore(_SupabaseBase):
    def _table_url(self, table: str) -> str:
        return f"{self._url}/rest/v1/{table}"

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST", self._table_url(table), json=record, headers={"Prefer": "return=representation"}
        )
        rows = response.json()
        if not rows:
            raise StoreError(f"Insert into {table} returned no rows")
        return rows[0]

    async def get(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {"select": "*", "order": "created_at.desc"}
        for key, value in (filters or {}).items():
            params[key] = f"eq.{value}"
        response = await self._request("GET", self._table_url(table), params=params)
        return response.json()

    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "PATCH",
            self._table_url(table),
            params={"id": f"eq.{record_id}"},
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise StoreError(f"Record {record_id} not found in {table}")
        return rows[0]

    async def delete(self, table: str, record_id: str) -> None:
        await self._request("DELETE", self._table_url(table), params={"id": f"eq.{record_id}"})


class SupabaseObjectStorage(_SupabaseBase):
    async def upload(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        await self._request(
            "POST",
            f"{self._url}/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type, "cache-control": "3600", "x-upsert": "false"},
        )
        return f"{self._url}/storage/v1/object/public/{bucket}/{path}"

    async def remove(self, bucket: str, path: str) -> None:
        await self._request("DELETE", f"{self._url}/storage/v1/object/{bucket}", json={"prefixes": [path]})
