from __future__ import annotations

import json

import httpx
import pytest

from core.store import (
    MemoryObjectStorage,
    MemoryRecordStore,
    StoreError,
    SupabaseObjectStorage,
    SupabaseRecordStore,
)

SUPABASE_URL = "https://project.supabase.co"


@pytest.mark.asyncio
async def test_memory_insert_assigns_id_and_copies():
    store = MemoryRecordStore()
    record = {"title": "Q1", "data": {"rows": [1, 2]}, "user_id": "u1"}
    saved = await store.insert("business_reports", record)
    assert saved["id"]
    assert saved["created_at"] == saved["updated_at"]

    record["data"]["rows"].append(3)
    saved["data"]["rows"].append(4)
    rows = await store.get("business_reports")
    assert rows[0]["data"] == {"rows": [1, 2]}


@pytest.mark.asyncio
async def test_memory_get_filters_and_orders_newest_first():
    store = MemoryRecordStore()
    await store.insert("t", {"id": "a", "user_id": "u1", "created_at": "2025-01-01T00:00:00"})
    await store.insert("t", {"id": "b", "user_id": "u2", "created_at": "2025-01-02T00:00:00"})
    await store.insert("t", {"id": "c", "user_id": "u1", "created_at": "2025-01-03T00:00:00"})
    assert [r["id"] for r in await store.get("t", {"user_id": "u1"})] == ["c", "a"]
    assert await store.get("missing") == []


@pytest.mark.asyncio
async def test_memory_update_and_delete():
    store = MemoryRecordStore()
    saved = await store.insert("t", {"title": "old"})
    updated = await store.update("t", saved["id"], {"title": "new", "id": "ignored"})
    assert updated["title"] == "new"
    assert updated["id"] == saved["id"]

    await store.delete("t", saved["id"])
    assert await store.get("t") == []
    with pytest.raises(StoreError):
        await store.delete("t", saved["id"])
    with pytest.raises(StoreError):
        await store.update("t", "nope", {})


@pytest.mark.asyncio
async def test_memory_object_storage_rejects_duplicates():
    storage = MemoryObjectStorage()
    url = await storage.upload("uploads", "1_a.csv", b"x,y\n")
    assert url == "memory://uploads/1_a.csv"
    with pytest.raises(StoreError):
        await storage.upload("uploads", "1_a.csv", b"x,y\n")
    await storage.remove("uploads", "1_a.csv")
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_supabase_insert_posts_row_with_representation():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["prefer"] = request.headers.get("prefer")
        seen["auth"] = request.headers.get("authorization")
        body = json.loads(request.content)
        return httpx.Response(201, json=[{**body, "id": "row-1"}])

    store = SupabaseRecordStore(SUPABASE_URL, "anon-key", transport=httpx.MockTransport(handler))
    saved = await store.insert("business_reports", {"title": "Q1"})
    assert saved == {"title": "Q1", "id": "row-1"}
    assert seen == {
        "method": "POST",
        "url": f"{SUPABASE_URL}/rest/v1/business_reports",
        "prefer": "return=representation",
        "auth": "Bearer anon-key",
    }


@pytest.mark.asyncio
async def test_supabase_get_uses_eq_filters():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[{"id": "row-1"}])

    store = SupabaseRecordStore(SUPABASE_URL, "anon-key", transport=httpx.MockTransport(handler))
    rows = await store.get("business_reports", {"user_id": "u1"})
    assert rows == [{"id": "row-1"}]
    assert seen["params"] == {"select": "*", "order": "created_at.desc", "user_id": "eq.u1"}


@pytest.mark.asyncio
async def test_supabase_error_message_is_surfaced():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "new row violates row-level security policy"})

    store = SupabaseRecordStore(SUPABASE_URL, "anon-key", transport=httpx.MockTransport(handler))
    with pytest.raises(StoreError, match="row-level security"):
        await store.insert("business_reports", {"title": "Q1"})


@pytest.mark.asyncio
async def test_supabase_transport_failure_becomes_store_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = SupabaseRecordStore(SUPABASE_URL, "anon-key", transport=httpx.MockTransport(handler))
    with pytest.raises(StoreError, match="connection refused"):
        await store.get("business_reports")


@pytest.mark.asyncio
async def test_supabase_upload_returns_public_url():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["content_type"] = request.headers.get("content-type")
        seen["body"] = request.content
        return httpx.Response(200, json={"Key": "uploads/1_a.csv"})

    storage = SupabaseObjectStorage(SUPABASE_URL, "anon-key", transport=httpx.MockTransport(handler))
    url = await storage.upload("uploads", "1_a.csv", b"a,b\n", "text/csv")
    assert url == f"{SUPABASE_URL}/storage/v1/object/public/uploads/1_a.csv"
    assert seen == {
        "url": f"{SUPABASE_URL}/storage/v1/object/uploads/1_a.csv",
        "content_type": "text/csv",
        "body": b"a,b\n",
    }


def test_supabase_requires_credentials():
    with pytest.raises(ValueError):
        SupabaseRecordStore("", "key")
