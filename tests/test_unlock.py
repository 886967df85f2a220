"""Tests for lazy table unlocking and the document repository."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from loomgraph.errors import StorePermissionError, StoreUnavailableError
from loomgraph.graph.documents import DocumentRepository
from loomgraph.graph.store import MemoryGraphStore
from loomgraph.graph.unlock import SchemaUnlocker


class TestSchemaUnlocker:
    async def test_opens_table(self, store: MemoryGraphStore, unlocker: SchemaUnlocker):
        assert await unlocker.ensure_writable("WORKS_AT") is True
        assert store.is_open("WORKS_AT")
        assert "WORKS_AT" in unlocker.unlocked_tables

    async def test_unlocks_implicitly_created_table(
        self, store: MemoryGraphStore, unlocker: SchemaUnlocker,
    ):
        await store.relate("WORKS_AT", "entity:a", "entity:b", {})
        await unlocker.ensure_writable("WORKS_AT")
        assert len(await store.select("WORKS_AT")) == 1

    async def test_cached_after_first_success(self):
        catalog = AsyncMock()
        unlocker = SchemaUnlocker(catalog)
        await unlocker.ensure_writable("entity")
        await unlocker.ensure_writable("entity")
        catalog.define_open_table.assert_awaited_once_with("entity")

    async def test_failure_is_tolerated_and_retried_later(self):
        catalog = AsyncMock()
        catalog.define_open_table.side_effect = [StorePermissionError("X", "define"), None]
        unlocker = SchemaUnlocker(catalog)

        assert await unlocker.ensure_writable("X") is False
        assert "X" not in unlocker.unlocked_tables
        assert await unlocker.ensure_writable("X") is True

    async def test_fatal_failure_propagates(self):
        catalog = AsyncMock()
        catalog.define_open_table.side_effect = StoreUnavailableError("down")
        with pytest.raises(StoreUnavailableError):
            await SchemaUnlocker(catalog).ensure_writable("X")

    async def test_ensure_all_reports_failures(self):
        catalog = AsyncMock()

        async def _define(name):
            if name == "bad":
                raise StorePermissionError(name, "define")

        catalog.define_open_table.side_effect = _define
        failed = await SchemaUnlocker(catalog).ensure_all(["entity", "bad", "document"])
        assert failed == ["bad"]

    async def test_forget(self, unlocker: SchemaUnlocker):
        await unlocker.ensure_all(["a", "b"])
        unlocker.forget("a")
        assert unlocker.unlocked_tables == frozenset({"b"})
        unlocker.forget()
        assert unlocker.unlocked_tables == frozenset()


class TestDocumentRepository:
    async def test_create_starts_with_zero_counts(self, documents: DocumentRepository):
        doc = await documents.create("events.csv", "id,action\n1,Login")
        assert doc.id.startswith("document:")
        assert doc.filename == "events.csv"
        assert doc.entity_count == 0
        assert doc.relationship_count == 0

    async def test_record_counts(self, documents: DocumentRepository):
        doc = await documents.create("events.csv", "...")
        updated = await documents.record_counts(doc.id, 4, 3)
        assert (updated.entity_count, updated.relationship_count) == (4, 3)
        fetched = await documents.get(doc.id)
        assert fetched is not None
        assert fetched.entity_count == 4
        assert fetched.content == "..."

    async def test_list_all(self, documents: DocumentRepository):
        await documents.create("a.csv", "a")
        await documents.create("b.csv", "b")
        assert sorted(d.filename for d in await documents.list_all()) == ["a.csv", "b.csv"]

    async def test_get_missing(self, documents: DocumentRepository):
        assert await documents.get("document:nope") is None
