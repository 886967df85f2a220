"""Tests for the SurrealDB store against a scripted SDK client."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from loomgraph.config import LoomGraphConfig, StoreBackend
from loomgraph.errors import (
    RecordExistsError,
    StoreConnectionError,
    StoreError,
    StorePermissionError,
)
from loomgraph.graph.store import GraphStore, MemoryGraphStore, store_factory_from_config
from loomgraph.graph.surreal import SurrealGraphStore


class _RecordID:
    """Shape of the SDK's record id type."""

    def __init__(self, table_name: str, id: str) -> None:
        self.table_name = table_name
        self.id = id


class _FakeClient:
    """Records every query and answers from a prefix -> response script."""

    def __init__(self, responses: dict[str, object] | None = None, error: Exception | None = None):
        self.responses = responses or {}
        self.error = error
        self.queries: list[tuple[str, dict]] = []
        self.closed = False

    async def query(self, sql, variables=None):
        self.queries.append((sql, variables or {}))
        if self.error is not None:
            raise self.error
        for prefix, response in self.responses.items():
            if sql.startswith(prefix):
                return response
        return []

    async def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class TestCatalog:
    async def test_define_open_table(self):
        client = _FakeClient()
        await SurrealGraphStore(client).define_open_table("WORKS_AT")
        assert client.queries == [
            ("DEFINE TABLE OVERWRITE `WORKS_AT` SCHEMALESS PERMISSIONS FULL", {}),
        ]

    async def test_list_tables_from_info(self):
        client = _FakeClient({"INFO FOR DB": {"tables": {"entity": "...", "NEXT": "..."}}})
        assert await SurrealGraphStore(client).list_tables() == ["entity", "NEXT"]

    async def test_list_tables_status_wrapped_response(self):
        client = _FakeClient({"INFO FOR DB": [{"status": "OK", "result": {"tb": {"entity": ""}}}]})
        assert await SurrealGraphStore(client).list_tables() == ["entity"]

    async def test_invalid_table_name_never_reaches_server(self):
        client = _FakeClient()
        with pytest.raises(ValueError):
            await SurrealGraphStore(client).define_open_table("x; REMOVE TABLE entity")
        assert client.queries == []


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class TestWrites:
    async def test_create_with_key(self):
        client = _FakeClient({"CREATE": [{"id": _RecordID("entity", "alice"), "label": "Alice"}]})
        record = await SurrealGraphStore(client).create(
            "entity", {"label": "Alice", "id": "ignored"}, key="alice",
        )

        sql, variables = client.queries[0]
        assert sql == "CREATE `entity`:⟨alice⟩ CONTENT $content"
        assert variables == {"content": {"label": "Alice"}}
        assert record == {"id": "entity:alice", "label": "Alice"}

    async def test_create_without_key(self):
        client = _FakeClient({"CREATE": [{"id": _RecordID("document", "x1")}]})
        record = await SurrealGraphStore(client).create("document", {"filename": "a.csv"})
        assert client.queries[0][0] == "CREATE `document` CONTENT $content"
        assert record["id"] == "document:x1"

    async def test_duplicate_create_raises_record_exists(self):
        client = _FakeClient(error=Exception("Database record `entity:alice` already exists"))
        with pytest.raises(RecordExistsError) as exc_info:
            await SurrealGraphStore(client).create("entity", {}, key="alice")
        assert exc_info.value.record_id == "entity:alice"

    async def test_merge_upserts(self):
        client = _FakeClient({"UPSERT": [{"id": _RecordID("entity", "c001"), "label": "C001"}]})
        record = await SurrealGraphStore(client).merge("entity:c001", {"properties": {"tier": "gold"}})
        assert client.queries[0] == (
            "UPSERT `entity`:⟨c001⟩ MERGE $content", {"content": {"properties": {"tier": "gold"}}},
        )
        assert record["id"] == "entity:c001"

    async def test_relate(self):
        client = _FakeClient({"RELATE": [{
            "id": _RecordID("WORKS_AT", "e1"),
            "in": _RecordID("entity", "alice"),
            "out": _RecordID("entity", "acme"),
            "confidence": 0.9,
        }]})
        edge = await SurrealGraphStore(client).relate(
            "WORKS_AT", "entity:alice", "entity:acme", {"confidence": 0.9},
        )
        assert client.queries[0][0] == (
            "RELATE `entity`:⟨alice⟩->`WORKS_AT`->`entity`:⟨acme⟩ CONTENT $content"
        )
        assert (edge["in"], edge["out"]) == ("entity:alice", "entity:acme")

    async def test_permission_error(self):
        client = _FakeClient(error=Exception("Not allowed to create a record"))
        with pytest.raises(StorePermissionError):
            await SurrealGraphStore(client).relate("NEXT", "entity:a", "entity:b", {})

    async def test_other_statement_errors(self):
        client = _FakeClient({"CREATE": [{"status": "ERR", "result": "parse error"}]})
        with pytest.raises(StoreError, match="parse error"):
            await SurrealGraphStore(client).create("entity", {}, key="a")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:
    async def test_get_missing_record(self):
        client = _FakeClient({"SELECT": []})
        assert await SurrealGraphStore(client).get("entity:ghost") is None
        assert client.queries[0][0] == "SELECT * FROM `entity`:⟨ghost⟩"

    async def test_select_binds_filter_values(self):
        client = _FakeClient({"SELECT": [{"id": _RecordID("entity", "a")}]})
        rows = await SurrealGraphStore(client).select(
            "entity", {"metadata.source": "document:1", "type": "Event"}, limit=5,
        )
        sql, variables = client.queries[0]
        assert sql == (
            "SELECT * FROM `entity` WHERE `metadata`.`source` = $w0 AND `type` = $w1 LIMIT 5"
        )
        assert variables == {"w0": "document:1", "w1": "Event"}
        assert rows == [{"id": "entity:a"}]


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class TestConnection:
    async def test_transport_error_is_connection_error(self):
        client = _FakeClient(error=ConnectionResetError("socket closed"))
        with pytest.raises(StoreConnectionError):
            await SurrealGraphStore(client).ping()

    async def test_close(self):
        client = _FakeClient()
        await SurrealGraphStore(client).close()
        assert client.closed

    async def test_factory_uses_configured_backend(self):
        config = LoomGraphConfig(llm_provider="mock", store_backend=StoreBackend.SURREALDB)
        store = SurrealGraphStore(_FakeClient())
        with patch(
            "loomgraph.graph.surreal.connect_surreal", new=AsyncMock(return_value=store),
        ) as connect:
            factory = store_factory_from_config(config)
            assert await factory() is store
        connect.assert_awaited_once_with(config)


def _protocol_methods() -> set[str]:
    return {name for name in vars(GraphStore) if not name.startswith("_")} | {
        "list_tables", "define_open_table",
    }


@pytest.mark.parametrize("backend", [MemoryGraphStore, SurrealGraphStore])
def test_backends_implement_store_protocol(backend):
    missing = {name for name in _protocol_methods() if not callable(getattr(backend, name, None))}
    assert missing == set()
