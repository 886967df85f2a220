"""Schemaless table store: protocol, in-memory backend, and connection handle.

Records live in named tables and are addressed as "<table>:<key>". Edge
records carry `in`/`out` pointers to their endpoints, which are not
required to exist. Any backend that can create, merge, relate, select,
list its tables and open a table for schemaless writes satisfies
`GraphStore`; callers never depend on a fixed table set. The SurrealDB
backend lives in `loomgraph.graph.surreal`.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Iterator, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

import networkx as nx

from loomgraph.config import LoomGraphConfig, StoreBackend
from loomgraph.errors import (
    RecordExistsError,
    StoreConnectionError,
    StorePermissionError,
    StoreUnavailableError,
)
from loomgraph.logging import get_logger

log = get_logger("store")


# ---------------------------------------------------------------------------
# Record ids
# ---------------------------------------------------------------------------

def record_id(table: str, key: str) -> str:
    return f"{table}:{key}"


def split_record_id(rid: str) -> tuple[str, str]:
    """Split "table:key" into its parts. Ids without a colon have no table."""
    table, sep, key = str(rid).partition(":")
    if not sep:
        return "", table
    return table, key


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------

class TableCatalog(Protocol):
    """Table introspection and schemaless table definition."""

    async def list_tables(self) -> list[str]:
        """Return the names of every table the store knows about."""
        ...

    async def define_open_table(self, name: str) -> None:
        """Define `name` as schemaless and fully permissioned. Idempotent."""
        ...


class GraphStore(TableCatalog, Protocol):
    """Operations the ingestion and read paths require from a store."""

    async def create(
        self, table: str, content: Mapping[str, Any], *, key: str | None = None,
    ) -> dict[str, Any]:
        """Create a record. Raises RecordExistsError if `key` is taken."""
        ...

    async def merge(self, rid: str, content: Mapping[str, Any]) -> dict[str, Any]:
        """Deep-merge `content` into a record, creating it if absent."""
        ...

    async def relate(
        self, table: str, in_id: str, out_id: str, content: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Create an edge record `in_id -> table -> out_id`."""
        ...

    async def get(self, rid: str) -> dict[str, Any] | None:
        ...

    async def select(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return records whose dotted-path fields equal the `where` values."""
        ...

    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryGraphStore:
    """Process-local schemaless store backed by a NetworkX MultiDiGraph.

    Plain records are graph nodes keyed by record id; edge records are
    multigraph edges keyed by their own id. Both carry their table name as
    the `table` attribute and the record itself as `record`. An edge whose
    endpoint was never written leaves a bare node with neither attribute,
    which reads as absent.

    Mirrors the permission model of hosted graph stores: a table that comes
    into existence implicitly (first write) is locked, and reading it raises
    StorePermissionError until `define_open_table()` opens it. With
    `strict_tables=True`, writes to undefined tables are refused as well.
    """

    def __init__(self, *, strict_tables: bool = False) -> None:
        self._graph = nx.MultiDiGraph()
        self._tables: dict[str, bool] = {}  # table name -> open
        self._edge_ends: dict[str, tuple[str, str]] = {}  # edge id -> (in, out)
        self._strict_tables = strict_tables
        self._closed = False

    # -- Catalog ------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        self._check_open()
        return list(self._tables)

    async def define_open_table(self, name: str) -> None:
        self._check_open()
        if name not in self._tables:
            log.debug("store.table_defined", table=name)
        elif not self._tables[name]:
            log.debug("store.table_unlocked", table=name)
        self._tables[name] = True

    def is_open(self, name: str) -> bool:
        return self._tables.get(name, False)

    # -- Writes -------------------------------------------------------------

    async def create(
        self, table: str, content: Mapping[str, Any], *, key: str | None = None,
    ) -> dict[str, Any]:
        self._check_open()
        self._table_for_write(table, "create")
        rid = record_id(table, key or uuid4().hex[:20])
        if self._record(rid) is not None:
            raise RecordExistsError(rid)
        record = {**copy.deepcopy(dict(content)), "id": rid}
        self._graph.add_node(rid, table=table, record=record)
        return copy.deepcopy(record)

    async def merge(self, rid: str, content: Mapping[str, Any]) -> dict[str, Any]:
        self._check_open()
        table, _ = split_record_id(rid)
        self._table_for_write(table, "merge")
        record = self._record(rid)
        if record is None:
            record = {"id": rid}
            self._graph.add_node(rid, table=table, record=record)
        _deep_merge(record, copy.deepcopy(dict(content)))
        record["id"] = rid
        return copy.deepcopy(record)

    async def relate(
        self, table: str, in_id: str, out_id: str, content: Mapping[str, Any],
    ) -> dict[str, Any]:
        self._check_open()
        self._table_for_write(table, "relate")
        rid = record_id(table, uuid4().hex[:20])
        record = {**copy.deepcopy(dict(content)), "id": rid, "in": in_id, "out": out_id}
        self._graph.add_edge(in_id, out_id, key=rid, table=table, record=record)
        self._edge_ends[rid] = (in_id, out_id)
        return copy.deepcopy(record)

    # -- Reads --------------------------------------------------------------

    async def get(self, rid: str) -> dict[str, Any] | None:
        self._check_open()
        table, _ = split_record_id(rid)
        if not self._readable(table, "get"):
            return None
        record = self._record(rid)
        return copy.deepcopy(record) if record is not None else None

    async def select(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check_open()
        if not self._readable(table, "select"):
            return []
        results = []
        for record in self._table_records(table):
            if where and not all(_lookup(record, path) == value for path, value in where.items()):
                continue
            results.append(copy.deepcopy(record))
            if limit is not None and len(results) >= limit:
                break
        return results

    # -- Lifecycle ----------------------------------------------------------

    async def ping(self) -> None:
        self._check_open()

    async def reopen(self) -> None:
        self._closed = False

    async def close(self) -> None:
        self._closed = True

    @property
    def node_count(self) -> int:
        """Stored node records; bare edge endpoints are not counted."""
        return sum(1 for _, record in self._graph.nodes(data="record") if record is not None)

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    # -- Internal helpers ---------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise StoreConnectionError("store is closed")

    def _record(self, rid: str) -> dict[str, Any] | None:
        """The live record stored under `rid`, edge or node."""
        ends = self._edge_ends.get(rid)
        if ends is not None:
            return self._graph.edges[ends[0], ends[1], rid]["record"]
        if rid in self._graph:
            return self._graph.nodes[rid].get("record")
        return None

    def _table_records(self, table: str) -> Iterator[dict[str, Any]]:
        for _, data in self._graph.nodes(data=True):
            if data.get("table") == table:
                yield data["record"]
        for _, _, data in self._graph.edges(data=True):
            if data["table"] == table:
                yield data["record"]

    def _table_for_write(self, name: str, operation: str) -> None:
        if name in self._tables:
            return
        if self._strict_tables:
            raise StorePermissionError(name, operation)
        self._tables[name] = False
        log.debug("store.table_implicit", table=name)

    def _readable(self, name: str, operation: str) -> bool:
        """False for unknown tables; raises for locked ones."""
        if name not in self._tables:
            return False
        if not self._tables[name]:
            raise StorePermissionError(name, operation)
        return True


def _deep_merge(target: dict[str, Any], patch: Mapping[str, Any]) -> None:
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value


def _lookup(record: Mapping[str, Any], path: str) -> Any:
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


# ---------------------------------------------------------------------------
# Connection handle
# ---------------------------------------------------------------------------

StoreFactory = Callable[[], Awaitable[GraphStore]]


class StoreConnection:
    """Owned, shareable handle to a store with lazy connect and reconnect.

    The process entry point creates one handle and passes it by reference to
    every component. The first operation connects; a StoreConnectionError
    during an operation drops the session, reconnects with exponential
    backoff and retries the operation once. When connecting keeps failing,
    StoreUnavailableError is raised.
    """

    def __init__(
        self,
        factory: StoreFactory,
        *,
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ) -> None:
        self._factory = factory
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._store: GraphStore | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._store is not None

    async def connect(self) -> GraphStore:
        if self._store is not None:
            return self._store
        async with self._lock:
            if self._store is not None:
                return self._store
            for attempt in range(1, self._max_attempts + 1):
                try:
                    store = await self._factory()
                    await store.ping()
                except StoreConnectionError as e:
                    log.warning(
                        "store.connect_failed",
                        attempt=attempt,
                        max_attempts=self._max_attempts,
                        error=str(e),
                    )
                    if attempt < self._max_attempts:
                        await asyncio.sleep(self._base_delay * 2 ** (attempt - 1))
                    continue
                self._store = store
                log.info("store.connected", attempt=attempt)
                return store
        raise StoreUnavailableError(
            f"store unreachable after {self._max_attempts} attempts"
        )

    async def health_check(self) -> bool:
        try:
            store = await self.connect()
            await store.ping()
        except (StoreConnectionError, StoreUnavailableError):
            self._store = None
            return False
        return True

    async def close(self) -> None:
        if self._store is not None:
            await self._store.close()
            self._store = None
            log.info("store.closed")

    # -- GraphStore delegation ----------------------------------------------

    async def create(
        self, table: str, content: Mapping[str, Any], *, key: str | None = None,
    ) -> dict[str, Any]:
        return await self._call("create", table, content, key=key)

    async def merge(self, rid: str, content: Mapping[str, Any]) -> dict[str, Any]:
        return await self._call("merge", rid, content)

    async def relate(
        self, table: str, in_id: str, out_id: str, content: Mapping[str, Any],
    ) -> dict[str, Any]:
        return await self._call("relate", table, in_id, out_id, content)

    async def get(self, rid: str) -> dict[str, Any] | None:
        return await self._call("get", rid)

    async def select(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return await self._call("select", table, where, limit=limit)

    async def list_tables(self) -> list[str]:
        return await self._call("list_tables")

    async def define_open_table(self, name: str) -> None:
        await self._call("define_open_table", name)

    async def ping(self) -> None:
        await self._call("ping")

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        store = await self.connect()
        try:
            return await getattr(store, method)(*args, **kwargs)
        except StoreConnectionError as e:
            log.warning("store.session_lost", method=method, error=str(e))
            self._store = None
        store = await self.connect()
        return await getattr(store, method)(*args, **kwargs)


def store_factory_from_config(config: LoomGraphConfig) -> StoreFactory:
    """Build the connect callable for the configured backend."""
    if config.store_backend == StoreBackend.MEMORY:
        # One process-local store; reconnecting hands back the same data.
        store = MemoryGraphStore(strict_tables=config.store_strict_tables)

        async def _connect() -> GraphStore:
            await store.reopen()
            return store

        return _connect
    if config.store_backend == StoreBackend.SURREALDB:
        from loomgraph.graph.surreal import connect_surreal

        async def _connect_surreal() -> GraphStore:
            return await connect_surreal(config)

        return _connect_surreal
    raise ValueError(f"Unknown store backend: {config.store_backend}")
