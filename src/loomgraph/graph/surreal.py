"""SurrealDB backend — the persistent GraphStore.

Tables map one-to-one onto SurrealDB tables and edges are written with
RELATE, so `in`/`out` come back as record ids exactly like the in-memory
backend's. Targets SurrealDB 2.x through the `surrealdb` SDK
(`pip install loomgraph[surrealdb]`).

Table names and record keys are interpolated into SurrealQL, so both are
validated and escaped here; record content always travels as a bound
variable.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping
from typing import Any

from loomgraph.config import LoomGraphConfig
from loomgraph.errors import (
    RecordExistsError,
    StoreConnectionError,
    StoreError,
    StorePermissionError,
)
from loomgraph.graph.store import record_id, split_record_id
from loomgraph.logging import get_logger

log = get_logger("surreal")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Transport-level failures; anything else is a statement error.
_CONNECTION_ERRORS = (OSError, ConnectionError, asyncio.TimeoutError)


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table or field name: {name!r}")
    return f"`{name}`"


def _thing(rid: str) -> str:
    """Render "table:key" as a SurrealQL record id literal."""
    table, key = split_record_id(rid)
    if not table or not key or "⟩" in key:
        raise ValueError(f"Invalid record id: {rid!r}")
    return f"{_ident(table)}:⟨{key}⟩"


def _field_path(path: str) -> str:
    return ".".join(_ident(part) for part in path.split("."))


def _plain(value: Any) -> Any:
    """Convert SDK values (RecordID, datetimes, ...) to plain JSON-ish data."""
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    table = getattr(value, "table_name", None)
    if table is not None:
        return record_id(table, str(value.id))
    return str(value)


def _statement_result(response: Any) -> Any:
    """Unwrap the first statement's result.

    Older SDKs return `[{"status": ..., "result": ...}]` per statement; newer
    ones return the result directly.
    """
    if (
        isinstance(response, list)
        and response
        and isinstance(response[0], Mapping)
        and {"status", "result"} <= set(response[0])
    ):
        first = response[0]
        if first["status"] != "OK":
            raise StoreError(str(first["result"]))
        return first["result"]
    return response


def _rows(result: Any) -> list[dict[str, Any]]:
    if result is None:
        return []
    if isinstance(result, Mapping):
        return [dict(result)]
    return [dict(r) for r in result if isinstance(r, Mapping)]


def _content(content: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in content.items() if k not in ("id", "in", "out")}


class SurrealGraphStore:
    """GraphStore over a connected SurrealDB SDK client.

    Args:
        client: An SDK connection already signed in and bound to a
            namespace and database (see `connect_surreal`).
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    # -- Catalog ------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        info = await self._query("INFO FOR DB")
        if isinstance(info, list):
            info = info[0] if info else {}
        tables = info.get("tables") or info.get("tb") or {}
        return list(tables)

    async def define_open_table(self, name: str) -> None:
        # OVERWRITE also opens a table that an earlier write created locked.
        await self._query(f"DEFINE TABLE OVERWRITE {_ident(name)} SCHEMALESS PERMISSIONS FULL")
        log.debug("surreal.table_defined", table=name)

    # -- Writes -------------------------------------------------------------

    async def create(
        self, table: str, content: Mapping[str, Any], *, key: str | None = None,
    ) -> dict[str, Any]:
        target = _thing(record_id(table, key)) if key else _ident(table)
        rows = await self._query(
            f"CREATE {target} CONTENT $content",
            {"content": _content(content)},
            table=table,
            operation="create",
            rid=record_id(table, key) if key else None,
        )
        return _rows(rows)[0]

    async def merge(self, rid: str, content: Mapping[str, Any]) -> dict[str, Any]:
        table, _ = split_record_id(rid)
        rows = await self._query(
            f"UPSERT {_thing(rid)} MERGE $content",
            {"content": _content(content)},
            table=table,
            operation="merge",
        )
        return _rows(rows)[0]

    async def relate(
        self, table: str, in_id: str, out_id: str, content: Mapping[str, Any],
    ) -> dict[str, Any]:
        rows = await self._query(
            f"RELATE {_thing(in_id)}->{_ident(table)}->{_thing(out_id)} CONTENT $content",
            {"content": _content(content)},
            table=table,
            operation="relate",
        )
        return _rows(rows)[0]

    # -- Reads --------------------------------------------------------------

    async def get(self, rid: str) -> dict[str, Any] | None:
        table, _ = split_record_id(rid)
        rows = _rows(await self._query(
            f"SELECT * FROM {_thing(rid)}", table=table, operation="get",
        ))
        return rows[0] if rows else None

    async def select(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {_ident(table)}"
        variables: dict[str, Any] = {}
        if where:
            clauses = []
            for i, (path, value) in enumerate(where.items()):
                clauses.append(f"{_field_path(path)} = $w{i}")
                variables[f"w{i}"] = value
            sql += " WHERE " + " AND ".join(clauses)
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return _rows(await self._query(sql, variables, table=table, operation="select"))

    # -- Lifecycle ----------------------------------------------------------

    async def ping(self) -> None:
        await self._query("RETURN true")

    async def close(self) -> None:
        try:
            await self._client.close()
        except _CONNECTION_ERRORS as e:
            log.debug("surreal.close_failed", error=str(e))

    # -- Internal -----------------------------------------------------------

    async def _query(
        self,
        sql: str,
        variables: dict[str, Any] | None = None,
        *,
        table: str = "",
        operation: str = "query",
        rid: str | None = None,
    ) -> Any:
        try:
            response = await self._client.query(sql, variables or {})
            return _plain(_statement_result(response))
        except _CONNECTION_ERRORS as e:
            raise StoreConnectionError(f"SurrealDB connection lost: {e}") from e
        except Exception as e:
            # The SDK reports statement failures as plain exceptions.
            raise _translate(e, table, operation, rid) from e


def _translate(exc: Exception, table: str, operation: str, rid: str | None) -> StoreError:
    message = str(exc)
    lowered = message.lower()
    if "already exists" in lowered and rid is not None:
        return RecordExistsError(rid)
    if "not allowed" in lowered or "permission" in lowered:
        return StorePermissionError(table or "?", operation)
    return StoreError(message)


async def connect_surreal(config: LoomGraphConfig) -> SurrealGraphStore:
    """Open, authenticate and scope a SurrealDB connection.

    Raises:
        StoreConnectionError: If the server can't be reached or rejects
            the credentials, so `StoreConnection` retries with backoff.
    """
    from surrealdb import AsyncSurreal

    client = AsyncSurreal(config.store_url)
    try:
        await client.connect()
        if config.store_username:
            await client.signin({
                "username": config.store_username,
                "password": config.store_password,
            })
        await client.use(config.store_namespace, config.store_database)
    except Exception as e:
        raise StoreConnectionError(f"cannot open SurrealDB at {config.store_url}: {e}") from e
    log.info(
        "surreal.connected",
        url=config.store_url,
        namespace=config.store_namespace,
        database=config.store_database,
    )
    return SurrealGraphStore(client)
