"""Lazy table materialization — open each table before its first use.

Relationship types become tables, so the table set grows with every new
type the LLM proposes. Before the first write of a type, the unlocker
defines that table as schemaless with full permissions. A failed unlock is
logged and tolerated: the write that follows will fail on its own and be
handled by the caller's per-record policy.
"""

from __future__ import annotations

from collections.abc import Iterable

from loomgraph.errors import Outcome, classify
from loomgraph.graph.store import TableCatalog
from loomgraph.logging import get_logger

log = get_logger("unlock")


class SchemaUnlocker:
    """Idempotent `define table as open` directive with a per-instance cache."""

    def __init__(self, catalog: TableCatalog) -> None:
        self._catalog = catalog
        self._unlocked: set[str] = set()

    async def ensure_writable(self, table: str) -> bool:
        """Open `table` for schemaless reads and writes.

        Returns:
            True if the table is known to be open, False if the directive failed.

        Raises:
            Only errors classified as fatal (e.g. store unavailable).
        """
        if table in self._unlocked:
            return True
        try:
            await self._catalog.define_open_table(table)
        except Exception as e:
            if classify(e) is Outcome.FATAL:
                raise
            log.warning("unlock.failed", table=table, error=str(e))
            return False
        self._unlocked.add(table)
        log.info("unlock.table_opened", table=table)
        return True

    async def ensure_all(self, tables: Iterable[str]) -> list[str]:
        """Open several tables; returns the names that could not be opened."""
        failed = []
        for table in tables:
            if not await self.ensure_writable(table):
                failed.append(table)
        return failed

    def forget(self, table: str | None = None) -> None:
        """Drop cached state, e.g. after the store was reset."""
        if table is None:
            self._unlocked.clear()
        else:
            self._unlocked.discard(table)

    @property
    def unlocked_tables(self) -> frozenset[str]:
        return frozenset(self._unlocked)
