"""Mapping memory — approved column mappings remembered per file shape.

A file shape is identified by its signature: the header names, trimmed,
sorted and pipe-joined. Lookups are exact. The first mapping saved for a
signature wins; later saves for the same signature are no-ops, so a user's
one-time correction is never overwritten by a later proposal.
"""

from __future__ import annotations

import csv
from collections.abc import Sequence

from loomgraph.graph.models import MAPPING_CONFIG_TABLE, MappingConfig, MappingRule
from loomgraph.graph.store import GraphStore, utc_now
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.logging import get_logger

log = get_logger("mapping_memory")

SIGNATURE_SEPARATOR = "|"


def parse_header_line(line: str) -> list[str]:
    """Split a CSV header line into trimmed, unquoted column names.

    Quoted names may contain commas: `"city, state",zip` has two columns.
    """
    fields = next(csv.reader([line], skipinitialspace=True), [])
    return [h.strip().strip("'\"") for h in fields]


def header_signature(headers: Sequence[str]) -> str:
    return SIGNATURE_SEPARATOR.join(sorted(h.strip() for h in headers))


class MappingMemory:
    """Stores and retrieves MappingConfig records.

    Store failures propagate to the caller, which decides whether to carry
    on without memory.
    """

    def __init__(self, store: GraphStore, unlocker: SchemaUnlocker) -> None:
        self._store = store
        self._unlocker = unlocker

    async def lookup(self, headers: Sequence[str]) -> MappingConfig | None:
        signature = header_signature(headers)
        await self._unlocker.ensure_writable(MAPPING_CONFIG_TABLE)
        records = await self._store.select(MAPPING_CONFIG_TABLE, {"signature": signature})
        if not records:
            log.debug("mapping_memory.miss", signature=signature)
            return None
        # Concurrent first uploads can leave duplicates; the oldest one wins.
        records.sort(key=lambda r: r.get("created_at") or "")
        log.info("mapping_memory.hit", signature=signature, duplicates=len(records) - 1)
        return MappingConfig.from_record(records[0])

    async def save(
        self, headers: Sequence[str], mapping: Sequence[MappingRule], file_name: str,
    ) -> bool:
        """Remember `mapping` for this header set unless one is already stored.

        Returns:
            True if a new entry was written, False if one already existed.
        """
        signature = header_signature(headers)
        await self._unlocker.ensure_writable(MAPPING_CONFIG_TABLE)
        existing = await self._store.select(
            MAPPING_CONFIG_TABLE, {"signature": signature}, limit=1,
        )
        if existing:
            log.info("mapping_memory.save_skipped", signature=signature)
            return False

        await self._store.create(MAPPING_CONFIG_TABLE, {
            "signature": signature,
            "last_file_name": file_name,
            "approved_mapping": [rule.to_dict() for rule in mapping],
            "created_at": utc_now(),
        })
        log.info("mapping_memory.saved", signature=signature, rules=len(mapping))
        return True
