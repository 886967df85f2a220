"""Graph reader — discovers node/edge tables and reconstructs the visible graph.

The edge table set is not fixed: every relationship type ever written has
its own table. Discovery asks the store's catalog for all tables, drops the
bookkeeping tables, keeps the declared node tables (always including
`entity`) and treats everything else as an edge candidate. Records without
endpoints are discarded.

Two read policies exist; a deployment picks one:

- STRICT hides edges whose endpoints are not among the returned entities.
- PERMISSIVE keeps every edge and adds a placeholder node (`missing=True`)
  for each unresolved endpoint.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import networkx as nx

from loomgraph.config import ReadMode
from loomgraph.errors import Outcome, classify
from loomgraph.graph.models import (
    ENTITY_TABLE,
    MISSING_TYPE,
    SYSTEM_TABLES,
    Entity,
    Relationship,
)
from loomgraph.graph.store import GraphStore, split_record_id
from loomgraph.logging import get_logger

log = get_logger("reader")


@dataclass(frozen=True, slots=True)
class TableLayout:
    node_tables: tuple[str, ...]
    edge_tables: tuple[str, ...]


@dataclass
class GraphSnapshot:
    """The visible graph at read time.

    Attributes:
        entities: Nodes, including permissive-mode placeholders.
        relationships: Edges whose endpoints are all in `entities`.
        mode: The read policy that produced this snapshot.
        hidden_relationships: Dangling edges dropped (strict mode).
        placeholders: Placeholder nodes synthesized (permissive mode).
        unreadable_tables: Tables skipped because the store refused access.
    """

    entities: list[Entity] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    mode: ReadMode = ReadMode.STRICT
    hidden_relationships: int = 0
    placeholders: int = 0
    unreadable_tables: list[str] = field(default_factory=list)

    @property
    def entity_ids(self) -> set[str]:
        return {e.id for e in self.entities}

    def entity(self, entity_id: str) -> Entity | None:
        return next((e for e in self.entities if e.id == entity_id), None)

    def relationship_types(self) -> set[str]:
        return {r.type for r in self.relationships}

    def to_networkx(self) -> nx.MultiDiGraph:
        graph = nx.MultiDiGraph()
        for entity in self.entities:
            graph.add_node(entity.id, label=entity.label, type=entity.type)
        for rel in self.relationships:
            graph.add_edge(rel.from_id, rel.to_id, key=rel.id, type=rel.type)
        return graph

    def neighbors(self, entity_id: str, depth: int = 1) -> list[Entity]:
        """Entities within `depth` hops of `entity_id`, ignoring direction."""
        graph = self.to_networkx()
        if not graph.has_node(entity_id):
            return []
        undirected = graph.to_undirected(as_view=True)
        reachable = nx.single_source_shortest_path_length(undirected, entity_id, cutoff=depth)
        by_id = {e.id: e for e in self.entities}
        return [by_id[nid] for nid in reachable if nid != entity_id and nid in by_id]

    def subgraph(self, entity_ids: Iterable[str]) -> GraphSnapshot:
        """The induced subgraph over `entity_ids`."""
        keep = set(entity_ids)
        return GraphSnapshot(
            entities=[e for e in self.entities if e.id in keep],
            relationships=[
                r for r in self.relationships if r.from_id in keep and r.to_id in keep
            ],
            mode=self.mode,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "stats": {
                "entity_count": len(self.entities),
                "relationship_count": len(self.relationships),
                "hidden_relationships": self.hidden_relationships,
                "placeholders": self.placeholders,
                "unreadable_tables": list(self.unreadable_tables),
                "mode": self.mode.value,
            },
        }


class GraphReader:
    """Reads the graph back out of a store whose edge tables grow dynamically."""

    def __init__(
        self,
        store: GraphStore,
        *,
        mode: ReadMode = ReadMode.STRICT,
        node_tables: Iterable[str] = (ENTITY_TABLE,),
        system_tables: Iterable[str] = SYSTEM_TABLES,
    ) -> None:
        self._store = store
        self._mode = mode
        self._node_tables = tuple(dict.fromkeys([ENTITY_TABLE, *node_tables]))
        self._system_tables = frozenset(system_tables)

    @property
    def mode(self) -> ReadMode:
        return self._mode

    async def discover_tables(self) -> TableLayout:
        tables = await self._store.list_tables()
        edge_tables = tuple(
            t for t in tables
            if t not in self._system_tables and t not in self._node_tables
        )
        log.debug("reader.tables_discovered", nodes=self._node_tables, edges=edge_tables)
        return TableLayout(node_tables=self._node_tables, edge_tables=edge_tables)

    async def read_graph(self, document_id: str | None = None) -> GraphSnapshot:
        """Read entities and relationships, optionally scoped to one document."""
        layout = await self.discover_tables()
        snapshot = GraphSnapshot(mode=self._mode)

        node_filter = {"metadata.source": document_id} if document_id else None
        for table in layout.node_tables:
            records = await self._read_table(table, node_filter, snapshot)
            snapshot.entities.extend(Entity.from_record(r) for r in records)

        edge_filter = {"source": document_id} if document_id else None
        relationships = []
        for table in layout.edge_tables:
            records = await self._read_table(table, edge_filter, snapshot)
            relationships.extend(
                relationship_from_record(r, table) for r in records if _has_endpoints(r)
            )

        if self._mode == ReadMode.STRICT:
            self._apply_strict(snapshot, relationships)
        else:
            self._apply_permissive(snapshot, relationships)

        log.info(
            "reader.graph_read",
            mode=self._mode.value,
            entities=len(snapshot.entities),
            relationships=len(snapshot.relationships),
            hidden=snapshot.hidden_relationships,
            placeholders=snapshot.placeholders,
            edge_tables=len(layout.edge_tables),
        )
        return snapshot

    async def _read_table(
        self, table: str, where: dict[str, Any] | None, snapshot: GraphSnapshot,
    ) -> list[dict[str, Any]]:
        try:
            return await self._store.select(table, where)
        except Exception as e:
            if classify(e) is Outcome.FATAL:
                raise
            log.warning("reader.table_unreadable", table=table, error=str(e))
            snapshot.unreadable_tables.append(table)
            return []

    @staticmethod
    def _apply_strict(snapshot: GraphSnapshot, relationships: list[Relationship]) -> None:
        known = snapshot.entity_ids
        for rel in relationships:
            if rel.from_id in known and rel.to_id in known:
                snapshot.relationships.append(rel)
            else:
                snapshot.hidden_relationships += 1
        if snapshot.hidden_relationships:
            log.warning("reader.dangling_hidden", count=snapshot.hidden_relationships)

    @staticmethod
    def _apply_permissive(snapshot: GraphSnapshot, relationships: list[Relationship]) -> None:
        known = snapshot.entity_ids
        for rel in relationships:
            for endpoint in (rel.from_id, rel.to_id):
                if endpoint in known:
                    continue
                snapshot.entities.append(placeholder_entity(endpoint))
                snapshot.placeholders += 1
                known.add(endpoint)
            snapshot.relationships.append(rel)


def placeholder_entity(entity_id: str) -> Entity:
    _, key = split_record_id(entity_id)
    return Entity(id=entity_id, label=key or entity_id, type=MISSING_TYPE, missing=True)


def relationship_from_record(record: dict[str, Any], table: str = "") -> Relationship:
    """Normalize an edge record from any edge table.

    Endpoints come from `from`/`to` or the store-native `in`/`out`. The type
    is the explicit `type` field when present, otherwise the table part of
    the record id, otherwise the table the record was read from.
    """
    rid = str(record.get("id", ""))
    rel_type = record.get("type") or split_record_id(rid)[0] or table or "EDGE"
    properties = record.get("properties")
    confidence = record.get("confidence")
    return Relationship(
        id=rid,
        from_id=str(record.get("from") or record.get("in")),
        to_id=str(record.get("to") or record.get("out")),
        type=str(rel_type),
        properties=properties if isinstance(properties, dict) else {},
        confidence=float(confidence) if isinstance(confidence, (int, float)) else 1.0,
        source=record.get("source"),
        created_at=record.get("createdAt"),
    )


def _has_endpoints(record: dict[str, Any]) -> bool:
    return bool(
        (record.get("in") and record.get("out")) or (record.get("from") and record.get("to"))
    )
