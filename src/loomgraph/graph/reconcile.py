"""Ingestion reconciler — materializes per-row extraction results into the store.

For each row, in order:

1. Extract assertions through the adapter (optionally several rows in flight,
   but results are consumed strictly in row order).
2. Upsert every entity under `entity:<normalized label>`. A create that hits
   an existing id falls back to a merge of `properties`/`updatedAt` only,
   except that an `Implicit` placeholder also takes the real label and type.
3. Write every relationship into the table named after its normalized type,
   opening the table first and synthesizing `Implicit` placeholder nodes for
   endpoints that don't exist yet. Placeholder creations count as entity
   writes. Relationships with an empty endpoint are skipped.
4. If the row produced an event-like entity, link the previous row's event
   to it with a `NEXT` edge (a self-loop when both rows name the same event)
   and move the cursor. Rows without an event leave the cursor where it is.

Failures are row-partitioned: a failed write is logged and counted, and
processing continues. Only errors classified FATAL end the run early; rows
already written stay written.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import aclosing
from dataclasses import asdict, dataclass, field
from typing import Any

from loomgraph.config import DEFAULT_EVENT_TYPES
from loomgraph.errors import Outcome, RecordExistsError, classify
from loomgraph.extraction.pipeline import (
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionAdapter,
    ExtractionResult,
)
from loomgraph.graph.documents import DocumentRepository
from loomgraph.graph.models import ENTITY_TABLE, IMPLICIT_TYPE, NEXT_TYPE, MappingRule
from loomgraph.graph.store import GraphStore, record_id, utc_now
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.logging import bound_context, get_logger
from loomgraph.normalize import normalize_label, normalize_relationship_type

log = get_logger("reconcile")


@dataclass
class RunStats:
    """Counters for one ingestion run. Counts are the signal of partial failure."""

    rows_total: int = 0
    rows_processed: int = 0
    rows_empty: int = 0
    rows_with_errors: int = 0
    entities_inserted: int = 0
    entities_created: int = 0
    entities_merged: int = 0
    implicit_nodes_created: int = 0
    relationships_inserted: int = 0
    next_edges_inserted: int = 0
    relationships_skipped: int = 0
    entity_failures: int = 0
    relationship_failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ReconcileResult:
    document_id: str
    stats: RunStats
    extractions: list[ExtractionResult] = field(default_factory=list)

    def sample_entities(self, cap: int) -> list[dict[str, Any]]:
        return _sample((e for x in self.extractions for e in x.to_dict()["entities"]), cap)

    def sample_relationships(self, cap: int) -> list[dict[str, Any]]:
        return _sample((r for x in self.extractions for r in x.to_dict()["relationships"]), cap)


@dataclass
class _RunState:
    document_id: str
    stats: RunStats
    last_event_id: str | None = None


class IngestionReconciler:
    """Turns a stream of weakly typed assertions into a consistent graph.

    Args:
        store: Store handle shared with the rest of the process.
        adapter: Extraction adapter for the external LLM.
        unlocker: Opens tables before first use.
        documents: Repository used to record the run's final counts.
        event_types: Entity types that take part in the NEXT chain
            (case-insensitive).
        extraction_concurrency: Rows extracted in parallel. Writes stay
            sequential in row order regardless.
    """

    def __init__(
        self,
        store: GraphStore,
        adapter: ExtractionAdapter,
        unlocker: SchemaUnlocker,
        documents: DocumentRepository,
        *,
        event_types: Iterable[str] = DEFAULT_EVENT_TYPES,
        extraction_concurrency: int = 1,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._unlocker = unlocker
        self._documents = documents
        self._event_types = frozenset(t.casefold() for t in event_types)
        self._concurrency = max(1, extraction_concurrency)

    def is_event_type(self, entity_type: str) -> bool:
        return entity_type.casefold() in self._event_types

    async def run(
        self,
        rows: Sequence[str],
        rules: Sequence[MappingRule],
        document_id: str,
        *,
        free_text: bool = False,
    ) -> ReconcileResult:
        """Process `rows` in order and record the counts on the document.

        Args:
            rows: Row texts (or a single text blob).
            rules: Approved mapping rules passed to the extractor.
            document_id: Record id of the Document for this run.
            free_text: Use rule-less free-text extraction for each row.

        Raises:
            Errors classified FATAL (store unavailable). Everything else is
            absorbed and reflected in the returned stats.
        """
        stats = RunStats(rows_total=len(rows))
        state = _RunState(document_id=document_id, stats=stats)
        result = ReconcileResult(document_id=document_id, stats=stats)

        with bound_context(document_id=document_id):
            log.info("reconcile.run_start", rows=len(rows), rules=len(rules))
            await self._unlocker.ensure_writable(ENTITY_TABLE)

            async with aclosing(self._extractions(rows, rules, free_text)) as extractions:
                async for index, extraction in extractions:
                    result.extractions.append(extraction)
                    await self._reconcile_row(state, index, extraction)

            try:
                await self._documents.record_counts(
                    document_id, stats.entities_inserted, stats.relationships_inserted,
                )
            except Exception as e:
                _absorb(e, "reconcile.document_update_failed")

            log.info("reconcile.run_complete", **stats.to_dict())
        return result

    # -- Extraction fan-out / ordered fan-in --------------------------------

    async def _extractions(
        self, rows: Sequence[str], rules: Sequence[MappingRule], free_text: bool,
    ) -> AsyncIterator[tuple[int, ExtractionResult]]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _extract(row: str) -> ExtractionResult:
            async with semaphore:
                if free_text:
                    return await self._adapter.extract_text(row)
                return await self._adapter.extract(row, rules)

        tasks = [asyncio.create_task(_extract(row)) for row in rows]
        try:
            for index, task in enumerate(tasks):
                try:
                    extraction = await task
                except Exception as e:
                    _absorb(e, "reconcile.extraction_failed", row=index)
                    extraction = ExtractionResult(entities=[], relationships=[])
                yield index, extraction
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    # -- Per-row reconciliation ---------------------------------------------

    async def _reconcile_row(
        self, state: _RunState, index: int, extraction: ExtractionResult,
    ) -> None:
        stats = state.stats
        stats.rows_processed += 1
        if extraction.is_empty:
            stats.rows_empty += 1
            log.debug("reconcile.row_empty", row=index)
            return

        failures_before = stats.entity_failures + stats.relationship_failures
        current_event_id: str | None = None

        for entity in extraction.entities:
            try:
                entity_id = await self._upsert_entity(entity, state)
            except Exception as e:
                _absorb(e, "reconcile.entity_failed", row=index, label=entity.label)
                stats.entity_failures += 1
                continue
            stats.entities_inserted += 1
            if self.is_event_type(entity.entity_type):
                current_event_id = entity_id

        for rel in extraction.relationships:
            if not rel.source or not rel.target:
                stats.relationships_skipped += 1
                log.debug("reconcile.relationship_skipped", row=index, type=rel.relation_type)
                continue
            try:
                await self._write_relationship(rel, state)
            except Exception as e:
                _absorb(
                    e, "reconcile.relationship_failed",
                    row=index, type=rel.relation_type, source=rel.source, target=rel.target,
                )
                stats.relationship_failures += 1
                continue
            stats.relationships_inserted += 1

        if current_event_id is not None:
            await self._chain_event(state, index, current_event_id)

        if stats.entity_failures + stats.relationship_failures > failures_before:
            stats.rows_with_errors += 1

    async def _upsert_entity(self, entity: ExtractedEntity, state: _RunState) -> str:
        key = normalize_label(entity.label)
        rid = record_id(ENTITY_TABLE, key)
        now = utc_now()
        try:
            await self._store.create(ENTITY_TABLE, {
                "label": entity.label,
                "type": entity.entity_type,
                "properties": entity.properties,
                "confidence": entity.confidence,
                "metadata": {"source": state.document_id},
                "createdAt": now,
                "updatedAt": now,
            }, key=key)
            state.stats.entities_created += 1
            return rid
        except RecordExistsError:
            pass

        patch: dict[str, Any] = {"properties": entity.properties, "updatedAt": now}
        existing = await self._store.get(rid)
        if existing is not None and existing.get("type") == IMPLICIT_TYPE:
            # A placeholder is promoted once the entity is actually mentioned.
            patch.update(label=entity.label, type=entity.entity_type)
        await self._store.merge(rid, patch)
        state.stats.entities_merged += 1
        log.debug("reconcile.entity_merged", entity_id=rid)
        return rid

    async def _ensure_endpoint(self, label: str, state: _RunState) -> str:
        key = normalize_label(label)
        rid = record_id(ENTITY_TABLE, key)
        if await self._store.get(rid) is not None:
            return rid
        now = utc_now()
        try:
            await self._store.create(ENTITY_TABLE, {
                "label": label,
                "type": IMPLICIT_TYPE,
                "properties": {},
                "metadata": {"source": state.document_id},
                "createdAt": now,
                "updatedAt": now,
            }, key=key)
        except RecordExistsError:
            return rid
        state.stats.implicit_nodes_created += 1
        state.stats.entities_inserted += 1
        log.info("reconcile.self_healed", entity_id=rid, label=label)
        return rid

    async def _write_relationship(self, rel: ExtractedRelationship, state: _RunState) -> None:
        from_id = await self._ensure_endpoint(rel.source, state)
        to_id = await self._ensure_endpoint(rel.target, state)
        table = normalize_relationship_type(rel.relation_type)
        await self._unlocker.ensure_writable(table)
        await self._store.relate(table, from_id, to_id, {
            "confidence": rel.confidence,
            "source": state.document_id,
            "properties": rel.properties,
            "createdAt": utc_now(),
        })

    async def _chain_event(self, state: _RunState, index: int, event_id: str) -> None:
        previous = state.last_event_id
        state.last_event_id = event_id
        if previous is None:
            return
        try:
            await self._unlocker.ensure_writable(NEXT_TYPE)
            await self._store.relate(NEXT_TYPE, previous, event_id, {
                "confidence": 1.0,
                "source": state.document_id,
                "properties": {"row": index},
                "createdAt": utc_now(),
            })
        except Exception as e:
            _absorb(e, "reconcile.next_failed", row=index, previous=previous, current=event_id)
            state.stats.relationship_failures += 1
            return
        state.stats.relationships_inserted += 1
        state.stats.next_edges_inserted += 1
        log.debug("reconcile.next_linked", previous=previous, current=event_id)


def _absorb(exc: Exception, event: str, **context: Any) -> None:
    """Log a per-record failure, re-raising it if the run cannot continue."""
    outcome = classify(exc)
    if outcome is Outcome.FATAL:
        log.error(event, outcome=outcome.value, error=str(exc), **context)
        raise exc
    if outcome is Outcome.IGNORABLE:
        log.debug(event, outcome=outcome.value, error=str(exc), **context)
    else:
        log.warning(event, outcome=outcome.value, error=str(exc), **context)


def _sample(items: Iterable[dict[str, Any]], cap: int) -> list[dict[str, Any]]:
    sample = []
    for item in items:
        if len(sample) >= cap:
            break
        sample.append(item)
    return sample
