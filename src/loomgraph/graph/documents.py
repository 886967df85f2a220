"""Document records — one per ingestion run."""

from __future__ import annotations

from loomgraph.graph.models import DOCUMENT_TABLE, Document
from loomgraph.graph.store import GraphStore, utc_now
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.logging import get_logger

log = get_logger("documents")


class DocumentRepository:
    def __init__(self, store: GraphStore, unlocker: SchemaUnlocker) -> None:
        self._store = store
        self._unlocker = unlocker

    async def create(self, filename: str, content: str, file_type: str = "text") -> Document:
        await self._unlocker.ensure_writable(DOCUMENT_TABLE)
        record = await self._store.create(DOCUMENT_TABLE, {
            "filename": filename,
            "content": content,
            "fileType": file_type,
            "processedAt": utc_now(),
            "entityCount": 0,
            "relationshipCount": 0,
        })
        log.info("documents.created", document_id=record["id"], filename=filename)
        return Document.from_record(record)

    async def record_counts(
        self, document_id: str, entity_count: int, relationship_count: int,
    ) -> Document:
        """Store a run's final counts. The only mutation a document sees."""
        record = await self._store.merge(document_id, {
            "entityCount": entity_count,
            "relationshipCount": relationship_count,
            "processedAt": utc_now(),
        })
        return Document.from_record(record)

    async def get(self, document_id: str) -> Document | None:
        await self._unlocker.ensure_writable(DOCUMENT_TABLE)
        record = await self._store.get(document_id)
        return Document.from_record(record) if record else None

    async def list_all(self) -> list[Document]:
        await self._unlocker.ensure_writable(DOCUMENT_TABLE)
        return [Document.from_record(r) for r in await self._store.select(DOCUMENT_TABLE)]
