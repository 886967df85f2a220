"""Relationship vocabulary — the relationship types the system has learned.

The vocabulary is fed back into schema proposals so the LLM reuses known
types instead of inventing synonyms. Learning is best-effort and never on
the critical path: failures are logged and swallowed.
"""

from __future__ import annotations

from loomgraph.errors import Outcome, classify
from loomgraph.graph.models import RELATIONSHIP_DEF_TABLE, RelationshipDef
from loomgraph.graph.store import GraphStore, utc_now
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.logging import get_logger

log = get_logger("vocabulary")


class VocabularyLearner:
    def __init__(self, store: GraphStore, unlocker: SchemaUnlocker) -> None:
        self._store = store
        self._unlocker = unlocker

    async def learn_if_new(self, rel_type: str, description: str = "") -> bool:
        """Insert `rel_type` unless an exact match is already known.

        Returns:
            True if the type was newly learned.
        """
        if not rel_type:
            return False
        try:
            await self._unlocker.ensure_writable(RELATIONSHIP_DEF_TABLE)
            existing = await self._store.select(
                RELATIONSHIP_DEF_TABLE, {"type": rel_type}, limit=1,
            )
            if existing:
                return False
            await self._store.create(RELATIONSHIP_DEF_TABLE, {
                "type": rel_type,
                "description": description,
                "learned_at": utc_now(),
            })
        except Exception as e:
            level = "debug" if classify(e) is Outcome.IGNORABLE else "warning"
            getattr(log, level)("vocabulary.learn_failed", type=rel_type, error=str(e))
            return False
        log.info("vocabulary.learned", type=rel_type)
        return True

    async def known_types(self) -> list[RelationshipDef]:
        """All learned types, oldest first. Empty if the store can't be read."""
        try:
            await self._unlocker.ensure_writable(RELATIONSHIP_DEF_TABLE)
            records = await self._store.select(RELATIONSHIP_DEF_TABLE)
        except Exception as e:
            log.warning("vocabulary.read_failed", error=str(e))
            return []
        defs = [
            RelationshipDef(
                type=r["type"],
                description=r.get("description", ""),
                learned_at=r.get("learned_at"),
            )
            for r in records if r.get("type")
        ]
        return sorted(defs, key=lambda d: d.learned_at or "")
