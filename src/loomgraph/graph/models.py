"""Domain records persisted in the store, and the table names they live in."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Table names
# ---------------------------------------------------------------------------

ENTITY_TABLE = "entity"
DOCUMENT_TABLE = "document"
MAPPING_CONFIG_TABLE = "mapping_config"
RELATIONSHIP_DEF_TABLE = "relationship_def"

# Tables that hold bookkeeping records rather than graph nodes or edges.
SYSTEM_TABLES = frozenset({DOCUMENT_TABLE, MAPPING_CONFIG_TABLE, RELATIONSHIP_DEF_TABLE})

CORE_TABLES = (ENTITY_TABLE, DOCUMENT_TABLE, MAPPING_CONFIG_TABLE, RELATIONSHIP_DEF_TABLE)

# ---------------------------------------------------------------------------
# Reserved types
# ---------------------------------------------------------------------------

IMPLICIT_TYPE = "Implicit"  # placeholder created for an unseen edge endpoint
MISSING_TYPE = "Missing"  # read-time placeholder in permissive mode
DEFAULT_ENTITY_TYPE = "Concept"
UNKNOWN_ENTITY_TYPE = "Unknown"
NEXT_TYPE = "NEXT"
UNKNOWN_RELATIONSHIP_TYPE = "UNKNOWN"  # same table name the normalizer gives an empty type


@dataclass(frozen=True, slots=True)
class Entity:
    """A graph node as read back from the store."""

    id: str
    label: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None
    missing: bool = False

    @property
    def is_implicit(self) -> bool:
        return self.type == IMPLICIT_TYPE

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Entity:
        rid = str(record["id"])
        properties = record.get("properties")
        return cls(
            id=rid,
            label=record.get("label") or rid,
            type=record.get("type") or UNKNOWN_ENTITY_TYPE,
            properties=properties if isinstance(properties, dict) else {},
            metadata=record.get("metadata") or {},
            created_at=record.get("createdAt"),
            updated_at=record.get("updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "properties": self.properties,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.missing:
            data["missing"] = True
        return data


@dataclass(frozen=True, slots=True)
class Relationship:
    """A directed, typed edge as read back from the store."""

    id: str
    from_id: str
    to_id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    confidence: float = 1.0
    source: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.from_id,
            "to": self.to_id,
            "type": self.type,
            "properties": self.properties,
            "confidence": self.confidence,
            "source": self.source,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class Document:
    """One ingestion run's source text and final counts."""

    id: str
    filename: str
    content: str
    file_type: str
    processed_at: str | None = None
    entity_count: int = 0
    relationship_count: int = 0

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Document:
        return cls(
            id=str(record["id"]),
            filename=record.get("filename", ""),
            content=record.get("content", ""),
            file_type=record.get("fileType", "text"),
            processed_at=record.get("processedAt"),
            entity_count=int(record.get("entityCount") or 0),
            relationship_count=int(record.get("relationshipCount") or 0),
        )


@dataclass(frozen=True, slots=True)
class MappingRule:
    """Binds a source column to a relationship type and target entity role."""

    header_column: str
    relationship_type: str
    target_entity: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MappingRule:
        return cls(
            header_column=str(data.get("header_column", "")),
            relationship_type=str(data.get("relationship_type", "")),
            target_entity=str(data.get("target_entity", "")),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "header_column": self.header_column,
            "relationship_type": self.relationship_type,
            "target_entity": self.target_entity,
        }


@dataclass(frozen=True, slots=True)
class MappingConfig:
    """An approved mapping remembered under a header signature."""

    signature: str
    approved_mapping: list[MappingRule]
    last_file_name: str = ""
    created_at: str | None = None
    id: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> MappingConfig:
        return cls(
            id=record.get("id"),
            signature=record["signature"],
            approved_mapping=[
                MappingRule.from_dict(r) for r in record.get("approved_mapping") or []
                if isinstance(r, dict)
            ],
            last_file_name=record.get("last_file_name", ""),
            created_at=record.get("created_at"),
        )


@dataclass(frozen=True, slots=True)
class RelationshipDef:
    """A relationship type the system has learned."""

    type: str
    description: str = ""
    learned_at: str | None = None
