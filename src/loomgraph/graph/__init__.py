"""Store interface, domain records, table unlocking, and graph read-back.

The ingestion reconciler lives in `loomgraph.graph.reconcile`; it is not
re-exported here because it depends on the extraction package.
"""

from loomgraph.graph.documents import DocumentRepository
from loomgraph.graph.models import (
    Document,
    Entity,
    MappingConfig,
    MappingRule,
    Relationship,
    RelationshipDef,
)
from loomgraph.graph.reader import GraphReader, GraphSnapshot, TableLayout
from loomgraph.graph.store import (
    GraphStore,
    MemoryGraphStore,
    StoreConnection,
    TableCatalog,
    record_id,
    split_record_id,
)
from loomgraph.graph.unlock import SchemaUnlocker

__all__ = [
    "Document",
    "DocumentRepository",
    "Entity",
    "GraphReader",
    "GraphSnapshot",
    "GraphStore",
    "MappingConfig",
    "MappingRule",
    "MemoryGraphStore",
    "Relationship",
    "RelationshipDef",
    "SchemaUnlocker",
    "StoreConnection",
    "TableCatalog",
    "TableLayout",
    "record_id",
    "split_record_id",
]
