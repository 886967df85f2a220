"""LoomGraph — LLM-driven ingestion of tabular and free text into a schemaless graph."""

__version__ = "0.1.0"

from loomgraph.api import LoomGraph
from loomgraph.graph.reader import GraphSnapshot
from loomgraph.graph.store import MemoryGraphStore, StoreConnection

__all__ = [
    "GraphSnapshot",
    "LoomGraph",
    "MemoryGraphStore",
    "StoreConnection",
]
