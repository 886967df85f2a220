"""Schema learning: mapping memory, relationship vocabulary, and proposals."""

from loomgraph.schema.memory import MappingMemory, header_signature, parse_header_line
from loomgraph.schema.proposal import MappingProposal, SchemaProposer
from loomgraph.schema.vocabulary import VocabularyLearner

__all__ = [
    "MappingMemory",
    "MappingProposal",
    "SchemaProposer",
    "VocabularyLearner",
    "header_signature",
    "parse_header_line",
]
