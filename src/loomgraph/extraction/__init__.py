"""LLM boundary: clients and the extraction adapter."""

from loomgraph.extraction.llm_client import (
    AnthropicLLMClient,
    LLMClient,
    LLMError,
    MockLLMClient,
    OpenAILLMClient,
)
from loomgraph.extraction.pipeline import (
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionAdapter,
    ExtractionResult,
    repair_llm_json,
)

__all__ = [
    "AnthropicLLMClient",
    "ExtractedEntity",
    "ExtractedRelationship",
    "ExtractionAdapter",
    "ExtractionResult",
    "LLMClient",
    "LLMError",
    "MockLLMClient",
    "OpenAILLMClient",
    "repair_llm_json",
]
