"""Shared test fixtures for LoomGraph."""

import pytest

from loomgraph.config import LoomGraphConfig
from loomgraph.extraction.llm_client import MockLLMClient
from loomgraph.extraction.pipeline import ExtractionAdapter
from loomgraph.graph.documents import DocumentRepository
from loomgraph.graph.reconcile import IngestionReconciler
from loomgraph.graph.store import MemoryGraphStore
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.logging import configure_logging


@pytest.fixture
def test_config() -> LoomGraphConfig:
    """Config with mock LLM provider and no backoff delays — no real API calls."""
    return LoomGraphConfig(
        llm_provider="mock",
        log_level="DEBUG",
        log_format="json",
        extraction_base_delay=0.0,
        store_retry_base_delay=0.0,
    )


@pytest.fixture(autouse=True)
def _setup_logging(test_config: LoomGraphConfig) -> None:
    """Ensure structured logging is configured for all tests."""
    configure_logging(test_config)


@pytest.fixture
def store() -> MemoryGraphStore:
    """Fresh empty store."""
    return MemoryGraphStore()


@pytest.fixture
def unlocker(store: MemoryGraphStore) -> SchemaUnlocker:
    return SchemaUnlocker(store)


@pytest.fixture
def documents(store: MemoryGraphStore, unlocker: SchemaUnlocker) -> DocumentRepository:
    return DocumentRepository(store, unlocker)


@pytest.fixture
def mock_llm() -> MockLLMClient:
    return MockLLMClient()


@pytest.fixture
def mock_llm_with_events() -> MockLLMClient:
    """MockLLMClient pre-loaded with a three-row event log.

    Row 1 and row 3 describe events performed by the same customer; row 2
    has no event entity at all.
    """
    mock = MockLLMClient()

    mock.set_response("c001,login", {
        "entities": [
            {"type": "Event", "label": "Login C001", "properties": {"timestamp": "2023-10-01T10:00:00Z"}},
            {"type": "Customer", "label": "C001"},
        ],
        "relationships": [
            {"from": "C001", "to": "Login C001", "type": "PERFORMED", "confidence": 1.0},
        ],
    })

    mock.set_response("c001,profile", {
        "entities": [
            {"type": "Customer", "label": "C001", "properties": {"tier": "gold"}},
        ],
        "relationships": [],
    })

    mock.set_response("c001,purchase", {
        "entities": [
            {"type": "Transaction", "label": "Purchase C001"},
            {"type": "Customer", "label": "C001"},
            {"type": "Branch", "label": "Downtown"},
        ],
        "relationships": [
            {"from": "C001", "to": "Purchase C001", "type": "PERFORMED"},
            {"from": "Purchase C001", "to": "Downtown", "type": "occurred at"},
        ],
    })

    return mock


@pytest.fixture
def reconciler(
    store: MemoryGraphStore,
    unlocker: SchemaUnlocker,
    documents: DocumentRepository,
    mock_llm_with_events: MockLLMClient,
) -> IngestionReconciler:
    """Reconciler wired to the event-log corpus with retries but no delays."""
    adapter = ExtractionAdapter(mock_llm_with_events, max_attempts=3, base_delay=0.0)
    return IngestionReconciler(store, adapter, unlocker, documents)
