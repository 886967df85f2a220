"""LoomGraph public API — the main entry point for library consumers.

This module provides the `LoomGraph` class, which owns the store connection
and wires together the extraction adapter, ingestion reconciler, mapping
memory, vocabulary learner, schema proposer and graph reader behind a small
async API.

Usage:
    from loomgraph import LoomGraph

    async with LoomGraph(llm_provider="mock") as lg:
        result = await lg.ingest({"textContent": "id,action\\n1,Login", "fileName": "log.csv"})
        snapshot = await lg.read_graph()
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from loomgraph.config import LLMProvider, LogFormat, LoomGraphConfig, ReadMode
from loomgraph.errors import InputValidationError, LoomGraphError, StoreUnavailableError
from loomgraph.extraction.llm_client import (
    AnthropicLLMClient,
    LLMClient,
    LLMError,
    MockLLMClient,
    OpenAILLMClient,
)
from loomgraph.extraction.pipeline import ExtractionAdapter
from loomgraph.graph.documents import DocumentRepository
from loomgraph.graph.models import CORE_TABLES, MappingRule
from loomgraph.graph.reader import GraphReader, GraphSnapshot
from loomgraph.graph.reconcile import IngestionReconciler, ReconcileResult
from loomgraph.graph.store import StoreConnection, StoreFactory, store_factory_from_config
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.logging import configure_logging, get_logger
from loomgraph.rows import RowBatch, split_rows, whole_text
from loomgraph.schema.memory import MappingMemory, parse_header_line
from loomgraph.schema.proposal import SchemaProposer
from loomgraph.schema.vocabulary import VocabularyLearner

log = get_logger("api")

# How much of an uploaded file is inspected for its header line.
_HEADER_SCAN_CHARS = 1024


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class MappingRuleModel(BaseModel):
    header_column: str
    relationship_type: str
    target_entity: str = ""

    def to_rule(self) -> MappingRule:
        return MappingRule(self.header_column, self.relationship_type, self.target_entity)


class IngestRequest(BaseModel):
    """Payload of the ingestion entrypoint (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text_content: str = Field(alias="textContent")
    file_name: str = Field(default="input.txt", alias="fileName")
    approved_mapping: list[MappingRuleModel] | None = Field(default=None, alias="approvedMapping")
    save_to_memory: bool = Field(default=False, alias="saveToMemory")
    split_rows: bool = Field(default=True, alias="splitRows")

    @field_validator("text_content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("No text content")
        return value

    @field_validator("file_name", mode="before")
    @classmethod
    def _default_file_name(cls, value: Any) -> Any:
        return value or "input.txt"

    def rules(self) -> list[MappingRule]:
        return [m.to_rule() for m in self.approved_mapping or []]


def parse_ingest_request(payload: Mapping[str, Any] | IngestRequest) -> IngestRequest:
    """Validate an ingestion payload.

    Raises:
        InputValidationError: With a human-readable summary of what is wrong.
    """
    if isinstance(payload, IngestRequest):
        return payload
    if not isinstance(payload, Mapping):
        raise InputValidationError("Invalid JSON: expected an object")
    try:
        return IngestRequest.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(p) for p in first.get("loc", ())) or "body"
        if field_name == "textContent":
            raise InputValidationError("No text content") from e
        raise InputValidationError(f"{field_name}: {first.get('msg', 'invalid')}") from e


def error_payload(exc: BaseException) -> dict[str, Any]:
    return {"success": False, "error": str(exc), "errorKind": _error_kind(exc)}


def _error_kind(exc: BaseException) -> str:
    if isinstance(exc, InputValidationError):
        return "input_validation"
    if isinstance(exc, StoreUnavailableError):
        return "store_unavailable"
    if isinstance(exc, LLMError):
        return "llm"
    return "internal"


# ---------------------------------------------------------------------------
# LoomGraph facade
# ---------------------------------------------------------------------------

class LoomGraph:
    """The public API for LoomGraph.

    - `ingest(payload)` — Extract a file's rows into the graph.
    - `analyze(file_name, text)` — Propose (or recall) a column mapping.
    - `read_graph(document_id=None)` — Read the graph back.

    Usage:
        async with LoomGraph(llm_provider="mock") as lg:
            await lg.ingest({...})

        async with LoomGraph.from_config("config/default.yaml") as lg:
            ...
    """

    def __init__(
        self,
        *,
        llm_provider: str | None = None,
        llm_model: str | None = None,
        llm_api_key: str | None = None,
        read_mode: str | None = None,
        log_level: str | None = None,
        log_format: str | None = None,
        llm_client: LLMClient | None = None,
        store_factory: StoreFactory | None = None,
        config: LoomGraphConfig | None = None,
    ) -> None:
        base = config or LoomGraphConfig.load()
        overrides: dict[str, Any] = {}
        if llm_provider is not None:
            overrides["llm_provider"] = LLMProvider(llm_provider)
        if llm_model is not None:
            overrides["llm_model"] = llm_model
        if llm_api_key is not None:
            overrides["llm_api_key"] = llm_api_key
        if read_mode is not None:
            overrides["read_mode"] = ReadMode(read_mode)
        if log_level is not None:
            overrides["log_level"] = log_level
        if log_format is not None:
            overrides["log_format"] = LogFormat(log_format)
        self._config = base.model_copy(update=overrides) if overrides else base

        self._llm_client = llm_client
        self._store_factory = store_factory

        # Core components (initialized in start())
        self._connection: StoreConnection | None = None
        self._unlocker: SchemaUnlocker | None = None
        self._documents: DocumentRepository | None = None
        self._reconciler: IngestionReconciler | None = None
        self._memory: MappingMemory | None = None
        self._vocabulary: VocabularyLearner | None = None
        self._proposer: SchemaProposer | None = None
        self._reader: GraphReader | None = None

        self._started = False

    @classmethod
    def from_config(cls, path: str | Path, **kwargs: Any) -> LoomGraph:
        """Create a LoomGraph from a YAML config file (env vars still win)."""
        return cls(config=LoomGraphConfig.load(Path(path)), **kwargs)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Connect to the store, open the core tables and build components.

        Raises:
            StoreUnavailableError: If the store can't be reached.
        """
        if self._started:
            return

        configure_logging(self._config)
        config = self._config

        if self._llm_client is None:
            self._llm_client = _create_llm_client(config)
        self._connection = StoreConnection(
            self._store_factory or store_factory_from_config(config),
            max_attempts=config.store_connect_attempts,
            base_delay=config.store_retry_base_delay,
        )
        await self._connection.connect()

        self._unlocker = SchemaUnlocker(self._connection)
        await self._unlocker.ensure_all(CORE_TABLES)

        adapter = ExtractionAdapter(
            self._llm_client,
            max_attempts=config.extraction_max_attempts,
            base_delay=config.extraction_base_delay,
            temperature=config.extraction_temperature,
        )
        self._documents = DocumentRepository(self._connection, self._unlocker)
        self._reconciler = IngestionReconciler(
            self._connection,
            adapter,
            self._unlocker,
            self._documents,
            event_types=config.event_types,
            extraction_concurrency=config.extraction_concurrency,
        )
        self._memory = MappingMemory(self._connection, self._unlocker)
        self._vocabulary = VocabularyLearner(self._connection, self._unlocker)
        self._proposer = SchemaProposer(self._llm_client, self._vocabulary)
        self._reader = GraphReader(self._connection, mode=config.read_mode)

        self._started = True
        log.info(
            "loomgraph.started",
            llm_provider=config.llm_provider.value,
            store_backend=config.store_backend.value,
            read_mode=config.read_mode.value,
        )

    async def stop(self) -> None:
        """Close the store connection. Safe to call multiple times."""
        if not self._started:
            return
        if self._connection is not None:
            await self._connection.close()
        self._started = False
        log.info("loomgraph.stopped")

    async def __aenter__(self) -> LoomGraph:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # -- Write path ---------------------------------------------------------

    async def ingest(self, payload: Mapping[str, Any] | IngestRequest) -> dict[str, Any]:
        """Run one ingestion: validate, create the document, reconcile rows.

        Returns:
            `{"success": True, "stats": {...}, "entities": [...], "relationships": [...]}`
            or an error payload `{"success": False, "error": "...", "errorKind": "..."}`.
            A partially failed run still reports success; its counts are lower.
        """
        self._ensure_started()
        try:
            request = parse_ingest_request(payload)
        except InputValidationError as e:
            log.warning("ingest.invalid_request", error=str(e))
            return error_payload(e)

        config = self._config
        rules = request.rules()
        if request.split_rows:
            batch = split_rows(request.text_content, rules, row_cap=config.ingest_row_cap)
        else:
            batch = whole_text(request.text_content, max_chars=config.ingest_max_chars)
        if batch.rows_skipped:
            log.warning("ingest.rows_truncated", cap=config.ingest_row_cap, skipped=batch.rows_skipped)

        try:
            document = await self._documents.create(  # type: ignore[union-attr]
                request.file_name, request.text_content,
            )
            result = await self._reconciler.run(  # type: ignore[union-attr]
                batch.rows, rules, document.id,
                free_text=not request.split_rows and not rules,
            )
        except LoomGraphError as e:
            log.error("ingest.failed", file_name=request.file_name, error=str(e))
            return error_payload(e)

        for rule in rules:
            await self._vocabulary.learn_if_new(  # type: ignore[union-attr]
                rule.relationship_type, f"{rule.header_column} -> {rule.target_entity}",
            )
        mapping_saved = False
        if request.save_to_memory:
            mapping_saved = await self._remember_mapping(request, rules, batch)

        return self._ingest_payload(result, batch, mapping_saved)

    async def _remember_mapping(
        self, request: IngestRequest, rules: list[MappingRule], batch: RowBatch,
    ) -> bool:
        if not rules or batch.header_line is None:
            log.info("ingest.mapping_not_saved", reason="no header or no rules")
            return False
        try:
            return await self._memory.save(  # type: ignore[union-attr]
                parse_header_line(batch.header_line), rules, request.file_name,
            )
        except LoomGraphError as e:
            log.warning("ingest.mapping_save_failed", error=str(e))
            return False

    def _ingest_payload(
        self, result: ReconcileResult, batch: RowBatch, mapping_saved: bool,
    ) -> dict[str, Any]:
        stats = result.stats
        cap = self._config.ingest_sample_cap
        return {
            "success": True,
            "documentId": result.document_id,
            "stats": {
                "entitiesInserted": stats.entities_inserted,
                "relsInserted": stats.relationships_inserted,
                "implicitNodesCreated": stats.implicit_nodes_created,
                "rowsProcessed": stats.rows_processed,
                "rowsSkipped": batch.rows_skipped,
                "rowsWithErrors": stats.rows_with_errors,
            },
            "mappingSaved": mapping_saved,
            "entities": result.sample_entities(cap),
            "relationships": result.sample_relationships(cap),
        }

    # -- Schema proposal ----------------------------------------------------

    async def analyze(self, file_name: str, text_content: str) -> dict[str, Any]:
        """Recall a mapping for this file's header set or ask the LLM for one."""
        self._ensure_started()
        first_line = (text_content or "")[:_HEADER_SCAN_CHARS].split("\n")[0]
        headers = [h for h in parse_header_line(first_line) if h]
        if not headers:
            return error_payload(InputValidationError("No header row found"))

        try:
            remembered = await self._memory.lookup(headers)  # type: ignore[union-attr]
        except LoomGraphError as e:
            log.warning("analyze.memory_unavailable", error=str(e))
            remembered = None
        if remembered is not None:
            return {
                "success": True,
                "headers": headers,
                "proposals": [r.to_dict() for r in remembered.approved_mapping],
                "source": "MEMORY",
            }

        try:
            proposals = await self._proposer.propose(file_name, headers)  # type: ignore[union-attr]
        except LLMError as e:
            log.error("analyze.proposal_failed", file_name=file_name, error=str(e))
            return error_payload(e)
        return {
            "success": True,
            "headers": headers,
            "proposals": [p.to_dict() for p in proposals],
            "source": "AI",
        }

    # -- Read path ----------------------------------------------------------

    async def read_graph(self, document_id: str | None = None) -> GraphSnapshot:
        self._ensure_started()
        return await self._reader.read_graph(document_id)  # type: ignore[union-attr]

    # -- Properties ---------------------------------------------------------

    @property
    def config(self) -> LoomGraphConfig:
        return self._config

    @property
    def llm_client(self) -> LLMClient:
        self._ensure_started()
        return self._llm_client  # type: ignore[return-value]

    @property
    def store(self) -> StoreConnection:
        """The shared store handle (for advanced use cases)."""
        self._ensure_started()
        return self._connection  # type: ignore[return-value]

    @property
    def documents(self) -> DocumentRepository:
        self._ensure_started()
        return self._documents  # type: ignore[return-value]

    @property
    def memory(self) -> MappingMemory:
        self._ensure_started()
        return self._memory  # type: ignore[return-value]

    @property
    def vocabulary(self) -> VocabularyLearner:
        self._ensure_started()
        return self._vocabulary  # type: ignore[return-value]

    @property
    def is_started(self) -> bool:
        return self._started

    # -- Internal -----------------------------------------------------------

    def _ensure_started(self) -> None:
        if not self._started:
            raise RuntimeError(
                "LoomGraph is not started. Call await lg.start() or use "
                "'async with LoomGraph(...) as lg:'"
            )


def _create_llm_client(config: LoomGraphConfig) -> LLMClient:
    """Create the appropriate LLM client based on configuration."""
    if config.llm_provider == LLMProvider.MOCK:
        return MockLLMClient()
    if not config.llm_api_key:
        raise ValueError(
            f"LOOMGRAPH_LLM_API_KEY must be set when using the {config.llm_provider.value} provider."
        )
    if config.llm_provider == LLMProvider.ANTHROPIC:
        return AnthropicLLMClient(api_key=config.llm_api_key, model=config.llm_model)
    if config.llm_provider == LLMProvider.OPENAI:
        return OpenAILLMClient(
            api_key=config.llm_api_key,
            model=config.llm_model,
            endpoint=config.llm_endpoint,
            api_version=config.llm_api_version,
        )
    raise ValueError(f"Unknown LLM provider: {config.llm_provider}")
