"""Tests for mapping memory, the relationship vocabulary, and schema proposals."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from loomgraph.errors import StorePermissionError
from loomgraph.extraction.llm_client import LLMError, MockLLMClient
from loomgraph.graph.models import MappingRule
from loomgraph.graph.store import MemoryGraphStore
from loomgraph.graph.unlock import SchemaUnlocker
from loomgraph.schema.memory import MappingMemory, header_signature, parse_header_line
from loomgraph.schema.proposal import SchemaProposer, render_knowledge
from loomgraph.schema.vocabulary import VocabularyLearner

M1 = [MappingRule("doctor_id", "TREATED_BY", "Doctor")]
M2 = [MappingRule("doctor_id", "SEEN_BY", "Physician")]


@pytest.fixture
def memory(store: MemoryGraphStore, unlocker: SchemaUnlocker) -> MappingMemory:
    return MappingMemory(store, unlocker)


@pytest.fixture
def vocabulary(store: MemoryGraphStore, unlocker: SchemaUnlocker) -> VocabularyLearner:
    return VocabularyLearner(store, unlocker)


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------

class TestHeaders:
    def test_parse_header_line(self):
        assert parse_header_line(' "patient_id", doctor_id ,\'ward\'') == [
            "patient_id", "doctor_id", "ward",
        ]

    def test_quoted_header_may_contain_comma(self):
        headers = parse_header_line('"city, state",zip')
        assert headers == ["city, state", "zip"]
        assert header_signature(headers) == "city, state|zip"

    def test_empty_line_has_no_headers(self):
        assert parse_header_line("") == []

    def test_signature_is_order_independent(self):
        assert header_signature(["b", "a", "c"]) == header_signature(["c", "b", "a"]) == "a|b|c"

    def test_signature_trims(self):
        assert header_signature([" a", "b "]) == "a|b"


# ---------------------------------------------------------------------------
# Mapping memory
# ---------------------------------------------------------------------------

class TestMappingMemory:
    async def test_miss(self, memory: MappingMemory):
        assert await memory.lookup(["patient_id", "doctor_id"]) is None

    async def test_save_then_lookup(self, memory: MappingMemory):
        assert await memory.save(["patient_id", "doctor_id"], M1, "visits.csv") is True
        found = await memory.lookup(["doctor_id", "patient_id"])
        assert found is not None
        assert found.approved_mapping == M1
        assert found.last_file_name == "visits.csv"
        assert found.signature == "doctor_id|patient_id"

    async def test_first_write_wins(self, memory: MappingMemory):
        await memory.save(["patient_id", "doctor_id"], M1, "visits.csv")
        assert await memory.save(["doctor_id", "patient_id"], M2, "visits-2.csv") is False

        found = await memory.lookup(["patient_id", "doctor_id"])
        assert found.approved_mapping == M1
        assert found.last_file_name == "visits.csv"

    async def test_lookup_is_exact(self, memory: MappingMemory):
        await memory.save(["patient_id", "doctor_id"], M1, "visits.csv")
        assert await memory.lookup(["patient_id", "doctor_id", "ward"]) is None
        assert await memory.lookup(["patient_id"]) is None

    async def test_oldest_duplicate_wins(self, store: MemoryGraphStore, memory: MappingMemory):
        await store.define_open_table("mapping_config")
        await store.create("mapping_config", {
            "signature": "a|b", "approved_mapping": [M2[0].to_dict()], "created_at": "2024-02-01",
        })
        await store.create("mapping_config", {
            "signature": "a|b", "approved_mapping": [M1[0].to_dict()], "created_at": "2024-01-01",
        })
        assert (await memory.lookup(["a", "b"])).approved_mapping == M1

    async def test_store_errors_propagate(self):
        store = AsyncMock()
        store.select.side_effect = StorePermissionError("mapping_config", "select")
        memory = MappingMemory(store, SchemaUnlocker(store))
        with pytest.raises(StorePermissionError):
            await memory.lookup(["a"])


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

class TestVocabularyLearner:
    async def test_learns_once(self, vocabulary: VocabularyLearner):
        assert await vocabulary.learn_if_new("TREATED_BY", "doctor_id -> Doctor") is True
        assert await vocabulary.learn_if_new("TREATED_BY", "other") is False
        known = await vocabulary.known_types()
        assert [(d.type, d.description) for d in known] == [("TREATED_BY", "doctor_id -> Doctor")]

    async def test_exact_match_only(self, vocabulary: VocabularyLearner):
        await vocabulary.learn_if_new("TREATED_BY")
        assert await vocabulary.learn_if_new("treated_by") is True

    async def test_empty_type_ignored(self, vocabulary: VocabularyLearner):
        assert await vocabulary.learn_if_new("") is False
        assert await vocabulary.known_types() == []

    async def test_failures_are_swallowed(self):
        store = AsyncMock()
        store.select.side_effect = StorePermissionError("relationship_def", "select")
        vocabulary = VocabularyLearner(store, SchemaUnlocker(store))
        assert await vocabulary.learn_if_new("TREATED_BY") is False
        assert await vocabulary.known_types() == []


# ---------------------------------------------------------------------------
# Schema proposal
# ---------------------------------------------------------------------------

class TestSchemaProposer:
    async def test_proposals_parsed(self, vocabulary: VocabularyLearner):
        mock = MockLLMClient()
        mock.set_response("headers: patient_id,doctor_id", {"proposals": [
            {"header_column": "doctor_id", "relationship_type": "TREATED_BY",
             "target_entity": "Doctor", "is_new": True, "reason": "doctor treats patient"},
            {"header_column": "patient_id"},
            "junk",
        ]})
        proposals = await SchemaProposer(mock, vocabulary).propose("visits.csv", ["patient_id", "doctor_id"])

        assert len(proposals) == 1
        assert proposals[0].to_rule() == MappingRule("doctor_id", "TREATED_BY", "Doctor")
        assert proposals[0].is_new is True
        assert mock.last_user_message == "File: visits.csv, Headers: patient_id,doctor_id"
        assert mock.calls[0][2] == 0.1

    async def test_known_types_included_in_prompt(self, vocabulary: VocabularyLearner):
        await vocabulary.learn_if_new("TREATED_BY", "doctor_id -> Doctor")
        mock = MockLLMClient()
        await SchemaProposer(mock, vocabulary).propose("x.csv", ["a"])
        assert '"TREATED_BY" (doctor_id -> Doctor)' in mock.last_system_prompt

    async def test_empty_vocabulary_prompt(self):
        assert render_knowledge([]) == "No existing rules."

    async def test_malformed_response_gives_no_proposals(self, vocabulary: VocabularyLearner):
        mock = MockLLMClient()
        mock.set_raw_response("headers", "no idea")
        assert await SchemaProposer(mock, vocabulary).propose("x.csv", ["a"]) == []

    async def test_llm_failure_raises(self, vocabulary: VocabularyLearner):
        mock = MockLLMClient()
        mock.fail_times("headers", 1)
        with pytest.raises(LLMError):
            await SchemaProposer(mock, vocabulary).propose("x.csv", ["a"])
