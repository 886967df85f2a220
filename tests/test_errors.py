"""Tests for the error taxonomy and classify()."""

import asyncio

import pytest

from loomgraph.errors import (
    InputValidationError,
    Outcome,
    RecordExistsError,
    StoreConnectionError,
    StoreError,
    StorePermissionError,
    StoreUnavailableError,
    classify,
)
from loomgraph.extraction.llm_client import LLMError


class TestClassify:
    @pytest.mark.parametrize("exc", [
        InputValidationError("No text content"),
        StoreUnavailableError("down"),
        asyncio.CancelledError(),
        KeyboardInterrupt(),
    ])
    def test_fatal(self, exc):
        assert classify(exc) is Outcome.FATAL

    def test_record_exists_is_ignorable(self):
        assert classify(RecordExistsError("entity:c001")) is Outcome.IGNORABLE

    @pytest.mark.parametrize("exc", [
        StorePermissionError("WORKS_AT", "relate"),
        StoreConnectionError("timeout"),
        StoreError("boom"),
        LLMError("rate limited"),
        ValueError("bad value"),
    ])
    def test_recoverable(self, exc):
        assert classify(exc) is Outcome.RECOVERABLE


class TestMessages:
    def test_permission_error_names_table(self):
        e = StorePermissionError("WORKS_AT", "select")
        assert e.table == "WORKS_AT"
        assert "select" in str(e)

    def test_record_exists_keeps_id(self):
        assert RecordExistsError("entity:c001").record_id == "entity:c001"
