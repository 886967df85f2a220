"""Splitting uploaded text into the rows one ingestion run processes."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from loomgraph.graph.models import MappingRule


@dataclass(frozen=True, slots=True)
class RowBatch:
    """Rows selected for one run.

    Attributes:
        rows: Row texts in input order, at most the row cap.
        header_line: The discarded header line, if one was detected.
        rows_skipped: Rows beyond the cap that this run will not process.
    """

    rows: list[str] = field(default_factory=list)
    header_line: str | None = None
    rows_skipped: int = 0


def detect_header(first_line: str, rules: Sequence[MappingRule]) -> bool:
    """A first line is a header if it contains the first rule's column name."""
    return bool(rules) and bool(rules[0].header_column) and rules[0].header_column in first_line


def split_rows(text: str, rules: Sequence[MappingRule], *, row_cap: int) -> RowBatch:
    """Split text into non-blank lines, drop a detected header, apply the cap.

    Rows past `row_cap` are dropped, not queued.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    header_line = None
    if len(lines) > 1 and detect_header(lines[0], rules):
        header_line, lines = lines[0], lines[1:]
    return RowBatch(
        rows=lines[:row_cap],
        header_line=header_line,
        rows_skipped=max(0, len(lines) - row_cap),
    )


def whole_text(text: str, *, max_chars: int) -> RowBatch:
    """Treat the whole input as one row, truncated to `max_chars`."""
    return RowBatch(rows=[text[:max_chars]] if text.strip() else [])
