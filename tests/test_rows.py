"""Tests for row splitting and header detection."""

from loomgraph.graph.models import MappingRule
from loomgraph.rows import detect_header, split_rows, whole_text

RULES = [MappingRule("customer_id", "PERFORMED_BY", "Customer")]


class TestSplitRows:
    def test_blank_lines_dropped(self):
        batch = split_rows("a\n\n  \nb\r\nc\n", [], row_cap=50)
        assert batch.rows == ["a", "b", "c"]

    def test_header_detected_from_first_rule(self):
        batch = split_rows("customer_id,action\nC001,Login\nC002,Logout", RULES, row_cap=50)
        assert batch.header_line == "customer_id,action"
        assert batch.rows == ["C001,Login", "C002,Logout"]

    def test_no_rules_means_no_header(self):
        batch = split_rows("id,action\n1,Login\n2,Purchase", [], row_cap=50)
        assert batch.header_line is None
        assert batch.rows == ["id,action", "1,Login", "2,Purchase"]

    def test_single_line_is_never_a_header(self):
        batch = split_rows("customer_id,action", RULES, row_cap=50)
        assert batch.header_line is None
        assert batch.rows == ["customer_id,action"]

    def test_cap_counts_skipped_rows(self):
        text = "customer_id\n" + "\n".join(f"C{i:03d}" for i in range(5))
        batch = split_rows(text, RULES, row_cap=3)
        assert batch.rows == ["C000", "C001", "C002"]
        assert batch.rows_skipped == 2

    def test_detect_header_needs_nonempty_column(self):
        assert detect_header("anything", [MappingRule("", "X", "Y")]) is False
        assert detect_header("customer_id,x", RULES) is True


class TestWholeText:
    def test_truncates(self):
        assert whole_text("abcdef", max_chars=3).rows == ["abc"]

    def test_blank_text_has_no_rows(self):
        assert whole_text("   ", max_chars=10).rows == []
