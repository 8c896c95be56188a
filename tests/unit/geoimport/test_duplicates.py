"""Unit tests for unique id derivation and duplicate analysis."""

import pytest

from geoimport.duplicates import (
    DuplicateAnalyzer,
    content_hash,
    generate_unique_id,
    get_by_path,
)
from geoimport.models import IdStrategy, IdStrategyType


# =============================================================================
# Path Resolution
# =============================================================================

def test_get_by_path_nested():
    assert get_by_path({"a": {"b": {"c": 3}}}, "a.b.c") == 3


def test_get_by_path_flat_key_with_dot_wins():
    row = {"a.b": "flat", "a": {"b": "nested"}}
    assert get_by_path(row, "a.b") == "flat"


def test_get_by_path_escaped_dot_addresses_one_column():
    assert get_by_path({"venue.name": "Hall"}, "venue\\.name") == "Hall"
    assert get_by_path({"venue.info": {"city": "Leeds"}}, "venue\\.info.city") == "Leeds"


def test_get_by_path_missing_returns_none():
    assert get_by_path({"a": 1}, "a.b") is None
    assert get_by_path({"a": 1}, None) is None


# =============================================================================
# Unique Ids
# =============================================================================

class TestGenerateUniqueId:
    def test_external_id(self):
        strategy = IdStrategy(type=IdStrategyType.EXTERNAL, external_id_path="id")
        assert generate_unique_id({"id": "EV-42"}, "ds", strategy) == "ds:ext:EV-42"

    def test_external_id_numeric_value(self):
        strategy = IdStrategy(type=IdStrategyType.EXTERNAL, external_id_path="id")
        assert generate_unique_id({"id": 42}, "ds", strategy) == "ds:ext:42"

    @pytest.mark.parametrize("value", [None, "", "has space", "x" * 256])
    def test_external_id_invalid_raises(self, value):
        strategy = IdStrategy(type=IdStrategyType.EXTERNAL, external_id_path="id")
        with pytest.raises(ValueError, match="external id"):
            generate_unique_id({"id": value}, "ds", strategy)

    def test_computed_id_ignores_other_fields(self):
        strategy = IdStrategy(type=IdStrategyType.COMPUTED, computed_id_fields=["title", "date"])
        first = generate_unique_id({"title": "Fair", "date": "2024-01-01", "note": "a"}, "ds", strategy)
        second = generate_unique_id({"title": "Fair", "date": "2024-01-01", "note": "b"}, "ds", strategy)
        assert first == second
        assert first.startswith("ds:comp:")
        assert len(first.split(":")[-1]) == 16

    def test_computed_id_field_order_is_irrelevant(self):
        a = IdStrategy(type=IdStrategyType.COMPUTED, computed_id_fields=["title", "date"])
        b = IdStrategy(type=IdStrategyType.COMPUTED, computed_id_fields=["date", "title"])
        row = {"title": "Fair", "date": "2024-01-01"}
        assert generate_unique_id(row, "ds", a) == generate_unique_id(row, "ds", b)

    def test_computed_without_fields_raises(self):
        with pytest.raises(ValueError):
            generate_unique_id({"a": 1}, "ds", IdStrategy(type=IdStrategyType.COMPUTED))

    def test_auto_is_content_hash(self):
        row = {"b": 2, "a": 1}
        unique_id = generate_unique_id(row, "ds", IdStrategy())
        assert unique_id == f"ds:auto:{content_hash({'a': 1, 'b': 2})}"

    def test_hybrid_falls_back_to_computed_then_auto(self):
        strategy = IdStrategy(
            type=IdStrategyType.HYBRID, external_id_path="id", computed_id_fields=["title"]
        )
        assert generate_unique_id({"id": "X1", "title": "t"}, "ds", strategy) == "ds:ext:X1"
        assert generate_unique_id({"id": None, "title": "t"}, "ds", strategy).startswith("ds:comp:")

        no_fields = IdStrategy(type=IdStrategyType.HYBRID, external_id_path="id")
        assert generate_unique_id({"title": "t"}, "ds", no_fields).startswith("ds:auto:")


# =============================================================================
# Duplicate Analyzer
# =============================================================================

class TestDuplicateAnalyzer:
    @pytest.fixture
    def strategy(self):
        return IdStrategy(type=IdStrategyType.EXTERNAL, external_id_path="id")

    def test_internal_duplicates_across_batches(self, strategy):
        analyzer = DuplicateAnalyzer("ds", strategy, lambda ids: {})
        analyzer.add_rows([{"id": "a"}, {"id": "b"}], start_row=0)
        analyzer.add_rows([{"id": "a"}, {"id": "c"}, {"id": "b"}], start_row=2)

        result = analyzer.result()

        assert [(d.row_number, d.first_occurrence) for d in result.internal] == [(2, 0), (4, 1)]
        assert result.summary.total_rows == 5
        assert result.summary.unique_rows == 3
        assert result.summary.internal_duplicates == 2
        assert result.summary.external_duplicates == 0

    def test_external_duplicates_use_first_occurrence(self, strategy):
        existing = {"ds:ext:b": "event-9"}
        analyzer = DuplicateAnalyzer("ds", strategy, lambda ids: {i: existing[i] for i in ids if i in existing})
        analyzer.add_rows([{"id": "a"}, {"id": "b"}, {"id": "b"}], start_row=0)

        result = analyzer.result()

        assert len(result.external) == 1
        assert result.external[0].row_number == 1
        assert result.external[0].existing_event_id == "event-9"
        assert result.row_numbers() == {1, 2}
        assert result.summary.unique_rows == 1

    def test_rows_without_id_are_not_duplicates(self, strategy):
        analyzer = DuplicateAnalyzer("ds", strategy, lambda ids: {})
        analyzer.add_rows([{"id": None}, {"id": None}], start_row=0)

        result = analyzer.result()

        assert result.internal == []
        assert result.summary.total_rows == 2
        assert result.summary.unique_rows == 2

    def test_external_lookup_is_chunked(self, strategy, monkeypatch):
        monkeypatch.setattr("geoimport.duplicates.EXTERNAL_QUERY_CHUNK_SIZE", 2)
        calls = []

        def lookup(ids):
            calls.append(list(ids))
            return {}

        analyzer = DuplicateAnalyzer("ds", strategy, lookup)
        analyzer.add_rows([{"id": str(i)} for i in range(5)], start_row=0)
        analyzer.result()

        assert [len(c) for c in calls] == [2, 2, 1]
