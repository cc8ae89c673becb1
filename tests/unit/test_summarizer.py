"""
Unit tests for the array summarizer.

Run with: pytest tests/unit/test_summarizer.py -v
"""

import pytest

from datascout.analysis.summarizer import (
    FieldStatsBuilder,
    flatten_one_level,
    json_type,
    summarize_array,
    summarize_arrays,
    summarize_entity,
)


class TestJsonType:
    """Test suite for json_type tagging"""

    def test_booleans_are_not_numbers(self):
        """Test bool is tagged boolean even though it subclasses int"""
        assert json_type(True) == "boolean"
        assert json_type(False) == "boolean"
        assert json_type(0) == "number"
        assert json_type(1.5) == "number"

    def test_container_and_null_tags(self):
        """Test tags for null, string, array and object"""
        assert json_type(None) == "null"
        assert json_type("x") == "string"
        assert json_type([]) == "array"
        assert json_type({}) == "object"


class TestFieldStats:
    """Test suite for per-field statistics"""

    def test_price_scenario(self):
        """Test the data/price payload profile"""
        payload = {"data": [{"id": 1, "price": 10.5}, {"id": 2, "price": None}]}

        summaries = summarize_arrays(payload)
        data = next(s for s in summaries if s.path == "$.data")

        assert data.length == 2
        assert data.scanned == 2
        assert data.field_stats["id"].present == 2
        assert data.field_stats["id"].nullish == 0
        assert data.field_stats["price"].present == 1
        assert data.field_stats["price"].nullish == 1
        assert data.field_stats["price"].numeric == {"min": 10.5, "max": 10.5, "sum": 10.5}

    def test_absent_key_counts_as_neither(self):
        """Test a missing key is neither present nor nullish"""
        builder = FieldStatsBuilder()
        builder.add({"a": 1, "b": None})
        builder.add({"a": 2})

        assert builder.stats["b"].present == 0
        assert builder.stats["b"].nullish == 1
        assert builder.stats["a"].present == 2

    def test_present_equals_sum_of_types(self):
        """Test present always equals the sum of the type counts"""
        builder = FieldStatsBuilder()
        for value in [1, "x", True, None, [1], {"k": 1}, 2.5]:
            builder.add({"v": value})

        stat = builder.stats["v"]
        assert stat.present == sum(stat.types.values())
        assert stat.types["number"] == 2
        assert stat.types["boolean"] == 1

    def test_boolean_never_numeric(self):
        """Test booleans do not produce numeric ranges"""
        builder = FieldStatsBuilder()
        builder.add({"flag": True})
        builder.add({"flag": False})

        assert builder.stats["flag"].numeric is None
        assert builder.stats["flag"].types == {"boolean": 2}

    def test_examples_and_date_detection(self):
        """Test first three examples are kept and ISO dates are flagged"""
        builder = FieldStatsBuilder()
        for day in ["2024-01-01", "2024-01-02T10:00:00Z", "2024-01-03", "2024-01-04"]:
            builder.add({"when": day})

        stat = builder.stats["when"]
        assert stat.examples == ["2024-01-01", "2024-01-02T10:00:00Z", "2024-01-03"]
        assert stat.has_date_like is True

    def test_unique_count_stops_at_ceiling(self):
        """Test distinct counting becomes a lower bound past the ceiling"""
        builder = FieldStatsBuilder(max_unique=3)
        for i in range(10):
            builder.add({"id": i})

        stat = builder.stats["id"]
        assert stat.unique == 3
        assert stat.unique_capped is True

    def test_unique_not_capped_below_ceiling(self):
        """Test repeated values are counted once"""
        builder = FieldStatsBuilder(max_unique=10)
        for value in ["a", "b", "a", "b"]:
            builder.add({"tag": value})

        assert builder.stats["tag"].unique == 2
        assert builder.stats["tag"].unique_capped is False


class TestFlattening:
    """Test suite for one-level flattening"""

    def test_objects_flattened_arrays_kept(self):
        """Test nested objects promote one level and arrays stay whole"""
        fields = dict(flatten_one_level({"a": {"b": 1}, "c": [1, 2]}))

        assert fields == {"a.b": 1, "c": [1, 2]}

    def test_only_one_level(self):
        """Test deeper objects are not flattened further"""
        fields = dict(flatten_one_level({"a": {"b": {"c": 1}}}))

        assert fields == {"a.b": {"c": 1}}

    def test_field_stats_use_flattened_names(self):
        """Test array summaries carry flattened field names"""
        summary = summarize_array([{"a": {"b": 1}, "c": [1, 2]}], "$")

        assert set(summary.field_stats) == {"a.b", "c"}
        assert summary.field_stats["c"].types == {"array": 1}


class TestSummarizeArrays:
    """Test suite for the array traversal"""

    def test_paths_and_nested_arrays(self):
        """Test every array is found with its path"""
        payload = {"items": [{"tags": ["x", "y"]}, {"tags": []}], "meta": {"pages": [1]}}

        paths = {s.path for s in summarize_arrays(payload)}

        assert "$.items" in paths
        assert "$.items[0].tags" in paths
        assert "$.meta.pages" in paths
        # Empty array below the default minimum length
        assert "$.items[1].tags" not in paths

    def test_min_array_length_zero_keeps_empty_arrays(self):
        """Test min_array_length=0 records empty arrays"""
        summaries = summarize_arrays({"empty": []}, min_array_length=0)

        assert [s.path for s in summaries] == ["$.empty"]
        assert summaries[0].length == 0
        assert summaries[0].columns == []

    def test_array_cap(self):
        """Test traversal stops at max_arrays"""
        payload = {f"k{i}": [i] for i in range(50)}

        assert len(summarize_arrays(payload, max_arrays=7)) == 7

    def test_scan_and_sample_bounds(self):
        """Test scanned and sample respect their windows"""
        items = [{"id": i, "v": None if i % 2 else i} for i in range(500)]

        summary = summarize_arrays(items, max_sample_size=4, max_elements_to_scan=100)[0]

        assert summary.length == 500
        assert summary.scanned == 100
        assert len(summary.sample) == 4
        for stat in summary.field_stats.values():
            assert stat.present + stat.nullish <= summary.scanned

    def test_columns_and_unique_keys(self):
        """Test columns follow first-seen order and distinct fields are unique keys"""
        items = [{"id": 1, "name": "a", "kind": "x"}, {"id": 2, "name": "b", "kind": "x"}]

        summary = summarize_array(items, "$")

        assert summary.columns == ["id", "name", "kind"]
        assert summary.unique_keys == ["id", "name"]

    def test_unique_keys_fall_back_to_id_names(self):
        """Test id-looking names are used when no field is distinct"""
        items = [{"user_id": 1, "kind": "x"}, {"user_id": 1, "kind": "x"}]

        assert summarize_array(items, "$").unique_keys == ["user_id"]

    def test_scalar_arrays_have_no_field_stats(self):
        """Test arrays of scalars produce no columns"""
        summary = summarize_array([1, 2, 3], "$")

        assert summary.columns == []
        assert summary.field_stats == {}
        assert summary.sample == [1, 2, 3]


class TestSummarizeEntity:
    """Test suite for entity summaries"""

    def test_data_array(self):
        """Test the data array is described"""
        entity = summarize_entity({"data": [{"id": 1, "name": "a"}, {"id": 2}]}, "https://x.test/api")

        assert entity["kind"] == "json"
        assert entity["path"] == "data"
        assert entity["count"] == 2
        assert entity["columns"] == ["id", "name"]
        assert entity["sample"] == [{"id": 1, "name": "a"}, {"id": 2}]

    def test_graphql_kind_and_data_object(self):
        """Test GraphQL URLs and object-valued data"""
        entity = summarize_entity({"data": {"viewer": {"id": 1}}}, "https://x.test/graphql")

        assert entity["kind"] == "graphql"
        assert entity["path"] == "data(object)"
        assert entity["count"] == 1

    def test_nothing_list_shaped(self):
        """Test payloads without a main list give None"""
        assert summarize_entity({"ok": True}) is None
        assert summarize_entity([]) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
