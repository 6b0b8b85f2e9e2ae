"""
Tests for pattern aggregation and fingerprinting.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from bim_classifier.aggregation.pattern_aggregator import (
    FINGERPRINT_LENGTH,
    PatternAggregator,
    build_pattern,
    compute_dimension_range,
    compute_fingerprint,
    group_elements,
)
from bim_classifier.database.element_store import InMemoryElementStore
from bim_classifier.exceptions import ElementStoreError, ValidationError
from bim_classifier.models import DimensionRange, ExecutionContext, PatternKey


class TestFingerprint:
    """Test fingerprint computation."""

    def test_fingerprint_is_deterministic(self) -> None:
        """Same key gives the same fingerprint."""
        key = PatternKey("Wall", "Basic", "Generic", "Concrete", "Interior")
        same = PatternKey("Wall", "Basic", "Generic", "Concrete", "Interior")

        assert compute_fingerprint(key) == compute_fingerprint(same)

    def test_fingerprint_is_full_sha256_hex(self) -> None:
        fingerprint = compute_fingerprint(PatternKey("Wall", None, None, None, None))

        assert len(fingerprint) == FINGERPRINT_LENGTH
        assert all(c in "0123456789abcdef" for c in fingerprint)

    def test_known_value(self) -> None:
        """Fingerprint of the all-null key is the digest of the JSON array."""
        import hashlib

        expected = hashlib.sha256(b"[null,null,null,null,null]").hexdigest()

        assert compute_fingerprint(PatternKey(None, None, None, None, None)) == expected

    def test_null_and_empty_string_are_distinct(self) -> None:
        with_null = PatternKey("Wall", None, "Generic", "Concrete", "Interior")
        with_empty = PatternKey("Wall", "", "Generic", "Concrete", "Interior")

        assert compute_fingerprint(with_null) != compute_fingerprint(with_empty)

    def test_separator_in_value_does_not_collide(self) -> None:
        """Values containing the label separator still produce distinct fingerprints."""
        first = PatternKey("Wall_Basic", "Generic", None, None, None)
        second = PatternKey("Wall", "Basic_Generic", None, None, None)

        assert first.label == second.label
        assert compute_fingerprint(first) != compute_fingerprint(second)

    def test_grouping_is_case_sensitive(self) -> None:
        upper = PatternKey("Wall", "Basic", None, None, None)
        lower = PatternKey("wall", "basic", None, None, None)

        assert compute_fingerprint(upper) != compute_fingerprint(lower)


class TestDimensionStatistics:
    """Test null-safe dimension reduction."""

    def test_range_ignores_nulls(self) -> None:
        result = compute_dimension_range([Decimal("10"), None, Decimal("30")])

        assert result.min == Decimal("10")
        assert result.max == Decimal("30")
        assert result.avg == Decimal("20")

    def test_all_null_gives_empty_range(self) -> None:
        result = compute_dimension_range([None, None])

        assert result == DimensionRange()
        assert result.is_empty
        assert result.min is None and result.max is None and result.avg is None

    def test_empty_input_gives_empty_range(self) -> None:
        assert compute_dimension_range([]).is_empty

    def test_floats_are_converted_to_decimal(self) -> None:
        result = compute_dimension_range([1.5, 2.5])

        assert result.avg == Decimal("2.0")
        assert isinstance(result.min, Decimal)

    def test_range_serializes_to_strings(self) -> None:
        result = compute_dimension_range([Decimal("1.5")])

        assert result.to_dict() == {"min": "1.5", "max": "1.5", "avg": "1.5"}
        assert DimensionRange().to_dict() == {"min": None, "max": None, "avg": None}


class TestGrouping:
    """Test in-process grouping."""

    def test_wall_pipe_scenario(self, wall_pipe_elements) -> None:
        """Two walls and three pipes give exactly two patterns."""
        patterns = group_elements(wall_pipe_elements)

        assert len(patterns) == 2
        counts = sorted(p.element_count for p in patterns)
        assert counts == [2, 3]

        by_category = {p.key.category: p for p in patterns}
        assert by_category["Wall"].element_ids == (1, 2)
        assert by_category["Pipe"].element_ids == (3, 4, 5)

    def test_partition_property(self, wall_pipe_elements, element_factory) -> None:
        """Every element lands in exactly one pattern."""
        elements = wall_pipe_elements + [
            element_factory(6, ("Wall", None, "Generic", "Concrete", "Interior")),
            element_factory(7, ("Wall", "", "Generic", "Concrete", "Interior")),
            element_factory(8, (None, None, None, None, None)),
        ]

        patterns = group_elements(elements)

        all_ids = [i for p in patterns for i in p.element_ids]
        assert sorted(all_ids) == [e.id for e in elements]
        assert len(all_ids) == len(set(all_ids))
        assert sum(p.element_count for p in patterns) == len(elements)

    def test_null_distinct_grouping(self, element_factory) -> None:
        """A null family and an empty family form separate patterns."""
        elements = [
            element_factory(1, ("Wall", None, "Generic", "Concrete", "Interior")),
            element_factory(2, ("Wall", "", "Generic", "Concrete", "Interior")),
        ]

        patterns = group_elements(elements)

        assert len(patterns) == 2
        assert {p.key.family for p in patterns} == {None, ""}

    def test_dimension_statistics(self, wall_pipe_elements) -> None:
        patterns = {p.key.category: p for p in group_elements(wall_pipe_elements)}

        wall = patterns["Wall"].dimension_stats
        assert wall.length == DimensionRange(
            min=Decimal("3000"), max=Decimal("4500"), avg=Decimal("3750")
        )
        assert wall.height.avg == Decimal("2700")
        assert wall.width.is_empty
        assert wall.diameter.is_empty

        pipe = patterns["Pipe"].dimension_stats
        assert pipe.length.avg == Decimal("1000")
        assert pipe.diameter.min == pipe.diameter.max == Decimal("15")

    def test_sample_size_caps_samples(self, element_factory) -> None:
        key = ("Duct", "Rect", "400x200", "Steel", "MEP")
        elements = [element_factory(i, key) for i in range(20, 0, -1)]

        pattern = build_pattern(elements[0].pattern_key, elements, sample_size=5)

        assert pattern.element_count == 20
        assert len(pattern.element_ids) == 20
        assert [e.id for e in pattern.sample_elements] == [1, 2, 3, 4, 5]

    def test_fingerprint_ignores_samples_and_counts(self, element_factory) -> None:
        key = ("Duct", "Rect", "400x200", "Steel", "MEP")
        small = build_pattern(element_factory(1, key).pattern_key, [element_factory(1, key)])
        large = build_pattern(
            element_factory(1, key).pattern_key,
            [element_factory(i, key) for i in range(1, 10)],
        )

        assert small.fingerprint == large.fingerprint


class TestPatternAggregator:
    """Test the PatternAggregator component."""

    @pytest.mark.asyncio
    async def test_aggregate_in_process(self, wall_pipe_elements) -> None:
        store = InMemoryElementStore(wall_pipe_elements)
        aggregator = PatternAggregator(store)

        patterns = await aggregator.aggregate([1, 2, 3, 4, 5])

        assert not aggregator.uses_server_side_grouping
        assert [p.element_count for p in patterns] == [3, 2]
        assert patterns[0].key.category == "Pipe"

    @pytest.mark.asyncio
    async def test_aggregate_subset_and_unknown_ids(self, wall_pipe_elements) -> None:
        aggregator = PatternAggregator(InMemoryElementStore(wall_pipe_elements))

        patterns = await aggregator.aggregate([1, 3, 99])

        assert sorted(p.element_count for p in patterns) == [1, 1]

    @pytest.mark.asyncio
    async def test_empty_input_returns_no_patterns(self) -> None:
        store = Mock()
        store.get_by_ids = AsyncMock()
        aggregator = PatternAggregator(store, prefer_server_side=False)

        assert await aggregator.aggregate([]) == []
        store.get_by_ids.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_collapsed(self, wall_pipe_elements) -> None:
        store = InMemoryElementStore(wall_pipe_elements)
        aggregator = PatternAggregator(store)

        patterns = await aggregator.aggregate([1, 1, 2, 2])

        assert len(patterns) == 1
        assert patterns[0].element_count == 2

    @pytest.mark.asyncio
    async def test_server_side_grouping_preferred(self, wall_pipe_elements) -> None:
        expected = group_elements(wall_pipe_elements, sample_size=10)
        store = Mock()
        store.aggregate_patterns = AsyncMock(return_value=expected)
        store.get_by_ids = AsyncMock()
        aggregator = PatternAggregator(store, sample_size=10)

        patterns = await aggregator.aggregate([1, 2, 3, 4, 5], context=ExecutionContext())

        assert aggregator.uses_server_side_grouping
        store.aggregate_patterns.assert_awaited_once_with([1, 2, 3, 4, 5], 10)
        store.get_by_ids.assert_not_called()
        assert {p.fingerprint for p in patterns} == {p.fingerprint for p in expected}

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self) -> None:
        store = Mock(spec=["get_by_ids", "list_patterns", "count_patterns"])
        store.get_by_ids = AsyncMock(
            side_effect=ElementStoreError("connection lost", operation="get_by_ids")
        )
        aggregator = PatternAggregator(store)

        with pytest.raises(ElementStoreError):
            await aggregator.aggregate([1])
        assert store.get_by_ids.await_count == 1

    @pytest.mark.asyncio
    async def test_list_and_count_patterns(self, wall_pipe_elements) -> None:
        aggregator = PatternAggregator(InMemoryElementStore(wall_pipe_elements))

        first_page = await aggregator.list_patterns(skip=0, take=1)

        assert await aggregator.count_patterns() == 2
        assert len(first_page) == 1
        assert first_page[0].element_count == 3

    @pytest.mark.asyncio
    async def test_list_patterns_rejects_bad_paging(self) -> None:
        aggregator = PatternAggregator(InMemoryElementStore())

        with pytest.raises(ValidationError):
            await aggregator.list_patterns(skip=-1, take=10)
        with pytest.raises(ValidationError):
            await aggregator.list_patterns(skip=0, take=0)

    def test_invalid_sample_size(self) -> None:
        with pytest.raises(ValidationError):
            PatternAggregator(InMemoryElementStore(), sample_size=0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sample_size", [0, -1])
    async def test_invalid_per_call_sample_size(self, wall_pipe_elements, sample_size) -> None:
        aggregator = PatternAggregator(InMemoryElementStore(wall_pipe_elements))

        with pytest.raises(ValidationError):
            await aggregator.aggregate([1, 2, 3, 4, 5], sample_size=sample_size)

    @pytest.mark.asyncio
    async def test_per_call_sample_size_overrides_default(self, wall_pipe_elements) -> None:
        aggregator = PatternAggregator(InMemoryElementStore(wall_pipe_elements))

        patterns = await aggregator.aggregate([1, 2, 3, 4, 5], sample_size=1)

        assert [len(p.sample_elements) for p in patterns] == [1, 1]
        assert [p.element_count for p in patterns] == [3, 2]
