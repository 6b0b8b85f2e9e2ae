"""
Tests for the SQL element store against an in-memory SQLite database.
"""

from decimal import Decimal

import pytest

from bim_classifier.aggregation.pattern_aggregator import (
    PatternAggregator,
    group_elements,
    sort_patterns,
)
from bim_classifier.config import BimClassifierConfig
from bim_classifier.database import element_store as element_store_module
from bim_classifier.database.element_store import InMemoryElementStore, SqlElementStore
from bim_classifier.database.engine import DatabaseManager
from bim_classifier.database.models import BimElement
from bim_classifier.exceptions import ElementStoreError, ValidationError

ROWS = [
    # id, category, family, type, material, location_type, length, width, diameter
    (1, "Wall", "Basic", "Generic", "Concrete", "Interior", "3000", "200", None),
    (2, "Wall", "Basic", "Generic", "Concrete", "Interior", "4500", None, None),
    (3, "Pipe", "Copper", "15mm", "Copper", "MEP", "1200", None, "15"),
    (4, "Pipe", "Copper", "15mm", "Copper", "MEP", "800", None, "15"),
    (5, "Pipe", "Copper", "15mm", "Copper", "MEP", None, None, "15"),
    (6, "Wall", None, "Generic", "Concrete", "Interior", None, None, None),
    (7, "Wall", "", "Generic", "Concrete", "Interior", "1000", None, None),
    (8, None, None, None, None, None, None, None, None),
]


def _decimal(value):
    return None if value is None else Decimal(value)


@pytest.fixture
def db_manager():
    manager = DatabaseManager(BimClassifierConfig(database_url="sqlite:///:memory:"))
    manager.create_tables()
    with manager.get_session() as session:
        for row in ROWS:
            element_id, category, family, type_, material, location, length, width, dia = row
            session.add(
                BimElement(
                    id=element_id,
                    category=category,
                    family=family,
                    type=type_,
                    material=material,
                    location_type=location,
                    length_mm=_decimal(length),
                    width_mm=_decimal(width),
                    diameter_mm=_decimal(dia),
                    spec=f"spec {element_id}",
                    meta_json={"Mark": f"M-{element_id}"},
                )
            )
    yield manager
    manager.close()


@pytest.fixture
def store(db_manager):
    return SqlElementStore(db_manager)


def _summary(patterns):
    return {
        p.fingerprint: (
            p.element_count,
            p.element_ids,
            tuple(e.id for e in p.sample_elements),
            p.dimension_stats,
        )
        for p in patterns
    }


class TestSqlElementStore:
    """Test SqlElementStore queries."""

    @pytest.mark.asyncio
    async def test_get_by_ids(self, store) -> None:
        elements = await store.get_by_ids([3, 1, 99])

        assert sorted(e.id for e in elements) == [1, 3]
        wall = next(e for e in elements if e.id == 1)
        assert wall.length_mm == Decimal("3000")
        assert wall.metadata == {"Mark": "M-1"}
        assert wall.spec == "spec 1"

    @pytest.mark.asyncio
    async def test_server_side_matches_in_process(self, store) -> None:
        ids = [row[0] for row in ROWS]

        server_side = await store.aggregate_patterns(ids, sample_size=2)
        in_process = group_elements(await store.get_by_ids(ids), sample_size=2)

        assert _summary(server_side) == _summary(in_process)

    @pytest.mark.asyncio
    async def test_null_distinct_groups(self, store) -> None:
        patterns = await store.aggregate_patterns([1, 2, 6, 7, 8])

        families = sorted(
            (p.key.family is None, p.key.family or "", p.element_count) for p in patterns
        )
        assert len(patterns) == 4
        assert (True, "", 1) in families
        assert (False, "", 1) in families
        assert (False, "Basic", 2) in families

    @pytest.mark.asyncio
    async def test_all_null_dimensions(self, store) -> None:
        patterns = await store.aggregate_patterns([8])

        assert len(patterns) == 1
        stats = patterns[0].dimension_stats
        assert all(getattr(stats, name).is_empty for name in ("length", "width", "height", "diameter"))

    @pytest.mark.asyncio
    async def test_partial_null_dimensions(self, store) -> None:
        (wall,) = await store.aggregate_patterns([1, 2])

        assert wall.dimension_stats.length.avg == Decimal("3750")
        assert wall.dimension_stats.width.min == wall.dimension_stats.width.max == Decimal("200")
        assert wall.dimension_stats.width.avg == Decimal("200")

    @pytest.mark.asyncio
    async def test_chunked_aggregation_merges_groups(self, store, monkeypatch) -> None:
        monkeypatch.setattr(element_store_module, "ID_CHUNK_SIZE", 2)
        ids = [row[0] for row in ROWS]

        chunked = await store.aggregate_patterns(ids, sample_size=10)
        monkeypatch.setattr(element_store_module, "ID_CHUNK_SIZE", 900)
        single = await store.aggregate_patterns(ids, sample_size=10)

        assert _summary(chunked) == _summary(single)
        pipe = next(p for p in chunked if p.key.category == "Pipe")
        assert pipe.element_ids == (3, 4, 5)
        assert pipe.dimension_stats.length.avg == Decimal("1000")

    @pytest.mark.asyncio
    async def test_aggregator_uses_server_side(self, store) -> None:
        aggregator = PatternAggregator(store)

        patterns = await aggregator.aggregate([1, 2, 3, 4, 5])

        assert aggregator.uses_server_side_grouping
        assert [p.element_count for p in patterns] == [3, 2]

    @pytest.mark.asyncio
    async def test_list_and_count_patterns(self, store) -> None:
        patterns = await store.list_patterns(skip=0, take=2)

        assert await store.count_patterns() == 5
        assert [p.element_count for p in patterns] == [3, 2]
        assert patterns[0].key.category == "Pipe"

    @pytest.mark.asyncio
    async def test_list_patterns_matches_in_memory_store(self, store) -> None:
        everything = await store.get_by_ids([row[0] for row in ROWS])
        memory = InMemoryElementStore(everything)

        sql_patterns = await store.list_patterns(take=100)
        memory_patterns = await memory.list_patterns(take=100)

        assert await memory.count_patterns() == await store.count_patterns()
        assert _summary(sort_patterns(sql_patterns)) == _summary(memory_patterns)

    @pytest.mark.asyncio
    async def test_query_failure_wrapped(self, db_manager) -> None:
        store = SqlElementStore(db_manager)
        db_manager.drop_tables()

        with pytest.raises(ElementStoreError) as exc_info:
            await store.get_by_ids([1])

        assert exc_info.value.operation is not None


class TestBimElementModel:
    """Test the BimElement ORM model."""

    def test_negative_dimension_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BimElement(id=1, category="Wall", length_mm=Decimal("-1"))

    def test_to_element_defaults_metadata(self) -> None:
        element = BimElement(id=1, category="Wall").to_element()

        assert element.metadata == {}
        assert element.pattern_key.category == "Wall"
