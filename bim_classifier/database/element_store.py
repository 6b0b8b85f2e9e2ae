"""
Element store collaborators.

The classifier only reads elements. ``ElementStore`` is the contract; the SQL
adapter pushes grouping and dimension reduction into the database, the
in-memory adapter returns raw rows and leaves grouping to the aggregator.
"""

import asyncio
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import and_, func, select

from ..aggregation.pattern_aggregator import (
    build_pattern,
    compute_fingerprint,
    group_elements,
    sort_patterns,
)
from ..exceptions import ElementStoreError
from ..models import (
    DIMENSION_NAMES,
    DimensionRange,
    DimensionStatistics,
    Element,
    Pattern,
    PatternKey,
)
from .engine import DatabaseManager
from .models import GROUPING_COLUMNS, BimElement

logger = logging.getLogger(__name__)

# Stays below SQLite's historic 999 bound-parameter limit
ID_CHUNK_SIZE = 900


class ElementStore(Protocol):
    """Read-only access to BIM elements.

    Stores may additionally implement
    ``aggregate_patterns(element_ids, sample_size) -> List[Pattern]`` to
    perform grouping server-side.
    """

    async def get_by_ids(self, element_ids: Sequence[int]) -> List[Element]: ...

    async def list_patterns(self, skip: int = 0, take: int = 1000) -> List[Pattern]: ...

    async def count_patterns(self) -> int: ...


def _chunks(values: Sequence[int], size: Optional[int] = None) -> Iterator[Sequence[int]]:
    size = size or ID_CHUNK_SIZE
    for start in range(0, len(values), size):
        yield values[start : start + size]


class InMemoryElementStore:
    """Element store over a list of elements; returns raw rows only."""

    def __init__(self, elements: Iterable[Element] = ()) -> None:
        self._elements: Dict[int, Element] = {e.id: e for e in elements}

    def add(self, element: Element) -> None:
        self._elements[element.id] = element

    async def get_by_ids(self, element_ids: Sequence[int]) -> List[Element]:
        return [self._elements[i] for i in element_ids if i in self._elements]

    async def list_patterns(self, skip: int = 0, take: int = 1000) -> List[Pattern]:
        patterns = sort_patterns(group_elements(self._elements.values()))
        return patterns[skip : skip + take]

    async def count_patterns(self) -> int:
        return len({e.pattern_key for e in self._elements.values()})


class _GroupAccumulator:
    """Merges per-chunk GROUP BY rows for one pattern key."""

    def __init__(self) -> None:
        self.count = 0
        self.mins: Dict[str, Optional[Decimal]] = {n: None for n in DIMENSION_NAMES}
        self.maxs: Dict[str, Optional[Decimal]] = {n: None for n in DIMENSION_NAMES}
        self.sums: Dict[str, Decimal] = {n: Decimal(0) for n in DIMENSION_NAMES}
        self.present: Dict[str, int] = {n: 0 for n in DIMENSION_NAMES}

    def add_row(self, row) -> None:
        self.count += row.element_count
        for name in DIMENSION_NAMES:
            non_null = getattr(row, f"{name}_count")
            if not non_null:
                continue
            low = Decimal(str(getattr(row, f"{name}_min")))
            high = Decimal(str(getattr(row, f"{name}_max")))
            self.mins[name] = low if self.mins[name] is None else min(self.mins[name], low)
            self.maxs[name] = high if self.maxs[name] is None else max(self.maxs[name], high)
            self.sums[name] += Decimal(str(getattr(row, f"{name}_sum")))
            self.present[name] += non_null

    def statistics(self) -> DimensionStatistics:
        ranges = {}
        for name in DIMENSION_NAMES:
            if self.present[name] == 0:
                ranges[name] = DimensionRange()
            else:
                ranges[name] = DimensionRange(
                    min=self.mins[name],
                    max=self.maxs[name],
                    avg=self.sums[name] / Decimal(self.present[name]),
                )
        return DimensionStatistics(**ranges)


class SqlElementStore:
    """
    SQLAlchemy-backed element store.

    MIN/MAX/SUM/COUNT(column) skip NULLs natively and GROUP BY treats NULL as
    its own group, which is exactly the null-distinct grouping the aggregator
    needs. Blocking session work runs in a worker thread.
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db_manager = db_manager

    @staticmethod
    def _grouping_columns():
        return [getattr(BimElement, c) for c in GROUPING_COLUMNS]

    @staticmethod
    def _key_filter(key: PatternKey):
        clauses = []
        for column_name, value in zip(GROUPING_COLUMNS, key.as_tuple()):
            column = getattr(BimElement, column_name)
            clauses.append(column.is_(None) if value is None else column == value)
        return and_(*clauses)

    def _stats_columns(self):
        columns = [func.count(BimElement.id).label("element_count")]
        for name in DIMENSION_NAMES:
            column = getattr(BimElement, f"{name}_mm")
            columns.extend(
                [
                    func.min(column).label(f"{name}_min"),
                    func.max(column).label(f"{name}_max"),
                    func.sum(column).label(f"{name}_sum"),
                    func.count(column).label(f"{name}_count"),
                ]
            )
        return columns

    # Synchronous implementations -------------------------------------------------

    def _get_by_ids_sync(self, element_ids: Sequence[int]) -> List[Element]:
        elements: List[Element] = []
        with self.db_manager.get_session() as session:
            for chunk in _chunks(list(element_ids)):
                rows = session.scalars(
                    select(BimElement).where(BimElement.id.in_(chunk))
                ).all()
                elements.extend(row.to_element() for row in rows)
        return elements

    def _aggregate_sync(self, element_ids: Sequence[int], sample_size: int) -> List[Pattern]:
        grouping = self._grouping_columns()
        accumulators: "OrderedDict[PatternKey, _GroupAccumulator]" = OrderedDict()
        members: Dict[PatternKey, List[int]] = {}

        with self.db_manager.get_session() as session:
            for chunk in _chunks(list(element_ids)):
                stats_rows = session.execute(
                    select(*grouping, *self._stats_columns())
                    .where(BimElement.id.in_(chunk))
                    .group_by(*grouping)
                ).all()
                for row in stats_rows:
                    key = PatternKey(*(getattr(row, c) for c in GROUPING_COLUMNS))
                    accumulators.setdefault(key, _GroupAccumulator()).add_row(row)

                id_rows = session.execute(
                    select(BimElement.id, *grouping).where(BimElement.id.in_(chunk))
                ).all()
                for row in id_rows:
                    key = PatternKey(*(getattr(row, c) for c in GROUPING_COLUMNS))
                    members.setdefault(key, []).append(row.id)

            sample_ids: List[int] = []
            for key in accumulators:
                members[key].sort()
                sample_ids.extend(members[key][:sample_size])

            samples: Dict[int, Element] = {}
            for chunk in _chunks(sample_ids):
                for row in session.scalars(
                    select(BimElement).where(BimElement.id.in_(chunk))
                ).all():
                    samples[row.id] = row.to_element()

        patterns = []
        for key, accumulator in accumulators.items():
            ids = members[key]
            patterns.append(
                Pattern(
                    key=key,
                    element_count=accumulator.count,
                    element_ids=tuple(ids),
                    sample_elements=tuple(samples[i] for i in ids[:sample_size]),
                    dimension_stats=accumulator.statistics(),
                    fingerprint=compute_fingerprint(key),
                )
            )
        return patterns

    def _list_patterns_sync(self, skip: int, take: int, sample_size: int) -> List[Pattern]:
        grouping = self._grouping_columns()
        element_count = func.count(BimElement.id)
        with self.db_manager.get_session() as session:
            keys: List[Tuple] = session.execute(
                select(*grouping, element_count.label("element_count"))
                .group_by(*grouping)
                .order_by(element_count.desc(), *grouping)
                .offset(skip)
                .limit(take)
            ).all()

            patterns = []
            for row in keys:
                key = PatternKey(*(getattr(row, c) for c in GROUPING_COLUMNS))
                elements = [
                    r.to_element()
                    for r in session.scalars(
                        select(BimElement).where(self._key_filter(key))
                    ).all()
                ]
                patterns.append(build_pattern(key, elements, sample_size))
        return patterns

    def _count_patterns_sync(self) -> int:
        distinct_keys = select(*self._grouping_columns()).distinct().subquery()
        with self.db_manager.get_session() as session:
            return session.execute(select(func.count()).select_from(distinct_keys)).scalar_one()

    # Async interface -------------------------------------------------------------

    async def get_by_ids(self, element_ids: Sequence[int]) -> List[Element]:
        """Batch lookup of elements by id; unknown ids are omitted."""
        return await self._run("get_by_ids", self._get_by_ids_sync, element_ids)

    async def aggregate_patterns(
        self, element_ids: Sequence[int], sample_size: int = 50
    ) -> List[Pattern]:
        """Server-side grouping of the given elements into patterns."""
        patterns = await self._run(
            "aggregate_patterns", self._aggregate_sync, element_ids, sample_size
        )
        logger.info(
            "Aggregated %d elements into %d patterns",
            len(element_ids),
            len(patterns),
        )
        return patterns

    async def list_patterns(
        self, skip: int = 0, take: int = 1000, sample_size: int = 50
    ) -> List[Pattern]:
        """Page through distinct patterns, largest first."""
        return await self._run(
            "list_patterns", self._list_patterns_sync, skip, take, sample_size
        )

    async def count_patterns(self) -> int:
        """Count distinct patterns in the store."""
        return await self._run("count_patterns", self._count_patterns_sync)

    async def _run(self, operation: str, func_, *args):
        try:
            return await asyncio.to_thread(func_, *args)
        except ElementStoreError:
            raise
        except Exception as e:
            raise ElementStoreError(
                f"Element store query failed: {str(e)}",
                operation=operation,
                table=BimElement.__tablename__,
            ) from e
