"""
상담 현황 통계 engine.

    records -> classify -> aggregate (fixed taxonomy walk) -> compute_spans

Everything here is a pure function of (records, date range) except
`StatisticsFeed`, which keeps the latest snapshot of the two record feeds and
recomputes the rows on every event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

from .date_kst import kst_date_only, kst_today, school_year_start
from .realtime import SnapshotError, Subscription
from .records import AdvisoryRecord, Record, TestRecord, filter_by_date_range, ingest

logger = logging.getLogger(__name__)

FALLBACK = "기타"
GROUP_COUNSELING_DIVISION = "성격/대인관계"
GRAND_TOTAL_LABEL = "합계"


def classify(record: Record) -> Tuple[str, str, str]:
    """(대분류, 중분류, 상담구분) for one record. Total: unknown values fall back to 기타."""
    if isinstance(record, TestRecord):
        return ("검사", "심리검사", "개인심리검사")
    if getattr(record, "is_parent_counseling", False):
        return ("상담", "학부모상담", "학생관련상담")
    if isinstance(record, AdvisoryRecord):
        return ("자문", "교원자문", record.advisory_field or FALLBACK)
    if record.is_group:
        return ("상담", "집단상담", GROUP_COUNSELING_DIVISION)
    return ("상담", "개인상담", record.counseling_division or FALLBACK)


@dataclass(frozen=True)
class Bucket:
    level2: str
    subtotal_label: str


@dataclass(frozen=True)
class Rollup:
    label: str
    # level2 buckets summed by this row; None means every bucket of the level1 group
    members: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class Level1Group:
    level1: str
    buckets: Tuple[Bucket, ...]
    rollups: Tuple[Rollup, ...]


TAXONOMY: Tuple[Level1Group, ...] = (
    Level1Group(
        "상담",
        (
            Bucket("학부모상담", "학부모상담합계"),
            Bucket("개인상담", "개인상담합계"),
            Bucket("집단상담", "집단상담합계"),
        ),
        (Rollup("학생상담 합계", ("개인상담", "집단상담")), Rollup("상담합계")),
    ),
    Level1Group("검사", (Bucket("심리검사", "심리검사합계"),), (Rollup("검사합계"),)),
    Level1Group("자문", (Bucket("교원자문", "교원자문합계"),), (Rollup("자문합계"),)),
)


@dataclass(frozen=True)
class DateRange:
    start: str
    end: str

    @classmethod
    def of(cls, start: Any, end: Any) -> "DateRange":
        return cls(kst_date_only(start), kst_date_only(end))

    @property
    def is_complete(self) -> bool:
        return bool(self.start and self.end)

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.start, "to": self.end}


def default_date_range(today: date | None = None) -> DateRange:
    """School year so far: 1 March (previous year's before March) through today."""
    today = today or kst_today()
    return DateRange(school_year_start(today).isoformat(), today.isoformat())


INVALID_RANGE_MESSAGE = "조회 기간의 시작일과 종료일을 모두 올바르게 입력해 주세요."


def requested_date_range(date_from: Any, date_to: Any) -> DateRange:
    """Range from query parameters; both empty means the default school-year range."""
    if not date_from and not date_to:
        return default_date_range()
    date_range = DateRange.of(date_from, date_to)
    if not date_range.is_complete:
        raise ValueError(INVALID_RANGE_MESSAGE)
    return date_range


@dataclass(frozen=True)
class StatisticRow:
    no: Any
    level1: str
    level2: str
    level3: str
    count: int
    avg_duration: float
    is_subtotal: bool = False
    is_grand_total: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "no": self.no,
            "level1": self.level1,
            "level2": self.level2,
            "level3": self.level3,
            "count": self.count,
            "avgDuration": self.avg_duration,
            "isSubtotal": self.is_subtotal,
            "isGrandTotal": self.is_grand_total,
        }


def _count_and_avg(records: Sequence[Record]) -> Tuple[int, float]:
    # missing duration is summed as 0 and still counts in the denominator
    count = len(records)
    if count == 0:
        return 0, 0.0
    total = sum((r.duration or 0) for r in records)
    return count, total / count


def aggregate(records: Iterable[Record], date_range: DateRange) -> List[StatisticRow]:
    if not date_range.is_complete:
        return []
    in_range = filter_by_date_range(records, date_range.start, date_range.end)
    if not in_range:
        return []

    by_bucket: Dict[Tuple[str, str], List[Tuple[str, Record]]] = {}
    for record in in_range:
        level1, level2, level3 = classify(record)
        by_bucket.setdefault((level1, level2), []).append((level3, record))

    rows: List[StatisticRow] = []
    detail_no = 0
    for group in TAXONOMY:
        group_records: Dict[str, List[Record]] = {}
        for bucket in group.buckets:
            entries = by_bucket.get((group.level1, bucket.level2), [])
            if not entries:
                continue
            by_division: Dict[str, List[Record]] = {}
            for level3, record in entries:
                by_division.setdefault(level3, []).append(record)
            for level3, members in by_division.items():
                detail_no += 1
                count, avg = _count_and_avg(members)
                rows.append(StatisticRow(detail_no, group.level1, bucket.level2, level3, count, avg))
            bucket_records = [record for _, record in entries]
            group_records[bucket.level2] = bucket_records
            count, avg = _count_and_avg(bucket_records)
            rows.append(
                StatisticRow("", group.level1, bucket.level2, bucket.subtotal_label, count, avg, is_subtotal=True)
            )

        for rollup in group.rollups:
            names = rollup.members or tuple(b.level2 for b in group.buckets)
            members = [r for name in names for r in group_records.get(name, [])]
            if not members:
                continue
            count, avg = _count_and_avg(members)
            rows.append(StatisticRow("", group.level1, rollup.label, "", count, avg, is_subtotal=True))

    count, avg = _count_and_avg(in_range)
    rows.append(StatisticRow(GRAND_TOTAL_LABEL, "", "", "", count, avg, is_subtotal=True, is_grand_total=True))
    return rows


@dataclass(frozen=True)
class SpannedRow:
    row: StatisticRow
    level1_span: int
    level2_span: int

    def to_dict(self) -> Dict[str, Any]:
        return {**self.row.to_dict(), "level1Span": self.level1_span, "level2Span": self.level2_span}


def _run_length(rows: Sequence[StatisticRow], start: int, attr: str) -> int:
    value = getattr(rows[start], attr)
    level1 = rows[start].level1
    n = 0
    for row in rows[start:]:
        if getattr(row, attr) != value:
            break
        if attr == "level2" and row.level1 != level1:
            break
        n += 1
    return n


def compute_spans(rows: Sequence[StatisticRow]) -> List[SpannedRow]:
    """
    Vertical merge spans for the 대분류/중분류 columns.
    0 means the cell is merged into a row above; empty values always render
    their own single cell. A 중분류 run never crosses a 대분류 boundary.
    """
    result: List[SpannedRow] = []
    for i, row in enumerate(rows):
        prev = rows[i - 1] if i > 0 else None

        if not row.level1:
            level1_span = 1
        elif prev is not None and prev.level1 == row.level1:
            level1_span = 0
        else:
            level1_span = _run_length(rows, i, "level1")

        if not row.level2:
            level2_span = 1
        elif prev is not None and prev.level2 == row.level2 and prev.level1 == row.level1:
            level2_span = 0
        else:
            level2_span = _run_length(rows, i, "level2")

        result.append(SpannedRow(row, level1_span, level2_span))
    return result


def build_statistics(
    logs: Iterable[Dict[str, Any]], tests: Iterable[Dict[str, Any]], date_range: DateRange
) -> List[SpannedRow]:
    return compute_spans(aggregate(ingest(logs, tests), date_range))


@dataclass
class StatisticsFeed:
    """
    Live statistics over the counseling-log and psychological-test feeds of one owner.

    Each feed event replaces that feed's cached slice and the rows are recomputed
    synchronously. Either feed may arrive first; until both have delivered a
    snapshot the rows reflect whatever is cached.
    """

    logs_subscription: Subscription
    tests_subscription: Subscription
    date_range: DateRange
    logs: List[Dict[str, Any]] = field(default_factory=list)
    tests: List[Dict[str, Any]] = field(default_factory=list)
    loaded: Dict[str, bool] = field(default_factory=lambda: {"logs": False, "tests": False})
    last_error: Optional[SnapshotError] = None

    def apply(self, source: str, event: Any) -> None:
        if isinstance(event, SnapshotError):
            self.last_error = event
            return
        if source == "logs":
            self.logs = list(event)
        else:
            self.tests = list(event)
        self.loaded[source] = True

    def rows(self) -> List[StatisticRow]:
        return aggregate(ingest(self.logs, self.tests), self.date_range)

    def spanned_rows(self) -> List[SpannedRow]:
        return compute_spans(self.rows())

    def set_date_range(self, date_range: DateRange) -> List[StatisticRow]:
        self.date_range = date_range
        return self.rows()

    def close(self) -> None:
        self.logs_subscription.close()
        self.tests_subscription.close()

    async def updates(self) -> AsyncIterator[List[StatisticRow]]:
        sources = {"logs": self.logs_subscription, "tests": self.tests_subscription}
        pending: Dict[asyncio.Future, str] = {
            asyncio.ensure_future(sub.__anext__()): name for name, sub in sources.items()
        }
        try:
            while pending:
                done, _ = await asyncio.wait(pending.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    name = pending.pop(task)
                    try:
                        event = task.result()
                    except StopAsyncIteration:
                        continue
                    self.apply(name, event)
                    pending[asyncio.ensure_future(sources[name].__anext__())] = name
                    yield self.rows()
        finally:
            for task in pending:
                task.cancel()
            self.close()
