"""
Record source adapters.

Counseling logs and psychological tests are normalized into one record shape
at ingestion time. The record kind (상담 / 자문 / 검사) is fixed by the class,
so downstream code never re-inspects raw document fields to decide it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .date_kst import in_date_range, kst_date_only

KIND_COUNSELING = "상담"
KIND_TEST = "검사"
KIND_ADVISORY = "자문"


def _to_duration(val: Any) -> Optional[int]:
    if val is None or val == "":
        return None
    try:
        return int(float(val))
    except (TypeError, ValueError):
        return None


def _co_counselees(raw: Any) -> Tuple[Dict[str, str], ...]:
    if not isinstance(raw, list):
        return ()
    items = []
    for item in raw:
        if isinstance(item, dict) and item.get("id"):
            items.append({"id": str(item["id"]), "name": str(item.get("name") or "")})
    return tuple(items)


@dataclass(frozen=True)
class _RecordBase:
    id: str
    original_id: str
    student_id: str
    student_name: str
    date: str
    time: str = ""
    duration: Optional[int] = None
    details: str = ""
    method: Optional[str] = None


@dataclass(frozen=True)
class CounselingRecord(_RecordBase):
    is_parent_counseling: bool = False
    co_counselees: Tuple[Dict[str, str], ...] = field(default_factory=tuple)
    counseling_division: Optional[str] = None

    @property
    def kind(self) -> str:
        return KIND_COUNSELING

    @property
    def is_group(self) -> bool:
        return len(self.co_counselees) > 0


@dataclass(frozen=True)
class AdvisoryRecord(_RecordBase):
    advisory_field: Optional[str] = None
    is_parent_counseling: bool = False
    co_counselees: Tuple[Dict[str, str], ...] = field(default_factory=tuple)

    @property
    def kind(self) -> str:
        return KIND_ADVISORY


@dataclass(frozen=True)
class TestRecord(_RecordBase):
    test_name: str = ""

    @property
    def kind(self) -> str:
        return KIND_TEST


Record = Union[CounselingRecord, AdvisoryRecord, TestRecord]


def record_from_log(log: Dict[str, Any]) -> Record:
    base = dict(
        id=f"log-{log.get('id')}",
        original_id=str(log.get("id") or ""),
        student_id=str(log.get("studentId") or ""),
        student_name=str(log.get("studentName") or ""),
        date=kst_date_only(log.get("counselingDate")),
        time=str(log.get("counselingTime") or ""),
        duration=_to_duration(log.get("counselingDuration")),
        details=str(log.get("mainIssues") or ""),
        method=log.get("counselingMethod") or None,
    )
    co_counselees = _co_counselees(log.get("coCounselees"))
    is_parent = bool(log.get("isParentCounseling"))
    if log.get("isAdvisory"):
        return AdvisoryRecord(
            **base,
            advisory_field=log.get("advisoryField") or None,
            is_parent_counseling=is_parent,
            co_counselees=co_counselees,
        )
    return CounselingRecord(
        **base,
        is_parent_counseling=is_parent,
        co_counselees=co_counselees,
        counseling_division=log.get("counselingDivision") or None,
    )


def record_from_test(test: Dict[str, Any]) -> TestRecord:
    return TestRecord(
        id=f"test-{test.get('id')}",
        original_id=str(test.get("id") or ""),
        student_id=str(test.get("studentId") or ""),
        student_name=str(test.get("studentName") or ""),
        date=kst_date_only(test.get("testDate")),
        time=str(test.get("testTime") or ""),
        duration=_to_duration(test.get("testDuration")),
        details=str(test.get("testName") or ""),
        method=test.get("testMethod") or None,
        test_name=str(test.get("testName") or ""),
    )


def ingest(logs: Iterable[Dict[str, Any]], tests: Iterable[Dict[str, Any]]) -> List[Record]:
    """Logs first, then tests, preserving feed order."""
    return [record_from_log(log) for log in logs] + [record_from_test(t) for t in tests]


def combine_records(logs: Iterable[Dict[str, Any]], tests: Iterable[Dict[str, Any]]) -> List[Record]:
    """Combined list view: newest date first, then latest time first."""
    records = ingest(logs, tests)
    records.sort(key=lambda r: r.time or "", reverse=True)
    records.sort(key=lambda r: r.date or "", reverse=True)
    return records


def search_records(records: Iterable[Record], term: str | None) -> List[Record]:
    needle = (term or "").strip().lower()
    if not needle:
        return list(records)
    return [r for r in records if needle in r.student_name.lower()]


def filter_by_date_range(records: Iterable[Record], start: str, end: str) -> List[Record]:
    return [r for r in records if in_date_range(r.date, start, end)]


def counselee_count(record: Record) -> int:
    return 1 + len(getattr(record, "co_counselees", ()) or ())


def middle_category(record: Record) -> str:
    if isinstance(record, TestRecord):
        return "심리검사"
    if isinstance(record, AdvisoryRecord):
        return "교원자문"
    if record.is_parent_counseling:
        return "학부모상담"
    if record.is_group:
        return "집단상담"
    return "개인상담"


_GROUP_DIVISIONS = {
    "진로": "진로",
    "성격": "성격/대인관계",
    "대인관계": "성격/대인관계",
    "학교폭력 가해": "학교폭력",
    "학교폭력 피해": "학교폭력",
}


def list_division(record: Record) -> str:
    """Division label shown in the combined list and the ledger export."""
    category = middle_category(record)
    if category == "심리검사":
        return "개인심리검사"
    if category == "교원자문":
        return record.advisory_field or "기타"
    if category == "학부모상담":
        return "학생관련상담"
    if category == "집단상담":
        return _GROUP_DIVISIONS.get(record.counseling_division or "", "기타")
    return record.counseling_division or ""


def record_to_dict(record: Record) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "id": record.id,
        "originalId": record.original_id,
        "studentId": record.student_id,
        "studentName": record.student_name,
        "date": record.date,
        "time": record.time,
        "type": record.kind,
        "middleCategory": middle_category(record),
        "counselingDivision": list_division(record),
        "details": record.details,
        "duration": record.duration,
        "counselingMethod": record.method,
        "counseleeCount": counselee_count(record),
    }
    if not isinstance(record, TestRecord):
        item["isParentCounseling"] = record.is_parent_counseling
        item["coCounselees"] = [dict(c) for c in record.co_counselees]
    return item


def source_collection(record_id: str) -> Tuple[str, str]:
    """Map a combined-list id ("log-…" / "test-…") to (collection, document id)."""
    if record_id.startswith("log-"):
        return "counselingLogs", record_id[len("log-") :]
    if record_id.startswith("test-"):
        return "psychologicalTests", record_id[len("test-") :]
    raise ValueError(f"Unknown record id: {record_id}")


def sort_logs(logs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Per-student history: newest counseling date first, then latest time."""
    return sorted(
        logs,
        key=lambda log: (str(log.get("counselingDate") or ""), str(log.get("counselingTime") or "")),
        reverse=True,
    )


def sort_tests(tests: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(
        tests,
        key=lambda t: (str(t.get("testDate") or ""), str(t.get("testTime") or "")),
        reverse=True,
    )


def default_division(logs: Iterable[Dict[str, Any]]) -> str:
    """A new log starts from the most recent log's division."""
    ordered = sort_logs(logs)
    if ordered and ordered[0].get("counselingDivision"):
        return ordered[0]["counselingDivision"]
    return "기타"
