"""
KST calendar-date helpers.

정책:
- 상담일/검사일/일정일은 모두 KST 기준 YYYY-MM-DD 문자열로 저장하고 비교한다.
- 기간 필터는 타임스탬프가 아니라 날짜 문자열 비교로 한다 (경계일 포함).
- 학년도는 3월 1일에 시작한다.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

KST_TZ = timezone(timedelta(hours=9))
SCHOOL_YEAR_START_MONTH = 3


def _parse_iso_datetime(text: str) -> Optional[datetime]:
    """Safely parse ISO datetime strings (handles trailing Z)."""
    candidate = text
    if " " in candidate and "T" not in candidate:
        parts = candidate.split(" ")
        if len(parts) == 2:
            candidate = "T".join(parts)
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _parse_date_flexible(text: str) -> Optional[date]:
    m = re.match(r"^(\d{4})[-/.]?\s*(\d{1,2})[-/.]?\s*(\d{1,2})\.?$", text)
    if not m:
        return None
    y, mth, d = map(int, m.groups())
    try:
        return date(y, mth, d)
    except ValueError:
        return None


def kst_date_only(raw: Any) -> str:
    """
    Normalize to KST date-only (YYYY-MM-DD). Return "" on failure/empty.
    Accepts date, datetime (aware values are shifted to KST), ISO datetime strings
    and date strings written with -, /, . or no separator.
    """
    if raw is None:
        return ""
    if isinstance(raw, datetime):
        dt = raw
        if dt.tzinfo:
            dt = dt.astimezone(KST_TZ)
        return dt.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    text = str(raw).strip()
    if not text:
        return ""

    if "T" in text or re.search(r"[+-]\d{2}:?\d{2}$", text) or text.endswith("Z"):
        dt = _parse_iso_datetime(text)
        if dt:
            if dt.tzinfo:
                dt = dt.astimezone(KST_TZ)
            return dt.date().isoformat()

    d = _parse_date_flexible(text)
    if d:
        return d.isoformat()
    return ""


def parse_date(raw: Any) -> Optional[date]:
    text = kst_date_only(raw)
    if not text:
        return None
    return date.fromisoformat(text)


def kst_today() -> date:
    return datetime.now(KST_TZ).date()


def school_year_start(today: date) -> date:
    start = date(today.year, SCHOOL_YEAR_START_MONTH, 1)
    if today < start:
        start = date(today.year - 1, SCHOOL_YEAR_START_MONTH, 1)
    return start


def add_months(base: date, months: int) -> date:
    """Month arithmetic clamped to the last day of the target month (1/31 + 1 -> 2/28)."""
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(base.day, last_day))


def in_date_range(value: Any, start: str, end: str) -> bool:
    """Inclusive comparison on YYYY-MM-DD strings; unparseable values are outside."""
    text = kst_date_only(value)
    if not text:
        return False
    return start <= text <= end


def compact_date(value: Any) -> str:
    text = kst_date_only(value)
    return text.replace("-", "") if text else ""
