"""
Appointment repeat expansion for the upcoming list and the month calendar.

A stored appointment is one document; repeats are derived on read. Instance
ids of derived occurrences look like "<doc id>-repeat-<i>" (i >= 1), the base
occurrence keeps the document id.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List

from .date_kst import add_months, kst_date_only, kst_today, parse_date

NO_REPEAT = "해당 없음"
REPEAT_MARKER = "-repeat-"


def occurrence_dates(appointment: Dict[str, Any]) -> List[date]:
    base = parse_date(appointment.get("date"))
    if base is None:
        return []
    setting = appointment.get("repeatSetting") or NO_REPEAT
    try:
        count = int(appointment.get("repeatCount") or 1)
    except (TypeError, ValueError):
        count = 1
    if setting == NO_REPEAT or count <= 1:
        return [base]

    dates = [base]
    for i in range(1, count):
        if setting == "매주":
            dates.append(base + timedelta(days=7 * i))
        elif setting == "2주마다":
            dates.append(base + timedelta(days=14 * i))
        elif setting == "매월":
            dates.append(add_months(base, i))
        else:
            break
    return dates


def expand(appointment: Dict[str, Any]) -> List[Dict[str, Any]]:
    """All occurrences of one appointment except excluded dates."""
    excluded = set(appointment.get("excludedDates") or [])
    items = []
    for i, day in enumerate(occurrence_dates(appointment)):
        text = day.isoformat()
        if text in excluded:
            continue
        instance = dict(appointment)
        instance["date"] = text
        if i > 0:
            instance["id"] = f"{appointment['id']}{REPEAT_MARKER}{i}"
            instance["originalId"] = appointment["id"]
        items.append(instance)
    return items


def _sort_key(item: Dict[str, Any]) -> tuple:
    return (item.get("date") or "", item.get("startTime") or "")


def upcoming_appointments(appointments: Iterable[Dict[str, Any]], today: date | None = None) -> List[Dict[str, Any]]:
    cutoff = (today or kst_today()).isoformat()
    items = [inst for appt in appointments for inst in expand(appt) if inst["date"] >= cutoff]
    items.sort(key=_sort_key)
    return items


def appointments_by_date(appointments: Iterable[Dict[str, Any]], year: int, month: int) -> Dict[str, List[Dict[str, Any]]]:
    """Calendar grid for one month: {YYYY-MM-DD: [instances sorted by start time]}."""
    prefix = f"{year:04d}-{month:02d}-"
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for appt in appointments:
        for inst in expand(appt):
            if inst["date"].startswith(prefix):
                grouped.setdefault(inst["date"], []).append(inst)
    for items in grouped.values():
        items.sort(key=_sort_key)
    return dict(sorted(grouped.items()))


def is_repeat_instance(instance_id: str) -> bool:
    return REPEAT_MARKER in (instance_id or "")


def original_id(instance_id: str) -> str:
    if is_repeat_instance(instance_id):
        return instance_id.split(REPEAT_MARKER, 1)[0]
    return instance_id


def occurrence_date(appointment: Dict[str, Any], instance_id: str) -> str:
    """Date of the given instance of `appointment`; "" when the index is out of range."""
    if not is_repeat_instance(instance_id):
        return kst_date_only(appointment.get("date"))
    try:
        index = int(instance_id.rsplit(REPEAT_MARKER, 1)[1])
    except ValueError:
        return ""
    dates = occurrence_dates(appointment)
    if index < 0 or index >= len(dates):
        return ""
    return dates[index].isoformat()
