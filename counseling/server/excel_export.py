from __future__ import annotations

import io
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Sequence

import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill

from .date_kst import compact_date, kst_today
from .records import KIND_COUNSELING, Record, counselee_count, filter_by_date_range, list_division, middle_category
from .statistics import DateRange, StatisticRow, compute_spans

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "다운로드할 데이터가 없습니다."
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

STATISTICS_SHEET = "상담 현황 통계"
STATISTICS_HEADERS = ["No.", "대분류", "중분류", "상담구분", "상담건수", "평균상담시간(분)"]
STATISTICS_WIDTHS = [5, 10, 15, 20, 10, 20]

LEDGER_SHEET = "상담 기록"
LEDGER_HEADERS = [
    "상담분류",
    "Wee클래스",
    "대분류",
    "중분류",
    "상담구분",
    "상담인원",
    "학년도",
    "상담일자",
    "학년",
    "성별",
    "상담제목",
    "상담내용",
    "상담시간(시)",
    "상담시간(분)",
    "상담사소속",
    "상담매체구분",
    "",
    "상담시작시각",
    "상담종료시각",
]
LEDGER_WIDTHS = [10, 12, 8, 10, 12, 8, 8, 10, 8, 6, 20, 30, 10, 10, 15, 12, 2, 20, 20]

_TOTAL_FILL = PatternFill(start_color="EEEEEE", end_color="EEEEEE", fill_type="solid")


def statistics_filename(today: date | None = None) -> str:
    return f"상담_현황_통계_{(today or kst_today()).isoformat()}.xlsx"


def records_filename(today: date | None = None) -> str:
    return f"상담및심리검사목록_{(today or kst_today()).isoformat()}.xlsx"


def workbook_bytes(wb: Workbook) -> bytes:
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _set_widths(ws, widths: Sequence[int]) -> None:
    for idx, width in enumerate(widths, start=1):
        ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = width


def build_statistics_workbook(rows: Sequence[StatisticRow]) -> Workbook:
    if not rows:
        raise ValueError(NO_DATA_MESSAGE)

    wb = Workbook()
    ws = wb.active
    ws.title = STATISTICS_SHEET
    ws.append(STATISTICS_HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")

    spanned = compute_spans(rows)
    for item in spanned:
        row = item.row
        ws.append([row.no, row.level1, row.level2, row.level3, row.count, round(row.avg_duration, 2)])
        excel_row = ws.max_row
        ws.cell(row=excel_row, column=6).number_format = "0.00"
        for col in range(1, 7):
            cell = ws.cell(row=excel_row, column=col)
            if col != 4:
                cell.alignment = Alignment(horizontal="center", vertical="top")
            if row.is_subtotal:
                cell.font = Font(bold=True)
                cell.fill = _TOTAL_FILL

    # merges go last: merged cells are read-only once created
    for offset, item in enumerate(spanned):
        excel_row = offset + 2
        if item.row.is_grand_total:
            ws.merge_cells(start_row=excel_row, start_column=1, end_row=excel_row, end_column=4)
            continue
        if item.level1_span > 1:
            ws.merge_cells(start_row=excel_row, start_column=2, end_row=excel_row + item.level1_span - 1, end_column=2)
        if item.level2_span > 1:
            ws.merge_cells(start_row=excel_row, start_column=3, end_row=excel_row + item.level2_span - 1, end_column=3)

    _set_widths(ws, STATISTICS_WIDTHS)
    return wb


def _start_end(record: Record, duration: int) -> tuple[str, str]:
    if not record.date:
        return "", ""
    try:
        start = datetime.strptime(f"{record.date} {record.time or '00:00'}", "%Y-%m-%d %H:%M")
    except ValueError:
        logger.warning("[excel_export] unparseable time record=%s time=%s", record.id, record.time)
        return "", ""
    end = start + timedelta(minutes=duration)
    fmt = "%Y. %m. %d. %H:%M"
    return start.strftime(fmt), end.strftime(fmt)


def ledger_row(record: Record, student: Dict[str, Any] | None, default_duration: int = 40) -> Dict[str, Any]:
    duration = record.duration or default_duration
    hours, minutes = divmod(duration, 60)
    start_text, end_text = _start_end(record, duration)
    grade = ""
    if student and student.get("class"):
        grade = f"{str(student['class']).split('-')[0]}학년"
    return {
        "상담분류": "전문상담",
        "Wee클래스": "Wee클래스",
        "대분류": record.kind,
        "중분류": middle_category(record),
        "상담구분": list_division(record),
        "상담인원": counselee_count(record),
        "학년도": int(record.date[:4]) if record.date else "",
        "상담일자": compact_date(record.date),
        "학년": grade,
        "성별": (student or {}).get("gender", ""),
        "상담제목": "",
        "상담내용": record.details if record.kind == KIND_COUNSELING else "",
        "상담시간(시)": hours if hours > 0 else "",
        "상담시간(분)": minutes,
        "상담사소속": "전문상담교사",
        "상담매체구분": record.method or "면담",
        "": "",
        "상담시작시각": start_text,
        "상담종료시각": end_text,
    }


def build_records_workbook(
    records: Iterable[Record],
    students: Iterable[Dict[str, Any]],
    date_range: DateRange,
    default_duration: int = 40,
) -> Workbook:
    """Counseling ledger in the Wee-class upload layout, one row per record in range."""
    selected = filter_by_date_range(records, date_range.start, date_range.end) if date_range.is_complete else []
    if not selected:
        raise ValueError(NO_DATA_MESSAGE)

    students_by_id = {s.get("id"): s for s in students}
    rows: List[Dict[str, Any]] = [
        ledger_row(record, students_by_id.get(record.student_id), default_duration) for record in selected
    ]
    df = pd.DataFrame(rows, columns=LEDGER_HEADERS)
    buf = io.BytesIO()
    df.to_excel(buf, index=False, sheet_name=LEDGER_SHEET, engine="openpyxl")
    buf.seek(0)

    wb = load_workbook(buf)
    ws = wb[LEDGER_SHEET]
    ws.freeze_panes = "A2"
    _set_widths(ws, LEDGER_WIDTHS)
    logger.info("[excel_export] ledger rows=%d range=%s~%s", len(rows), date_range.start, date_range.end)
    return wb
