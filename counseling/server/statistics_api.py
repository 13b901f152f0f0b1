import json
import logging
from contextlib import aclosing
from functools import partial
from pathlib import Path
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from . import database as db
from . import excel_export
from .auth import SessionContext
from .config import Settings
from .deps import attachment, get_settings, require_session, to_http
from .realtime import HUB
from .records import ingest
from .statistics import DateRange, StatisticsFeed, aggregate, build_statistics, requested_date_range

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _date_range(date_from: str | None, date_to: str | None) -> DateRange:
    try:
        return requested_date_range(date_from, date_to)
    except ValueError as exc:
        raise to_http(exc, "조회 기간을 확인할 수 없습니다.")


def _feeds(session: SessionContext, settings: Settings) -> tuple:
    logs = db.query_documents("counselingLogs", owner_id=session.user_id, db_path=settings.db_path)
    tests = db.query_documents("psychologicalTests", owner_id=session.user_id, db_path=settings.db_path)
    return logs, tests


@router.get("/statistics")
def get_statistics(
    date_from: str | None = Query(None, alias="from", description="시작일 (YYYY-MM-DD), 기본값: 학년도 시작일"),
    date_to: str | None = Query(None, alias="to", description="종료일 (YYYY-MM-DD), 기본값: 오늘"),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    date_range = _date_range(date_from, date_to)
    try:
        logs, tests = _feeds(session, settings)
    except Exception as exc:
        raise to_http(exc, "통계 데이터를 불러오는 중 오류가 발생했습니다.")
    rows = build_statistics(logs, tests, date_range)
    return {"range": date_range.to_dict(), "rows": [r.to_dict() for r in rows]}


@router.get("/statistics/export")
def export_statistics(
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
):
    date_range = _date_range(date_from, date_to)
    try:
        logs, tests = _feeds(session, settings)
        wb = excel_export.build_statistics_workbook(aggregate(ingest(logs, tests), date_range))
        data = excel_export.workbook_bytes(wb)
    except Exception as exc:
        raise to_http(exc, "엑셀 파일 생성 중 오류가 발생했습니다.")
    return attachment(data, excel_export.statistics_filename(), excel_export.XLSX_MEDIA_TYPE)


def _sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _open_feed(owner_id: str, db_path: Path, date_range: DateRange) -> StatisticsFeed:
    load = partial(db.query_documents, owner_id=owner_id, db_path=db_path)
    return StatisticsFeed(
        logs_subscription=HUB.watch("counselingLogs", owner_id, partial(load, "counselingLogs")),
        tests_subscription=HUB.watch("psychologicalTests", owner_id, partial(load, "psychologicalTests")),
        date_range=date_range,
    )


async def _stream(owner_id: str, db_path: Path, date_range: DateRange) -> AsyncIterator[str]:
    feed = _open_feed(owner_id, db_path, date_range)
    try:
        async with aclosing(feed.updates()) as updates:
            async for _ in updates:
                if feed.last_error is not None:
                    yield _sse("error", {"collection": feed.last_error.collection, "message": feed.last_error.message})
                    feed.last_error = None
                    continue
                rows = feed.spanned_rows()
                yield _sse("rows", {"range": feed.date_range.to_dict(), "rows": [r.to_dict() for r in rows]})
    finally:
        feed.close()
        logger.info("[statistics_api] stream closed owner=%s", owner_id)


@router.get("/statistics/stream")
async def stream_statistics(
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
):
    """
    Server-sent events: one `rows` event per recomputation, recomputed whenever a
    counseling log or psychological test of the current counselor changes.
    Subscriptions are opened when the body starts and closed when it ends.
    """
    date_range = _date_range(date_from, date_to)
    logger.info("[statistics_api] stream opened owner=%s range=%s~%s", session.user_id, date_range.start, date_range.end)
    return StreamingResponse(
        _stream(session.user_id, settings.db_path, date_range),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
