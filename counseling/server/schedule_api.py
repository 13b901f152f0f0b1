import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from . import database as db
from .appointments import (
    appointments_by_date,
    is_repeat_instance,
    occurrence_date,
    original_id,
    upcoming_appointments,
)
from .auth import SessionContext
from .config import Settings
from .date_kst import kst_today
from .deps import get_settings, require_session, to_http
from .schemas import AppointmentIn, TodoIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _appointments(session: SessionContext, settings: Settings) -> list:
    return db.query_documents(
        "appointments", owner_id=session.user_id, order_by="date", db_path=settings.db_path
    )


@router.get("/appointments")
def get_appointments(
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        return {"items": _appointments(session, settings)}
    except Exception as exc:
        raise to_http(exc, "일정을 불러오는 중 오류가 발생했습니다.")


@router.get("/appointments/upcoming")
def get_upcoming_appointments(
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        items = upcoming_appointments(_appointments(session, settings), kst_today())
    except Exception as exc:
        raise to_http(exc, "일정을 불러오는 중 오류가 발생했습니다.")
    return {"items": items}


@router.get("/appointments/calendar")
def get_calendar(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        days = appointments_by_date(_appointments(session, settings), year, month)
    except Exception as exc:
        raise to_http(exc, "일정을 불러오는 중 오류가 발생했습니다.")
    return {"year": year, "month": month, "days": days}


@router.post("/appointments", status_code=201)
def post_appointment(
    body: AppointmentIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        item = db.add_document("appointments", session.user_id, body.to_document(), db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "일정 저장 중 오류가 발생했습니다.")
    return {"item": item, "message": "새로운 일정이 추가되었습니다."}


@router.put("/appointments/{appointment_id}")
def put_appointment(
    appointment_id: str,
    body: AppointmentIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Edits always apply to the stored series, also when addressed through a repeat instance id."""
    doc_id = original_id(appointment_id)
    try:
        db.get_owned_document("appointments", doc_id, session.user_id, db_path=settings.db_path)
        changes = body.to_document()
        if "repeatCount" not in changes:
            changes["repeatCount"] = None
        item = db.update_document("appointments", doc_id, changes, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "일정 저장 중 오류가 발생했습니다.")
    return {"item": item, "message": "일정이 수정되었습니다."}


@router.delete("/appointments/{appointment_id}")
def delete_appointment(
    appointment_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    A repeat instance id only hides that occurrence (its date joins
    excludedDates); the base id deletes the whole series.
    """
    doc_id = original_id(appointment_id)
    try:
        appointment = db.get_owned_document("appointments", doc_id, session.user_id, db_path=settings.db_path)
        if is_repeat_instance(appointment_id):
            day = occurrence_date(appointment, appointment_id)
            if not day:
                raise HTTPException(status_code=404, detail="해당 반복 일정을 찾을 수 없습니다.")
            db.array_union("appointments", doc_id, "excludedDates", day, db_path=settings.db_path)
            logger.info("[schedule_api] occurrence excluded id=%s date=%s", doc_id, day)
            return {"message": "선택한 일정이 삭제되었습니다."}
        db.delete_document("appointments", doc_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "일정 삭제 중 오류가 발생했습니다.")
    return {"message": "일정이 삭제되었습니다."}


@router.get("/todos")
def get_todos(
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        items = db.query_documents(
            "todos", owner_id=session.user_id, order_by="createdAt", descending=True, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "할 일 목록을 불러오는 중 오류가 발생했습니다.")
    return {"items": items}


@router.post("/todos", status_code=201)
def post_todo(
    body: TodoIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        item = db.add_document(
            "todos", session.user_id, {"task": body.task, "isCompleted": False}, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "할 일 추가 중 오류가 발생했습니다.")
    return {"item": item}


@router.patch("/todos/{todo_id}/toggle")
def toggle_todo(
    todo_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        todo = db.get_owned_document("todos", todo_id, session.user_id, db_path=settings.db_path)
        item = db.update_document(
            "todos", todo_id, {"isCompleted": not bool(todo.get("isCompleted"))}, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "할 일 상태 변경 중 오류가 발생했습니다.")
    return {"item": item}


@router.delete("/todos/{todo_id}")
def delete_todo(
    todo_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        db.get_owned_document("todos", todo_id, session.user_id, db_path=settings.db_path)
        db.delete_document("todos", todo_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "할 일 삭제 중 오류가 발생했습니다.")
    return {"message": "할 일이 삭제되었습니다."}
