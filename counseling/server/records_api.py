from fastapi import APIRouter, Depends, Query

from . import database as db
from . import excel_export
from .auth import SessionContext
from .config import Settings
from .deps import attachment, get_settings, require_session, to_http
from .records import (
    combine_records,
    default_division,
    record_to_dict,
    search_records,
    sort_logs,
    sort_tests,
    source_collection,
)
from .schemas import CounselingLogIn, PsychologicalTestIn
from .statistics import DateRange, requested_date_range

router = APIRouter(prefix="/api")


def _owner_feed(collection: str, session: SessionContext, settings: Settings) -> list:
    return db.query_documents(collection, owner_id=session.user_id, db_path=settings.db_path)


def _date_range(date_from: str | None, date_to: str | None) -> DateRange:
    try:
        return requested_date_range(date_from, date_to)
    except ValueError as exc:
        raise to_http(exc, "조회 기간을 확인할 수 없습니다.")


@router.get("/students/{student_id}/logs")
def get_student_logs(
    student_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        db.get_owned_document("students", student_id, session.user_id, db_path=settings.db_path)
        logs = db.query_documents(
            "counselingLogs", owner_id=session.user_id, student_id=student_id, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "상담 기록을 불러오는 중 오류가 발생했습니다.")
    return {"items": sort_logs(logs), "defaultDivision": default_division(logs)}


@router.post("/students/{student_id}/logs", status_code=201)
def post_student_log(
    student_id: str,
    body: CounselingLogIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        student = db.get_owned_document("students", student_id, session.user_id, db_path=settings.db_path)
        previous = db.query_documents(
            "counselingLogs", owner_id=session.user_id, student_id=student_id, db_path=settings.db_path
        )
        doc = body.to_document(student_id, student.get("name", ""), default_division(previous))
        item = db.add_document("counselingLogs", session.user_id, doc, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "상담 기록 저장 중 오류가 발생했습니다.")
    return {"item": item, "message": "상담 기록이 저장되었습니다."}


@router.put("/logs/{log_id}")
def put_log(
    log_id: str,
    body: CounselingLogIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        current = db.get_owned_document("counselingLogs", log_id, session.user_id, db_path=settings.db_path)
        doc = body.to_document(
            current.get("studentId", ""),
            current.get("studentName", ""),
            current.get("counselingDivision") or "기타",
        )
        item = db.update_document("counselingLogs", log_id, doc, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "상담 기록 수정 중 오류가 발생했습니다.")
    return {"item": item, "message": "상담 기록이 수정되었습니다."}


@router.delete("/logs/{log_id}")
def delete_log(
    log_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        db.get_owned_document("counselingLogs", log_id, session.user_id, db_path=settings.db_path)
        db.delete_document("counselingLogs", log_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "상담 기록 삭제 중 오류가 발생했습니다.")
    return {"message": "상담 기록이 삭제되었습니다."}


@router.get("/students/{student_id}/tests")
def get_student_tests(
    student_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        db.get_owned_document("students", student_id, session.user_id, db_path=settings.db_path)
        tests = db.query_documents(
            "psychologicalTests", owner_id=session.user_id, student_id=student_id, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "심리검사 기록을 불러오는 중 오류가 발생했습니다.")
    return {"items": sort_tests(tests)}


@router.post("/students/{student_id}/tests", status_code=201)
def post_student_test(
    student_id: str,
    body: PsychologicalTestIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        student = db.get_owned_document("students", student_id, session.user_id, db_path=settings.db_path)
        doc = body.to_document(student_id, student.get("name", ""))
        item = db.add_document("psychologicalTests", session.user_id, doc, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "심리검사 기록 저장 중 오류가 발생했습니다.")
    return {"item": item, "message": "심리검사 기록이 저장되었습니다."}


@router.put("/tests/{test_id}")
def put_test(
    test_id: str,
    body: PsychologicalTestIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        current = db.get_owned_document("psychologicalTests", test_id, session.user_id, db_path=settings.db_path)
        doc = body.to_document(current.get("studentId", ""), current.get("studentName", ""))
        item = db.update_document("psychologicalTests", test_id, doc, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "심리검사 기록 수정 중 오류가 발생했습니다.")
    return {"item": item, "message": "심리검사 기록이 수정되었습니다."}


@router.delete("/tests/{test_id}")
def delete_test(
    test_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        db.get_owned_document("psychologicalTests", test_id, session.user_id, db_path=settings.db_path)
        db.delete_document("psychologicalTests", test_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "심리검사 기록 삭제 중 오류가 발생했습니다.")
    return {"message": "심리검사 기록이 삭제되었습니다."}


@router.get("/records")
def get_records(
    search: str | None = Query(None, description="학생 이름 검색어"),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Counseling logs and psychological tests in one list, newest first."""
    try:
        logs = _owner_feed("counselingLogs", session, settings)
        tests = _owner_feed("psychologicalTests", session, settings)
    except Exception as exc:
        raise to_http(exc, "상담 및 심리검사 목록을 불러오는 중 오류가 발생했습니다.")
    records = search_records(combine_records(logs, tests), search)
    return {"items": [record_to_dict(r) for r in records]}


@router.get("/records/export")
def export_records(
    date_from: str | None = Query(None, alias="from", description="시작일 (YYYY-MM-DD)"),
    date_to: str | None = Query(None, alias="to", description="종료일 (YYYY-MM-DD)"),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
):
    date_range = _date_range(date_from, date_to)
    try:
        logs = _owner_feed("counselingLogs", session, settings)
        tests = _owner_feed("psychologicalTests", session, settings)
        students = _owner_feed("students", session, settings)
        wb = excel_export.build_records_workbook(
            combine_records(logs, tests), students, date_range, settings.default_duration
        )
        data = excel_export.workbook_bytes(wb)
    except Exception as exc:
        raise to_http(exc, "엑셀 파일 생성 중 오류가 발생했습니다.")
    return attachment(data, excel_export.records_filename(), excel_export.XLSX_MEDIA_TYPE)


@router.delete("/records/{record_id}")
def delete_record(
    record_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        collection, doc_id = source_collection(record_id)
        db.get_owned_document(collection, doc_id, session.user_id, db_path=settings.db_path)
        db.delete_document(collection, doc_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "기록 삭제 중 오류가 발생했습니다.")
    return {"message": "기록이 삭제되었습니다."}
