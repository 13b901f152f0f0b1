import logging
from typing import Dict

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from . import database as db
from .auth import SessionContext
from .blobs import BlobStore
from .config import Settings
from .deps import attachment, get_blob_store, get_settings, require_session, to_http
from .schemas import DocumentContentIn, StudentIn, StudentStatusIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# One document per student in each of these collections.
FORM_COLLECTIONS: Dict[str, str] = {
    "conceptualization": "caseConceptualizations",
    "parent-application": "parentApplications",
    "teacher-referral": "teacherReferrals",
    "student-application": "studentApplications",
}


def _student(student_id: str, session: SessionContext, settings: Settings) -> dict:
    return db.get_owned_document("students", student_id, session.user_id, db_path=settings.db_path)


def _form_collection(kind: str) -> str:
    collection = FORM_COLLECTIONS.get(kind)
    if collection is None:
        raise HTTPException(status_code=404, detail=f"알 수 없는 양식입니다: {kind}")
    return collection


@router.get("/students")
def get_students(
    search: str | None = Query(None, description="학생 이름 검색어"),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        items = db.query_documents(
            "students", owner_id=session.user_id, order_by="createdAt", descending=True, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "학생 목록을 불러오는 중 오류가 발생했습니다.")
    needle = (search or "").strip().lower()
    if needle:
        items = [s for s in items if needle in str(s.get("name") or "").lower()]
    return {"items": items}


@router.post("/students", status_code=201)
def post_student(
    body: StudentIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        item = db.add_document("students", session.user_id, body.to_document(), db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "학생 등록 중 오류가 발생했습니다.")
    return {"item": item, "message": "새로운 학생이 등록되었습니다."}


@router.get("/students/{student_id}")
def get_student(
    student_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        return {"item": _student(student_id, session, settings)}
    except Exception as exc:
        raise to_http(exc, "학생 정보를 불러오는 중 오류가 발생했습니다.")


@router.put("/students/{student_id}")
def put_student(
    student_id: str,
    body: StudentIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        _student(student_id, session, settings)
        item = db.update_document("students", student_id, body.to_document(), db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "학생 정보 수정 중 오류가 발생했습니다.")
    return {"item": item, "message": "학생 정보가 수정되었습니다."}


@router.patch("/students/{student_id}/status")
def patch_student_status(
    student_id: str,
    body: StudentStatusIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        _student(student_id, session, settings)
        item = db.update_document("students", student_id, {"status": body.status}, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "상담 상태 변경 중 오류가 발생했습니다.")
    return {"item": item, "message": f"상담 상태가 '{body.status}'(으)로 변경되었습니다."}


@router.delete("/students/{student_id}")
def delete_student(
    student_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    blobs: BlobStore = Depends(get_blob_store),
) -> dict:
    """
    Cascade delete: every record that references the student, the student's
    file folder, then the student document itself.
    """
    try:
        _student(student_id, session, settings)
        removed = {
            collection: db.delete_where(
                collection, owner_id=session.user_id, student_id=student_id, db_path=settings.db_path
            )
            for collection in db.STUDENT_COLLECTIONS
        }
        removed["files"] = blobs.delete_student_folder(session.user_id, student_id)
        db.delete_document("students", student_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "학생 삭제 중 오류가 발생했습니다.")
    logger.info("[students_api] student deleted id=%s removed=%s", student_id, removed)
    return {"removed": removed, "message": "학생과 관련된 모든 기록이 삭제되었습니다."}


@router.get("/students/{student_id}/files")
def get_student_files(
    student_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    blobs: BlobStore = Depends(get_blob_store),
) -> dict:
    try:
        _student(student_id, session, settings)
        return {"items": blobs.list_files(session.user_id, student_id)}
    except Exception as exc:
        raise to_http(exc, "파일 목록을 불러오는 중 오류가 발생했습니다.")


@router.post("/students/{student_id}/files", status_code=201)
async def post_student_file(
    student_id: str,
    file: UploadFile = File(...),
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    blobs: BlobStore = Depends(get_blob_store),
) -> dict:
    try:
        _student(student_id, session, settings)
        data = await file.read()
        item = blobs.upload(session.user_id, student_id, file.filename or "", data)
    except Exception as exc:
        raise to_http(exc, "파일 업로드 중 오류가 발생했습니다.")
    return {"item": item, "message": "파일이 업로드되었습니다."}


@router.get("/students/{student_id}/files/{file_name}")
def download_student_file(
    student_id: str,
    file_name: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    blobs: BlobStore = Depends(get_blob_store),
):
    try:
        _student(student_id, session, settings)
        data = blobs.read(session.user_id, student_id, file_name)
    except Exception as exc:
        raise to_http(exc, "파일 다운로드 중 오류가 발생했습니다.")
    return attachment(data, file_name, "application/octet-stream")


@router.delete("/students/{student_id}/files/{file_name}")
def delete_student_file(
    student_id: str,
    file_name: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    blobs: BlobStore = Depends(get_blob_store),
) -> dict:
    try:
        _student(student_id, session, settings)
        blobs.delete_file(session.user_id, student_id, file_name)
    except Exception as exc:
        raise to_http(exc, "파일 삭제 중 오류가 발생했습니다.")
    return {"message": "파일이 삭제되었습니다."}


@router.get("/students/{student_id}/forms/{kind}")
def get_student_form(
    student_id: str,
    kind: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    collection = _form_collection(kind)
    try:
        _student(student_id, session, settings)
        item = db.find_student_document(collection, session.user_id, student_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "문서를 불러오는 중 오류가 발생했습니다.")
    return {"item": item}


@router.put("/students/{student_id}/forms/{kind}")
def put_student_form(
    student_id: str,
    kind: str,
    body: DocumentContentIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    collection = _form_collection(kind)
    try:
        student = _student(student_id, session, settings)
        existing = db.find_student_document(collection, session.user_id, student_id, db_path=settings.db_path)
        if existing is None:
            item = db.add_document(
                collection,
                session.user_id,
                {"studentId": student_id, "studentName": student.get("name", ""), "content": body.content},
                db_path=settings.db_path,
            )
        else:
            item = db.update_document(collection, existing["id"], {"content": body.content}, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "문서 저장 중 오류가 발생했습니다.")
    return {"item": item, "message": "문서가 저장되었습니다."}


@router.delete("/students/{student_id}/forms/{kind}")
def delete_student_form(
    student_id: str,
    kind: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    collection = _form_collection(kind)
    try:
        _student(student_id, session, settings)
        existing = db.find_student_document(collection, session.user_id, student_id, db_path=settings.db_path)
        if existing is not None:
            db.delete_document(collection, existing["id"], db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "문서 삭제 중 오류가 발생했습니다.")
    return {"message": "문서가 삭제되었습니다."}
