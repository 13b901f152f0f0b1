from fastapi import APIRouter, Depends

from . import auth
from .auth import SessionContext
from .blobs import BlobStore
from .config import Settings
from .deps import get_blob_store, get_settings, require_session, to_http
from .schemas import AccountDeleteIn, LoginIn, PasswordChangeIn, SignupIn

router = APIRouter(prefix="/api")


@router.post("/auth/signup", status_code=201)
def post_signup(body: SignupIn, settings: Settings = Depends(get_settings)) -> dict:
    try:
        session = auth.signup(
            body.email,
            body.password,
            body.displayName,
            ttl_hours=settings.session_ttl_hours,
            db_path=settings.db_path,
        )
    except Exception as exc:
        raise to_http(exc, "회원가입 중 오류가 발생했습니다.")
    return {"user": session.to_dict(), "message": "회원가입이 완료되었습니다."}


@router.post("/auth/login")
def post_login(body: LoginIn, settings: Settings = Depends(get_settings)) -> dict:
    try:
        session = auth.login(body.email, body.password, ttl_hours=settings.session_ttl_hours, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "로그인 중 오류가 발생했습니다.")
    return {"user": session.to_dict()}


@router.post("/auth/logout")
def post_logout(
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    auth.logout(session.token, db_path=settings.db_path)
    return {"message": "로그아웃되었습니다."}


@router.get("/auth/me")
def get_me(session: SessionContext = Depends(require_session)) -> dict:
    return {"user": session.to_dict()}


@router.post("/account/password")
def post_password(
    body: PasswordChangeIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        auth.change_password(session, body.currentPassword, body.newPassword, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "비밀번호 변경 중 오류가 발생했습니다.")
    return {"message": "비밀번호가 변경되었습니다."}


@router.delete("/account")
def delete_account(
    body: AccountDeleteIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    blobs: BlobStore = Depends(get_blob_store),
) -> dict:
    """
    Remove the account with every document and file it owns.
    Requires the current password again.
    """
    try:
        removed = auth.delete_account(session, body.currentPassword, blobs, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "회원 탈퇴 중 오류가 발생했습니다.")
    return {"removed": removed, "message": "회원 탈퇴가 완료되었습니다."}
