"""FastAPI dependencies and response helpers shared by the routers."""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import Depends, Header, HTTPException
from fastapi.responses import Response

from .auth import SessionContext, resolve_session
from .blobs import BlobStore
from .config import Settings
from .errors import AuthError, ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "요청한 항목을 찾을 수 없습니다."
FORBIDDEN_MESSAGE = "접근 권한이 없습니다."


def get_settings() -> Settings:
    return Settings.from_env()


def get_blob_store(settings: Settings = Depends(get_settings)) -> BlobStore:
    return BlobStore(settings.blob_dir)


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_session(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> SessionContext:
    try:
        return resolve_session(bearer_token(authorization), db_path=settings.db_path)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc))


def to_http(exc: Exception, message: str) -> HTTPException:
    """
    Map a domain exception to an HTTPException. Must be called from an except
    block: unexpected errors are logged with their traceback and reported as 500
    with the action-specific `message`.
    """
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    logger.exception("[api] %s", message)
    return HTTPException(status_code=500, detail=message)


def attachment(data: bytes, filename: str, media_type: str) -> Response:
    # header values are latin-1; non-ASCII names go through RFC 5987
    disposition = f"attachment; filename*=UTF-8''{quote(filename)}"
    return Response(content=data, media_type=media_type, headers={"Content-Disposition": disposition})
