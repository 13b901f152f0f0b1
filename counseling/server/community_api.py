"""
Shared community board. Every signed-in counselor reads every post; only the
author may edit or delete a post or a comment.
"""

import logging

from fastapi import APIRouter, Depends

from . import database as db
from .auth import SessionContext
from .config import Settings
from .deps import get_settings, require_session, to_http
from .errors import ForbiddenError, NotFoundError
from .schemas import CommentIn, PostIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _post(post_id: str, settings: Settings) -> dict:
    post = db.get_document("posts", post_id, db_path=settings.db_path)
    if post is None:
        raise NotFoundError(f"posts/{post_id}")
    return post


def _own_post(post_id: str, session: SessionContext, settings: Settings) -> dict:
    post = _post(post_id, settings)
    if post.get("authorId") != session.user_id:
        raise ForbiddenError(f"posts/{post_id}")
    return post


@router.get("/posts")
def get_posts(
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        items = db.query_documents("posts", order_by="createdAt", descending=True, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "게시글을 불러오는 중 오류가 발생했습니다.")
    return {"items": items}


@router.get("/posts/{post_id}")
def get_post(
    post_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        return {"item": _post(post_id, settings)}
    except Exception as exc:
        raise to_http(exc, "게시글을 불러오는 중 오류가 발생했습니다.")


@router.post("/posts", status_code=201)
def post_post(
    body: PostIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    doc = {
        "title": body.title,
        "content": body.content,
        "authorId": session.user_id,
        "authorName": session.display_name or session.email,
        "commentCount": 0,
    }
    try:
        item = db.add_document("posts", session.user_id, doc, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "게시글 작성 중 오류가 발생했습니다.")
    return {"item": item, "message": "게시글이 등록되었습니다."}


@router.put("/posts/{post_id}")
def put_post(
    post_id: str,
    body: PostIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        _own_post(post_id, session, settings)
        item = db.update_document(
            "posts", post_id, {"title": body.title, "content": body.content}, db_path=settings.db_path
        )
    except Exception as exc:
        raise to_http(exc, "게시글 수정 중 오류가 발생했습니다.")
    return {"item": item, "message": "게시글이 수정되었습니다."}


@router.delete("/posts/{post_id}")
def delete_post(
    post_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        _own_post(post_id, session, settings)
        comments = db.query_documents("comments", parent_id=post_id, db_path=settings.db_path)
        for comment in comments:
            db.delete_document("comments", comment["id"], db_path=settings.db_path)
        db.delete_document("posts", post_id, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "게시글 삭제 중 오류가 발생했습니다.")
    logger.info("[community_api] post deleted id=%s comments=%d", post_id, len(comments))
    return {"message": "게시글이 삭제되었습니다."}


@router.get("/posts/{post_id}/comments")
def get_comments(
    post_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        _post(post_id, settings)
        items = db.query_documents("comments", parent_id=post_id, order_by="createdAt", db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "댓글을 불러오는 중 오류가 발생했습니다.")
    return {"items": items}


@router.post("/posts/{post_id}/comments", status_code=201)
def post_comment(
    post_id: str,
    body: CommentIn,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    doc = {
        "postId": post_id,
        "content": body.content,
        "authorId": session.user_id,
        "authorName": session.display_name or session.email,
    }
    try:
        _post(post_id, settings)
        item = db.add_document("comments", session.user_id, doc, parent_id=post_id, db_path=settings.db_path)
        db.increment_field("posts", post_id, "commentCount", 1, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "댓글 작성 중 오류가 발생했습니다.")
    return {"item": item}


@router.delete("/posts/{post_id}/comments/{comment_id}")
def delete_comment(
    post_id: str,
    comment_id: str,
    session: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        comment = db.get_document("comments", comment_id, db_path=settings.db_path)
        if comment is None or comment.get("postId") != post_id:
            raise NotFoundError(f"comments/{comment_id}")
        if comment.get("authorId") != session.user_id:
            raise ForbiddenError(f"comments/{comment_id}")
        db.delete_document("comments", comment_id, db_path=settings.db_path)
        db.increment_field("posts", post_id, "commentCount", -1, db_path=settings.db_path)
    except Exception as exc:
        raise to_http(exc, "댓글 삭제 중 오류가 발생했습니다.")
    return {"message": "댓글이 삭제되었습니다."}
