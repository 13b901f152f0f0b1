"""
Local account and session service.

Accounts hold a salted PBKDF2 password hash. A successful login issues an
opaque bearer token; the resolved `SessionContext` is passed explicitly to
every handler that needs the current counselor.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict

from . import database as db
from .blobs import BlobStore
from .errors import AuthError, ConflictError

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 120_000
MIN_PASSWORD_LENGTH = 6
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    email: str
    display_name: str
    token: str
    expires_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.user_id,
            "email": self.email,
            "displayName": self.display_name,
            "token": self.token,
            "expiresAt": self.expires_at,
        }


def _hash_password(password: str, salt: str) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return digest.hex()


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"비밀번호는 {MIN_PASSWORD_LENGTH}자 이상이어야 합니다.")


def _normalize_email(email: str) -> str:
    text = (email or "").strip().lower()
    if not _EMAIL_RE.match(text):
        raise ValueError("올바른 이메일 주소를 입력해주세요.")
    return text


def _account_by_email(conn: sqlite3.Connection, email: str) -> sqlite3.Row | None:
    rows = db._fetch_all(conn, "SELECT * FROM accounts WHERE email = ? LIMIT 1", (email,))
    return rows[0] if rows else None


def _account_by_id(conn: sqlite3.Connection, account_id: str) -> sqlite3.Row | None:
    rows = db._fetch_all(conn, "SELECT * FROM accounts WHERE id = ? LIMIT 1", (account_id,))
    return rows[0] if rows else None


def _issue_session(conn: sqlite3.Connection, account: sqlite3.Row, ttl_hours: int) -> SessionContext:
    token = secrets.token_urlsafe(32)
    expires = datetime.now(timezone.utc) + timedelta(hours=ttl_hours)
    expires_at = expires.isoformat(timespec="seconds")
    conn.execute(
        "INSERT INTO sessions (token, account_id, expires_at) VALUES (?, ?, ?)",
        (token, account["id"], expires_at),
    )
    return SessionContext(
        user_id=account["id"],
        email=account["email"],
        display_name=account["display_name"] or account["email"],
        token=token,
        expires_at=expires_at,
    )


def _verify(account: sqlite3.Row | None, password: str) -> bool:
    if account is None:
        return False
    expected = account["password_hash"]
    actual = _hash_password(password or "", account["password_salt"])
    return hmac.compare_digest(expected, actual)


def signup(
    email: str,
    password: str,
    display_name: str | None = None,
    *,
    ttl_hours: int = 12,
    db_path: Path = db.DB_PATH,
) -> SessionContext:
    email_norm = _normalize_email(email)
    _validate_password(password)
    salt = secrets.token_hex(16)
    with db._connect(db_path) as conn:
        if _account_by_email(conn, email_norm) is not None:
            raise ConflictError("이미 사용 중인 이메일입니다.")
        account_id = db.new_id()
        conn.execute(
            "INSERT INTO accounts (id, email, display_name, password_salt, password_hash, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (account_id, email_norm, (display_name or "").strip() or None, salt, _hash_password(password, salt), db.now_iso()),
        )
        account = _account_by_id(conn, account_id)
        session = _issue_session(conn, account, ttl_hours)
    logger.info("[auth] signup account=%s", account_id)
    return session


def login(email: str, password: str, *, ttl_hours: int = 12, db_path: Path = db.DB_PATH) -> SessionContext:
    email_norm = (email or "").strip().lower()
    with db._connect(db_path) as conn:
        account = _account_by_email(conn, email_norm)
        if not _verify(account, password):
            raise AuthError("이메일 또는 비밀번호가 올바르지 않습니다.")
        return _issue_session(conn, account, ttl_hours)


def logout(token: str, db_path: Path = db.DB_PATH) -> None:
    with db._connect(db_path) as conn:
        conn.execute("DELETE FROM sessions WHERE token = ?", (token,))


def resolve_session(token: str | None, db_path: Path = db.DB_PATH) -> SessionContext:
    if not token:
        raise AuthError("로그인이 필요합니다.")
    with db._connect(db_path) as conn:
        rows = db._fetch_all(
            conn,
            "SELECT s.token, s.expires_at, a.id, a.email, a.display_name "
            "FROM sessions s JOIN accounts a ON a.id = s.account_id "
            "WHERE s.token = ? LIMIT 1",
            (token,),
        )
        if not rows:
            raise AuthError("로그인이 필요합니다.")
        row = rows[0]
    if datetime.fromisoformat(row["expires_at"]) <= datetime.now(timezone.utc):
        logout(token, db_path=db_path)
        raise AuthError("세션이 만료되었습니다. 다시 로그인해주세요.")
    return SessionContext(
        user_id=row["id"],
        email=row["email"],
        display_name=row["display_name"] or row["email"],
        token=row["token"],
        expires_at=row["expires_at"],
    )


def _reauthenticate(conn: sqlite3.Connection, session: SessionContext, password: str) -> sqlite3.Row:
    account = _account_by_id(conn, session.user_id)
    if not _verify(account, password):
        raise AuthError("현재 비밀번호가 올바르지 않습니다.")
    return account


def change_password(
    session: SessionContext, current_password: str, new_password: str, db_path: Path = db.DB_PATH
) -> None:
    _validate_password(new_password)
    salt = secrets.token_hex(16)
    with db._connect(db_path) as conn:
        _reauthenticate(conn, session, current_password)
        conn.execute(
            "UPDATE accounts SET password_salt = ?, password_hash = ? WHERE id = ?",
            (salt, _hash_password(new_password, salt), session.user_id),
        )
    logger.info("[auth] password changed account=%s", session.user_id)


def delete_account(
    session: SessionContext, current_password: str, blobs: BlobStore, db_path: Path = db.DB_PATH
) -> Dict[str, int]:
    """
    Reauthenticate, then remove every owned document, the owner's file folder,
    all sessions and finally the account itself.
    """
    with db._connect(db_path) as conn:
        _reauthenticate(conn, session, current_password)

    removed: Dict[str, int] = {}
    for collection in db.OWNED_COLLECTIONS:
        removed[collection] = db.delete_where(collection, owner_id=session.user_id, db_path=db_path)
    removed["files"] = blobs.delete_owner_folder(session.user_id)

    with db._connect(db_path) as conn:
        conn.execute("DELETE FROM sessions WHERE account_id = ?", (session.user_id,))
        conn.execute("DELETE FROM accounts WHERE id = ?", (session.user_id,))
    logger.info("[auth] account deleted account=%s removed=%s", session.user_id, removed)
    return removed
