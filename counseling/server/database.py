import json
import logging
import re
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from .config import Settings
from .errors import ForbiddenError, NotFoundError
from .realtime import HUB

logger = logging.getLogger(__name__)

DB_PATH = Settings.from_env().db_path
_INITIALIZED: Set[Path] = set()

COLLECTIONS = {
    "students",
    "appointments",
    "counselingLogs",
    "psychologicalTests",
    "caseConceptualizations",
    "parentApplications",
    "teacherReferrals",
    "studentApplications",
    "todos",
    "posts",
    "comments",
}
# Owner-scoped collections removed together with the account.
OWNED_COLLECTIONS = [
    "students",
    "appointments",
    "counselingLogs",
    "caseConceptualizations",
    "psychologicalTests",
    "todos",
    "parentApplications",
    "teacherReferrals",
    "studentApplications",
]
# Collections removed together with a student.
STUDENT_COLLECTIONS = [
    "counselingLogs",
    "caseConceptualizations",
    "psychologicalTests",
    "parentApplications",
    "teacherReferrals",
    "studentApplications",
]
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_KEYS = {"id", "userId", "createdAt", "updatedAt"}

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    collection TEXT NOT NULL,
    owner_id TEXT,
    student_id TEXT,
    parent_id TEXT,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents (collection, owner_id);
CREATE INDEX IF NOT EXISTS idx_documents_student ON documents (collection, student_id);
CREATE INDEX IF NOT EXISTS idx_documents_parent ON documents (collection, parent_id);
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    display_name TEXT,
    password_salt TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def new_id() -> str:
    return secrets.token_hex(10)


def init_db(db_path: Path = DB_PATH) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()
    _INITIALIZED.add(db_path)


@contextmanager
def _connect(db_path: Path) -> Iterator[sqlite3.Connection]:
    if db_path not in _INITIALIZED or not db_path.exists():
        init_db(db_path)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _fetch_all(conn: sqlite3.Connection, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
    cur = conn.execute(query, params)
    return cur.fetchall()


def _safe_json_load(value: Any) -> Any:
    """
    Parse JSON fields stored as TEXT. If parsing fails, return the original value.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except Exception:
            return value
    return value


def _dump(data: Dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")


def _row_to_doc(row: sqlite3.Row) -> Dict[str, Any]:
    data = _safe_json_load(row["data"])
    if not isinstance(data, dict):
        data = {}
    doc: Dict[str, Any] = {"id": row["id"], **data}
    doc["userId"] = row["owner_id"]
    doc["createdAt"] = row["created_at"]
    doc["updatedAt"] = row["updated_at"]
    return doc


def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in _RESERVED_KEYS}


def _fetch_doc_row(conn: sqlite3.Connection, collection: str, doc_id: str) -> sqlite3.Row | None:
    rows = _fetch_all(
        conn,
        "SELECT * FROM documents WHERE collection = ? AND id = ? LIMIT 1",
        (collection, doc_id),
    )
    return rows[0] if rows else None


def add_document(
    collection: str,
    owner_id: str | None,
    data: Dict[str, Any],
    *,
    student_id: str | None = None,
    parent_id: str | None = None,
    db_path: Path = DB_PATH,
) -> Dict[str, Any]:
    _check_collection(collection)
    doc_id = new_id()
    ts = now_iso()
    payload = _clean(data)
    if student_id is None:
        student_id = payload.get("studentId") or None
    with _connect(db_path) as conn:
        conn.execute(
            "INSERT INTO documents (id, collection, owner_id, student_id, parent_id, data, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (doc_id, collection, owner_id, student_id, parent_id, _dump(payload), ts, ts),
        )
        row = _fetch_doc_row(conn, collection, doc_id)
    HUB.publish(collection, owner_id)
    return _row_to_doc(row)


def get_document(collection: str, doc_id: str, db_path: Path = DB_PATH) -> Dict[str, Any] | None:
    _check_collection(collection)
    with _connect(db_path) as conn:
        row = _fetch_doc_row(conn, collection, doc_id)
    if row is None:
        return None
    return _row_to_doc(row)


def _write_data(conn: sqlite3.Connection, row: sqlite3.Row, data: Dict[str, Any]) -> None:
    student_id = data.get("studentId") or row["student_id"]
    conn.execute(
        "UPDATE documents SET data = ?, student_id = ?, updated_at = ? WHERE seq = ?",
        (_dump(data), student_id, now_iso(), row["seq"]),
    )


def set_document(
    collection: str,
    doc_id: str,
    data: Dict[str, Any],
    *,
    merge: bool = True,
    db_path: Path = DB_PATH,
) -> Dict[str, Any]:
    """Merge `data` into an existing document (or replace its fields when merge=False)."""
    _check_collection(collection)
    with _connect(db_path) as conn:
        row = _fetch_doc_row(conn, collection, doc_id)
        if row is None:
            raise NotFoundError(f"{collection}/{doc_id}")
        current = _safe_json_load(row["data"]) or {}
        merged = {**current, **_clean(data)} if merge else _clean(data)
        _write_data(conn, row, merged)
        row = _fetch_doc_row(conn, collection, doc_id)
    HUB.publish(collection, row["owner_id"])
    return _row_to_doc(row)


def update_document(collection: str, doc_id: str, changes: Dict[str, Any], db_path: Path = DB_PATH) -> Dict[str, Any]:
    return set_document(collection, doc_id, changes, merge=True, db_path=db_path)


def array_union(collection: str, doc_id: str, field: str, value: Any, db_path: Path = DB_PATH) -> Dict[str, Any]:
    _check_collection(collection)
    with _connect(db_path) as conn:
        row = _fetch_doc_row(conn, collection, doc_id)
        if row is None:
            raise NotFoundError(f"{collection}/{doc_id}")
        data = _safe_json_load(row["data"]) or {}
        items = list(data.get(field) or [])
        if value not in items:
            items.append(value)
        data[field] = items
        _write_data(conn, row, data)
        row = _fetch_doc_row(conn, collection, doc_id)
    HUB.publish(collection, row["owner_id"])
    return _row_to_doc(row)


def increment_field(collection: str, doc_id: str, field: str, delta: int, db_path: Path = DB_PATH) -> Dict[str, Any]:
    _check_collection(collection)
    with _connect(db_path) as conn:
        row = _fetch_doc_row(conn, collection, doc_id)
        if row is None:
            raise NotFoundError(f"{collection}/{doc_id}")
        data = _safe_json_load(row["data"]) or {}
        try:
            current = int(data.get(field) or 0)
        except (TypeError, ValueError):
            current = 0
        data[field] = current + delta
        _write_data(conn, row, data)
        row = _fetch_doc_row(conn, collection, doc_id)
    HUB.publish(collection, row["owner_id"])
    return _row_to_doc(row)


def delete_document(collection: str, doc_id: str, db_path: Path = DB_PATH) -> None:
    _check_collection(collection)
    with _connect(db_path) as conn:
        row = _fetch_doc_row(conn, collection, doc_id)
        if row is None:
            raise NotFoundError(f"{collection}/{doc_id}")
        conn.execute("DELETE FROM documents WHERE seq = ?", (row["seq"],))
    HUB.publish(collection, row["owner_id"])


def query_documents(
    collection: str,
    *,
    owner_id: str | None = None,
    student_id: str | None = None,
    parent_id: str | None = None,
    order_by: str | None = None,
    descending: bool = False,
    db_path: Path = DB_PATH,
) -> List[Dict[str, Any]]:
    _check_collection(collection)
    query = "SELECT * FROM documents WHERE collection = ? "
    params: List[Any] = [collection]
    if owner_id is not None:
        query += "AND owner_id = ? "
        params.append(owner_id)
    if student_id is not None:
        query += "AND student_id = ? "
        params.append(student_id)
    if parent_id is not None:
        query += "AND parent_id = ? "
        params.append(parent_id)

    direction = "DESC" if descending else "ASC"
    if order_by in (None, "createdAt"):
        query += f"ORDER BY created_at {direction}, seq {direction}"
    elif order_by == "updatedAt":
        query += f"ORDER BY updated_at {direction}, seq {direction}"
    else:
        if not _FIELD_RE.match(order_by):
            raise ValueError(f"Invalid order field: {order_by}")
        query += f"ORDER BY json_extract(data, ?) {direction}, seq {direction}"
        params.append(f"$.{order_by}")

    with _connect(db_path) as conn:
        rows = _fetch_all(conn, query, params)
    return [_row_to_doc(row) for row in rows]


def delete_where(
    collection: str,
    *,
    owner_id: str,
    student_id: str | None = None,
    batch_size: int = 500,
    db_path: Path = DB_PATH,
) -> int:
    """Delete matching documents in batches of `batch_size`; returns the number removed."""
    _check_collection(collection)
    query = "SELECT seq FROM documents WHERE collection = ? AND owner_id = ? "
    params: List[Any] = [collection, owner_id]
    if student_id is not None:
        query += "AND student_id = ? "
        params.append(student_id)

    removed = 0
    with _connect(db_path) as conn:
        seqs = [row["seq"] for row in _fetch_all(conn, query, params)]
    for start in range(0, len(seqs), batch_size):
        chunk = seqs[start : start + batch_size]
        placeholders = ",".join("?" for _ in chunk)
        with _connect(db_path) as conn:
            conn.execute(f"DELETE FROM documents WHERE seq IN ({placeholders})", chunk)
        removed += len(chunk)
    if removed:
        HUB.publish(collection, owner_id)
    logger.info("[database] deleted %d docs collection=%s owner=%s student=%s", removed, collection, owner_id, student_id)
    return removed


def get_owned_document(
    collection: str, doc_id: str, owner_id: str, db_path: Path = DB_PATH
) -> Dict[str, Any]:
    """Fetch a document and check that it belongs to `owner_id`."""
    doc = get_document(collection, doc_id, db_path=db_path)
    if doc is None:
        raise NotFoundError(f"{collection}/{doc_id}")
    if doc.get("userId") != owner_id:
        raise ForbiddenError(f"{collection}/{doc_id}")
    return doc


def find_student_document(
    collection: str, owner_id: str, student_id: str, db_path: Path = DB_PATH
) -> Optional[Dict[str, Any]]:
    """Single-document-per-student collections (case conceptualization, application forms)."""
    docs = query_documents(collection, owner_id=owner_id, student_id=student_id, db_path=db_path)
    return docs[0] if docs else None
