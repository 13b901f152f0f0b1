import sqlite3
import tempfile
import unittest
from pathlib import Path

from counseling.server import auth
from counseling.server import database as db
from counseling.server.blobs import BlobStore
from counseling.server.errors import AuthError, ConflictError


class AuthServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.db_path = self.root / "store.sqlite"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _signup(self, email="counselor@school.kr", password="secret1"):
        return auth.signup(email, password, "상담교사", db_path=self.db_path)

    def test_signup_login_resolve(self):
        session = self._signup()
        self.assertEqual(session.display_name, "상담교사")
        resolved = auth.resolve_session(session.token, db_path=self.db_path)
        self.assertEqual(resolved.user_id, session.user_id)

        again = auth.login("Counselor@School.kr ", "secret1", db_path=self.db_path)
        self.assertNotEqual(again.token, session.token)

    def test_signup_validation(self):
        with self.assertRaises(ValueError):
            auth.signup("not-an-email", "secret1", db_path=self.db_path)
        with self.assertRaises(ValueError):
            auth.signup("a@b.kr", "123", db_path=self.db_path)
        self._signup()
        with self.assertRaises(ConflictError):
            self._signup()

    def test_wrong_password_and_missing_token(self):
        self._signup()
        with self.assertRaises(AuthError):
            auth.login("counselor@school.kr", "wrong-password", db_path=self.db_path)
        with self.assertRaises(AuthError):
            auth.resolve_session(None, db_path=self.db_path)
        with self.assertRaises(AuthError):
            auth.resolve_session("unknown-token", db_path=self.db_path)

    def test_expired_session_is_removed(self):
        session = self._signup()
        conn = sqlite3.connect(self.db_path)
        conn.execute("UPDATE sessions SET expires_at = ? WHERE token = ?", ("2000-01-01T00:00:00+00:00", session.token))
        conn.commit()
        conn.close()

        with self.assertRaises(AuthError):
            auth.resolve_session(session.token, db_path=self.db_path)
        conn = sqlite3.connect(self.db_path)
        count = conn.execute("SELECT COUNT(*) FROM sessions WHERE token = ?", (session.token,)).fetchone()[0]
        conn.close()
        self.assertEqual(count, 0)

    def test_logout(self):
        session = self._signup()
        auth.logout(session.token, db_path=self.db_path)
        with self.assertRaises(AuthError):
            auth.resolve_session(session.token, db_path=self.db_path)

    def test_change_password_requires_current(self):
        session = self._signup()
        with self.assertRaises(AuthError):
            auth.change_password(session, "wrong-password", "newsecret", db_path=self.db_path)
        auth.change_password(session, "secret1", "newsecret", db_path=self.db_path)
        with self.assertRaises(AuthError):
            auth.login("counselor@school.kr", "secret1", db_path=self.db_path)
        auth.login("counselor@school.kr", "newsecret", db_path=self.db_path)

    def test_delete_account_cascades(self):
        session = self._signup()
        other = self._signup("other@school.kr")
        blobs = BlobStore(self.root / "files")
        student = db.add_document("students", session.user_id, {"name": "김하늘"}, db_path=self.db_path)
        db.add_document("counselingLogs", session.user_id, {"studentId": student["id"]}, db_path=self.db_path)
        db.add_document("todos", other.user_id, {"task": "남의 할 일"}, db_path=self.db_path)
        blobs.upload(session.user_id, student["id"], "report.pdf", b"%PDF")

        with self.assertRaises(AuthError):
            auth.delete_account(session, "wrong-password", blobs, db_path=self.db_path)

        removed = auth.delete_account(session, "secret1", blobs, db_path=self.db_path)
        self.assertEqual(removed["students"], 1)
        self.assertEqual(removed["counselingLogs"], 1)
        self.assertEqual(removed["files"], 1)
        self.assertEqual(db.query_documents("students", owner_id=session.user_id, db_path=self.db_path), [])
        self.assertEqual(len(db.query_documents("todos", owner_id=other.user_id, db_path=self.db_path)), 1)
        with self.assertRaises(AuthError):
            auth.resolve_session(session.token, db_path=self.db_path)


if __name__ == "__main__":
    unittest.main()
