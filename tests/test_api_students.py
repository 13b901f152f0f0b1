import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from counseling.server.main import app


class StudentsApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self._env = patch.dict(
            os.environ,
            {"COUNSELING_DB_PATH": str(root / "api.sqlite"), "COUNSELING_BLOB_DIR": str(root / "files")},
        )
        self._env.start()
        self.client = TestClient(app)
        self.headers = self._signup("counselor@school.kr")

    def tearDown(self) -> None:
        self._env.stop()
        self._tmp.cleanup()

    def _signup(self, email):
        res = self.client.post("/api/auth/signup", json={"email": email, "password": "secret1"})
        return {"Authorization": f"Bearer {res.json()['user']['token']}"}

    def _student(self, name="김하늘", headers=None):
        res = self.client.post(
            "/api/students", headers=headers or self.headers, json={"name": name, "class": "3-2", "gender": "여"}
        )
        self.assertEqual(res.status_code, 201, res.text)
        return res.json()["item"]

    def test_create_list_search(self):
        first = self._student("김하늘")
        self._student("이바다")
        self.assertEqual(first["class"], "3-2")
        self.assertEqual(first["status"], "상담중")

        items = self.client.get("/api/students", headers=self.headers).json()["items"]
        self.assertEqual([s["name"] for s in items], ["이바다", "김하늘"])
        found = self.client.get("/api/students", headers=self.headers, params={"search": "하늘"}).json()["items"]
        self.assertEqual([s["name"] for s in found], ["김하늘"])

    def test_validation(self):
        res = self.client.post("/api/students", headers=self.headers, json={"name": " ", "class": "3-2", "gender": "여"})
        self.assertEqual(res.status_code, 422)

    def test_update_and_status(self):
        student = self._student()
        res = self.client.put(
            f"/api/students/{student['id']}",
            headers=self.headers,
            json={"name": "김하늘", "class": "4-1", "gender": "여", "memo": "전학 예정"},
        )
        self.assertEqual(res.json()["item"]["class"], "4-1")
        res = self.client.patch(f"/api/students/{student['id']}/status", headers=self.headers, json={"status": "종결"})
        self.assertEqual(res.json()["item"]["status"], "종결")

    def test_other_owner_is_forbidden(self):
        student = self._student()
        other = self._signup("other@school.kr")
        self.assertEqual(self.client.get(f"/api/students/{student['id']}", headers=other).status_code, 403)
        self.assertEqual(self.client.get("/api/students", headers=other).json()["items"], [])
        self.assertEqual(self.client.get("/api/students/missing", headers=self.headers).status_code, 404)

    def test_forms_one_document_per_student(self):
        student = self._student()
        url = f"/api/students/{student['id']}/forms/teacher-referral"
        self.assertIsNone(self.client.get(url, headers=self.headers).json()["item"])

        first = self.client.put(url, headers=self.headers, json={"content": "<p>1차</p>"}).json()["item"]
        second = self.client.put(url, headers=self.headers, json={"content": "<p>2차</p>"}).json()["item"]
        self.assertEqual(first["id"], second["id"])
        self.assertEqual(self.client.get(url, headers=self.headers).json()["item"]["content"], "<p>2차</p>")

        self.client.delete(url, headers=self.headers)
        self.assertIsNone(self.client.get(url, headers=self.headers).json()["item"])
        self.assertEqual(
            self.client.get(f"/api/students/{student['id']}/forms/unknown", headers=self.headers).status_code, 404
        )

    def test_files(self):
        student = self._student()
        base = f"/api/students/{student['id']}/files"
        res = self.client.post(base, headers=self.headers, files={"file": ("동의서.txt", "동의".encode(), "text/plain")})
        self.assertEqual(res.status_code, 201, res.text)

        items = self.client.get(base, headers=self.headers).json()["items"]
        self.assertEqual([f["fileName"] for f in items], ["동의서.txt"])

        download = self.client.get(f"{base}/동의서.txt", headers=self.headers)
        self.assertEqual(download.content, "동의".encode())
        self.assertIn("attachment", download.headers["content-disposition"])

        self.assertEqual(self.client.delete(f"{base}/동의서.txt", headers=self.headers).status_code, 200)
        self.assertEqual(self.client.get(f"{base}/동의서.txt", headers=self.headers).status_code, 404)

    def test_delete_student_cascades(self):
        student = self._student()
        keep = self._student("이바다")
        sid = student["id"]
        self.client.post(
            f"/api/students/{sid}/logs", headers=self.headers, json={"counselingDate": "2025-04-01", "mainIssues": "진로"}
        )
        self.client.post(
            f"/api/students/{keep['id']}/logs",
            headers=self.headers,
            json={"counselingDate": "2025-04-01", "mainIssues": "교우관계"},
        )
        self.client.post(
            f"/api/students/{sid}/tests",
            headers=self.headers,
            json={"testName": "HTP", "testDate": "2025-04-02", "results": "양호"},
        )
        self.client.put(f"/api/students/{sid}/forms/conceptualization", headers=self.headers, json={"content": "x"})
        self.client.post(f"/api/students/{sid}/files", headers=self.headers, files={"file": ("a.txt", b"a", "text/plain")})

        res = self.client.delete(f"/api/students/{sid}", headers=self.headers)
        self.assertEqual(res.status_code, 200, res.text)
        removed = res.json()["removed"]
        self.assertEqual(removed["counselingLogs"], 1)
        self.assertEqual(removed["psychologicalTests"], 1)
        self.assertEqual(removed["caseConceptualizations"], 1)
        self.assertEqual(removed["files"], 1)

        self.assertEqual(self.client.get(f"/api/students/{sid}", headers=self.headers).status_code, 404)
        remaining = self.client.get("/api/records", headers=self.headers).json()["items"]
        self.assertEqual([r["studentName"] for r in remaining], ["이바다"])


if __name__ == "__main__":
    unittest.main()
