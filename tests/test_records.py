import unittest

from counseling.server import records as rc


def _log(log_id, day, time="13:00", **extra):
    doc = {
        "id": log_id,
        "studentId": "s-1",
        "studentName": "김하늘",
        "counselingDate": day,
        "counselingTime": time,
        "counselingDuration": "40",
        "counselingDivision": "진로",
        "mainIssues": "진로 고민",
    }
    doc.update(extra)
    return doc


def _test(test_id, day, time="10:00", name="박나래"):
    return {"id": test_id, "studentId": "s-2", "studentName": name, "testName": "MBTI", "testDate": day, "testTime": time}


class RecordAdapterTest(unittest.TestCase):
    def test_log_becomes_counseling_record(self):
        rec = rc.record_from_log(_log("a", "2025-04-01"))
        self.assertIsInstance(rec, rc.CounselingRecord)
        self.assertEqual(rec.kind, "상담")
        self.assertEqual(rec.id, "log-a")
        self.assertEqual(rec.original_id, "a")
        self.assertEqual(rec.duration, 40)
        self.assertFalse(rec.is_group)

    def test_advisory_log_becomes_advisory_record(self):
        rec = rc.record_from_log(_log("a", "2025-04-01", isAdvisory=True, advisoryField="정서발달"))
        self.assertIsInstance(rec, rc.AdvisoryRecord)
        self.assertEqual(rec.kind, "자문")
        self.assertEqual(rc.list_division(rec), "정서발달")

    def test_test_record(self):
        rec = rc.record_from_test(_test("t", "2025-04-01T01:00:00Z"))
        self.assertEqual(rec.kind, "검사")
        self.assertEqual(rec.date, "2025-04-01")
        self.assertEqual(rec.details, "MBTI")
        self.assertEqual(rc.counselee_count(rec), 1)

    def test_invalid_co_counselees_are_dropped(self):
        rec = rc.record_from_log(_log("a", "2025-04-01", coCounselees=[{"id": "s-2", "name": "이"}, "bad", {"name": "x"}]))
        self.assertEqual(rc.counselee_count(rec), 2)
        self.assertEqual(rc.middle_category(rec), "집단상담")
        self.assertEqual(rc.list_division(rec), "진로")


class CombinedListTest(unittest.TestCase):
    def test_sorted_by_date_then_time_desc(self):
        logs = [_log("a", "2025-04-01", "09:00"), _log("b", "2025-04-02", "09:00"), _log("c", "2025-04-01", "15:00")]
        tests = [_test("t", "2025-04-02", "11:00")]
        ids = [r.id for r in rc.combine_records(logs, tests)]
        self.assertEqual(ids, ["test-t", "log-b", "log-c", "log-a"])

    def test_search_by_student_name(self):
        records = rc.combine_records([_log("a", "2025-04-01")], [_test("t", "2025-04-02")])
        self.assertEqual([r.id for r in rc.search_records(records, "나래")], ["test-t"])
        self.assertEqual(len(rc.search_records(records, "  ")), 2)

    def test_record_to_dict(self):
        rec = rc.record_from_log(_log("a", "2025-04-01", isParentCounseling=True))
        item = rc.record_to_dict(rec)
        self.assertEqual(item["type"], "상담")
        self.assertEqual(item["middleCategory"], "학부모상담")
        self.assertEqual(item["counselingDivision"], "학생관련상담")
        self.assertTrue(item["isParentCounseling"])
        self.assertNotIn("isParentCounseling", rc.record_to_dict(rc.record_from_test(_test("t", "2025-04-01"))))

    def test_source_collection(self):
        self.assertEqual(rc.source_collection("log-abc"), ("counselingLogs", "abc"))
        self.assertEqual(rc.source_collection("test-xyz"), ("psychologicalTests", "xyz"))
        with self.assertRaises(ValueError):
            rc.source_collection("other-1")


class StudentHistoryTest(unittest.TestCase):
    def test_default_division_follows_latest_log(self):
        logs = [
            _log("a", "2025-04-01", counselingDivision="정신건강"),
            _log("b", "2025-04-03", counselingDivision="대인관계"),
        ]
        self.assertEqual(rc.default_division(logs), "대인관계")
        self.assertEqual(rc.default_division([]), "기타")

    def test_sort_logs_and_tests(self):
        logs = [_log("a", "2025-04-01", "09:00"), _log("b", "2025-04-01", "10:00")]
        self.assertEqual([l["id"] for l in rc.sort_logs(logs)], ["b", "a"])
        tests = [_test("t1", "2025-03-01"), _test("t2", "2025-05-01")]
        self.assertEqual([t["id"] for t in rc.sort_tests(tests)], ["t2", "t1"])


if __name__ == "__main__":
    unittest.main()
