import unittest
from datetime import date

from counseling.server import statistics as st
from counseling.server.records import ingest, record_from_log, record_from_test

FULL = st.DateRange("2025-03-01", "2026-02-28")


def _log(log_id, day="2025-04-01", duration=40, **extra):
    doc = {
        "id": log_id,
        "studentId": "s-1",
        "studentName": "김하늘",
        "counselingDate": day,
        "counselingTime": "13:00",
        "counselingDuration": duration,
        "counselingDivision": "진로",
    }
    doc.update(extra)
    return doc


def _test(test_id, day="2025-04-02", duration=60):
    return {
        "id": test_id,
        "studentId": "s-1",
        "studentName": "김하늘",
        "testName": "HTP",
        "testDate": day,
        "testTime": "10:00",
        "testDuration": duration,
    }


def _labels(rows):
    return [(r.level1, r.level2, r.level3) for r in rows]


class ClassifyTest(unittest.TestCase):
    def test_test_record(self):
        self.assertEqual(st.classify(record_from_test(_test("t1"))), ("검사", "심리검사", "개인심리검사"))

    def test_parent_flag_wins_over_advisory(self):
        rec = record_from_log(_log("l1", isParentCounseling=True, isAdvisory=True, advisoryField="정서발달"))
        self.assertEqual(st.classify(rec), ("상담", "학부모상담", "학생관련상담"))

    def test_advisory_field_and_fallback(self):
        rec = record_from_log(_log("l1", isAdvisory=True, advisoryField="진로발달"))
        self.assertEqual(st.classify(rec), ("자문", "교원자문", "진로발달"))
        rec = record_from_log(_log("l2", isAdvisory=True, advisoryField=None))
        self.assertEqual(st.classify(rec), ("자문", "교원자문", "기타"))

    def test_group_uses_fixed_label_regardless_of_division(self):
        rec = record_from_log(
            _log("l1", counselingDivision="정신건강", coCounselees=[{"id": "s-2", "name": "이바다"}])
        )
        self.assertEqual(st.classify(rec), ("상담", "집단상담", "성격/대인관계"))

    def test_individual_division_and_fallback(self):
        self.assertEqual(st.classify(record_from_log(_log("l1"))), ("상담", "개인상담", "진로"))
        self.assertEqual(
            st.classify(record_from_log(_log("l2", counselingDivision=None))), ("상담", "개인상담", "기타")
        )

    def test_sparse_document_falls_back(self):
        rec = record_from_log({"id": "x"})
        self.assertEqual(st.classify(rec), ("상담", "개인상담", "기타"))


class AggregateTest(unittest.TestCase):
    def test_individual_and_test_scenario(self):
        logs = [
            _log("l1", duration=30, counselingDivision="학교생활"),
            _log("l2", duration=50, counselingDivision="학교생활"),
        ]
        rows = st.aggregate(ingest(logs, [_test("t1", duration=60)]), FULL)

        self.assertEqual(
            _labels(rows),
            [
                ("상담", "개인상담", "학교생활"),
                ("상담", "개인상담", "개인상담합계"),
                ("상담", "학생상담 합계", ""),
                ("상담", "상담합계", ""),
                ("검사", "심리검사", "개인심리검사"),
                ("검사", "심리검사", "심리검사합계"),
                ("검사", "검사합계", ""),
                ("", "", ""),
            ],
        )
        detail = rows[0]
        self.assertEqual((detail.no, detail.count, detail.avg_duration), (1, 2, 40))
        self.assertEqual((rows[1].no, rows[1].count, rows[1].avg_duration), ("", 2, 40))
        self.assertTrue(rows[1].is_subtotal)
        self.assertEqual((rows[4].no, rows[4].count, rows[4].avg_duration), (2, 1, 60))
        total = rows[-1]
        self.assertEqual(total.no, "합계")
        self.assertTrue(total.is_grand_total)
        self.assertEqual(total.count, 3)
        self.assertAlmostEqual(total.avg_duration, 140 / 3, places=2)

    def test_full_taxonomy_order(self):
        logs = [
            _log("a1", isAdvisory=True, advisoryField="학교학습"),
            _log("g1", coCounselees=[{"id": "s-2", "name": "이바다"}]),
            _log("i1", counselingDivision="진로"),
            _log("p1", isParentCounseling=True),
            _log("i2", counselingDivision="정신건강"),
        ]
        rows = st.aggregate(ingest(logs, [_test("t1")]), FULL)
        self.assertEqual(
            _labels(rows),
            [
                ("상담", "학부모상담", "학생관련상담"),
                ("상담", "학부모상담", "학부모상담합계"),
                ("상담", "개인상담", "진로"),
                ("상담", "개인상담", "정신건강"),
                ("상담", "개인상담", "개인상담합계"),
                ("상담", "집단상담", "성격/대인관계"),
                ("상담", "집단상담", "집단상담합계"),
                ("상담", "학생상담 합계", ""),
                ("상담", "상담합계", ""),
                ("검사", "심리검사", "개인심리검사"),
                ("검사", "심리검사", "심리검사합계"),
                ("검사", "검사합계", ""),
                ("자문", "교원자문", "학교학습"),
                ("자문", "교원자문", "교원자문합계"),
                ("자문", "자문합계", ""),
                ("", "", ""),
            ],
        )
        by_label = {(r.level2, r.level3): r for r in rows}
        self.assertEqual(by_label[("학생상담 합계", "")].count, 3)
        self.assertEqual(by_label[("상담합계", "")].count, 4)
        self.assertEqual([r.no for r in rows if not r.is_subtotal], [1, 2, 3, 4, 5, 6])

    def test_parent_only_skips_student_rollup(self):
        rows = st.aggregate(ingest([_log("p1", isParentCounseling=True)], []), FULL)
        self.assertNotIn(("상담", "학생상담 합계", ""), _labels(rows))
        self.assertIn(("상담", "상담합계", ""), _labels(rows))

    def test_leaf_counts_reconcile_with_filtered_total(self):
        logs = [_log(f"l{i}", counselingDivision=d) for i, d in enumerate(["진로", "진로", "정신건강", None])]
        logs.append(_log("out", day="2024-01-01"))
        rows = st.aggregate(ingest(logs, [_test("t1"), _test("t2")]), FULL)
        leaf_total = sum(r.count for r in rows if not r.is_subtotal)
        self.assertEqual(leaf_total, 6)
        self.assertEqual(rows[-1].count, 6)
        self.assertTrue(all(r.count > 0 for r in rows))

    def test_missing_duration_counts_as_zero(self):
        rows = st.aggregate(ingest([_log("l1", duration=60), _log("l2", duration=None)], []), FULL)
        self.assertEqual(rows[0].count, 2)
        self.assertEqual(rows[0].avg_duration, 30)

    def test_range_boundaries_are_inclusive(self):
        logs = [_log("a", day="2025-03-01"), _log("b", day="2025-03-31"), _log("c", day="2025-04-01")]
        rows = st.aggregate(ingest(logs, []), st.DateRange("2025-03-01", "2025-03-31"))
        self.assertEqual(rows[-1].count, 2)

    def test_empty_input_and_incomplete_range(self):
        self.assertEqual(st.aggregate([], FULL), [])
        self.assertEqual(st.aggregate(ingest([_log("a", day="2020-01-01")], []), FULL), [])
        self.assertEqual(st.aggregate(ingest([_log("a")], []), st.DateRange("", "2026-01-01")), [])

    def test_idempotent(self):
        records = ingest([_log("a"), _log("b", coCounselees=[{"id": "s-3", "name": "박"}])], [_test("t")])
        self.assertEqual(st.aggregate(records, FULL), st.aggregate(records, FULL))


class ComputeSpansTest(unittest.TestCase):
    def test_spans_follow_runs(self):
        logs = [_log("i1", counselingDivision="진로"), _log("i2", counselingDivision="정신건강")]
        rows = st.aggregate(ingest(logs, [_test("t1")]), FULL)
        spanned = st.compute_spans(rows)

        level1 = [s.level1_span for s in spanned]
        level2 = [s.level2_span for s in spanned]
        # 진로, 정신건강, 개인상담합계, 학생상담 합계, 상담합계 | 개인심리검사, 심리검사합계, 검사합계 | 합계
        self.assertEqual(level1, [5, 0, 0, 0, 0, 3, 0, 0, 1])
        self.assertEqual(level2, [3, 0, 0, 1, 1, 2, 0, 1, 1])

    def test_first_row_of_each_level1_run_carries_run_length(self):
        logs = [
            _log("p1", isParentCounseling=True),
            _log("a1", isAdvisory=True, advisoryField="기타"),
        ]
        rows = st.aggregate(ingest(logs, [_test("t1")]), FULL)
        spanned = st.compute_spans(rows)
        i = 0
        while i < len(rows):
            if not rows[i].level1:
                self.assertEqual(spanned[i].level1_span, 1)
                i += 1
                continue
            j = i
            while j < len(rows) and rows[j].level1 == rows[i].level1:
                j += 1
            self.assertEqual(spanned[i].level1_span, j - i)
            for k in range(i + 1, j):
                self.assertEqual(spanned[k].level1_span, 0)
            i = j

    def test_level2_run_stops_at_level1_boundary(self):
        rows = [
            st.StatisticRow(1, "상담", "같음", "x", 1, 1.0),
            st.StatisticRow(2, "검사", "같음", "y", 1, 1.0),
        ]
        spanned = st.compute_spans(rows)
        self.assertEqual([s.level2_span for s in spanned], [1, 1])
        self.assertEqual([s.level1_span for s in spanned], [1, 1])

    def test_to_dict_keys(self):
        rows = st.aggregate(ingest([_log("a")], []), FULL)
        item = st.compute_spans(rows)[0].to_dict()
        self.assertEqual(item["level1Span"], 4)
        self.assertEqual(item["avgDuration"], 40)
        self.assertFalse(item["isGrandTotal"])


class DefaultDateRangeTest(unittest.TestCase):
    def test_school_year_to_today(self):
        self.assertEqual(st.default_date_range(date(2025, 10, 19)).to_dict(), {"from": "2025-03-01", "to": "2025-10-19"})
        self.assertEqual(st.default_date_range(date(2026, 2, 1)).to_dict(), {"from": "2025-03-01", "to": "2026-02-01"})

    def test_of_normalizes_inputs(self):
        self.assertEqual(st.DateRange.of("2025/3/1", "20250331"), st.DateRange("2025-03-01", "2025-03-31"))

    def test_requested_range_needs_both_bounds(self):
        self.assertEqual(st.requested_date_range("2025-03-01", "2025-03-31"), st.DateRange("2025-03-01", "2025-03-31"))
        self.assertEqual(st.requested_date_range(None, ""), st.default_date_range())
        for bounds in (("2025-03-01", None), (None, "2025-03-31"), ("2025-03-01", "not a date")):
            with self.assertRaises(ValueError):
                st.requested_date_range(*bounds)


if __name__ == "__main__":
    unittest.main()
