from __future__ import annotations

import io
import json
import unittest
from datetime import datetime, timezone

from openpyxl import load_workbook

from sheet_validator.errors import ParseError, RuleSetError, SessionError
from sheet_validator.session import SessionState, ValidationSession

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
PEOPLE_CSV = b"Name,Email,Age\nAda,ada@x.io,36\n,NULL,17\n"
RULES_JSON = json.dumps(
    [
        {"Column Name": "Email", "Validation Type": "REGEX", "Validation Value": "@"},
        {"Column Name": "Age", "Validation Type": "NUMERIC_RANGE", "Validation Value": "18-120"},
    ]
).encode("utf-8")


def analysed_session() -> ValidationSession:
    session = ValidationSession()
    session.load_rules(RULES_JSON, "rules.json")
    session.analyze(PEOPLE_CSV, "people.csv", now=NOW)
    return session


class StateMachineTests(unittest.TestCase):
    def test_new_session_is_idle(self):
        session = ValidationSession()
        self.assertIs(session.state, SessionState.IDLE)
        self.assertIsNone(session.run)
        self.assertIsNone(session.report)

    def test_analyze_then_report(self):
        session = analysed_session()
        self.assertIs(session.state, SessionState.RAW)
        self.assertEqual(session.run.file_name, "people.csv")

        report = session.generate_report(NOW)
        self.assertIs(session.state, SessionState.REPORTED)
        self.assertEqual(report.identified, 4)
        self.assertFalse(report.passed)

    def test_failed_analysis_discards_previous_results(self):
        session = analysed_session()
        session.generate_report(NOW)
        with self.assertRaises(ParseError):
            session.analyze(b"", "empty.csv")
        self.assertIs(session.state, SessionState.IDLE)
        self.assertIsNone(session.run)
        self.assertIsNone(session.report)

    def test_steps_before_analysis_raise(self):
        session = ValidationSession()
        with self.assertRaises(SessionError):
            session.generate_report()
        with self.assertRaises(SessionError):
            session.export()
        with self.assertRaises(SessionError):
            session.set_override("Sheet1", "Name")


class RuleLoadingTests(unittest.TestCase):
    def test_rules_are_replaced_not_merged(self):
        session = ValidationSession()
        session.load_rules(RULES_JSON, "rules.json")
        self.assertEqual(sorted(session.rules), ["Age", "Email"])

        other = json.dumps([{"Column Name": "Name", "Validation Type": "REQUIRED"}]).encode("utf-8")
        session.load_rules(other, "other.json")
        self.assertEqual(list(session.rules), ["Name"])
        self.assertEqual(session.rule_source, "other.json")

    def test_bad_rule_file_clears_rules(self):
        session = ValidationSession()
        session.load_rules(RULES_JSON, "rules.json")
        with self.assertRaises(RuleSetError):
            session.load_rules(b"{not json", "broken.json")
        self.assertEqual(session.rules, {})
        self.assertIsNone(session.rule_source)

    def test_dictionary_payload(self):
        session = ValidationSession()
        rules = session.load_rules_payload(
            {"name": "Customers", "rules_json": [{"Column Name": "Email", "Validation Type": "REQUIRED"}]},
            "Customers",
        )
        self.assertEqual(list(rules), ["Email"])
        self.assertEqual(session.rule_source, "Customers")


class OverrideFlowTests(unittest.TestCase):
    def test_overrides_flip_the_verdict(self):
        session = analysed_session()
        session.apply_overrides({("Sheet1", "Name"): True, ("Sheet1", "Email"): True, ("Sheet1", "Age"): True})
        report = session.generate_report(NOW)
        self.assertTrue(report.passed)
        self.assertEqual(report.overridden, 4)
        self.assertEqual(report.remaining, 0)

    def test_unchecked_boxes_clear_earlier_overrides(self):
        session = analysed_session()
        session.set_override("Sheet1", "Age")
        session.apply_overrides({("Sheet1", "Age"): False})
        self.assertEqual(len(session.overrides), 0)

    def test_reanalysis_clears_overrides_and_report(self):
        session = analysed_session()
        session.set_override("Sheet1", "Age")
        session.generate_report(NOW)
        session.analyze(PEOPLE_CSV, "people.csv", now=NOW)
        self.assertEqual(len(session.overrides), 0)
        self.assertIsNone(session.report)
        self.assertIs(session.state, SessionState.RAW)

    def test_export_uses_current_overrides(self):
        session = analysed_session()
        session.generate_report(NOW)
        session.apply_overrides({("Sheet1", "Name"): True, ("Sheet1", "Email"): True, ("Sheet1", "Age"): True})
        exported = session.export(NOW)

        self.assertEqual(exported.file_name, "Validation_Report_people_2024-06-01.xlsx")
        self.assertTrue(exported.report.passed)
        book = load_workbook(io.BytesIO(exported.content))
        self.assertEqual(book.sheetnames, ["Sheet1", "Validation Summary"])
        last = list(book["Validation Summary"].iter_rows(values_only=True))[-1]
        self.assertEqual(list(last[:2]), ["Overall File Status (After Override):", "PASS"])


class PayloadTests(unittest.TestCase):
    def test_analysis_payload_names_rule_source(self):
        payload = analysed_session().analysis_payload()
        self.assertEqual(payload["file"], "people.csv")
        self.assertEqual(payload["rule_source"], "rules.json")
        self.assertEqual(payload["run_summary"]["metrics"]["custom_validation"], 2)

    def test_report_payload_reflects_latest_overrides(self):
        session = analysed_session()
        first = session.report_payload()
        session.set_override("Sheet1", "Age")
        second = session.report_payload()
        self.assertEqual(first["totals"]["overridden"], 0)
        self.assertGreater(second["totals"]["overridden"], 0)


if __name__ == "__main__":
    unittest.main()
