from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest import mock

from openpyxl import load_workbook

from sheet_validator import cli
from sheet_validator.errors import RuleSetError

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "sheet_validator.cli"]
FIXED_STAMP = "20240301T010203Z"

DIRTY_CSV = "Name,Email\nAda,NULL\n,b@x.io\n"
CLEAN_CSV = "Name,Age\nAda,36\nBob,40\n"


def run_cli(*args: str, cwd: Path = ROOT, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env.pop("SHEET_VALIDATOR_API_URL", None)
    merged_env.pop("SHEET_VALIDATOR_API_TOKEN", None)
    merged_env["SHEET_VALIDATOR_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), merged_env.get("PYTHONPATH")]))
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_file(directory: str, name: str, text: str) -> Path:
    path = Path(directory) / name
    path.write_text(text, encoding="utf-8")
    return path


class SheetValidatorCliTests(unittest.TestCase):
    def test_analyze_dirty_csv_returns_exit_3_and_writes_analysis(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "people.csv", DIRTY_CSV)
            out_dir = Path(tmpdir) / "out"
            proc = run_cli("analyze", str(source), "--out", str(out_dir))
            self.assertEqual(proc.returncode, 3, proc.stderr)
            self.assertIn("Analysis written:", proc.stderr)
            payload = json.loads((out_dir / "analysis.json").read_text(encoding="utf-8"))
            self.assertEqual(payload["file"], "people.csv")
            self.assertEqual(payload["totals"]["blank_cells"], 1)
            self.assertEqual(payload["totals"]["null_strings"], 1)
            self.assertEqual(payload["analysed_at"], "1970-01-01T00:00:00Z")

    def test_analyze_clean_csv_json_stdout_contains_only_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "clean.csv", CLEAN_CSV)
            proc = run_cli("analyze", str(source), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertEqual(payload["contract"]["name"], "sheet_validator.analysis")
            self.assertEqual(proc.stderr.strip(), "")

    def test_default_output_directory_uses_stamp_layout(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "people.csv", DIRTY_CSV)
            proc = run_cli("analyze", str(source), cwd=Path(tmpdir))
            self.assertEqual(proc.returncode, 3, proc.stderr)
            output_dir = Path(tmpdir) / "sheet-validator-output" / f"people-{FIXED_STAMP}"
            self.assertTrue((output_dir / "analysis.json").exists())

    def test_unreadable_input_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            broken = Path(tmpdir) / "broken.xlsx"
            broken.write_bytes(b"PK\x03\x04 this is not a real workbook")
            proc = run_cli("analyze", str(broken), "--json")
            self.assertEqual(proc.returncode, 2)
            self.assertEqual(proc.stdout.strip(), "")

    def test_unsupported_extension_returns_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "notes.md", "# hi\n")
            proc = run_cli("analyze", str(source))
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Unsupported file type", proc.stderr)

    def test_missing_input_returns_exit_1(self):
        proc = run_cli("analyze", "does-not-exist.csv")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_file_id_without_store_url_returns_exit_1(self):
        proc = run_cli("analyze", "--file-id", "12")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("SHEET_VALIDATOR_API_URL", proc.stderr)

    def test_report_text_with_rules(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "people.csv", DIRTY_CSV)
            rules = write_file(
                tmpdir,
                "rules.json",
                json.dumps([{"Column Name": "Email", "Validation Type": "REGEX", "Validation Value": "@"}]),
            )
            out_dir = Path(tmpdir) / "out"
            proc = run_cli("report", str(source), "--rules", str(rules), "--out", str(out_dir))
            self.assertEqual(proc.returncode, 3, proc.stderr)
            text = (out_dir / "report.txt").read_text(encoding="utf-8")
            self.assertIn("Data Validation Summary Report", text)
            self.assertIn("Grand Total Issues Identified: 3", text)
            self.assertIn("Overall File Status (After Override): FAIL", text)

    def test_report_overrides_flip_exit_code(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "people.csv", DIRTY_CSV)
            proc = run_cli(
                "report",
                str(source),
                "--override", "Sheet1", "Name",
                "--override", "Sheet1", "Email",
                "--json",
                "--out", str(Path(tmpdir) / "out"),
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertEqual(payload["status"], "PASS")
            self.assertEqual(payload["totals"]["overridden"], 2)
            self.assertEqual(payload["overrides"], [["Sheet1", "Email"], ["Sheet1", "Name"]])
            self.assertEqual(payload["generated_at"], "1970-01-01T00:00:00Z")

    def test_broken_rules_file_continues_without_rules(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "clean.csv", CLEAN_CSV)
            rules = write_file(tmpdir, "rules.json", "{broken")
            proc = run_cli("analyze", str(source), "--rules", str(rules), "--out", str(Path(tmpdir) / "out"))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn("Rules not loaded:", proc.stderr)

    def test_malformed_stored_dictionary_continues_without_rules(self):
        client = mock.Mock()
        client.fetch_dictionary.side_effect = RuleSetError("Data dictionary rules are not valid JSON")
        stderr = io.StringIO()
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "clean.csv", CLEAN_CSV)
            with mock.patch.object(cli.StoreClient, "from_settings", return_value=client), redirect_stderr(stderr):
                code = cli.main(
                    [
                        "analyze", str(source),
                        "--dictionary-id", "7",
                        "--api-url", "https://store.example",
                        "--out", str(Path(tmpdir) / "out"),
                    ]
                )
            self.assertEqual(code, 0, stderr.getvalue())
            self.assertIn("Rules not loaded:", stderr.getvalue())
            self.assertTrue((Path(tmpdir) / "out" / "analysis.json").exists())
        client.fetch_dictionary.assert_called_once_with("7")

    def test_existing_output_is_not_overwritten(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "clean.csv", CLEAN_CSV)
            target = write_file(tmpdir, "analysis.json", "{}")
            proc = run_cli("analyze", str(source), "--output", str(target))
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Refusing to overwrite", proc.stderr)
            self.assertEqual(target.read_text(encoding="utf-8"), "{}")

    def test_export_writes_workbook_with_summary_sheet(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = write_file(tmpdir, "people.csv", DIRTY_CSV)
            out_dir = Path(tmpdir) / "out"
            proc = run_cli("export", str(source), "--out", str(out_dir), "--json")
            self.assertEqual(proc.returncode, 3, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertEqual(payload["status"], "FAIL")
            exported = Path(payload["output"])
            self.assertTrue(exported.name.startswith("Validation_Report_people_"))
            book = load_workbook(exported)
            self.assertEqual(book.sheetnames, ["Sheet1", "Validation Summary"])

    def test_rules_command_lists_columns(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            rules = write_file(
                tmpdir,
                "rules.json",
                json.dumps(
                    [
                        {"Column Name": "Email", "Validation Type": "REQUIRED"},
                        {"Column Name": "Age", "Validation Type": "NUMERIC_RANGE", "Validation Value": "18-120"},
                    ]
                ),
            )
            proc = run_cli("rules", str(rules), "--json")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(proc.stdout)
            self.assertEqual(payload["columns"], ["Email", "Age"])
            self.assertEqual(payload["contract"]["name"], "sheet_validator.rules")

            text = run_cli("rules", str(rules))
            self.assertIn("- Age: NUMERIC_RANGE 18-120", text.stdout)

    def test_version_prints_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertRegex(proc.stdout.strip(), r"^\d+\.\d+\.\d+$")

    def test_unknown_command_returns_exit_1(self):
        proc = run_cli("explode")
        self.assertEqual(proc.returncode, 1)


if __name__ == "__main__":
    unittest.main()
