from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sheet_validator import __version__ as TOOL_VERSION
from sheet_validator.config import ALL_SUPPORTED_FORMATS, RULE_FILE_FORMATS, Settings, load_settings
from sheet_validator.contracts import build_contract
from sheet_validator.errors import ParseError, RuleSetError, SessionError, SourceError
from sheet_validator.report import render_report_text
from sheet_validator.rules import rules_payload
from sheet_validator.session import ValidationSession
from sheet_validator.sources import StoreClient

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_VALIDATION_FAILED = 3
EXIT_SOURCE_ERROR = 4

FIXED_TIMESTAMP = "1970-01-01T00:00:00Z"
TIMESTAMP_KEYS = {"generated_at", "analysed_at"}


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SheetValidatorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "quiet", False):
        level = logging.ERROR
    elif getattr(args, "verbose", False):
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s", force=True)


def timestamp_token(settings: Settings) -> str:
    if settings.output_stamp:
        return settings.output_stamp
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(stem: str, settings: Settings) -> Path:
    return Path.cwd() / "sheet-validator-output" / f"{stem}-{timestamp_token(settings)}"


def determine_output_dir(args: argparse.Namespace, stem: str, settings: Settings) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(stem, settings)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def write_bytes(path: Path, payload: bytes) -> None:
    ensure_parent(path)
    path.write_bytes(payload)


def safe_output_path(explicit: Path | None, default_path: Path) -> Path:
    path = explicit or default_path
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def pin_timestamps(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: FIXED_TIMESTAMP if key in TIMESTAMP_KEYS else pin_timestamps(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [pin_timestamps(item) for item in value]
    return value


def normalize_payload_for_cli(payload: dict[str, Any], settings: Settings) -> dict[str, Any]:
    """Pin run timestamps when a fixed output stamp is configured, for reproducible outputs."""
    if settings.output_stamp:
        return pin_timestamps(payload)
    return payload


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, SourceError):
        return EXIT_SOURCE_ERROR
    if isinstance(exc, (ParseError, RuleSetError, ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, (FileNotFoundError, SessionError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


# ══════════════════════════════════════════════════════════════════════════════
# SOURCES
# ══════════════════════════════════════════════════════════════════════════════

def command_settings(args: argparse.Namespace) -> Settings:
    return load_settings(api_url=getattr(args, "api_url", None), api_token=getattr(args, "token", None))


def store_client(settings: Settings) -> StoreClient:
    if not settings.remote_enabled:
        raise CliError("Remote ids need a store URL: set SHEET_VALIDATOR_API_URL or pass --api-url.")
    return StoreClient.from_settings(settings)


def read_input(args: argparse.Namespace, settings: Settings) -> tuple[bytes, str]:
    if args.input and args.file_id:
        raise CliError("Use either an input path or --file-id, not both.")
    if args.file_id:
        remote = store_client(settings).fetch_file(args.file_id)
        return remote.content, remote.filename
    if not args.input:
        raise CliError("Provide an input file path or --file-id.")

    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}")
    suffix = input_path.suffix.lower()
    if suffix not in ALL_SUPPORTED_FORMATS:
        raise CliError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_SUPPORTED_FORMATS))}"
        )
    return input_path.read_bytes(), input_path.name


def load_rules_into(session: ValidationSession, args: argparse.Namespace, settings: Settings) -> None:
    """Rules from --rules or --dictionary-id; a broken rule source raises RuleSetError."""
    if args.rules and args.dictionary_id:
        raise CliError("Use either --rules or --dictionary-id, not both.")
    if args.rules:
        rules_path = Path(args.rules)
        if not rules_path.exists():
            raise CliError(f"Rules file not found: {rules_path}")
        if rules_path.suffix.lower() not in RULE_FILE_FORMATS:
            raise CliError(f"Unsupported rules file type '{rules_path.suffix or '[missing extension]'}'.")
        session.load_rules(rules_path.read_bytes(), rules_path.name)
    elif args.dictionary_id:
        dictionary = store_client(settings).fetch_dictionary(args.dictionary_id)
        session.load_rules_payload({"name": dictionary.name, "rules_json": dictionary.records}, dictionary.name)


def prepare_session(args: argparse.Namespace, settings: Settings) -> ValidationSession:
    session = ValidationSession()
    try:
        load_rules_into(session, args, settings)
    except RuleSetError as exc:
        # The main file is still analysed; custom validation contributes nothing.
        eprint(f"Rules not loaded: {exc}. Continuing without custom rules.")

    data, file_name = read_input(args, settings)
    run = session.analyze(data, file_name)
    for sheet, column in args.override or []:
        if sheet not in run.results.sheets:
            emit_human(f"Override ignored: no analysed sheet named '{sheet}'.", quiet=args.quiet)
            continue
        session.set_override(sheet, column, True)
    return session


def exit_code_for_session(session: ValidationSession) -> int:
    report = session.report or session.generate_report()
    return EXIT_SUCCESS if report.passed else EXIT_VALIDATION_FAILED


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_analysis_text(payload: dict[str, Any], verdict: str) -> str:
    totals = payload.get("totals", {})
    custom = sum(
        len(issues)
        for sheet in payload.get("sheets", {}).values()
        for issues in sheet.get("custom_validation", {}).values()
    )
    lines = [
        "sheet-validator analyze",
        f"File: {payload.get('file', '[unknown]')}",
        f"Rules: {payload.get('rule_source') or '[none]'}",
        f"Sheets analysed: {len(payload.get('sheets', {}))}",
        f"Blank cells: {totals.get('blank_cells', 0)}",
        f"NULL strings: {totals.get('null_strings', 0)}",
        f"Future dates: {totals.get('future_dates', 0)}",
        f"Duplicate rows: {totals.get('duplicate_rows', 0)}",
        f"Custom validation issues: {custom}",
        f"Verdict: {verdict}",
    ]
    for name, sheet in payload.get("sheets", {}).items():
        if sheet.get("duplicate_rows"):
            rows = ", ".join(str(row) for row in sheet["duplicate_rows"])
            lines.append(f"Duplicate rows in {name}: {rows}")
    if payload.get("warnings"):
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in payload["warnings"])
    return "\n".join(lines) + "\n"


def render_rules_text(rules: dict[str, list], source: str) -> str:
    lines = ["sheet-validator rules", f"Source: {source}", f"Columns: {len(rules)}"]
    for column, column_rules in rules.items():
        for rule in column_rules:
            value = f" {rule.validation_value}" if rule.validation_value is not None else ""
            lines.append(f"- {column}: {rule.type_label}{value}")
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def add_input_arguments(command: argparse.ArgumentParser) -> None:
    command.add_argument("input", nargs="?", default=None, help="Input spreadsheet path")
    command.add_argument("--file-id", dest="file_id", help="Fetch the input from the file store by id")
    command.add_argument("--rules", help="Rules workbook (sheet 'Validation Rules') or JSON file")
    command.add_argument("--dictionary-id", dest="dictionary_id", help="Fetch rules from the dictionary store by id")
    command.add_argument(
        "--override",
        nargs=2,
        action="append",
        metavar=("SHEET", "COLUMN"),
        help="Exclude a column's issues from the verdict (repeatable)",
    )
    add_remote_arguments(command)
    command.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    command.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    command.add_argument("--output", help="Explicit output path")
    command.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    command.add_argument("-v", "--verbose", action="store_true", help="More human logs")


def add_remote_arguments(command: argparse.ArgumentParser) -> None:
    command.add_argument("--api-url", dest="api_url", help="File/dictionary store base URL")
    command.add_argument("--token", help="Bearer token for the store")


def build_parser() -> argparse.ArgumentParser:
    parser = SheetValidatorArgumentParser(
        prog="sheet-validator",
        description="Spreadsheet data-quality checks against a data dictionary.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyse a file and write the raw findings.")
    add_input_arguments(analyze)

    report = subparsers.add_parser("report", help="Write the pass/fail summary report.")
    add_input_arguments(report)
    report.add_argument("--format", choices=["text", "json"], default="text", help="Output format when --json is not used")

    export = subparsers.add_parser("export", help="Write the original sheets plus a summary sheet.")
    add_input_arguments(export)

    rules = subparsers.add_parser("rules", help="Show the rules a dictionary source yields.")
    rules.add_argument("source", nargs="?", default=None, help="Rules workbook or JSON path")
    rules.add_argument("--dictionary-id", dest="dictionary_id", help="Fetch rules from the dictionary store by id")
    add_remote_arguments(rules)
    rules.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    rules.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    rules.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_analyze(args: argparse.Namespace) -> int:
    settings = command_settings(args)
    try:
        session = prepare_session(args, settings)
        payload = normalize_payload_for_cli(session.analysis_payload(), settings)
        report = session.generate_report()
        stem = Path(session.run.file_name).stem
        if args.output or args.out_dir or not args.json:
            out_dir = determine_output_dir(args, stem, settings)
            output_path = safe_output_path(Path(args.output) if args.output else None, out_dir / "analysis.json")
            write_json(output_path, payload)
        else:
            output_path = None
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_analysis_text(payload, report.status.value).rstrip(), quiet=args.quiet)
            emit_human(f"Analysis written: {output_path}", quiet=args.quiet)
        return exit_code_for_session(session)
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_report(args: argparse.Namespace) -> int:
    settings = command_settings(args)
    try:
        session = prepare_session(args, settings)
        stem = Path(session.run.file_name).stem
        out_dir = determine_output_dir(args, stem, settings)
        as_json = args.json or args.format == "json"
        default_path = out_dir / ("report.json" if as_json else "report.txt")
        report_path = safe_output_path(Path(args.output) if args.output else None, default_path)

        if as_json:
            payload = normalize_payload_for_cli(session.report_payload(), settings)
            write_json(report_path, payload)
            if args.json:
                maybe_emit_json_stdout(payload, True)
            else:
                emit_human(f"Report written: {report_path}", quiet=args.quiet)
        else:
            text_payload = render_report_text(session.generate_report())
            write_text(report_path, text_payload)
            emit_human(text_payload.rstrip(), quiet=args.quiet)
            emit_human(f"Report written: {report_path}", quiet=args.quiet)
        return exit_code_for_session(session)
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_export(args: argparse.Namespace) -> int:
    settings = command_settings(args)
    try:
        session = prepare_session(args, settings)
        result = session.export()
        stem = Path(session.run.file_name).stem
        out_dir = determine_output_dir(args, stem, settings)
        output_path = safe_output_path(Path(args.output) if args.output else None, out_dir / result.file_name)
        write_bytes(output_path, result.content)
        if args.json:
            maybe_emit_json_stdout(
                {
                    "tool": "sheet-validator",
                    "command": "export",
                    "version": TOOL_VERSION,
                    "output": str(output_path),
                    "status": result.report.status.value,
                    "identified": result.report.identified,
                    "overridden": result.report.overridden,
                    "remaining": result.report.remaining,
                },
                True,
            )
        else:
            emit_human(f"Overall File Status (After Override): {result.report.status.value}", quiet=args.quiet)
            emit_human(f"Exported workbook: {output_path}", quiet=args.quiet)
        return EXIT_SUCCESS if result.report.passed else EXIT_VALIDATION_FAILED
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_rules(args: argparse.Namespace) -> int:
    settings = command_settings(args)
    session = ValidationSession()
    try:
        if not args.source and not args.dictionary_id:
            raise CliError("Provide a rules file path or --dictionary-id.")
        args.rules = args.source
        load_rules_into(session, args, settings)
        contract = build_contract("sheet_validator.rules")
        payload = {
            "contract": contract,
            "schema_version": contract["version"],
            "tool_version": TOOL_VERSION,
            "source": session.rule_source,
            "columns": list(session.rules),
            "rules": rules_payload(session.rules),
        }
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            print(render_rules_text(session.rules, session.rule_source or "[none]").rstrip())
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "analyze":
            return run_analyze(args)
        if args.command == "report":
            return run_report(args)
        if args.command == "export":
            return run_export(args)
        if args.command == "rules":
            return run_rules(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
