#!/usr/bin/env python3
from __future__ import annotations

from typing import Any, Mapping, Optional

import pandas as pd
import streamlit as st

from sheet_validator.aggregator import AnalysisResults, SheetIssues
from sheet_validator.config import ALL_SUPPORTED_FORMATS, RULE_FILE_FORMATS, load_settings
from sheet_validator.errors import ParseError, RuleSetError, SessionError, SourceError
from sheet_validator.report import Report, report_rows
from sheet_validator.session import ValidationSession
from sheet_validator.sources import StoreClient

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
OVERRIDE_PREFIX = "override"


def ensure_state() -> None:
    st.session_state.setdefault("processing", False)
    st.session_state.setdefault("job", None)
    st.session_state.setdefault("session", ValidationSession())
    st.session_state.setdefault("rules_status", None)
    st.session_state.setdefault("analysis_error", None)
    st.session_state.setdefault("rules_signature", None)


# ══════════════════════════════════════════════════════════════════════════════
# PURE HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def override_key(sheet: str, column: str) -> str:
    return f"{OVERRIDE_PREFIX}::{sheet}::{column}"


def overrides_from_state(state: Mapping[str, Any], results: AnalysisResults, columns: Mapping[str, list[str]]) -> dict:
    """The ``(sheet, column) -> checked`` map the session's overrides are rebuilt from."""
    mapping = {}
    for sheet_name in results.sheets:
        for column in columns.get(sheet_name, []):
            mapping[(sheet_name, column)] = bool(state.get(override_key(sheet_name, column), False))
    return mapping


def clear_override_keys(state) -> None:
    for key in [key for key in state.keys() if str(key).startswith(f"{OVERRIDE_PREFIX}::")]:
        del state[key]


def column_overview_frame(issues: SheetIssues, columns: list[str]) -> pd.DataFrame:
    records = [
        {
            "Column": column,
            "Blank Cells": issues.blank_cells.get(column, 0),
            '"NULL" Strings': issues.null_strings.get(column, 0),
            "Future Dates": issues.future_dates.get(column, 0),
            "Custom Validation Issues": issues.custom_count(column),
            "Total Issues": issues.column_total(column),
        }
        for column in columns
    ]
    return pd.DataFrame(records, columns=["Column", "Blank Cells", '"NULL" Strings', "Future Dates", "Custom Validation Issues", "Total Issues"])


def custom_issue_frame(issues: SheetIssues) -> pd.DataFrame:
    records = [
        {
            "Column": column,
            "Row": issue.row,
            "Value": "" if issue.value is None else str(issue.value),
            "Rule": issue.rule_type,
            "Message": issue.message,
        }
        for column, column_issues in issues.custom_validation.items()
        for issue in column_issues
    ]
    return pd.DataFrame(records, columns=["Column", "Row", "Value", "Rule", "Message"])


def totals_frame(results: AnalysisResults) -> pd.DataFrame:
    totals = results.totals()
    return pd.DataFrame(
        [
            {"Check": "Blank cells", "Count": totals["blank_cells"]},
            {"Check": '"NULL" strings', "Count": totals["null_strings"]},
            {"Check": "Future dates", "Count": totals["future_dates"]},
            {"Check": "Duplicate rows", "Count": totals["duplicate_rows"]},
        ]
    )


def report_frame(report: Report) -> pd.DataFrame:
    rows = report_rows(report)
    width = max(len(row) for row in rows)
    return pd.DataFrame([[("" if cell is None else str(cell)) for cell in row] + [""] * (width - len(row)) for row in rows])


def extension_list(formats: set[str]) -> list[str]:
    return [ext.lstrip(".") for ext in sorted(formats)]


# ══════════════════════════════════════════════════════════════════════════════
# SOURCES
# ══════════════════════════════════════════════════════════════════════════════

def store() -> Optional[StoreClient]:
    settings = load_settings()
    if not settings.remote_enabled:
        return None
    return StoreClient.from_settings(settings)


def load_uploaded_rules(session: ValidationSession, upload) -> None:
    signature = (upload.name, upload.size)
    if st.session_state.get("rules_signature") == signature:
        return
    st.session_state["rules_signature"] = signature
    try:
        rules = session.load_rules(upload.getvalue(), upload.name)
        st.session_state["rules_status"] = ("success", f"Rules loaded from {upload.name}: {len(rules)} column(s).")
    except RuleSetError as exc:
        st.session_state["rules_status"] = ("error", f"Could not load rules: {exc}")


def load_remote_rules(session: ValidationSession, client: StoreClient, dictionary: dict) -> None:
    signature = ("remote", dictionary.get("id"))
    if st.session_state.get("rules_signature") == signature:
        return
    st.session_state["rules_signature"] = signature
    try:
        fetched = client.fetch_dictionary(str(dictionary["id"]))
        rules = session.load_rules_payload({"name": fetched.name, "rules_json": fetched.records}, fetched.name)
        st.session_state["rules_status"] = ("success", f"Data dictionary loaded: {fetched.name} ({len(rules)} column(s)).")
    except (RuleSetError, SourceError) as exc:
        session.set_rules({}, None)
        st.session_state["rules_status"] = ("error", f"Failed to load data dictionary: {exc}")


def render_rule_picker(session: ValidationSession, client: Optional[StoreClient], disabled: bool) -> None:
    upload = st.file_uploader(
        "Data dictionary (workbook with a 'Validation Rules' sheet, or JSON)",
        type=extension_list(RULE_FILE_FORMATS),
        key="rules_upload",
        disabled=disabled,
    )
    if upload is not None:
        load_uploaded_rules(session, upload)
    elif client is not None:
        try:
            dictionaries = client.list_dictionaries()
        except SourceError as exc:
            st.warning(f"Could not load data dictionaries: {exc}")
            dictionaries = []
        choice = st.selectbox(
            "Or pick a stored data dictionary",
            options=[None] + dictionaries,
            format_func=lambda item: "-- No Data Dictionary Selected --" if item is None else str(item.get("name")),
            disabled=disabled,
        )
        if choice is not None:
            load_remote_rules(session, client, choice)

    status = st.session_state.get("rules_status")
    if status:
        level, message = status
        (st.success if level == "success" else st.error)(message)


def pick_main_file(client: Optional[StoreClient], disabled: bool) -> Optional[tuple]:
    upload = st.file_uploader(
        "File to validate",
        type=extension_list(ALL_SUPPORTED_FORMATS),
        key="main_upload",
        disabled=disabled,
    )
    if upload is not None:
        return upload.getvalue(), upload.name
    if client is None:
        return None
    try:
        files = client.list_files()
    except SourceError as exc:
        st.warning(f"Could not load uploaded files list: {exc}")
        return None
    choice = st.selectbox(
        "Or pick an uploaded file",
        options=[None] + files,
        format_func=lambda item: "-- Select an Uploaded File --" if item is None else str(item.get("filename")),
        disabled=disabled,
    )
    if choice is None:
        return None
    return ("remote", str(choice["id"]))


# ══════════════════════════════════════════════════════════════════════════════
# PROCESSING
# ══════════════════════════════════════════════════════════════════════════════

def process_job(session: ValidationSession, job: tuple, client: Optional[StoreClient]) -> Optional[str]:
    """Run one analysis; returns an error message or None."""
    try:
        if job[0] == "remote":
            remote = client.fetch_file(job[1])
            data, name = remote.content, remote.filename
        else:
            data, name = job
        session.analyze(data, name)
        return None
    except ParseError as exc:
        return f"Could not read the file: {exc}"
    except (SourceError, ImportError) as exc:
        return str(exc)


def live_columns(session: ValidationSession) -> dict[str, list[str]]:
    columns = {}
    for sheet in session.run.workbook.sheets:
        names: list[str] = []
        for name in sheet.column_names():
            if name not in names:
                names.append(name)
        columns[sheet.name] = names
    return columns


def render_results(session: ValidationSession, disabled: bool) -> None:
    run = session.run
    results = run.results
    st.subheader(f"Results for {run.file_name}")
    if not results.sheets:
        st.info("No sheets with data rows were found.")
        return
    st.dataframe(totals_frame(results), hide_index=True, width="stretch")
    for warning in results.warnings:
        st.warning(warning)

    columns = live_columns(session)
    for sheet_name, issues in results.sheets.items():
        with st.expander(f"Sheet: {sheet_name}", expanded=True):
            sheet_columns = columns.get(sheet_name, [])
            st.dataframe(column_overview_frame(issues, sheet_columns), hide_index=True, width="stretch")
            if issues.duplicate_rows:
                st.warning("Duplicate rows: " + ", ".join(str(row) for row in issues.duplicate_rows))
            custom = custom_issue_frame(issues)
            if not custom.empty:
                st.caption("Custom validation issues")
                st.dataframe(custom, hide_index=True, width="stretch")
            st.caption("Override (ignore this column's issues in the verdict)")
            grid = st.columns(4)
            for idx, column in enumerate(sheet_columns):
                grid[idx % 4].checkbox(column, key=override_key(sheet_name, column), disabled=disabled)

    if st.button("Generate Summary Report", type="primary", disabled=disabled):
        session.apply_overrides(overrides_from_state(st.session_state, results, columns))
        session.generate_report()

    if session.report is not None:
        render_report(session)


def export_current(session: ValidationSession, state: Mapping[str, Any], generated_at=None):
    """Export using the override checkboxes as they stand on this rerun."""
    session.apply_overrides(overrides_from_state(state, session.run.results, live_columns(session)))
    return session.export(generated_at)


def render_report(session: ValidationSession) -> None:
    try:
        exported = export_current(session, st.session_state, session.report.generated_at)
    except SessionError as exc:
        st.error(str(exc))
        return
    report = exported.report
    st.subheader("Data Validation Summary Report")
    verdict = report.status.value
    (st.success if report.passed else st.error)(f"Overall File Status (After Override): {verdict}")
    st.dataframe(report_frame(report), hide_index=True, width="stretch")
    st.download_button(
        "Export Report + Data to Excel",
        data=exported.content,
        file_name=exported.file_name,
        mime=XLSX_MIME,
        width="stretch",
    )


def main() -> None:
    st.set_page_config(page_title="sheet-validator", layout="wide")
    ensure_state()
    session: ValidationSession = st.session_state["session"]
    client = store()
    processing = st.session_state["processing"]

    st.title("sheet-validator")
    st.caption("Check a spreadsheet for blanks, NULL placeholders, future dates, duplicate rows and data dictionary rules.")

    render_rule_picker(session, client, disabled=processing)
    job = pick_main_file(client, disabled=processing)
    analyze = st.button("Analyze", type="primary", width="stretch", disabled=processing or job is None)

    if analyze and job is not None:
        st.session_state["job"] = job
        st.session_state["processing"] = True
        st.session_state["analysis_error"] = None
        clear_override_keys(st.session_state)
        st.rerun()

    if st.session_state["processing"]:
        st.info("Analysing the file. Please be patient.")
        try:
            st.session_state["analysis_error"] = process_job(session, st.session_state["job"], client)
        finally:
            st.session_state["processing"] = False
            st.session_state["job"] = None
        st.rerun()

    if st.session_state.get("analysis_error"):
        st.error(st.session_state["analysis_error"])
        return
    if session.run is None:
        st.info("Supported here: .csv .tsv .txt .xlsx .xlsm .xls .ods")
        return
    render_results(session, disabled=processing)


if __name__ == "__main__":
    main()
