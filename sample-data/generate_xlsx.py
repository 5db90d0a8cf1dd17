#!/usr/bin/env python3
"""
Generates two sample files for trying sheet-validator by hand:

  sample-data/customers.xlsx        : data with deliberate quality problems
  sample-data/customer_rules.xlsx   : a data dictionary ("Validation Rules" sheet)

Run from the repo root:
    python sample-data/generate_xlsx.py
    sheet-validator report sample-data/customers.xlsx --rules sample-data/customer_rules.xlsx

Problems baked in:
  Sheet "Customers"
    - Blank and whitespace-only Email cells
    - "NULL" / "null" placeholders in Country
    - A signup date in 2099 (future date) stored as a real date cell
    - Age outside 18-120 and a non-numeric Age
    - Duplicate Customer ID (UNIQUE rule) and one exact duplicate row
    - Status outside the allowed list
  Sheet "Notes"
    - Header only, no data rows (skipped)
"""

from datetime import datetime
from pathlib import Path

import openpyxl

DATA_OUTPUT = Path(__file__).parent / "customers.xlsx"
RULES_OUTPUT = Path(__file__).parent / "customer_rules.xlsx"

# ── Data workbook ────────────────────────────────────────────────────────────
wb = openpyxl.Workbook()
ws = wb.active
ws.title = "Customers"
ws.append(["Customer ID", "Name", "Email", "Age", "Country", "Status", "Signup Date"])

data = [
    ["C001", "Ada Lovelace",   "ada@example.com",   36,     "UK",    "active",   datetime(2021, 4, 1)],   # row 2
    ["C002", "Alan Turing",    "alan@example.com",  41,     "NULL",  "Active",   datetime(2020, 6, 23)],  # row 3
    ["C003", "Grace Hopper",   "",                  85,     "US",    "inactive", datetime(2019, 12, 9)],  # row 4: blank email
    ["C004", "Edsger Dijkstra", "   ",              "old",  "NL",    "active",   datetime(2022, 5, 11)],  # row 5: whitespace, bad age
    ["C002", "Barbara Liskov", "barbara@example",   150,    "null",  "paused",   datetime(2099, 1, 1)],   # row 6: dup id, future date
    ["C005", "Donald Knuth",   "don@example.com",   17,     "US",    "active",   "2018-01-10"],           # row 7: too young
    ["C001", "Ada Lovelace",   "ada@example.com",   36,     "UK",    "active",   datetime(2021, 4, 1)],   # row 8: exact duplicate of row 2
]
for row in data:
    ws.append(row)

notes = wb.create_sheet("Notes")
notes.append(["Note", "Author"])

wb.save(DATA_OUTPUT)
print(f"Created: {DATA_OUTPUT}")

# ── Rules workbook ───────────────────────────────────────────────────────────
rules = openpyxl.Workbook()
rs = rules.active
rs.title = "Validation Rules"
rs.append(["Column Name", "Validation Type", "Validation Value", "Failure Message"])
rs.append(["Customer ID", "REQUIRED",       None,                 "Customer ID is required"])
rs.append(["Customer ID", "UNIQUE",         None,                 None])
rs.append(["Email",       "REQUIRED",       None,                 "Email is required"])
rs.append(["Email",       "REGEX",          r"^[^@\s]+@[^@\s]+\.[^@\s]+$", "Email is not a valid address"])
rs.append(["Age",         "NUMERIC_RANGE",  "18-120",             "Age must be between 18 and 120"])
rs.append(["Status",      "ALLOWED_VALUES", "active, inactive",   None])
rs.append(["Signup Date", "DATE_PAST",      None,                 "Signup date must be in the past"])

rules.save(RULES_OUTPUT)
print(f"Created: {RULES_OUTPUT}")
