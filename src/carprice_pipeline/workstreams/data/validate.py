"""Data quality gate.

Runs a fixed battery of checks over loaded records. Every check executes and is
reported even when an earlier one fails. Malformed values are counted separately
from range violations and always fail the check they belong to.
"""

from __future__ import annotations

import logging
from datetime import date

import numpy as np

from carprice_pipeline.contracts import CheckResult, ValidationReport
from carprice_pipeline.workstreams.data.records import RecordTable

LOGGER = logging.getLogger(__name__)

DATA_CHECKS = ("valid_price", "valid_year", "valid_mileage", "minimum_row_count")


def _range_check(
    table: RecordTable, field: str, name: str, violating: np.ndarray, rule: str
) -> CheckResult:
    """Build a check from a boolean mask of range violations on ``field``."""

    malformed = int(np.sum(table.malformed[field]))
    violations = int(np.sum(violating))
    passed = violations == 0 and malformed == 0

    if passed:
        message = f"all {table.n_rows} {field} values ok"
    else:
        parts = []
        if violations:
            parts.append(f"{violations} record(s) with {rule}")
        if malformed:
            parts.append(f"{malformed} malformed {field} value(s)")
        message = "; ".join(parts)
    return CheckResult(name, passed, message, {"violations": violations, "malformed": malformed})


def check_price(table: RecordTable) -> CheckResult:
    price = table.column("price")
    return _range_check(table, "price", "valid_price", price < 0, "price < 0")


def check_year(table: RecordTable, current_year: int, min_year: int = 1950) -> CheckResult:
    year = table.column("year")
    # NaN compares False, so malformed values only show up in the malformed count
    bad = (year <= min_year) | (year >= current_year + 1)
    return _range_check(
        table, "year", "valid_year", bad, f"year <= {min_year} or year >= {current_year + 1}"
    )


def check_mileage(table: RecordTable) -> CheckResult:
    mileage = table.column("mileage")
    return _range_check(table, "mileage", "valid_mileage", mileage < 0, "mileage < 0")


def check_row_count(table: RecordTable, min_rows: int = 10_000) -> CheckResult:
    passed = table.n_rows > min_rows
    op = ">" if passed else "<="
    return CheckResult(
        "minimum_row_count",
        passed,
        f"{table.n_rows} records {op} {min_rows}",
        {"rows": table.n_rows, "minimum": min_rows},
    )


def validate_records(
    table: RecordTable,
    *,
    today: date | None = None,
    min_year: int = 1950,
    min_rows: int = 10_000,
) -> ValidationReport:
    """Run every data check over ``table``; the table is never modified."""

    current_year = (today or date.today()).year
    report = ValidationReport(
        kind="data",
        checks=(
            check_price(table),
            check_year(table, current_year, min_year),
            check_mileage(table),
            check_row_count(table, min_rows),
        ),
    )
    for check in report.checks:
        LOGGER.log(logging.INFO if check.passed else logging.WARNING, "[data] %s: %s", check.name, check.message)
    return report


__all__ = [
    "DATA_CHECKS",
    "check_mileage",
    "check_price",
    "check_row_count",
    "check_year",
    "validate_records",
]
