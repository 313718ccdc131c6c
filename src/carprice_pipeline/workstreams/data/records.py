"""Load car listing records (CSV) into column-wise numpy arrays.

A dataset location is either a single CSV file or a directory; for a directory
every ``*.csv`` file is read in sorted filename order. Numeric fields are parsed
to float64 with NaN marking malformed values (missing column, empty cell,
unparseable or non-finite text). Any other columns are kept as raw strings and
otherwise ignored.
"""

from __future__ import annotations

import csv
import hashlib
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

LOGGER = logging.getLogger(__name__)

NUMERIC_FIELDS: tuple[str, ...] = ("price", "year", "mileage")


@dataclass(frozen=True)
class RecordTable:
    """Parsed dataset. Arrays are read-only views."""

    n_rows: int
    numeric: dict[str, np.ndarray]
    malformed: dict[str, np.ndarray]
    other: dict[str, list[str]]
    sources: tuple[Path, ...]

    def column(self, name: str) -> np.ndarray:
        return self.numeric[name]

    def sample(self, columns: Sequence[str], n: int) -> np.ndarray:
        """First ``n`` rows whose ``columns`` are all well-formed, as a 2-D float array."""

        if not columns or any(c not in self.numeric for c in columns):
            return np.empty((0, len(columns)), dtype=np.float64)
        ok = np.ones(self.n_rows, dtype=bool)
        for c in columns:
            ok &= ~self.malformed[c]
        idx = np.flatnonzero(ok)[: max(n, 0)]
        return np.column_stack([self.numeric[c][idx] for c in columns])


def _parse_float(raw: str | None) -> float:
    if raw is None:
        return math.nan
    text = raw.strip()
    if not text:
        return math.nan
    try:
        value = float(text)
    except ValueError:
        return math.nan
    return value if math.isfinite(value) else math.nan


def dataset_files(location: Path) -> list[Path]:
    if location.is_dir():
        files = sorted(p for p in location.glob("*.csv") if p.is_file())
        if not files:
            raise FileNotFoundError(f"No CSV files found in dataset directory: {location}")
        return files
    return [location]


def sha256_dataset(location: Path) -> str:
    """Fingerprint of the dataset files' bytes, in read order."""

    h = hashlib.sha256()
    for path in dataset_files(location):
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                h.update(chunk)
    return h.hexdigest()


def _iter_rows(paths: Iterable[Path]) -> Iterable[dict[str, str | None]]:
    for path in paths:
        with path.open("r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            if reader.fieldnames is None:
                LOGGER.warning("Dataset file has no header row: %s", path)
                continue
            for row in reader:
                yield row


def load_records(location: Path, numeric_fields: Sequence[str] = NUMERIC_FIELDS) -> RecordTable:
    """Read every record at ``location`` without modifying it."""

    paths = dataset_files(location)
    numeric_values: dict[str, list[float]] = {name: [] for name in numeric_fields}
    other: dict[str, list[str]] = {}
    n_rows = 0

    for row in _iter_rows(paths):
        for name in numeric_fields:
            numeric_values[name].append(_parse_float(row.get(name)))
        for key, value in row.items():
            if key is None or key in numeric_values:
                continue
            other.setdefault(key, [""] * n_rows).append("" if value is None else value)
        for values in other.values():
            if len(values) < n_rows + 1:
                values.append("")
        n_rows += 1

    numeric: dict[str, np.ndarray] = {}
    malformed: dict[str, np.ndarray] = {}
    for name, values in numeric_values.items():
        arr = np.asarray(values, dtype=np.float64)
        bad = np.isnan(arr)
        arr.setflags(write=False)
        bad.setflags(write=False)
        numeric[name] = arr
        malformed[name] = bad

    LOGGER.info("Loaded %d records from %d file(s) at %s", n_rows, len(paths), location)
    return RecordTable(
        n_rows=n_rows,
        numeric=numeric,
        malformed=malformed,
        other=other,
        sources=tuple(paths),
    )


__all__ = ["NUMERIC_FIELDS", "RecordTable", "dataset_files", "load_records", "sha256_dataset"]
