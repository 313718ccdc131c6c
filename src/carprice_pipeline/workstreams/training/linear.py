"""Reference training step: least-squares car price model.

The pipeline treats training as an external step; this module is one such step
so the CLI works out of the box. It reads the validated dataset, fits
``price ~ year + mileage`` and writes the model with joblib.

Example usage:
  python -m carprice_pipeline.workstreams.training.linear --data cars.csv --output model.joblib
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import joblib
import numpy as np

from carprice_pipeline.config import setup_logging
from carprice_pipeline.workstreams.data.records import load_records

LOGGER = logging.getLogger(__name__)


@dataclass
class LinearPriceModel:
    feature_columns: tuple[str, ...]
    coef: np.ndarray
    intercept: float

    def predict(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2 or X.shape[1] != len(self.feature_columns):
            raise ValueError(f"Expected shape (n, {len(self.feature_columns)}), got {X.shape}")
        return X @ self.coef + self.intercept


def fit_linear(X: np.ndarray, y: np.ndarray, feature_columns: Sequence[str]) -> LinearPriceModel:
    if X.shape[0] == 0:
        raise ValueError("Cannot fit a model on zero rows.")
    design = np.column_stack([X, np.ones(X.shape[0])])
    solution, *_ = np.linalg.lstsq(design, y, rcond=None)
    return LinearPriceModel(
        feature_columns=tuple(feature_columns),
        coef=solution[:-1],
        intercept=float(solution[-1]),
    )


def train(
    data_path: Path,
    output_path: Path,
    feature_columns: Sequence[str] = ("year", "mileage"),
    target: str = "price",
) -> LinearPriceModel:
    table = load_records(data_path, numeric_fields=(*feature_columns, target))
    ok = np.ones(table.n_rows, dtype=bool)
    for c in (*feature_columns, target):
        ok &= ~table.malformed[c]
    X = np.column_stack([table.column(c)[ok] for c in feature_columns])
    y = table.column(target)[ok]
    model = fit_linear(X, y, feature_columns)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(model, output_path)
    LOGGER.info("Fitted %s on %d rows -> %s", feature_columns, X.shape[0], output_path)
    return model


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="carprice_train_linear",
        description="Fit a least-squares price model and write it with joblib.",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv).")
    p.add_argument("--data", required=True, type=Path, help="Dataset CSV file or directory")
    p.add_argument("--output", required=True, type=Path, help="Destination model path")
    p.add_argument("--features", default="year,mileage", help="Comma-separated feature columns")
    p.add_argument("--target", default="price")
    return p


def main(argv: Iterable[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    setup_logging(args.verbose)
    features = tuple(f.strip() for f in args.features.split(",") if f.strip())
    try:
        train(args.data, args.output, features, args.target)
    except (OSError, ValueError, np.linalg.LinAlgError) as exc:
        print(f"training failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
