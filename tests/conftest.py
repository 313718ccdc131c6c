import csv
import hashlib
from pathlib import Path

import pytest

from carprice_pipeline.config import Settings
from carprice_pipeline.contracts import ModelArtifact

HEADER = ["make", "fuel", "year", "mileage", "price"]
MAKES = ["audi", "bmw", "ford", "opel", "vw"]


def write_cars_csv(path: Path, n_rows: int, overrides: dict | None = None, header=HEADER) -> Path:
    """Deterministic valid car rows; ``overrides`` maps row index -> {column: raw value}."""
    overrides = overrides or {}
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for i in range(n_rows):
            year = 1990 + i % 30
            mileage = (i * 37) % 200_000
            price = 30_000 - 500 * (2020 - year) - 0.05 * mileage + i % 100
            row = {
                "make": MAKES[i % len(MAKES)],
                "fuel": "diesel" if i % 3 else "petrol",
                "year": str(year),
                "mileage": str(mileage),
                "price": f"{price:.2f}",
            }
            row.update(overrides.get(i, {}))
            writer.writerow([row.get(col, "") for col in header])
    return path


@pytest.fixture
def cars_csv(tmp_path):
    def _make(n_rows: int, name: str = "cars.csv", overrides: dict | None = None, header=HEADER) -> Path:
        return write_cars_csv(tmp_path / "data" / name, n_rows, overrides, header)

    return _make


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        artifact_root=tmp_path / "store",
        work_root=tmp_path / "work",
        resolve_poll_interval_s=0.05,
    )


@pytest.fixture
def make_artifact(tmp_path):
    def _make(payload: bytes, run_id: str = "abc123-0001", commit_id: str = "abc123") -> ModelArtifact:
        path = tmp_path / "runs" / run_id / "model.joblib"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return ModelArtifact(
            path=path,
            run_id=run_id,
            created_at="2024-06-01T12:00:00Z",
            commit_id=commit_id,
            size=len(payload),
            sha256=hashlib.sha256(payload).hexdigest(),
        )

    return _make
