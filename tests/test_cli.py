import json
import os
import sys
from pathlib import Path

from carprice_pipeline.pipelines import cli

SRC = Path(__file__).resolve().parents[1] / "src"


def _store_args(tmp_path):
    return ["--set", f"artifact_root={tmp_path / 'store'}", "--set", f"work_root={tmp_path / 'work'}"]


def test_validate_data_passes_with_lowered_threshold(cars_csv, capsys):
    rc = cli.main(["validate-data", "--dataset", str(cars_csv(50)), "--set", "min_row_count=10"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert out["passed"] is True
    assert [c["check_name"] for c in out["checks"]] == [
        "valid_price",
        "valid_year",
        "valid_mileage",
        "minimum_row_count",
    ]


def test_validate_data_fails_on_small_dataset(cars_csv, capsys):
    rc = cli.main(["validate-data", "--dataset", str(cars_csv(50))])
    assert rc == 1
    assert json.loads(capsys.readouterr().out)["passed"] is False


def test_validate_data_missing_dataset(tmp_path, capsys):
    rc = cli.main(["validate-data", "--dataset", str(tmp_path / "missing.csv")])
    assert rc == 1
    assert json.loads(capsys.readouterr().out)["error"]["code"] == "data_unavailable"


def test_run_publishes_and_show_reads_it_back(cars_csv, tmp_path, monkeypatch, capsys):
    # the default training step runs in a child interpreter
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(filter(None, [str(SRC), os.environ.get("PYTHONPATH")])))
    report = tmp_path / "reports" / "result.json"

    rc = cli.main(
        [
            "run",
            "--dataset",
            str(cars_csv(10_001)),
            "--namespace",
            "carprice",
            "--commit",
            "deadbeef",
            "--max-training-s",
            "120",
            "--report",
            str(report),
            *_store_args(tmp_path),
        ]
    )
    capsys.readouterr()
    assert rc == 0
    result = json.loads(report.read_text())
    assert result["status"] == "Succeeded"
    assert result["artifact"]["identity"] == "deadbeef"

    rc = cli.main(["show", "--namespace", "carprice", *_store_args(tmp_path)])
    shown = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert shown["commit_id"] == "deadbeef"


def test_run_exit_code_for_training_failure(cars_csv, tmp_path, capsys):
    rc = cli.main(
        [
            "run",
            "--dataset",
            str(cars_csv(10_001)),
            "--namespace",
            "carprice",
            "--commit",
            "c0ffee",
            "--train-cmd",
            f'"{sys.executable}" -c "raise SystemExit(5)"',
            *_store_args(tmp_path),
        ]
    )
    out = json.loads(capsys.readouterr().out)
    assert rc == 2
    assert out["error"]["code"] == "training_failed"


def test_show_without_publish(tmp_path, capsys):
    rc = cli.main(["show", "--namespace", "carprice", *_store_args(tmp_path)])
    assert rc == 1
    assert "No artifact" in capsys.readouterr().err


def test_validate_data_unparseable_csv(tmp_path, capsys):
    # a field past csv.field_size_limit() makes the reader raise csv.Error
    bad = tmp_path / "huge.csv"
    bad.write_text("make,fuel,year,mileage,price\naudi,diesel,2010,1200," + "9" * 200_000 + "\n")
    rc = cli.main(["validate-data", "--dataset", str(bad)])
    assert rc == 1
    assert "could not be read" in capsys.readouterr().err
