import joblib
import numpy as np

from carprice_pipeline.workstreams.model.validate import (
    HEALTH_CHECKS,
    BaselineComparison,
    ModelSample,
    is_healthy,
    validate_model,
)
from carprice_pipeline.workstreams.training.linear import fit_linear


class ConstantModel:
    def __init__(self, value):
        self.value = value

    def predict(self, X):
        return np.full(len(X), self.value, dtype=float)


class BrokenModel:
    def predict(self, X):
        raise RuntimeError("no weights")


SAMPLE = ModelSample(
    X=np.array([[2010.0, 50_000.0], [2015.0, 20_000.0], [2000.0, 150_000.0]]),
    y=np.array([20_000.0, 26_000.0, 10_000.0]),
    feature_columns=("year", "mileage"),
)


def test_joblib_model_passes_health_checks(tmp_path):
    model = fit_linear(SAMPLE.X, SAMPLE.y, SAMPLE.feature_columns)
    path = tmp_path / "model.joblib"
    joblib.dump(model, path)

    report = validate_model(path, SAMPLE)
    assert report.kind == "model"
    assert [c.name for c in report.checks] == list(HEALTH_CHECKS)
    assert report.passed


def test_unloadable_artifact_fails_every_health_check(tmp_path):
    path = tmp_path / "model.joblib"
    path.write_bytes(b"not a pickle")

    report = validate_model(path, SAMPLE)
    assert report.failed_checks == list(HEALTH_CHECKS)
    assert "failed to load" in report.get("model_loads").message
    assert not is_healthy(report)


def test_predict_error_is_reported(tmp_path):
    report = validate_model(tmp_path / "m", SAMPLE, loader=lambda p: BrokenModel())
    assert report.get("model_loads").passed
    assert not report.get("predicts_sample").passed
    assert "no weights" in report.get("predicts_sample").message


def test_non_finite_predictions_fail(tmp_path):
    report = validate_model(tmp_path / "m", SAMPLE, loader=lambda p: ConstantModel(np.nan))
    assert report.get("predicts_sample").passed
    assert not report.get("predictions_finite").passed


def test_no_sample_rows_fails(tmp_path):
    empty = ModelSample(X=np.empty((0, 2)), y=np.empty(0), feature_columns=("year", "mileage"))
    report = validate_model(tmp_path / "m", empty, loader=lambda p: ConstantModel(1.0))
    assert not report.get("predicts_sample").passed


def test_baseline_comparison_without_production_model_passes(tmp_path):
    check = BaselineComparison(max_relative_increase=0.1)
    report = validate_model(tmp_path / "m", SAMPLE, loader=lambda p: ConstantModel(0.0), extra_checks=[check])
    assert report.get("baseline_comparison").passed
    assert "no production model" in report.get("baseline_comparison").message


def test_baseline_comparison_detects_regression(tmp_path):
    models = {"candidate": ConstantModel(0.0), "baseline": ConstantModel(19_000.0)}
    loader = lambda p: models[p.name]  # noqa: E731

    report = validate_model(
        tmp_path / "candidate",
        SAMPLE,
        loader=loader,
        extra_checks=[BaselineComparison(max_relative_increase=0.5)],
        baseline_path=tmp_path / "baseline",
    )
    assert not report.get("baseline_comparison").passed
    # regression only: the model itself is healthy
    assert is_healthy(report)


def test_baseline_comparison_within_tolerance(tmp_path):
    models = {"candidate": ConstantModel(19_000.0), "baseline": ConstantModel(19_500.0)}
    report = validate_model(
        tmp_path / "candidate",
        SAMPLE,
        loader=lambda p: models[p.name],
        extra_checks=[BaselineComparison(max_relative_increase=0.25)],
        baseline_path=tmp_path / "baseline",
    )
    assert report.passed
