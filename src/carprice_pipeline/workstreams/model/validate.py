"""Model health gate.

Reloads a freshly trained artifact and checks it can serve at all: it loads,
predicts one value per sample row, and the predictions are finite numbers. Callers
can append :class:`ModelCheck` extensions that also see the currently published
production model, e.g. :class:`BaselineComparison`. A missing production model is
never a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

import joblib
import numpy as np

from carprice_pipeline.contracts import CheckResult, ValidationReport

LOGGER = logging.getLogger(__name__)

ModelLoader = Callable[[Path], Any]

HEALTH_CHECKS = ("model_loads", "predicts_sample", "predictions_finite")


@dataclass(frozen=True)
class ModelSample:
    """Rows the model is exercised on; ``y`` is the known target for those rows."""

    X: np.ndarray
    y: np.ndarray
    feature_columns: tuple[str, ...]


class ModelCheck(Protocol):
    name: str

    def __call__(self, model: Any, sample: ModelSample, baseline: Any | None) -> CheckResult:
        ...


def load_model(path: Path) -> Any:
    return joblib.load(path)


def _predict(model: Any, X: np.ndarray) -> np.ndarray:
    return np.asarray(model.predict(X), dtype=np.float64).reshape(-1)


@dataclass(frozen=True)
class BaselineComparison:
    """Fail if the candidate's MAE exceeds the baseline's by more than ``max_relative_increase``.

    No threshold is assumed; the caller must supply one.
    """

    max_relative_increase: float
    name: str = "baseline_comparison"

    def __call__(self, model: Any, sample: ModelSample, baseline: Any | None) -> CheckResult:
        if baseline is None:
            return CheckResult(self.name, True, "no production model to compare against")
        if sample.X.shape[0] == 0:
            return CheckResult(self.name, False, "no sample rows to compare on")

        candidate_mae = float(np.mean(np.abs(_predict(model, sample.X) - sample.y)))
        baseline_mae = float(np.mean(np.abs(_predict(baseline, sample.X) - sample.y)))
        limit = baseline_mae * (1.0 + self.max_relative_increase)
        passed = candidate_mae <= limit
        op = "<=" if passed else ">"
        return CheckResult(
            self.name,
            passed,
            f"candidate MAE {candidate_mae:.4g} {op} limit {limit:.4g} (baseline {baseline_mae:.4g})",
        )


def _health_checks(path: Path, sample: ModelSample, loader: ModelLoader) -> tuple[list[CheckResult], Any]:
    try:
        model = loader(path)
    except Exception as exc:
        reason = f"{type(exc).__name__}: {exc}"
        return [
            CheckResult("model_loads", False, f"failed to load {path}: {reason}"),
            CheckResult("predicts_sample", False, "skipped: model did not load"),
            CheckResult("predictions_finite", False, "skipped: model did not load"),
        ], None

    checks = [CheckResult("model_loads", True, f"loaded {type(model).__name__} from {path.name}")]
    n = sample.X.shape[0]
    if n == 0:
        checks.append(CheckResult("predicts_sample", False, "no well-formed sample row available"))
        checks.append(CheckResult("predictions_finite", False, "skipped: no predictions"))
        return checks, model

    try:
        preds = _predict(model, sample.X)
    except Exception as exc:
        checks.append(CheckResult("predicts_sample", False, f"predict raised {type(exc).__name__}: {exc}"))
        checks.append(CheckResult("predictions_finite", False, "skipped: no predictions"))
        return checks, model

    if preds.shape[0] != n:
        checks.append(
            CheckResult("predicts_sample", False, f"expected {n} predictions, got {preds.shape[0]}")
        )
    else:
        checks.append(CheckResult("predicts_sample", True, f"{n} prediction(s) produced", {"rows": n}))

    non_finite = int(np.sum(~np.isfinite(preds)))
    checks.append(
        CheckResult(
            "predictions_finite",
            non_finite == 0 and preds.shape[0] > 0,
            f"{non_finite} non-finite prediction(s)" if non_finite else "all predictions finite",
            {"non_finite": non_finite},
        )
    )
    return checks, model


def validate_model(
    path: Path,
    sample: ModelSample,
    *,
    loader: ModelLoader = load_model,
    extra_checks: Sequence[ModelCheck] = (),
    baseline_path: Path | None = None,
) -> ValidationReport:
    """Run health checks and any extension checks against the artifact at ``path``."""

    checks, model = _health_checks(path, sample, loader)
    healthy = all(c.passed for c in checks)

    if extra_checks:
        baseline, baseline_error = None, None
        if baseline_path is not None:
            try:
                baseline = loader(baseline_path)
            except Exception as exc:
                baseline_error = f"failed to load production model {baseline_path}: {exc}"

        for check in extra_checks:
            if not healthy:
                checks.append(CheckResult(check.name, False, "skipped: model is unhealthy"))
            elif baseline_error is not None:
                checks.append(CheckResult(check.name, False, baseline_error))
            else:
                try:
                    checks.append(check(model, sample, baseline))
                except Exception as exc:
                    checks.append(CheckResult(check.name, False, f"check raised {type(exc).__name__}: {exc}"))

    report = ValidationReport(kind="model", checks=tuple(checks))
    for c in report.checks:
        LOGGER.log(logging.INFO if c.passed else logging.WARNING, "[model] %s: %s", c.name, c.message)
    return report


def is_healthy(report: ValidationReport) -> bool:
    """True when every built-in health check passed (extension checks aside)."""

    return all(c.passed for c in report.checks if c.name in HEALTH_CHECKS)


__all__ = [
    "BaselineComparison",
    "HEALTH_CHECKS",
    "ModelCheck",
    "ModelLoader",
    "ModelSample",
    "is_healthy",
    "load_model",
    "validate_model",
]
