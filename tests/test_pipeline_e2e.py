import sys
from dataclasses import replace

import pytest

from carprice_pipeline.contracts import CheckResult, PipelineRequest, PipelineStatus, RunStatus, Stage
from carprice_pipeline.pipelines import run_pipeline
from carprice_pipeline.workstreams.training import linear
from carprice_pipeline.workstreams.training.runner import CallableTrainer, CommandTrainer


class FixedModel:
    def predict(self, X):
        return [1.0] * len(X)


class AlwaysFails:
    name = "release_freeze"

    def __call__(self, model, sample, baseline):
        return CheckResult(self.name, False, "releases are frozen")


def _writes(payload: bytes):
    return CallableTrainer(lambda data, out: out.write_bytes(payload))


def _request(dataset, commit="abc123", **kwargs):
    return PipelineRequest(dataset_ref=str(dataset), namespace="carprice", commit_id=commit, **kwargs)


def test_valid_dataset_is_trained_and_published(cars_csv, settings):
    dataset = cars_csv(12_000)
    result = run_pipeline(_request(dataset), settings, CallableTrainer(linear.train))

    assert result.status is PipelineStatus.SUCCEEDED
    assert result.exit_code == 0
    assert result.stages == (
        Stage.IDLE,
        Stage.RESOLVING,
        Stage.VALIDATING_DATA,
        Stage.TRAINING,
        Stage.VALIDATING_MODEL,
        Stage.PUBLISHING,
        Stage.SUCCEEDED,
    )
    assert all(c.passed for c in result.data_report.checks)
    assert all(c.passed for c in result.model_report.checks)
    assert result.training_run.status is RunStatus.SUCCEEDED
    assert result.training_run.run_id.startswith("abc123-")

    published = settings.artifact_root / "carprice" / "abc123"
    assert result.artifact.location == published
    assert (published / "model.joblib").stat().st_size > 0
    assert result.artifact.metadata["dataset_sha256"]
    # per-run scratch space is released
    assert list(settings.work_root.iterdir()) == []


def test_small_dataset_halts_at_data_gate(cars_csv, settings):
    calls = []
    trainer = CallableTrainer(lambda data, out: calls.append(data))

    result = run_pipeline(_request(cars_csv(5_000)), settings, trainer)

    assert result.status is PipelineStatus.FAILED
    assert result.failed_stage is Stage.VALIDATING_DATA
    assert result.error_code == "data_gate_failed"
    assert result.exit_code == 1
    assert result.data_report.get("minimum_row_count").passed is False
    assert result.training_run is None
    assert result.model_report is None
    assert calls == []
    assert not (settings.artifact_root / "carprice").exists()


def test_missing_dataset_fails_while_resolving(tmp_path, settings):
    result = run_pipeline(_request(tmp_path / "missing.csv"), settings, _writes(b"x"))
    assert result.failed_stage is Stage.RESOLVING
    assert result.error_code == "data_unavailable"
    assert result.exit_code == 1
    assert result.data_report is None


def test_training_timeout_publishes_nothing(cars_csv, settings):
    hang = CommandTrainer(
        [sys.executable, "-c", "import sys, time; open(sys.argv[1], 'wb').write(b'p'); time.sleep(30)", "{output}"]
    )
    result = run_pipeline(_request(cars_csv(10_001), max_training_s=1.0), settings, hang)

    assert result.status is PipelineStatus.FAILED
    assert result.error_code == "training_timeout"
    assert result.failed_stage is Stage.TRAINING
    assert result.exit_code == 2
    assert result.training_run.status is RunStatus.FAILED
    assert not (settings.artifact_root / "carprice" / "abc123").exists()
    assert list(settings.work_root.iterdir()) == []


def test_training_failure_exit_code(cars_csv, settings):
    trainer = CommandTrainer([sys.executable, "-c", "raise SystemExit(1)"])
    result = run_pipeline(_request(cars_csv(10_001)), settings, trainer)
    assert result.error_code == "training_failed"
    assert result.exit_code == 2
    assert result.model_report is None


def test_unloadable_model_is_unhealthy(cars_csv, settings):
    result = run_pipeline(_request(cars_csv(10_001)), settings, _writes(b"not a model"))

    assert result.error_code == "model_unhealthy"
    assert result.failed_stage is Stage.VALIDATING_MODEL
    assert result.exit_code == 3
    assert result.model_report.get("model_loads").passed is False
    assert result.artifact is None
    assert not (settings.artifact_root / "carprice" / "abc123").exists()


def test_extension_check_failure_is_a_gate_failure(cars_csv, settings):
    result = run_pipeline(
        _request(cars_csv(10_001)),
        settings,
        _writes(b"fixed"),
        loader=lambda p: FixedModel(),
        extra_checks=[AlwaysFails()],
    )
    assert result.error_code == "model_gate_failed"
    assert result.exit_code == 3
    assert result.model_report.failed_checks == ["release_freeze"]


def test_rerun_with_same_commit_is_idempotent(cars_csv, settings):
    dataset = cars_csv(10_001)
    first = run_pipeline(_request(dataset), settings, _writes(b"fixed"), loader=lambda p: FixedModel())
    second = run_pipeline(_request(dataset), settings, _writes(b"fixed"), loader=lambda p: FixedModel())

    assert first.succeeded and second.succeeded
    assert not first.artifact.reused
    assert second.artifact.reused
    assert second.artifact.metadata["created_at"] == first.artifact.metadata["created_at"]


def test_reusing_commit_for_different_model_conflicts(cars_csv, settings):
    dataset = cars_csv(10_001)
    run_pipeline(_request(dataset), settings, _writes(b"model-a"), loader=lambda p: FixedModel())
    result = run_pipeline(_request(dataset), settings, _writes(b"model-b"), loader=lambda p: FixedModel())

    assert result.error_code == "artifact_identity_conflict"
    assert result.failed_stage is Stage.PUBLISHING
    assert result.exit_code == 4
    stored = settings.artifact_root / "carprice" / "abc123" / "model.joblib"
    assert stored.read_bytes() == b"model-a"


def test_keep_workdir_leaves_scratch_for_debugging(cars_csv, settings):
    settings = replace(settings, keep_workdir=True)
    result = run_pipeline(_request(cars_csv(10_001)), settings, _writes(b"fixed"), loader=lambda p: FixedModel())
    assert (settings.work_root / result.training_run.run_id / "model.joblib").exists()


def test_result_serialises_reports(cars_csv, settings):
    result = run_pipeline(_request(cars_csv(5_000)), settings, _writes(b"x"))
    payload = result.to_dict()
    assert payload["status"] == "Failed"
    assert payload["failed_stage"] == "ValidatingData"
    assert payload["training_run"] is None
    checks = {c["check_name"]: c["passed"] for c in payload["data_report"]["checks"]}
    assert checks == {
        "valid_price": True,
        "valid_year": True,
        "valid_mileage": True,
        "minimum_row_count": False,
    }


@pytest.mark.parametrize("commit", ["", "..", "a/b", "with space"])
def test_bad_commit_ids_are_rejected(commit):
    with pytest.raises(ValueError):
        PipelineRequest(dataset_ref="cars.csv", namespace="carprice", commit_id=commit)


def test_cancelled_training_leaves_nothing_behind(cars_csv, settings):
    def interrupted(data, out):
        out.write_bytes(b"partial")
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        run_pipeline(_request(cars_csv(10_001)), settings, CallableTrainer(interrupted))

    assert list(settings.work_root.iterdir()) == []
    assert not (settings.artifact_root / "carprice" / "abc123").exists()


def test_cancelled_publish_leaves_no_temp_dir(cars_csv, settings, monkeypatch):
    def interrupted_rename(src, dst):
        raise KeyboardInterrupt

    monkeypatch.setattr("carprice_pipeline.workstreams.publish.store.os.rename", interrupted_rename)
    with pytest.raises(KeyboardInterrupt):
        run_pipeline(_request(cars_csv(10_001)), settings, _writes(b"fixed"), loader=lambda p: FixedModel())

    namespace = settings.artifact_root / "carprice"
    assert [p.name for p in namespace.iterdir() if p.name.startswith(".")] == []
    assert not (namespace / "abc123").exists()
    assert list(settings.work_root.iterdir()) == []


def test_braces_in_training_command_do_not_crash_the_pipeline(cars_csv, settings):
    trainer = CommandTrainer(
        [sys.executable, "-c", "import sys; d = {}; open(sys.argv[1], 'wb').write(b'x')", "{output}"]
    )
    result = run_pipeline(_request(cars_csv(10_001)), settings, trainer, loader=lambda p: FixedModel())
    assert result.succeeded
    assert result.artifact.identity == "abc123"
