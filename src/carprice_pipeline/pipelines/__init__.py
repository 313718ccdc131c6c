"""
End-to-end orchestration glue (resolve -> validate data -> train -> validate model -> publish).

Stages run strictly in order and each is attempted exactly once. The data and
model verdicts are hard gates: a failing gate ends the run and nothing
downstream of it executes. Every outcome, success or failure, is reported as one
:class:`~carprice_pipeline.contracts.PipelineResult`.
"""

from __future__ import annotations

import csv
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Sequence

from carprice_pipeline.config import Settings
from carprice_pipeline.contracts import (
    DataGateFailed,
    ModelGateFailed,
    ModelUnhealthy,
    PipelineError,
    PipelineRequest,
    PipelineResult,
    PipelineStatus,
    PublishedArtifact,
    Stage,
    TrainingFailed,
    TrainingRun,
    ValidationReport,
)
from carprice_pipeline.fs_utils import ensure_removed
from carprice_pipeline.workstreams.data.records import NUMERIC_FIELDS, RecordTable, load_records, sha256_dataset
from carprice_pipeline.workstreams.data.resolver import resolve_dataset
from carprice_pipeline.workstreams.data.validate import validate_records
from carprice_pipeline.workstreams.model.validate import (
    ModelCheck,
    ModelLoader,
    ModelSample,
    is_healthy,
    load_model,
    validate_model,
)
from carprice_pipeline.workstreams.publish.store import ArtifactStore
from carprice_pipeline.workstreams.training.runner import TrainingStep, run_training

LOGGER = logging.getLogger(__name__)

ARTIFACT_FILENAME = "model.joblib"


def new_run_id(commit_id: str) -> str:
    """Unique per invocation, traceable to the triggering commit."""

    return f"{commit_id}-{uuid.uuid4().hex[:8]}"


def model_sample(table: RecordTable, settings: Settings) -> ModelSample:
    columns = (*settings.feature_columns, settings.target_column)
    rows = table.sample(columns, settings.sample_rows)
    return ModelSample(X=rows[:, :-1], y=rows[:, -1], feature_columns=tuple(settings.feature_columns))


@dataclass
class _RunState:
    """Mutable bookkeeping for one invocation; frozen into a PipelineResult at the end."""

    stages: list[Stage] = field(default_factory=lambda: [Stage.IDLE])
    data_report: ValidationReport | None = None
    training_run: TrainingRun | None = None
    model_report: ValidationReport | None = None
    artifact: PublishedArtifact | None = None

    def enter(self, stage: Stage, commit_id: str) -> None:
        LOGGER.info("[pipeline %s] %s -> %s", commit_id, self.stages[-1].value, stage.value)
        self.stages.append(stage)


class PipelineOrchestrator:
    """Sequences the stages for one request at a time; holds no state between runs."""

    def __init__(
        self,
        settings: Settings,
        trainer: TrainingStep,
        *,
        loader: ModelLoader = load_model,
        extra_checks: Sequence[ModelCheck] = (),
    ) -> None:
        self.settings = settings
        self.trainer = trainer
        self.loader = loader
        self.extra_checks = tuple(extra_checks)

    def run(self, request: PipelineRequest, *, today: date | None = None) -> PipelineResult:
        settings = self.settings
        state = _RunState()
        run_id = new_run_id(request.commit_id)
        work_dir = Path(settings.work_root) / run_id
        LOGGER.info("[pipeline %s] run %s for dataset %r", request.commit_id, run_id, request.dataset_ref)

        try:
            state.enter(Stage.RESOLVING, request.commit_id)
            location = resolve_dataset(
                request.dataset_ref,
                data_root=settings.data_root,
                wait_s=settings.resolve_wait_s,
                poll_interval_s=settings.resolve_poll_interval_s,
            )

            state.enter(Stage.VALIDATING_DATA, request.commit_id)
            table = self._load(location)
            state.data_report = validate_records(
                table, today=today, min_year=settings.min_year, min_rows=settings.min_row_count
            )
            if not state.data_report.passed:
                raise DataGateFailed(
                    f"Data gate failed: {', '.join(state.data_report.failed_checks)}",
                    metadata={"failed_checks": state.data_report.failed_checks},
                    report=state.data_report,
                )

            state.enter(Stage.TRAINING, request.commit_id)
            pending = TrainingRun(
                run_id=run_id,
                dataset_location=str(location),
                artifact_location=str(work_dir / ARTIFACT_FILENAME),
            )
            state.training_run = pending
            try:
                state.training_run, artifact = run_training(
                    self.trainer,
                    run=pending,
                    commit_id=request.commit_id,
                    timeout_s=request.max_training_s,
                    dataset_sha256=sha256_dataset(location),
                )
            except TrainingFailed as exc:
                if exc.run is not None:
                    state.training_run = exc.run
                raise

            state.enter(Stage.VALIDATING_MODEL, request.commit_id)
            store = ArtifactStore(settings.artifact_root, request.namespace)
            baseline_id = store.latest() if self.extra_checks else None
            state.model_report = validate_model(
                artifact.path,
                model_sample(table, settings),
                loader=self.loader,
                extra_checks=self.extra_checks,
                baseline_path=store.model_path(baseline_id) if baseline_id else None,
            )
            if not state.model_report.passed:
                failed = state.model_report.failed_checks
                error_cls = ModelGateFailed if is_healthy(state.model_report) else ModelUnhealthy
                raise error_cls(
                    f"Model gate failed: {', '.join(failed)}",
                    metadata={"failed_checks": failed},
                    report=state.model_report,
                )

            state.enter(Stage.PUBLISHING, request.commit_id)
            state.artifact = store.publish(artifact, request.commit_id)

        except PipelineError as exc:
            LOGGER.error("[pipeline %s] failed at %s: %s", request.commit_id, exc.stage, exc.message)
            state.stages.append(Stage.FAILED)
            return PipelineResult(
                status=PipelineStatus.FAILED,
                commit_id=request.commit_id,
                stages=tuple(state.stages),
                failed_stage=Stage(exc.stage),
                error=exc.to_dict(),
                data_report=state.data_report,
                training_run=state.training_run,
                model_report=state.model_report,
            )
        finally:
            if not settings.keep_workdir:
                ensure_removed(work_dir)

        state.enter(Stage.SUCCEEDED, request.commit_id)
        return PipelineResult(
            status=PipelineStatus.SUCCEEDED,
            commit_id=request.commit_id,
            stages=tuple(state.stages),
            data_report=state.data_report,
            training_run=state.training_run,
            model_report=state.model_report,
            artifact=state.artifact,
        )

    def _load(self, location: Path) -> RecordTable:
        fields = tuple(dict.fromkeys((*NUMERIC_FIELDS, *self.settings.feature_columns, self.settings.target_column)))
        try:
            return load_records(location, numeric_fields=fields)
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise DataGateFailed(f"Dataset at {location} could not be read: {exc}") from exc


def run_pipeline(
    request: PipelineRequest,
    settings: Settings,
    trainer: TrainingStep,
    *,
    loader: ModelLoader = load_model,
    extra_checks: Sequence[ModelCheck] = (),
    today: date | None = None,
) -> PipelineResult:
    """Run the full pipeline once for ``request``."""

    orchestrator = PipelineOrchestrator(settings, trainer, loader=loader, extra_checks=extra_checks)
    return orchestrator.run(request, today=today)


__all__ = ["PipelineOrchestrator", "model_sample", "new_run_id", "run_pipeline"]
