"""Exception hierarchy for pipeline failures.

Every error is terminal for the current run. The orchestrator attaches it to the
:class:`~carprice_pipeline.contracts.PipelineResult` together with the stage it
occurred in, so callers never have to re-run the pipeline to get detail.
"""

from __future__ import annotations

from typing import Any, Mapping


class PipelineError(RuntimeError):
    """Base class for all terminal pipeline failures."""

    code = "pipeline_error"
    stage = "Idle"
    exit_code = 1

    def __init__(
        self,
        message: str,
        *,
        metadata: Mapping[str, Any] | None = None,
        report: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.metadata: dict[str, Any] = dict(metadata or {})
        # ValidationReport for gate failures
        self.report = report

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "stage": self.stage,
            "exit_code": self.exit_code,
            "message": self.message,
            "metadata": dict(self.metadata),
        }


class DataUnavailable(PipelineError):
    code = "data_unavailable"
    stage = "Resolving"
    exit_code = 1


class DataGateFailed(PipelineError):
    code = "data_gate_failed"
    stage = "ValidatingData"
    exit_code = 1


class TrainingFailed(PipelineError):
    code = "training_failed"
    stage = "Training"
    exit_code = 2

    def __init__(self, message: str, *, metadata: Mapping[str, Any] | None = None, run: Any = None) -> None:
        super().__init__(message, metadata=metadata)
        # TrainingRun in its failed state
        self.run = run


class TrainingTimeout(TrainingFailed):
    code = "training_timeout"


class ModelUnhealthy(PipelineError):
    code = "model_unhealthy"
    stage = "ValidatingModel"
    exit_code = 3


class ModelGateFailed(PipelineError):
    code = "model_gate_failed"
    stage = "ValidatingModel"
    exit_code = 3


class PublishFailed(PipelineError):
    code = "publish_failed"
    stage = "Publishing"
    exit_code = 4


class ArtifactIdentityConflict(PublishFailed):
    """Two different artifacts claim the same identity (caller-side identity reuse)."""

    code = "artifact_identity_conflict"


__all__ = [
    "ArtifactIdentityConflict",
    "DataGateFailed",
    "DataUnavailable",
    "ModelGateFailed",
    "ModelUnhealthy",
    "PipelineError",
    "PublishFailed",
    "TrainingFailed",
    "TrainingTimeout",
]
