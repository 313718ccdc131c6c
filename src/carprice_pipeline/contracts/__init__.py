"""
Shared interfaces/contracts across workstreams.

Reports, runs, artifacts and the pipeline request/result live here so that every
stage speaks the same types. All of them are frozen: a stage produces a new value
instead of mutating one it was handed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .errors import (
    ArtifactIdentityConflict,
    DataGateFailed,
    DataUnavailable,
    ModelGateFailed,
    ModelUnhealthy,
    PipelineError,
    PublishFailed,
    TrainingFailed,
    TrainingTimeout,
)

_IDENTITY_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class Stage(str, Enum):
    IDLE = "Idle"
    RESOLVING = "Resolving"
    VALIDATING_DATA = "ValidatingData"
    TRAINING = "Training"
    VALIDATING_MODEL = "ValidatingModel"
    PUBLISHING = "Publishing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class RunStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


def validate_identity(identity: str) -> str:
    """Return ``identity`` if it is usable as a single path component."""

    if not identity or identity in {".", ".."} or not _IDENTITY_RE.match(identity):
        raise ValueError(f"Invalid artifact identity (commit id): {identity!r}")
    return identity


# ----------------------------
# Validation reports
# ----------------------------

@dataclass(frozen=True)
class CheckResult:
    """Outcome of one named check."""

    name: str
    passed: bool
    message: str
    details: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_name": self.name,
            "passed": bool(self.passed),
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class ValidationReport:
    """Named checks for either data or model quality; verdict is the AND of all checks."""

    kind: str
    checks: tuple[CheckResult, ...]

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failed_checks(self) -> list[str]:
        return [c.name for c in self.checks if not c.passed]

    def get(self, name: str) -> CheckResult:
        for check in self.checks:
            if check.name == name:
                return check
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "passed": self.passed,
            "checks": [c.to_dict() for c in self.checks],
        }


# ----------------------------
# Training + artifacts
# ----------------------------

@dataclass(frozen=True)
class TrainingRun:
    run_id: str
    dataset_location: str
    artifact_location: str
    status: RunStatus = RunStatus.PENDING
    started_at: str | None = None
    finished_at: str | None = None
    duration_s: float | None = None
    exit_status: int | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dataset_location": self.dataset_location,
            "artifact_location": self.artifact_location,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_s": self.duration_s,
            "exit_status": self.exit_status,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class ModelArtifact:
    """Opaque model blob on disk plus the metadata it is published with."""

    path: Path
    run_id: str
    created_at: str
    commit_id: str
    size: int
    sha256: str
    dataset_sha256: str | None = None

    def metadata(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "created_at": self.created_at,
            "commit_id": self.commit_id,
            "size": int(self.size),
            "sha256": self.sha256,
            "dataset_sha256": self.dataset_sha256,
        }


@dataclass(frozen=True)
class PublishedArtifact:
    identity: str
    location: Path
    metadata: Mapping[str, Any]
    reused: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "location": str(self.location),
            "metadata": dict(self.metadata),
            "reused": self.reused,
        }


# ----------------------------
# Pipeline request/result
# ----------------------------

@dataclass(frozen=True)
class PipelineRequest:
    """One trigger: which data, where to publish, under which commit id."""

    dataset_ref: str
    namespace: str
    commit_id: str
    max_training_s: float | None = None

    def __post_init__(self) -> None:
        validate_identity(self.commit_id)
        if not self.namespace:
            raise ValueError("namespace must be non-empty")
        if self.max_training_s is not None and self.max_training_s <= 0:
            raise ValueError("max_training_s must be > 0")


@dataclass(frozen=True)
class PipelineResult:
    status: PipelineStatus
    commit_id: str
    stages: tuple[Stage, ...]
    failed_stage: Stage | None = None
    error: Mapping[str, Any] | None = None
    data_report: ValidationReport | None = None
    training_run: TrainingRun | None = None
    model_report: ValidationReport | None = None
    artifact: PublishedArtifact | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is PipelineStatus.SUCCEEDED

    @property
    def error_code(self) -> str | None:
        return None if self.error is None else str(self.error["code"])

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        return int((self.error or {}).get("exit_code", 1))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "commit_id": self.commit_id,
            "stages": [s.value for s in self.stages],
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": dict(self.error) if self.error else None,
            "data_report": self.data_report.to_dict() if self.data_report else None,
            "training_run": self.training_run.to_dict() if self.training_run else None,
            "model_report": self.model_report.to_dict() if self.model_report else None,
            "artifact": self.artifact.to_dict() if self.artifact else None,
        }


__all__ = [
    "ArtifactIdentityConflict",
    "CheckResult",
    "DataGateFailed",
    "DataUnavailable",
    "ModelArtifact",
    "ModelGateFailed",
    "ModelUnhealthy",
    "PipelineError",
    "PipelineRequest",
    "PipelineResult",
    "PipelineStatus",
    "PublishFailed",
    "PublishedArtifact",
    "RunStatus",
    "Stage",
    "TrainingFailed",
    "TrainingRun",
    "TrainingTimeout",
    "ValidationReport",
    "validate_identity",
]
