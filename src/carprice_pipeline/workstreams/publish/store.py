"""Durable, identity-addressed model store.

Layout under ``<root>/<namespace>/``::

    <identity>/model.joblib
    <identity>/meta.json
    <identity>/COMPLETE
    latest.txt              # identity of the most recent publish

An artifact is materialised into a hidden temporary directory, synchronised to
stable storage and renamed into place in one step, so the canonical directory is
either complete or absent. Identities are immutable: re-publishing the same bytes
is a no-op, different bytes raise :class:`ArtifactIdentityConflict`.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from carprice_pipeline.contracts import (
    ArtifactIdentityConflict,
    ModelArtifact,
    PublishedArtifact,
    PublishFailed,
    validate_identity,
)
from carprice_pipeline.fs_utils import (
    atomic_write_text,
    ensure_removed,
    fsync_dir,
    fsync_path,
    sha256_file,
    unique_tmp_path,
)

LOGGER = logging.getLogger(__name__)

MODEL_FILENAME = "model.joblib"
META_FILENAME = "meta.json"
COMPLETE_MARKER = "COMPLETE"
LATEST_POINTER = "latest.txt"


class ArtifactStore:
    """Artifacts for one namespace."""

    def __init__(self, root: Path, namespace: str) -> None:
        self.root = Path(root)
        self.namespace = namespace
        self.base = self.root / namespace

    def location(self, identity: str) -> Path:
        return self.base / validate_identity(identity)

    def exists(self, identity: str) -> bool:
        return (self.location(identity) / COMPLETE_MARKER).exists()

    def load_meta(self, identity: str) -> dict[str, Any]:
        meta_path = self.location(identity) / META_FILENAME
        if not meta_path.exists():
            raise FileNotFoundError(f"No published artifact for identity {identity!r} in {self.base}")
        return json.loads(meta_path.read_text(encoding="utf-8"))

    def model_path(self, identity: str) -> Path:
        return self.location(identity) / MODEL_FILENAME

    def latest(self) -> str | None:
        """Identity of the most recently published artifact, if any."""

        pointer = self.base / LATEST_POINTER
        if not pointer.exists():
            return None
        identity = pointer.read_text(encoding="utf-8").strip()
        if not identity or not self.exists(identity):
            return None
        return identity

    # ----------------------------
    # Publishing
    # ----------------------------

    def _existing(self, identity: str, artifact: ModelArtifact) -> PublishedArtifact:
        final_dir = self.location(identity)
        try:
            meta = self.load_meta(identity)
        except (OSError, ValueError) as exc:
            raise PublishFailed(
                f"Existing artifact at {final_dir} is unreadable: {exc}",
                metadata={"identity": identity},
            ) from exc

        if meta.get("sha256") != artifact.sha256:
            raise ArtifactIdentityConflict(
                f"Identity {identity!r} is already published with different content",
                metadata={
                    "identity": identity,
                    "stored_sha256": meta.get("sha256"),
                    "candidate_sha256": artifact.sha256,
                    "stored_run_id": meta.get("run_id"),
                    "candidate_run_id": artifact.run_id,
                },
            )
        LOGGER.info("[publish] %s already published with identical content; no-op", identity)
        return PublishedArtifact(identity=identity, location=final_dir, metadata=meta, reused=True)

    def publish(self, artifact: ModelArtifact, identity: str) -> PublishedArtifact:
        """Persist ``artifact`` under ``identity`` atomically and idempotently."""

        final_dir = self.location(identity)
        if not artifact.path.is_file():
            raise PublishFailed(f"Artifact file missing: {artifact.path}", metadata={"identity": identity})
        if sha256_file(artifact.path) != artifact.sha256:
            raise PublishFailed(
                f"Artifact {artifact.path} changed after training", metadata={"identity": identity}
            )

        if final_dir.exists():
            return self._existing(identity, artifact)

        meta = {**artifact.metadata(), "identity": identity, "namespace": self.namespace}
        tmp_dir = unique_tmp_path(final_dir)
        try:
            self.base.mkdir(parents=True, exist_ok=True)
            tmp_dir.mkdir()
            shutil.copyfile(artifact.path, tmp_dir / MODEL_FILENAME)
            (tmp_dir / META_FILENAME).write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
            (tmp_dir / COMPLETE_MARKER).touch()
            fsync_path(tmp_dir)
            try:
                os.rename(tmp_dir, final_dir)
            except OSError as exc:
                if exc.errno not in (errno.EEXIST, errno.ENOTEMPTY) and not final_dir.exists():
                    raise
                # lost a race with a concurrent publish of the same identity
                return self._existing(identity, artifact)
            fsync_dir(self.base)
        except OSError as exc:
            raise PublishFailed(f"Failed to publish {identity!r}: {exc}", metadata={"identity": identity}) from exc
        finally:
            ensure_removed(tmp_dir)

        self._update_latest(identity)
        LOGGER.info("[publish] %s -> %s (%d bytes)", identity, final_dir, artifact.size)
        return PublishedArtifact(identity=identity, location=final_dir, metadata=meta)

    def _update_latest(self, identity: str) -> None:
        try:
            atomic_write_text(self.base / LATEST_POINTER, identity + "\n")
        except OSError as exc:
            # the artifact itself is published; only the convenience pointer is stale
            LOGGER.warning("[publish] could not update %s: %s", LATEST_POINTER, exc)


__all__ = [
    "ArtifactStore",
    "COMPLETE_MARKER",
    "LATEST_POINTER",
    "META_FILENAME",
    "MODEL_FILENAME",
]
