"""Resolve a logical dataset reference to a readable location on the mounted store."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from carprice_pipeline.contracts import DataUnavailable

LOGGER = logging.getLogger(__name__)


def _to_path(reference: str, data_root: Path | None) -> Path:
    ref = reference.strip()
    if ref.startswith("file://"):
        ref = ref[len("file://"):]
    path = Path(ref).expanduser()
    if not path.is_absolute() and data_root is not None:
        path = Path(data_root) / path
    return path


def _unreadable_reason(path: Path) -> str | None:
    """Return ``None`` if ``path`` is readable, else the reason it is not."""

    if not path.exists():
        return "does not exist"
    try:
        if path.is_dir():
            with os.scandir(path) as entries:
                next(entries, None)
        else:
            with path.open("rb") as f:
                f.read(0)
    except OSError as exc:
        return f"not readable ({exc.strerror or exc})"
    return None


def resolve_dataset(
    reference: str,
    *,
    data_root: Path | None = None,
    wait_s: float = 0.0,
    poll_interval_s: float = 0.5,
) -> Path:
    """Return a concrete readable path for ``reference``.

    Plain paths and ``file://`` URIs are accepted; relative references are taken
    against ``data_root``. The location is checked until it is readable or
    ``wait_s`` elapses, after which :class:`DataUnavailable` is raised. Contents
    are never interpreted.
    """

    if not reference or not reference.strip():
        raise DataUnavailable("Empty dataset reference")

    path = _to_path(reference, data_root)
    deadline = time.monotonic() + max(wait_s, 0.0)
    while True:
        reason = _unreadable_reason(path)
        if reason is None:
            LOGGER.info("Resolved dataset %r -> %s", reference, path)
            return path
        if time.monotonic() >= deadline:
            break
        LOGGER.debug("Dataset %s %s; retrying in %.2fs", path, reason, poll_interval_s)
        time.sleep(max(poll_interval_s, 0.01))

    raise DataUnavailable(
        f"Dataset not available: {path} {reason}",
        metadata={"reference": reference, "path": str(path), "waited_s": wait_s},
    )


__all__ = ["resolve_dataset"]
