"""Filesystem helpers shared by the training, publishing and CLI code."""

from __future__ import annotations

import hashlib
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

TEMP_SUFFIX = ".tmp"


def now_utc() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def ensure_removed(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.exists():
        shutil.rmtree(path, ignore_errors=True)


def fsync_path(path: Path) -> None:
    if path.is_dir():
        for child in path.iterdir():
            fsync_path(child)
        fsync_dir(path)
    else:
        with path.open("rb") as handle:
            os.fsync(handle.fileno())


def fsync_dir(path: Path) -> None:
    """Persist directory entries (renames) without touching the children."""

    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def unique_tmp_path(final_path: Path) -> Path:
    """Hidden sibling of ``final_path`` that no concurrent writer will pick."""

    return final_path.with_name(f".{final_path.name}.{uuid.uuid4().hex[:12]}{TEMP_SUFFIX}")


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` via a temp file and ``os.replace`` so readers never see a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = unique_tmp_path(path)
    try:
        tmp.write_text(text, encoding="utf-8")
        fsync_path(tmp)
        os.replace(tmp, path)
    finally:
        ensure_removed(tmp)


__all__ = [
    "TEMP_SUFFIX",
    "atomic_write_text",
    "ensure_removed",
    "fsync_dir",
    "fsync_path",
    "now_utc",
    "sha256_file",
    "unique_tmp_path",
]
