"""Training runner.

The training procedure itself is opaque. It is reached through the
:class:`TrainingStep` capability, which takes a data path and an output path and
returns an exit status. Two implementations ship here: one that launches an
external process and one that calls a Python function on a worker thread. The
runner only checks that the step finished in time, exited cleanly and left a
non-empty artifact behind; model quality is the model gate's job.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from carprice_pipeline.contracts import (
    ModelArtifact,
    RunStatus,
    TrainingFailed,
    TrainingRun,
    TrainingTimeout,
)
from carprice_pipeline.fs_utils import ensure_removed, now_utc, sha256_file, unique_tmp_path

LOGGER = logging.getLogger(__name__)

_OUTPUT_TAIL_CHARS = 2000


class TrainingStep(Protocol):
    """Anything that can turn (data path, output path) into an artifact file."""

    def train(self, data_path: Path, output_path: Path, timeout_s: float | None) -> int:
        """Run to completion and return the exit status; raise :class:`TrainingTimeout` on timeout."""
        ...


def _kill_group(proc: subprocess.Popen) -> None:
    """SIGKILL the command and every process it started; they share its session."""

    with contextlib.suppress(ProcessLookupError):
        os.killpg(proc.pid, signal.SIGKILL)


@dataclass(frozen=True)
class CommandTrainer:
    """Run training as an external process.

    ``command`` items may contain ``{data}`` and ``{output}`` placeholders; any
    other braces are passed through untouched. The command runs in its own
    session so a timeout or cancellation kills shell wrappers and their children
    together.
    """

    command: Sequence[str]
    env: Mapping[str, str] | None = None
    cwd: Path | None = None

    def render(self, data_path: Path, output_path: Path) -> list[str]:
        return [
            part.replace("{data}", str(data_path)).replace("{output}", str(output_path))
            for part in self.command
        ]

    def train(self, data_path: Path, output_path: Path, timeout_s: float | None) -> int:
        argv = self.render(data_path, output_path)
        env_vars = os.environ.copy()
        if self.env:
            env_vars.update({str(key): str(value) for key, value in self.env.items()})

        LOGGER.info("[training] running command: %s", " ".join(argv))
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(self.cwd) if self.cwd else None,
                env=env_vars,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as exc:
            raise TrainingFailed(f"Could not start training command: {exc}", metadata={"command": argv}) from exc
        try:
            stdout, stderr = proc.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired as exc:
            _kill_group(proc)
            proc.communicate()
            raise TrainingTimeout(
                f"Training command exceeded {timeout_s}s",
                metadata={"command": argv, "timeout_s": timeout_s},
            ) from exc
        finally:
            # interrupted while waiting: never leave the command running
            if proc.poll() is None:
                _kill_group(proc)
                proc.wait()

        if stdout:
            LOGGER.debug("[training] stdout:\n%s", stdout[-_OUTPUT_TAIL_CHARS:])
        if proc.returncode != 0 and stderr:
            LOGGER.warning("[training] stderr:\n%s", stderr[-_OUTPUT_TAIL_CHARS:])
        return proc.returncode


@dataclass(frozen=True)
class CallableTrainer:
    """Run training as an in-process call on a daemon worker thread.

    ``fn`` writes to a hidden staging file next to the output path, which is
    moved into place only once the call has returned within the timeout. A
    thread cannot be killed; on timeout it is abandoned and, when it eventually
    returns, removes its own staging file (and the run directory if that is
    left empty), so a late write never shows up at the output path.
    ``KeyboardInterrupt`` and other non-``Exception`` errors raised by ``fn``
    are re-raised in the caller.
    """

    fn: Callable[[Path, Path], None]

    def train(self, data_path: Path, output_path: Path, timeout_s: float | None) -> int:
        staging = unique_tmp_path(output_path)
        errors: list[BaseException] = []
        lock = threading.Lock()
        state = {"done": False, "abandoned": False}

        def _target() -> None:
            try:
                self.fn(data_path, staging)
            except BaseException as exc:
                errors.append(exc)
            finally:
                with lock:
                    state["done"] = True
                    if state["abandoned"]:
                        ensure_removed(staging)
                        with contextlib.suppress(OSError):
                            staging.parent.rmdir()

        worker = threading.Thread(target=_target, name="carprice-training", daemon=True)
        worker.start()
        try:
            worker.join(timeout_s)
        finally:
            with lock:
                finished = state["done"]
                state["abandoned"] = not finished
        if not finished:
            raise TrainingTimeout(f"Training step exceeded {timeout_s}s", metadata={"timeout_s": timeout_s})

        if errors:
            ensure_removed(staging)
            if not isinstance(errors[0], Exception):
                raise errors[0]
            LOGGER.warning("[training] step raised %s: %s", type(errors[0]).__name__, errors[0])
            return 1
        if staging.exists():
            os.replace(staging, output_path)
        return 0


def run_training(
    step: TrainingStep,
    *,
    run: TrainingRun,
    commit_id: str,
    timeout_s: float | None = None,
    dataset_sha256: str | None = None,
) -> tuple[TrainingRun, ModelArtifact]:
    """Execute ``step`` once for ``run`` and return the finished run plus its artifact.

    On any failure the destination is removed and :class:`TrainingFailed` (or
    :class:`TrainingTimeout`) is raised with the failed run attached.
    """

    data_path = Path(run.dataset_location)
    output_path = Path(run.artifact_location)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    ensure_removed(output_path)

    started_at = now_utc()
    t0 = time.monotonic()
    run = replace(run, started_at=started_at)
    LOGGER.info("[training] run %s started (timeout=%s)", run.run_id, timeout_s)

    def _failed(exit_status: int | None, code: str) -> TrainingRun:
        ensure_removed(output_path)
        return replace(
            run,
            status=RunStatus.FAILED,
            finished_at=now_utc(),
            duration_s=round(time.monotonic() - t0, 3),
            exit_status=exit_status,
            error_code=code,
        )

    try:
        exit_status = step.train(data_path, output_path, timeout_s)
    except TrainingFailed as exc:
        exc.run = _failed(None, exc.code)
        LOGGER.error("[training] run %s failed: %s", run.run_id, exc.message)
        raise
    except BaseException:
        # cancellation: drop whatever was written and let it propagate
        ensure_removed(output_path)
        raise

    if exit_status != 0:
        failed = _failed(exit_status, TrainingFailed.code)
        raise TrainingFailed(
            f"Training step exited with status {exit_status}",
            metadata={"exit_status": exit_status},
            run=failed,
        )
    if not output_path.is_file() or output_path.stat().st_size == 0:
        failed = _failed(exit_status, TrainingFailed.code)
        raise TrainingFailed(
            f"Training step produced no artifact at {output_path}",
            metadata={"artifact_location": str(output_path)},
            run=failed,
        )

    finished = replace(
        run,
        status=RunStatus.SUCCEEDED,
        finished_at=now_utc(),
        duration_s=round(time.monotonic() - t0, 3),
        exit_status=exit_status,
    )
    artifact = ModelArtifact(
        path=output_path,
        run_id=run.run_id,
        created_at=finished.finished_at or started_at,
        commit_id=commit_id,
        size=output_path.stat().st_size,
        sha256=sha256_file(output_path),
        dataset_sha256=dataset_sha256,
    )
    LOGGER.info(
        "[training] run %s succeeded in %.2fs (%d bytes)", run.run_id, finished.duration_s, artifact.size
    )
    return finished, artifact


__all__ = ["CallableTrainer", "CommandTrainer", "TrainingStep", "run_training"]
