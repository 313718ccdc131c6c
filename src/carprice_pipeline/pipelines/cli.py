"""Command-line front-end for the model lifecycle pipeline.

Exit codes of ``run``: 0 succeeded, 1 data gate failed, 2 training failed,
3 model gate failed, 4 publish failed.

Example usage:
  python -m carprice_pipeline.pipelines.cli run --dataset cars.csv --namespace carprice --commit "$GIT_SHA"
  python -m carprice_pipeline.pipelines.cli validate-data --dataset cars.csv
  python -m carprice_pipeline.pipelines.cli show --namespace carprice latest
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Iterable

from carprice_pipeline.config import Settings, load_settings, setup_logging
from carprice_pipeline.contracts import DataUnavailable, PipelineRequest
from carprice_pipeline.fs_utils import atomic_write_text
from carprice_pipeline.pipelines import run_pipeline
from carprice_pipeline.workstreams.data.records import load_records
from carprice_pipeline.workstreams.data.resolver import resolve_dataset
from carprice_pipeline.workstreams.data.validate import validate_records
from carprice_pipeline.workstreams.model.validate import BaselineComparison
from carprice_pipeline.workstreams.publish.store import ArtifactStore
from carprice_pipeline.workstreams.training.runner import CommandTrainer

LOGGER = logging.getLogger(__name__)

DEFAULT_TRAIN_CMD = [
    sys.executable,
    "-m",
    "carprice_pipeline.workstreams.training.linear",
    "--data",
    "{data}",
    "--output",
    "{output}",
]


def _settings(args: argparse.Namespace) -> Settings:
    return load_settings(args.config, args.overrides)


def cmd_run(args: argparse.Namespace) -> int:
    settings = _settings(args)
    command = shlex.split(args.train_cmd) if args.train_cmd else DEFAULT_TRAIN_CMD
    extra_checks = []
    if args.baseline_tolerance is not None:
        extra_checks.append(BaselineComparison(max_relative_increase=args.baseline_tolerance))

    request = PipelineRequest(
        dataset_ref=args.dataset,
        namespace=args.namespace,
        commit_id=args.commit,
        max_training_s=args.max_training_s,
    )
    result = run_pipeline(request, settings, CommandTrainer(command), extra_checks=extra_checks)

    payload = json.dumps(result.to_dict(), indent=2, sort_keys=True)
    if args.report is not None:
        atomic_write_text(args.report, payload + "\n")
    print(payload)
    return result.exit_code


def cmd_validate_data(args: argparse.Namespace) -> int:
    settings = _settings(args)
    try:
        location = resolve_dataset(
            args.dataset,
            data_root=settings.data_root,
            wait_s=settings.resolve_wait_s,
            poll_interval_s=settings.resolve_poll_interval_s,
        )
    except DataUnavailable as exc:
        print(json.dumps({"error": exc.to_dict()}, indent=2))
        return DataUnavailable.exit_code

    try:
        table = load_records(location)
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        print(f"Dataset at {location} could not be read: {exc}", file=sys.stderr)
        return 1

    report = validate_records(table, min_year=settings.min_year, min_rows=settings.min_row_count)
    print(json.dumps({"location": str(location), **report.to_dict()}, indent=2))
    return 0 if report.passed else 1


def cmd_show(args: argparse.Namespace) -> int:
    settings = _settings(args)
    store = ArtifactStore(settings.artifact_root, args.namespace)
    identity = store.latest() if args.identity == "latest" else args.identity
    if identity is None:
        print(f"No artifact published in namespace {args.namespace!r}", file=sys.stderr)
        return 1
    try:
        meta = store.load_meta(identity)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(json.dumps({"location": str(store.location(identity)), **meta}, indent=2, sort_keys=True))
    return 0


def _add_config_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", type=Path, help="YAML settings file")
    p.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a setting (repeatable), e.g. --set min_row_count=5000",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="carprice-pipeline",
        description="Validate data, train, validate the model and publish it under a commit id.",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv).")

    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Run the full gated pipeline.")
    _add_config_args(p_run)
    p_run.add_argument("--dataset", required=True, help="Dataset reference (path or file:// URI)")
    p_run.add_argument("--namespace", required=True, help="Artifact namespace under artifact_root")
    p_run.add_argument("--commit", required=True, help="Commit/change id; becomes the artifact identity")
    p_run.add_argument("--max-training-s", type=float, default=None, help="Training timeout in seconds")
    p_run.add_argument(
        "--train-cmd",
        default=None,
        help="Training command with {data} and {output} placeholders (default: bundled linear model)",
    )
    p_run.add_argument(
        "--baseline-tolerance",
        type=float,
        default=None,
        help="Also fail if MAE is worse than the latest published model by more than this fraction",
    )
    p_run.add_argument("--report", type=Path, default=None, help="Write the pipeline result JSON here")

    p_val = sub.add_parser("validate-data", help="Run only the data gate and print its report.")
    _add_config_args(p_val)
    p_val.add_argument("--dataset", required=True)

    p_show = sub.add_parser("show", help="Print metadata of a published artifact.")
    _add_config_args(p_show)
    p_show.add_argument("--namespace", required=True)
    p_show.add_argument("identity", nargs="?", default="latest", help="Commit id or 'latest'")

    return p


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    setup_logging(args.verbose)

    try:
        if args.cmd == "run":
            return cmd_run(args)
        if args.cmd == "validate-data":
            return cmd_validate_data(args)
        if args.cmd == "show":
            return cmd_show(args)
    except ValueError as exc:
        parser.error(str(exc))

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
