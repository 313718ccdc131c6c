"""
Shared configuration.

Settings are passed explicitly into every stage; nothing here is process-wide
state. Values come from defaults, ``CARPRICE_*`` environment variables, or a
YAML file plus ``key=value`` overrides.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

ENV_PREFIX = "CARPRICE_"


@dataclass(frozen=True)
class Settings:
    """Project-wide settings."""

    # Storage locations
    data_root: Path | None = None
    artifact_root: Path = Path("artifacts")
    work_root: Path = Path(".carprice_work")
    keep_workdir: bool = False

    # Resolver
    resolve_wait_s: float = 0.0
    resolve_poll_interval_s: float = 0.5

    # Data gate
    min_year: int = 1950
    min_row_count: int = 10_000

    # Model gate
    sample_rows: int = 5
    feature_columns: tuple[str, ...] = ("year", "mileage")
    target_column: str = "price"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {
            f.name: env[ENV_PREFIX + f.name.upper()]
            for f in fields(cls)
            if ENV_PREFIX + f.name.upper() in env
        }
        return cls().with_values(values)

    def with_values(self, values: Mapping[str, Any]) -> "Settings":
        """Return a copy with ``values`` coerced to each field's type."""

        known = {f.name for f in fields(self)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        coerced = {name: _coerce(getattr(self, name), name, raw) for name, raw in values.items()}
        return replace(self, **coerced)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key, value in out.items():
            if isinstance(value, Path):
                out[key] = str(value)
            elif isinstance(value, tuple):
                out[key] = list(value)
        return out


def _coerce(current: Any, name: str, raw: Any) -> Any:
    if name == "data_root":
        return None if raw in (None, "") else Path(str(raw))
    if isinstance(current, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in {"1", "true", "yes", "on"}
        return bool(raw)
    if isinstance(current, Path):
        return Path(str(raw))
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, tuple):
        if isinstance(raw, str):
            return tuple(part.strip() for part in raw.split(",") if part.strip())
        return tuple(str(item) for item in raw)
    return str(raw)


def _parse_override(override: str) -> tuple[str, Any]:
    if "=" not in override:
        raise ValueError(f"Override '{override}' must be in key=value format")
    key, raw_value = override.split("=", 1)
    # JSON lets overrides carry numbers, bools and lists
    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value
    return key.strip(), value


def load_settings(path: str | Path | None = None, overrides: Iterable[str] | None = None) -> Settings:
    """Build settings from the environment, then a YAML file, then overrides."""

    settings = Settings.from_env()
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"Config file must contain a mapping: {path}")
        settings = settings.with_values(payload)

    if overrides:
        settings = settings.with_values(dict(_parse_override(o) for o in overrides))
    return settings


def setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


__all__ = ["ENV_PREFIX", "Settings", "load_settings", "setup_logging"]
