from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .ledger import DEFAULT_KARMA_MULTIPLIER
from .persistence import OutcomeLog, default_db_path

LOG_LEVEL_ENV = "PSICOSE_LOG_LEVEL"
LOG_JSON_ENV = "PSICOSE_LOG_JSON"
KARMA_MULTIPLIER_ENV = "PSICOSE_KARMA_MULTIPLIER"
SEED_ENV = "PSICOSE_SEED"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw == "":
        return default
    return raw in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name, "").strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Settings:
    outcome_log_path: Path
    db_path: Path
    log_level: str = "WARNING"
    log_json: bool = False
    karma_multiplier: float = DEFAULT_KARMA_MULTIPLIER
    seed: int | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        multiplier = _env_float(KARMA_MULTIPLIER_ENV, DEFAULT_KARMA_MULTIPLIER)
        if multiplier < 0:
            multiplier = DEFAULT_KARMA_MULTIPLIER
        return cls(
            outcome_log_path=OutcomeLog.default_path(),
            db_path=default_db_path(),
            log_level=os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper() or "WARNING",
            log_json=_env_flag(LOG_JSON_ENV, False),
            karma_multiplier=multiplier,
            seed=_env_int(SEED_ENV),
        )
