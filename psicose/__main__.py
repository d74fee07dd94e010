from __future__ import annotations

import logging
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the parent of this package on ``sys.path`` for direct script runs."""
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # python -m psicose
    from .app import APP_VERSION, run  # type: ignore[attr-defined]
    from .config import Settings
    from .logging_config import setup_logging
except ImportError:
    # python psicose/__main__.py
    _ensure_repo_root_on_path()
    from psicose.app import APP_VERSION, run  # type: ignore[attr-defined]
    from psicose.config import Settings
    from psicose.logging_config import setup_logging


def main() -> int:
    """Entry point for running the game shell from the command line."""
    settings = Settings.from_env()
    setup_logging(use_json=settings.log_json, log_level=settings.log_level)
    logging.getLogger(__name__).info(
        "juliette-psicose %s starting (outcomes=%s, db=%s)",
        APP_VERSION,
        settings.outcome_log_path,
        settings.db_path,
    )
    return run(settings=settings)


if __name__ == "__main__":
    raise SystemExit(main())
