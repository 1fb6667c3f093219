"""Process-wide logging setup for the engine service and CLI."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

_CONFIGURED = False

DEFAULT_LOG_PATH = "work/logs/story_branch.log"


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _level_env(name: str, default: int) -> int:
    level_name = os.environ.get(name, "").strip().upper()
    if not level_name:
        return default
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else default


def configure_runtime_logging(*, log_path: Path | None = None) -> bool:
    """Install console and rotating file handlers once; return False when already done."""
    global _CONFIGURED
    if _CONFIGURED:
        return False

    level = _level_env("STORY_BRANCH_LOG_LEVEL", logging.INFO)
    target = log_path or Path(
        os.environ.get("STORY_BRANCH_LOG_PATH", DEFAULT_LOG_PATH).strip() or DEFAULT_LOG_PATH
    )
    max_bytes = _int_env(
        "STORY_BRANCH_LOG_MAX_BYTES",
        5 * 1024 * 1024,
        minimum=64 * 1024,
        maximum=100 * 1024 * 1024,
    )
    backup_count = _int_env("STORY_BRANCH_LOG_BACKUP_COUNT", 10, minimum=1, maximum=120)

    target.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    rotating = RotatingFileHandler(
        filename=target,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    rotating.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(console)
    root.addHandler(rotating)

    logging.getLogger("uvicorn.access").setLevel(
        _level_env("STORY_BRANCH_ACCESS_LOG_LEVEL", logging.WARNING)
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _CONFIGURED = True
    logging.getLogger(__name__).info(
        "logging.configured level=%s path=%s", logging.getLevelName(level), target
    )
    return True


def reset_runtime_logging() -> None:
    """Forget the configured flag so tests can reconfigure handlers."""
    global _CONFIGURED
    _CONFIGURED = False
