from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

from .runtime_data import get_runtime_paths

LOGGER_NAME = "pocket_chat"

# LogRecord attributes that are not structured extras
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _rotation_settings() -> tuple[int, int, int]:
    max_bytes = _env_int("POCKET_CHAT_LOG_MAX_BYTES", 5 * 1024 * 1024)
    max_age_hours = _env_int("POCKET_CHAT_LOG_MAX_AGE_HOURS", 24)
    max_files = _env_int("POCKET_CHAT_LOG_MAX_FILES", 5)
    return max_bytes, max_age_hours, max_files


def rotate_log_if_needed(path: Path) -> None:
    max_bytes, max_age_hours, max_files = _rotation_settings()
    if max_bytes <= 0 and max_age_hours <= 0:
        return
    if not path.is_file():
        return

    now = datetime.now(timezone.utc)
    try:
        stat = path.stat()
    except FileNotFoundError:
        return

    size_exceeded = max_bytes > 0 and stat.st_size >= max_bytes
    if max_age_hours > 0:
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        age_exceeded = (now - mtime).total_seconds() >= max_age_hours * 3600
    else:
        age_exceeded = False

    if not size_exceeded and not age_exceeded:
        return

    timestamp = now.strftime("%Y%m%d-%H%M%S")
    rotated_path = path.with_name(f"{path.stem}.{timestamp}{path.suffix}")
    shutil.move(str(path), str(rotated_path))

    if max_files <= 0:
        return

    rotated_files = sorted(
        path.parent.glob(f"{path.stem}.*{path.suffix}"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    for old in rotated_files[max_files:]:
        try:
            old.unlink()
        except FileNotFoundError:
            continue


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: event name plus any ``extra=`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_path: Union[Path, None] = None,
    console: bool = False,
) -> logging.Logger:
    """Attach a rotating JSON-lines file handler (and optionally stderr) to the package logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    path = log_path or get_runtime_paths().log_path
    path.parent.mkdir(parents=True, exist_ok=True)
    rotate_log_if_needed(path)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(StructuredFormatter())
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        logger.addHandler(stream_handler)
    return logger
