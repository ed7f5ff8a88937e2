"""Logging bootstrap for fmail-lens.

Every module logs through `logging.getLogger(__name__)`; this module is the
only place that attaches handlers, to the `fmail_lens` package logger.

// [LAW:single-enforcer] Logger handler wiring is enforced in this module only.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "fmail_lens"

ENV_LEVEL = "FMAIL_LENS_LOG_LEVEL"
ENV_FILE = "FMAIL_LENS_LOG_FILE"
ENV_DIR = "FMAIL_LENS_LOG_DIR"
DEFAULT_LOG_DIR = "~/.local/share/fmail-lens/logs"

ROTATE_BYTES = 20 * 1024 * 1024
ROTATE_BACKUPS = 5

STREAM_FORMAT = "[%(name)s] %(levelname)s %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"


@dataclass(frozen=True)
class LoggingRuntime:
    level_name: str
    level: int
    file_path: str
    stream: bool


_runtime: LoggingRuntime | None = None


def resolve_level(raw: str | None) -> int:
    """'debug' / 'WARNING' / '' -> logging level; unknown names mean INFO."""
    level = logging.getLevelName(str(raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def log_file_for(run_name: str) -> Path:
    """Explicit $FMAIL_LENS_LOG_FILE, else a per-run file under the log dir."""
    explicit = os.environ.get(ENV_FILE)
    if explicit:
        return Path(explicit)
    stem = re.sub(r"[^A-Za-z0-9_-]+", "-", run_name).strip("-_") or "run"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_dir = Path(os.path.expanduser(os.environ.get(ENV_DIR, DEFAULT_LOG_DIR)))
    return log_dir / f"{stem}-{stamp}-{os.getpid()}.log"


def _handlers(level: int, path: Path, stream: bool) -> list[logging.Handler]:
    rotating = RotatingFileHandler(
        path, maxBytes=ROTATE_BYTES, backupCount=ROTATE_BACKUPS, encoding="utf-8"
    )
    rotating.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    handlers: list[logging.Handler] = [rotating]
    if stream:
        stderr = logging.StreamHandler()
        stderr.setFormatter(logging.Formatter(STREAM_FORMAT))
        handlers.insert(0, stderr)
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure(
    run_name: str = "fmail-lens", *, stream: bool = True, level: str | None = None
) -> LoggingRuntime:
    """Attach stderr and rotating-file handlers to the package logger.

    `level` (from the command line) wins over $FMAIL_LENS_LOG_LEVEL. Pass
    stream=False while a full-screen textual app owns the terminal. Only the
    first call configures anything; later calls return the same runtime.
    """
    global _runtime
    if _runtime is not None:
        return _runtime

    resolved = resolve_level(level or os.environ.get(ENV_LEVEL))
    path = log_file_for(run_name)
    path.parent.mkdir(parents=True, exist_ok=True)

    package = logging.getLogger(PACKAGE_LOGGER)
    package.handlers.clear()
    package.setLevel(resolved)
    package.propagate = False
    for handler in _handlers(resolved, path, stream):
        package.addHandler(handler)

    # textual and asyncio log through the root logger; only warnings get out.
    root = logging.getLogger()
    if root.level > logging.WARNING:
        root.setLevel(logging.WARNING)
    logging.captureWarnings(True)

    _runtime = LoggingRuntime(
        level_name=logging.getLevelName(resolved),
        level=resolved,
        file_path=str(path),
        stream=stream,
    )
    return _runtime


def get_runtime() -> LoggingRuntime | None:
    return _runtime


def reset() -> None:
    """Close handlers and forget the runtime so configure() runs again."""
    global _runtime
    package = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()
    package.propagate = True
    _runtime = None
