"""Slow-path diagnostics for coordinator recomputes.

Coordinators recompute aggregators on the interactive thread, so a slow
recompute shows up as a frozen UI. Wrap the work in monitor_slow_path() and a
warning (with the caller's stack) is logged once a stage crosses its budget.

// [LAW:one-source-of-truth] Stage budgets live in SLOW_STAGE_THRESHOLDS_MS.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from contextlib import contextmanager
from typing import Any, Union

Context = Union[Mapping[str, Any], Callable[[], Mapping[str, Any]], None]

SLOW_STAGE_THRESHOLDS_MS: dict[str, float] = {
    "coordinator.recompute": 100.0,
    "coordinator.merge": 20.0,
}
DEFAULT_THRESHOLD_MS = 250.0

_enabled = True


def is_enabled() -> bool:
    return _enabled


def set_enabled(val: bool) -> None:
    global _enabled
    _enabled = bool(val)


def threshold_for(stage: str) -> float:
    return SLOW_STAGE_THRESHOLDS_MS.get(stage, DEFAULT_THRESHOLD_MS)


def describe(context: Context) -> str:
    """Render context as sorted key=value pairs; callables are only called here."""
    if context is None:
        return ""
    values = context() if callable(context) else context
    if not isinstance(values, Mapping):
        values = {"context_value": values}
    return " ".join(f"{key}={values[key]!r}" for key in sorted(values))


@contextmanager
def monitor_slow_path(
    stage: str,
    *,
    logger: logging.Logger,
    context: Context = None,
    threshold_ms: float | None = None,
):
    """Time the block; warn on `logger` if it took at least the stage budget.

    Pass context as a callable when it is costly to build: it is evaluated
    only for slow blocks.
    """
    if not _enabled:
        yield
        return
    budget = threshold_for(stage) if threshold_ms is None else float(threshold_ms)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if elapsed_ms >= budget:
            logger.warning(
                "perf threshold exceeded stage=%s elapsed_ms=%.2f threshold_ms=%.2f context=%s",
                stage,
                elapsed_ms,
                budget,
                describe(context),
                stack_info=True,
                stacklevel=3,
            )
