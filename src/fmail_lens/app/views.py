"""View registry: which pure aggregator a coordinator re-runs for each view.

A view's compute function receives the in-window messages and the resolved
window, and returns a fresh immutable value. Windowed views (stats, heatmap,
graph) fetch by time range; the threads view is paged and works over every
loaded message.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fmail_lens.core.graph import DEFAULT_MAX_NODES, DEFAULT_MAX_TOPICS, build_graph_snapshot
from fmail_lens.core.heatmap import HeatmapMode, HeatmapSort, build_heatmap_matrix
from fmail_lens.core.message import Message
from fmail_lens.core.stats import compute_stats
from fmail_lens.core.threads import build_threads
from fmail_lens.core.windows import choose_bucket_interval
from fmail_lens.app.window_state import HEATMAP_ZOOMS, STATS_ZOOMS, ZoomLevel, ZoomPresets

ComputeFn = Callable[[list[Message], datetime, datetime, timedelta | None], Any]

ALL_TIME_ONLY = ZoomPresets(
    levels=(ZoomLevel("all", None),),
    default_index=0,
    min_pan=timedelta(minutes=15),
)


@dataclass(frozen=True)
class ViewSpec:
    name: str
    compute: ComputeFn
    presets: ZoomPresets
    windowed: bool = True
    paged: bool = False


def stats_view() -> ViewSpec:
    def _compute(messages, start, end, bucket):
        return compute_stats(messages, start, end)

    return ViewSpec(name="stats", compute=_compute, presets=STATS_ZOOMS)


def heatmap_view(
    mode: HeatmapMode = HeatmapMode.AGENTS,
    sort: HeatmapSort = HeatmapSort.TOTAL,
) -> ViewSpec:
    mode, sort = HeatmapMode(mode), HeatmapSort(sort)

    def _compute(messages, start, end, bucket):
        return build_heatmap_matrix(
            messages, start, end, bucket or choose_bucket_interval(start, end), mode, sort
        )

    return ViewSpec(name="heatmap", compute=_compute, presets=HEATMAP_ZOOMS)


def graph_view(max_nodes: int = DEFAULT_MAX_NODES, max_topics: int = DEFAULT_MAX_TOPICS) -> ViewSpec:
    def _compute(messages, start, end, bucket):
        return build_graph_snapshot(messages, max_nodes, max_topics=max_topics)

    return ViewSpec(name="graph", compute=_compute, presets=STATS_ZOOMS)


def threads_view() -> ViewSpec:
    def _compute(messages, start, end, bucket):
        return build_threads(messages)

    return ViewSpec(
        name="threads", compute=_compute, presets=ALL_TIME_ONLY, windowed=False, paged=True
    )


# [LAW:one-source-of-truth] View name -> factory.
VIEW_FACTORIES: dict[str, Callable[..., ViewSpec]] = {
    "stats": stats_view,
    "heatmap": heatmap_view,
    "graph": graph_view,
    "threads": threads_view,
}


def make_view(name: str, **options: Any) -> ViewSpec:
    try:
        factory = VIEW_FACTORIES[name]
    except KeyError:
        raise ValueError(f"unknown view {name!r}; expected one of {sorted(VIEW_FACTORIES)}") from None
    return factory(**options)
