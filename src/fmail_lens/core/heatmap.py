"""Activity heatmap: rows per agent or topic, columns per time bucket.

Cell intensity uses three thresholds derived from the non-zero cell
distribution of the matrix itself, so a window with a handful of messages and
one with thousands both spread across all levels.
"""

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from fmail_lens.core.message import Message, is_dm_target
from fmail_lens.core.stats import top_n
from fmail_lens.core.windows import (
    bucket_count,
    bucket_index,
    filter_by_time,
    validate_bucket,
    validate_window,
)

UNKNOWN_ROW = "(unknown)"

# Quantiles of the non-zero cell counts used as the level 1/2/3 upper bounds.
THRESHOLD_QUANTILES = (0.5, 0.75, 0.9)


class HeatmapMode(str, Enum):
    AGENTS = "agents"
    TOPICS = "topics"


class HeatmapSort(str, Enum):
    TOTAL = "total"
    NAME = "name"
    PEAK = "peak"
    RECENCY = "recency"

    def next(self) -> "HeatmapSort":
        members = list(HeatmapSort)
        return members[(members.index(self) + 1) % len(members)]


@dataclass(frozen=True)
class HeatmapRow:
    label: str
    counts: tuple[int, ...]

    @property
    def total(self) -> int:
        return sum(self.counts)

    @property
    def peak(self) -> int:
        return max(self.counts, default=0)

    @property
    def last_active_col(self) -> int:
        """Index of the newest non-empty column, -1 when the row is empty."""
        for i in range(len(self.counts) - 1, -1, -1):
            if self.counts[i]:
                return i
        return -1


@dataclass(frozen=True)
class HeatmapMatrix:
    start: datetime
    end: datetime
    bucket: timedelta
    mode: HeatmapMode
    rows: tuple[HeatmapRow, ...]
    cols: int
    thresholds: tuple[int, int, int]
    sort: HeatmapSort = HeatmapSort.TOTAL

    @property
    def total(self) -> int:
        return sum(row.total for row in self.rows)

    @property
    def max_cell(self) -> int:
        return max((row.peak for row in self.rows), default=0)

    def column_totals(self) -> tuple[int, ...]:
        totals = [0] * self.cols
        for row in self.rows:
            for i, count in enumerate(row.counts):
                totals[i] += count
        return tuple(totals)

    def column_range(self, col: int) -> tuple[datetime, datetime]:
        """[start, end) of one column; the last column is cut at matrix.end."""
        lo = self.start + self.bucket * col
        return lo, min(lo + self.bucket, self.end)

    def row(self, label: str) -> HeatmapRow | None:
        for row in self.rows:
            if row.label == label:
                return row
        return None

    def level(self, count: int) -> int:
        return cell_level(count, self.thresholds)

    def sorted_rows(self, sort: HeatmapSort) -> "HeatmapMatrix":
        """A copy of this matrix with rows in `sort` order."""
        return replace(self, rows=sort_rows(self.rows, sort), sort=HeatmapSort(sort))

    def peak_bucket(self) -> tuple[datetime | None, int]:
        """Start and count of the busiest column (earliest on ties)."""
        totals = self.column_totals()
        if not totals or max(totals) == 0:
            return None, 0
        best = max(totals)
        col = totals.index(best)
        return self.column_range(col)[0], best


@dataclass(frozen=True)
class HeatmapSummary:
    total: int
    active_agents: int
    most_active_agent: str
    most_active_count: int
    busiest_topic: str
    busiest_topic_count: int
    avg_first_response: timedelta | None


# ─── Thresholds / ordering ────────────────────────────────────────────────────


def _nearest_rank(ordered: Sequence[int], q: float) -> int:
    rank = max(1, math.ceil(q * len(ordered)))
    return ordered[min(rank, len(ordered)) - 1]


def scaled_thresholds(counts: Iterable[int]) -> tuple[int, int, int]:
    """Non-decreasing upper bounds for intensity levels 1..3.

    Counts above the third bound render at level 4. With no activity the
    bounds are (1, 1, 1).
    """
    ordered = sorted(c for c in counts if c > 0)
    if not ordered:
        return (1, 1, 1)
    lo, mid, hi = (_nearest_rank(ordered, q) for q in THRESHOLD_QUANTILES)
    lo = max(1, lo)
    mid = max(lo, mid)
    hi = max(mid, hi)
    return (lo, mid, hi)


def cell_level(count: int, thresholds: tuple[int, int, int]) -> int:
    """0 for empty cells, 1..3 within each threshold, 4 above the last."""
    if count <= 0:
        return 0
    for level, bound in enumerate(thresholds, start=1):
        if count <= bound:
            return level
    return 4


def sort_rows(rows: Iterable[HeatmapRow], sort: HeatmapSort) -> tuple[HeatmapRow, ...]:
    rows = list(rows)
    sort = HeatmapSort(sort)
    if sort is HeatmapSort.NAME:
        rows.sort(key=lambda r: r.label)
    elif sort is HeatmapSort.PEAK:
        rows.sort(key=lambda r: (-r.peak, -r.total, r.label))
    elif sort is HeatmapSort.RECENCY:
        rows.sort(key=lambda r: (-r.last_active_col, -r.total, r.label))
    else:
        rows.sort(key=lambda r: (-r.total, r.label))
    return tuple(rows)


def row_label(msg: Message, mode: HeatmapMode) -> str:
    value = msg.to if mode is HeatmapMode.TOPICS else msg.sender
    return value.strip() or UNKNOWN_ROW


# ─── Public API ───────────────────────────────────────────────────────────────


def build_heatmap_matrix(
    messages: Iterable[Message],
    start: datetime,
    end: datetime,
    bucket: timedelta,
    mode: HeatmapMode = HeatmapMode.AGENTS,
    sort: HeatmapSort = HeatmapSort.TOTAL,
) -> HeatmapMatrix:
    """Count messages per (row, bucket) over [start, end).

    Raises InvalidWindow for a non-positive bucket or end before start. DMs
    appear as "@agent" rows in topic mode so row totals always add up to the
    in-window message count.
    """
    start, end = validate_window(start, end)
    bucket = validate_bucket(bucket)
    mode = HeatmapMode(mode)
    cols = bucket_count(start, end, bucket)

    grid: dict[str, list[int]] = {}
    for msg in filter_by_time(messages, start, end):
        cells = grid.setdefault(row_label(msg, mode), [0] * cols)
        cells[bucket_index(msg.time, start, bucket)] += 1

    rows = [HeatmapRow(label=label, counts=tuple(cells)) for label, cells in grid.items()]
    thresholds = scaled_thresholds(c for row in rows for c in row.counts)
    return HeatmapMatrix(
        start=start,
        end=end,
        bucket=bucket,
        mode=mode,
        rows=sort_rows(rows, sort),
        cols=cols,
        thresholds=thresholds,
        sort=HeatmapSort(sort),
    )


def cell_breakdown(
    messages: Iterable[Message],
    matrix: HeatmapMatrix,
    label: str,
    col: int,
    *,
    limit: int | None = None,
) -> tuple[list[tuple[str, int]], int]:
    """What one cell is made of.

    Agent rows break down into the topics the agent posted to (DMs counted
    separately); topic rows break down into senders. Returns
    ([(name, count), ...] busiest first, dm_count).
    """
    if not 0 <= col < matrix.cols:
        return [], 0
    lo, hi = matrix.column_range(col)
    if limit is None:
        limit = 2 if matrix.mode is HeatmapMode.AGENTS else 3
    counts: Counter[str] = Counter()
    dm_count = 0
    for msg in filter_by_time(messages, lo, hi):
        if row_label(msg, matrix.mode) != label:
            continue
        if matrix.mode is HeatmapMode.TOPICS:
            counts[msg.sender.strip()] += 1
        elif is_dm_target(msg.to):
            dm_count += 1
        else:
            counts[msg.to.strip()] += 1
    return [(bar.label, bar.count) for bar in top_n(counts, limit)], dm_count


def summarize_window(messages: Iterable[Message], start: datetime, end: datetime) -> HeatmapSummary:
    """Headline numbers shown under the heatmap grid."""
    start, end = validate_window(start, end)
    in_window = filter_by_time(messages, start, end)
    agents = Counter(m.sender.strip() for m in in_window if m.sender.strip())
    topics = Counter(m.to.strip() for m in in_window if m.to.strip())
    top_agent = top_n(agents, 1)
    top_topic = top_n(topics, 1)

    by_id = {m.id.strip(): m for m in in_window}
    first_reply: dict[str, timedelta] = {}
    for msg in in_window:
        parent = by_id.get(msg.reply_to.strip()) if msg.reply_to.strip() else None
        if parent is None or parent is msg:
            continue
        delta = msg.time - parent.time
        if delta < timedelta(0):
            continue
        key = parent.id.strip()
        if key not in first_reply or delta < first_reply[key]:
            first_reply[key] = delta
    avg_first = (
        sum(first_reply.values(), timedelta(0)) / len(first_reply) if first_reply else None
    )
    return HeatmapSummary(
        total=len(in_window),
        active_agents=len(agents),
        most_active_agent=top_agent[0].label if top_agent else "",
        most_active_count=top_agent[0].count if top_agent else 0,
        busiest_topic=top_topic[0].label if top_topic else "",
        busiest_topic_count=top_topic[0].count if top_topic else 0,
        avg_first_response=avg_first,
    )
