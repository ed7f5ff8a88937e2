"""Windowed message statistics.

compute_stats() is a pure function of (messages, start, end): it never reads
the clock and returns a fresh frozen StatsSnapshot on every call.

// [LAW:one-source-of-truth] Latency and thread-size bucket edges live in
// LATENCY_BUCKETS / THREAD_SIZE_BUCKETS; renderers read labels from here.
"""

import statistics
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fmail_lens.core.message import Message
from fmail_lens.core.threads import build_threads
from fmail_lens.core.windows import (
    HOUR,
    bucket_count,
    bucket_index,
    bucket_start_time,
    choose_bucket_interval,
    filter_by_time,
    truncate,
    validate_window,
)

DEFAULT_TOP_N = 10


@dataclass(frozen=True)
class LatencyBucketSpec:
    label: str
    lower: timedelta
    upper: timedelta | None  # None = unbounded


LATENCY_BUCKETS: tuple[LatencyBucketSpec, ...] = (
    LatencyBucketSpec("<30s", timedelta(0), timedelta(seconds=30)),
    LatencyBucketSpec("30s-5m", timedelta(seconds=30), timedelta(minutes=5)),
    LatencyBucketSpec("5m-30m", timedelta(minutes=5), timedelta(minutes=30)),
    LatencyBucketSpec(">=30m", timedelta(minutes=30), None),
)

# (label, min size, max size inclusive or None)
THREAD_SIZE_BUCKETS: tuple[tuple[str, int, int | None], ...] = (
    ("standalone", 1, 1),
    ("small", 2, 3),
    ("medium", 4, 10),
    ("large", 11, None),
)


@dataclass(frozen=True)
class LatencyBucket:
    label: str
    count: int
    pct: float


@dataclass(frozen=True)
class VolumeBar:
    label: str
    count: int


@dataclass(frozen=True)
class ThreadDistribution:
    standalone: int = 0  # 1 message
    small: int = 0  # 2-3
    medium: int = 0  # 4-10
    large: int = 0  # more than 10

    @property
    def total(self) -> int:
        return self.standalone + self.small + self.medium + self.large


@dataclass(frozen=True)
class StatsSnapshot:
    """Aggregates over one [window_start, window_end) window."""

    window_start: datetime
    window_end: datetime
    total_messages: int = 0
    active_agents: int = 0
    active_topics: int = 0

    reply_samples: int = 0
    avg_reply: timedelta | None = None
    median_reply: timedelta | None = None
    response_latency: tuple[LatencyBucket, ...] = ()

    most_replied_id: str = ""
    most_replied_count: int = 0
    longest_thread_messages: int = 0
    thread_count: int = 0
    thread_avg_messages: float = 0.0
    thread_dist: ThreadDistribution = field(default_factory=ThreadDistribution)

    top_agents: tuple[VolumeBar, ...] = ()
    topic_volumes: tuple[VolumeBar, ...] = ()

    over_time_counts: tuple[int, ...] = ()
    over_time_start: datetime | None = None
    over_time_interval: timedelta | None = None

    busiest_hour_start: datetime | None = None
    busiest_hour_count: int = 0
    quietest_hour_start: datetime | None = None
    quietest_hour_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.total_messages == 0


# ─── Building blocks ──────────────────────────────────────────────────────────


def top_n(counts: Mapping[str, int], limit: int = DEFAULT_TOP_N) -> tuple[VolumeBar, ...]:
    """Highest counts first, ties broken by label."""
    if limit <= 0:
        return ()
    bars = [VolumeBar(label=k.strip(), count=v) for k, v in counts.items() if k.strip() and v > 0]
    bars.sort(key=lambda b: (-b.count, b.label))
    return tuple(bars[:limit])


def reply_deltas(messages: Sequence[Message]) -> list[timedelta]:
    """Child-minus-parent latency for replies whose parent is in `messages`.

    Negative deltas (clock skew, reordered delivery) are discarded.
    """
    by_id = {msg.id.strip(): msg for msg in messages if msg.id.strip()}
    deltas: list[timedelta] = []
    for msg in messages:
        parent = by_id.get(msg.reply_to.strip()) if msg.reply_to.strip() else None
        if parent is None or parent is msg:
            continue
        delta = msg.time - parent.time
        if delta < timedelta(0):
            continue
        deltas.append(delta)
    return deltas


def latency_buckets(deltas: Sequence[timedelta]) -> tuple[LatencyBucket, ...]:
    counts = [0] * len(LATENCY_BUCKETS)
    for delta in deltas:
        for i, spec in enumerate(LATENCY_BUCKETS):
            if spec.upper is None or delta < spec.upper:
                counts[i] += 1
                break
    total = len(deltas)
    return tuple(
        LatencyBucket(
            label=spec.label,
            count=count,
            pct=(100.0 * count / total) if total else 0.0,
        )
        for spec, count in zip(LATENCY_BUCKETS, counts)
    )


def mean_duration(deltas: Sequence[timedelta]) -> timedelta:
    return sum(deltas, timedelta(0)) / len(deltas)


def median_duration(deltas: Sequence[timedelta]) -> timedelta:
    ordered = sorted(deltas)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def most_replied(messages: Iterable[Message]) -> tuple[str, int]:
    """Parent ID with the most replies (ties by smallest ID)."""
    counts = Counter(msg.reply_to.strip() for msg in messages if msg.reply_to.strip())
    if not counts:
        return "", 0
    best_id, best = min(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return best_id, best


def thread_distribution(sizes: Iterable[int]) -> ThreadDistribution:
    tally = {label: 0 for label, _, _ in THREAD_SIZE_BUCKETS}
    for size in sizes:
        for label, lo, hi in THREAD_SIZE_BUCKETS:
            if size >= lo and (hi is None or size <= hi):
                tally[label] += 1
                break
    return ThreadDistribution(**tally)


def bucket_counts(
    messages: Iterable[Message], start: datetime, end: datetime, interval: timedelta
) -> tuple[int, ...]:
    n = bucket_count(start, end, interval)
    counts = [0] * n
    for msg in messages:
        if start <= msg.time < end:
            counts[bucket_index(msg.time, start, interval)] += 1
    return tuple(counts)


def busiest_quietest_hour(
    messages: Iterable[Message], start: datetime, end: datetime
) -> tuple[datetime | None, int, datetime | None, int]:
    """Hour slots covering [start, end); ties resolve to the earliest hour."""
    if end <= start:
        return None, 0, None, 0
    per_hour = Counter(truncate(msg.time, HOUR) for msg in messages if start <= msg.time < end)
    first = truncate(start, HOUR)
    busy_start = quiet_start = None
    busy = quiet = -1
    cursor = first
    while cursor < end:
        count = per_hour.get(cursor, 0)
        if count > busy:
            busy, busy_start = count, cursor
        if quiet < 0 or count < quiet:
            quiet, quiet_start = count, cursor
        cursor += HOUR
    return busy_start, max(busy, 0), quiet_start, max(quiet, 0)


# ─── Public API ───────────────────────────────────────────────────────────────


def compute_stats(
    messages: Iterable[Message],
    start: datetime,
    end: datetime,
    *,
    top: int = DEFAULT_TOP_N,
) -> StatsSnapshot:
    """Statistics for messages with start <= time < end.

    Raises InvalidWindow when end precedes start. An empty window is not an
    error: counts are zero and latency/thread fields stay empty.
    """
    start, end = validate_window(start, end)
    in_window = filter_by_time(messages, start, end)
    if not in_window:
        return StatsSnapshot(window_start=start, window_end=end)

    by_agent: Counter[str] = Counter()
    by_topic: Counter[str] = Counter()
    for msg in in_window:
        if msg.sender.strip():
            by_agent[msg.sender.strip()] += 1
        if msg.to.strip():
            by_topic[msg.to.strip()] += 1

    deltas = reply_deltas(in_window)
    replied_id, replied_count = most_replied(in_window)

    sizes = [len(thread) for thread in build_threads(in_window)]

    interval = choose_bucket_interval(start, end)
    over_time_start = bucket_start_time(start, interval)

    busy_start, busy, quiet_start, quiet = busiest_quietest_hour(in_window, start, end)

    return StatsSnapshot(
        window_start=start,
        window_end=end,
        total_messages=len(in_window),
        active_agents=len(by_agent),
        active_topics=len(by_topic),
        reply_samples=len(deltas),
        avg_reply=mean_duration(deltas) if deltas else None,
        median_reply=median_duration(deltas) if deltas else None,
        response_latency=latency_buckets(deltas) if deltas else (),
        most_replied_id=replied_id,
        most_replied_count=replied_count,
        longest_thread_messages=max(sizes, default=0),
        thread_count=len(sizes),
        thread_avg_messages=statistics.fmean(sizes) if sizes else 0.0,
        thread_dist=thread_distribution(sizes),
        top_agents=top_n(by_agent, top),
        topic_volumes=top_n(by_topic, top),
        over_time_counts=bucket_counts(in_window, over_time_start, end, interval),
        over_time_start=over_time_start,
        over_time_interval=interval,
        busiest_hour_start=busy_start,
        busiest_hour_count=busy,
        quietest_hour_start=quiet_start,
        quietest_hour_count=quiet,
    )
