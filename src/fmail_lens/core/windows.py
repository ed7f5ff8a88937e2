"""Time-window arithmetic shared by the stats and heatmap aggregators.

All bounds are UTC and half-open: a message at `end` is outside [start, end).
"""

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from fmail_lens.core.message import Message, ensure_utc
from fmail_lens.errors import InvalidWindow

# "All time" windows end one unit past the newest message so it stays inside
# the exclusive end bound.
ALL_TIME_PAD = timedelta(seconds=1)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)

DEFAULT_MAX_BUCKETS = 48

# [LAW:one-source-of-truth] Candidate sparkline intervals, smallest first.
BUCKET_CANDIDATES: tuple[timedelta, ...] = (
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=10),
    timedelta(minutes=15),
    timedelta(minutes=30),
    timedelta(hours=1),
    timedelta(hours=2),
    timedelta(hours=4),
    timedelta(hours=6),
    timedelta(hours=12),
    timedelta(hours=24),
    timedelta(hours=48),
    timedelta(days=7),
)


def validate_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Coerce bounds to UTC; reject end-before-start."""
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end < start:
        raise InvalidWindow(f"window end {end.isoformat()} precedes start {start.isoformat()}")
    return start, end


def validate_bucket(bucket: timedelta) -> timedelta:
    if bucket <= timedelta(0):
        raise InvalidWindow(f"bucket size must be positive, got {bucket}")
    return bucket


def in_window(msg: Message, start: datetime, end: datetime) -> bool:
    return start <= msg.time < end


def filter_by_time(messages: Iterable[Message], start: datetime, end: datetime) -> list[Message]:
    """Messages with start <= time < end, input order preserved."""
    return [msg for msg in messages if start <= msg.time < end]


def min_max_time(messages: Iterable[Message]) -> tuple[datetime | None, datetime | None]:
    lo: datetime | None = None
    hi: datetime | None = None
    for msg in messages:
        if lo is None or msg.time < lo:
            lo = msg.time
        if hi is None or msg.time > hi:
            hi = msg.time
    return lo, hi


def resolve_window(
    messages: Sequence[Message],
    start: datetime | None,
    end: datetime | None,
    *,
    now: datetime,
) -> tuple[datetime, datetime]:
    """Turn optional bounds into a concrete [start, end).

    A missing bound is derived from the observed min/max timestamps ("all
    time"); the derived end is padded by ALL_TIME_PAD. With no messages and no
    bounds the window collapses to [now, now).
    """
    now = ensure_utc(now)
    lo, hi = min_max_time(messages)
    if start is None:
        start = lo if lo is not None else (ensure_utc(end) if end is not None else now)
    if end is None:
        end = hi + ALL_TIME_PAD if hi is not None else now
        if end < ensure_utc(start):
            end = ensure_utc(start)
    return validate_window(start, end)


def choose_bucket_interval(
    start: datetime, end: datetime, max_buckets: int = DEFAULT_MAX_BUCKETS
) -> timedelta:
    """Smallest candidate interval that keeps [start, end) within max_buckets."""
    if max_buckets <= 0:
        max_buckets = DEFAULT_MAX_BUCKETS
    if end <= start:
        return HOUR
    target = (end - start) / max_buckets
    for candidate in BUCKET_CANDIDATES:
        if candidate >= target:
            return candidate
    return BUCKET_CANDIDATES[-1]


def truncate(value: datetime, interval: timedelta) -> datetime:
    """Floor value to a multiple of interval since the UTC epoch."""
    value = ensure_utc(value)
    epoch = datetime(1970, 1, 1, tzinfo=value.tzinfo)
    return value - ((value - epoch) % interval)


def bucket_start_time(start: datetime, interval: timedelta) -> datetime:
    """Anchor a sparkline so bucket edges fall on stable UTC boundaries."""
    start = ensure_utc(start)
    if interval <= timedelta(0):
        return start
    if interval >= DAY:
        return start.replace(hour=0, minute=0, second=0, microsecond=0)
    if interval >= HOUR:
        return truncate(start, HOUR)
    return truncate(start, interval)


def bucket_count(start: datetime, end: datetime, bucket: timedelta) -> int:
    """Number of columns needed to cover [start, end) with bucket-sized cells."""
    if end <= start:
        return 0
    span = end - start
    count = span // bucket
    if span % bucket:
        count += 1
    return count


def bucket_index(ts: datetime, start: datetime, bucket: timedelta) -> int:
    return (ts - start) // bucket
