"""Per-view window knobs: zoom (span) and pan anchor (window end).

`window_end is None` means the window is anchored to "now" and slides forward
on every tick (follow-tail). Panning back un-anchors it; panning forward past
now, zooming, or jump_to_now() re-anchors it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from fmail_lens.core.message import ensure_utc

FOLLOW_TAIL_TOLERANCE = timedelta(seconds=2)
PAN_DIVISOR = 6


@dataclass(frozen=True)
class ZoomLevel:
    label: str
    span: timedelta | None  # None = all time
    bucket: timedelta | None = None  # heatmap cell size


@dataclass(frozen=True)
class ZoomPresets:
    levels: tuple[ZoomLevel, ...]
    default_index: int
    min_pan: timedelta

    def index_of(self, label: str) -> int:
        for i, level in enumerate(self.levels):
            if level.label == label:
                return i
        raise KeyError(label)


# [LAW:one-source-of-truth] Zoom presets per view family.
STATS_ZOOMS = ZoomPresets(
    levels=(
        ZoomLevel("1h", timedelta(hours=1)),
        ZoomLevel("4h", timedelta(hours=4)),
        ZoomLevel("24h", timedelta(hours=24)),
        ZoomLevel("7d", timedelta(days=7)),
        ZoomLevel("all", None),
    ),
    default_index=2,
    min_pan=timedelta(minutes=15),
)

HEATMAP_ZOOMS = ZoomPresets(
    levels=(
        ZoomLevel("4h", timedelta(hours=4), timedelta(minutes=10)),
        ZoomLevel("12h", timedelta(hours=12), timedelta(minutes=30)),
        ZoomLevel("24h", timedelta(hours=24), timedelta(hours=1)),
        ZoomLevel("7d", timedelta(days=7), timedelta(hours=4)),
        ZoomLevel("30d", timedelta(days=30), timedelta(days=1)),
    ),
    default_index=2,
    min_pan=timedelta(hours=1),
)


@dataclass(frozen=True)
class WindowBounds:
    """Raw bounds; None start/end are resolved against the data ("all")."""

    start: datetime | None
    end: datetime | None
    bucket: timedelta | None
    following: bool


class WindowState:
    def __init__(self, presets: ZoomPresets = STATS_ZOOMS, zoom: str | None = None):
        self.presets = presets
        self.zoom_index = presets.index_of(zoom) if zoom else presets.default_index
        self.window_end: datetime | None = None

    @property
    def zoom(self) -> ZoomLevel:
        return self.presets.levels[self.zoom_index]

    def following_tail(self, now: datetime) -> bool:
        if self.window_end is None:
            return True
        return abs(ensure_utc(now) - self.window_end) <= FOLLOW_TAIL_TOLERANCE

    def bounds(self, now: datetime) -> WindowBounds:
        now = ensure_utc(now)
        zoom = self.zoom
        following = self.following_tail(now)
        if zoom.span is None:
            return WindowBounds(start=None, end=None, bucket=zoom.bucket, following=True)
        end = now if self.window_end is None else self.window_end
        return WindowBounds(start=end - zoom.span, end=end, bucket=zoom.bucket, following=following)

    def pan_step(self) -> timedelta | None:
        span = self.zoom.span
        if span is None:
            return None
        return max(span / PAN_DIVISOR, self.presets.min_pan)

    def pan(self, direction: int, now: datetime) -> bool:
        """Move the window back (direction < 0) or forward (> 0) by one step.

        Returns False when nothing moved: all-time zoom, a zero direction, or
        a forward pan while already following the tail.
        """
        step = self.pan_step()
        if step is None or direction == 0:
            return False
        now = ensure_utc(now)
        if direction > 0 and self.following_tail(now):
            return False
        base = now if self.window_end is None else self.window_end
        target = base + step * (1 if direction > 0 else -1)
        if target >= now - FOLLOW_TAIL_TOLERANCE:
            self.window_end = None
        else:
            self.window_end = target
        return True

    def set_zoom(self, index: int) -> bool:
        index = max(0, min(index, len(self.presets.levels) - 1))
        if index == self.zoom_index:
            return False
        self.zoom_index = index
        self.window_end = None
        return True

    def zoom_in(self) -> bool:
        return self.set_zoom(self.zoom_index - 1)

    def zoom_out(self) -> bool:
        return self.set_zoom(self.zoom_index + 1)

    def jump_to_now(self) -> bool:
        if self.window_end is None:
            return False
        self.window_end = None
        return True
