"""Live Window Coordinator: keeps one view's input set correct and small.

Messages arrive from three paths (window reload, older-page load, push
subscription). All of them funnel into one MessageSet, so a message seen by
both poll and push is stored once. Every change re-runs the view's pure
aggregator over the current window; there is no incremental maintenance
inside the aggregators.

Threading: every public method runs on the interactive thread. Blocking
source calls go through the injected Scheduler; their results come back via
Scheduler.call_on_loop. The subscription pump runs on a worker and forwards
each message the same way.

// [LAW:single-enforcer] This class is the only writer of its MessageSet and snapshot.
// [LAW:dataflow-not-control-flow] Fetch failures become ViewSnapshot.error data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from fmail_lens.app.fetch import (
    FetchPurpose,
    FetchResult,
    FetchSlot,
    FetchTicket,
    InlineScheduler,
    Scheduler,
    submit,
)
from fmail_lens.app.message_set import MessageSet
from fmail_lens.app.views import ViewSpec
from fmail_lens.app.window_state import WindowBounds, WindowState
from fmail_lens.core.message import Message, ensure_utc
from fmail_lens.core.windows import filter_by_time, resolve_window
from fmail_lens.errors import SourceUnavailable
from fmail_lens.io.perf_logging import monitor_slow_path
from fmail_lens.source import MessageFilter, MessageSource, Subscription, SubscriptionFilter, collect_window

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200
# Rows from the top of a paged view that trigger an older-page fetch.
LOAD_OLDER_THRESHOLD = 6
# Older pages end strictly before the oldest loaded message.
OLDER_PAGE_GAP = timedelta(microseconds=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ViewSnapshot:
    """One immutable view result, replaced wholesale on recompute.

    `error` is non-empty while the latest fetch failed; `value` then still
    holds the last successful computation.
    """

    view: str
    value: Any
    window_start: datetime
    window_end: datetime
    following: bool
    computed_at: datetime
    message_count: int
    has_older: bool = False
    error: str = ""

    @property
    def has_error(self) -> bool:
        return bool(self.error)


class LiveWindowCoordinator:
    def __init__(
        self,
        source: MessageSource,
        view: ViewSpec,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = _utc_now,
        self_agent: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
        zoom: str | None = None,
        restrict: Callable[[Message], bool] | None = None,
        max_messages: int | None = None,
        on_change: Callable[[ViewSnapshot], None] | None = None,
    ):
        self.source = source
        self.view = view
        self.scheduler: Scheduler = scheduler or InlineScheduler()
        self.self_agent = self_agent
        self.page_size = page_size if page_size > 0 else DEFAULT_PAGE_SIZE
        self.window = WindowState(view.presets, zoom)
        self.messages = MessageSet(max_size=max_messages)
        self.restrict = restrict
        self.on_change = on_change
        self.has_older = False
        self.closed = False
        self._clock = clock
        self._slots = {
            FetchPurpose.RELOAD: FetchSlot(FetchPurpose.RELOAD),
            FetchPurpose.OLDER: FetchSlot(FetchPurpose.OLDER),
        }
        self._subscription: Subscription | None = None
        self.snapshot: ViewSnapshot = self._compute_snapshot()

    # ─── Introspection ────────────────────────────────────────────────────────

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def bounds(self) -> WindowBounds:
        return self.window.bounds(self.now())

    @property
    def following_tail(self) -> bool:
        return self.window.following_tail(self.now())

    def slot(self, purpose: FetchPurpose) -> FetchSlot:
        return self._slots[FetchPurpose(purpose)]

    @property
    def live(self) -> bool:
        return self._subscription is not None and not self._subscription.cancelled

    # ─── Fetch paths ──────────────────────────────────────────────────────────

    def _reload_filter(self, bounds: WindowBounds) -> MessageFilter:
        until = None if bounds.following else bounds.end
        if self.view.paged:
            return MessageFilter(until=until, limit=self.page_size)
        return MessageFilter(since=bounds.start, until=until)

    def reload(self) -> FetchTicket | None:
        """Fetch the current window from scratch.

        A reload supersedes any older-page load still in flight. Returns the
        started ticket, or None when the request was queued behind another.
        """
        if self.closed:
            return None
        self._slots[FetchPurpose.OLDER].invalidate()
        ticket = self._slots[FetchPurpose.RELOAD].issue(self._reload_filter(self.bounds()))
        if ticket is not None:
            self._start(ticket)
        return ticket

    refresh = reload

    def load_older(self) -> FetchTicket | None:
        """Fetch one page ending just before the oldest loaded message."""
        slot = self._slots[FetchPurpose.OLDER]
        if self.closed or slot.busy:
            return None
        oldest = self.messages.oldest
        if oldest is not None:
            until = oldest.time - OLDER_PAGE_GAP
        else:
            bounds = self.bounds()
            until = None if bounds.following else bounds.end
        ticket = slot.issue(MessageFilter(until=until, limit=self.page_size))
        if ticket is not None:
            self._start(ticket)
        return ticket

    def maybe_load_older(self, top_row: int) -> FetchTicket | None:
        """Load an older page when the view is scrolled near its oldest row."""
        if top_row > LOAD_OLDER_THRESHOLD or not self.has_older:
            return None
        return self.load_older()

    def _start(self, ticket: FetchTicket) -> None:
        flt = ticket.request
        submit(
            self.scheduler,
            ticket,
            lambda: collect_window(self.source, flt, self.self_agent),
            self._deliver,
        )

    def _deliver(self, result: FetchResult) -> None:
        if self.closed:
            return
        purpose = result.ticket.purpose
        apply, next_ticket = self._slots[purpose].complete(result)
        if next_ticket is not None:
            self._start(next_ticket)
        if not apply:
            return
        if not result.ok:
            self._record_error(result.error)
            return

        collected = result.value
        with monitor_slow_path(
            "coordinator.merge",
            logger=logger,
            context=lambda: {"view": self.view.name, "batch": len(collected.messages)},
        ):
            if purpose is FetchPurpose.RELOAD and self.view.windowed:
                bounds = self.bounds()
                if bounds.start is not None:
                    self.messages.drop_before(bounds.start)
                if not bounds.following and bounds.end is not None:
                    end = bounds.end
                    self.messages.retain(lambda m: m.time < end)
            self.messages.merge(collected.messages)
        if self.view.paged:
            self.has_older = collected.has_older and not self._at_capacity()
        self._recompute()

    def _at_capacity(self) -> bool:
        """A capped set that is full would evict any older page it loads."""
        cap = self.messages.max_size
        return cap is not None and len(self.messages) >= cap

    def _record_error(self, exc: SourceUnavailable) -> None:
        logger.warning("%s fetch failed: %s", self.view.name, exc)
        self._publish(replace(self.snapshot, error=str(exc)))

    # ─── Push path ────────────────────────────────────────────────────────────

    def accepts(self, msg: Message) -> bool:
        """Whether a pushed message belongs in the current window."""
        if not self.view.windowed:
            return True
        bounds = self.bounds()
        if bounds.start is not None and msg.time < bounds.start:
            return False
        if not bounds.following and bounds.end is not None and msg.time >= bounds.end:
            return False
        return True

    def on_push(self, msg: Message) -> bool:
        """Merge one pushed message; recompute only when it was new."""
        if self.closed or not self.accepts(msg):
            return False
        if not self.messages.add(msg):
            return False
        self._recompute()
        return True

    def start_live(self, flt: SubscriptionFilter | None = None) -> bool:
        """Subscribe to pushes and pump them into on_push via the scheduler.

        Needs a scheduler whose workers run off the interactive thread.
        """
        if self.closed or self.live:
            return False
        try:
            sub = self.source.subscribe(flt or SubscriptionFilter(include_dm=True))
        except SourceUnavailable as exc:
            self._record_error(exc)
            return False
        self._subscription = sub
        name = self.view.name

        def _pump() -> None:
            for msg in sub:
                self.scheduler.call_on_loop(self.on_push, msg)
            logger.debug("subscription pump for %s stopped", name)

        self.scheduler.run_in_worker(_pump, name=f"subscribe-{name}")
        return True

    def close(self) -> None:
        """Stop accepting results and cancel the subscription (unblocks the pump)."""
        self.closed = True
        if self._subscription is not None:
            self._subscription.cancel()

    # ─── Ticks and window controls ────────────────────────────────────────────

    def tick(self) -> bool:
        """Slide a follow-tail window forward and recompute unconditionally.

        Un-anchored windows only change on explicit pan/zoom/refresh.
        """
        if self.closed:
            return False
        bounds = self.bounds()
        if not bounds.following:
            return False
        if self.view.windowed and bounds.start is not None:
            self.messages.drop_before(bounds.start)
        self._recompute()
        return True

    def pan(self, direction: int) -> bool:
        if not self.window.pan(direction, self.now()):
            return False
        self.reload()
        return True

    def zoom_in(self) -> bool:
        if not self.window.zoom_in():
            return False
        self.reload()
        return True

    def zoom_out(self) -> bool:
        if not self.window.zoom_out():
            return False
        self.reload()
        return True

    def set_zoom(self, label: str) -> bool:
        if not self.window.set_zoom(self.window.presets.index_of(label)):
            return False
        self.reload()
        return True

    def jump_to_now(self) -> bool:
        if not self.window.jump_to_now():
            return False
        self.reload()
        return True

    def set_restriction(self, restrict: Callable[[Message], bool] | None) -> None:
        self.restrict = restrict
        self._recompute()

    # ─── Recompute ────────────────────────────────────────────────────────────

    def _compute_snapshot(self) -> ViewSnapshot:
        now = self.now()
        bounds = self.window.bounds(now)
        items = self.messages.as_list()
        if self.restrict is not None:
            items = [m for m in items if self.restrict(m)]
        if self.view.windowed:
            start, end = resolve_window(items, bounds.start, bounds.end, now=now)
            items = filter_by_time(items, start, end)
        else:
            start, end = resolve_window(items, None, None, now=now)
        with monitor_slow_path(
            "coordinator.recompute",
            logger=logger,
            context=lambda: {"view": self.view.name, "messages": len(items)},
        ):
            value = self.view.compute(items, start, end, bounds.bucket)
        return ViewSnapshot(
            view=self.view.name,
            value=value,
            window_start=start,
            window_end=end,
            following=bounds.following,
            computed_at=now,
            message_count=len(items),
            has_older=self.has_older,
        )

    def _recompute(self) -> ViewSnapshot:
        self._publish(self._compute_snapshot())
        return self.snapshot

    def _publish(self, snapshot: ViewSnapshot) -> None:
        self.snapshot = snapshot
        if self.on_change is not None:
            self.on_change(snapshot)
