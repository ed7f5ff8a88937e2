"""Fetch bookkeeping: one in-flight request per purpose, last issued wins.

A FetchSlot hands out generation-stamped tickets. Only the result of the most
recently issued ticket is applied; anything older is stale by definition and
dropped when it lands, no matter how quickly it completed.

Schedulers decide where fetch work runs and how the outcome gets back to the
single interactive thread:

- InlineScheduler runs everything immediately (tests, one-shot CLI use)
- DeferredScheduler queues worker jobs until run_next()/run_all() (ordering tests)
- ThreadScheduler runs jobs on daemon threads and delivers via drain()

The textual host supplies its own scheduler in tui/host.py.

// [LAW:single-enforcer] Staleness is decided only by FetchSlot.complete().
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from fmail_lens.errors import SourceUnavailable

logger = logging.getLogger(__name__)


class FetchPurpose(str, Enum):
    RELOAD = "reload"
    OLDER = "older"
    METRICS = "metrics"
    SEARCH = "search"


@dataclass(frozen=True)
class FetchTicket:
    purpose: FetchPurpose
    generation: int
    request: Any = None


@dataclass(frozen=True)
class FetchResult:
    ticket: FetchTicket
    value: Any = None
    error: SourceUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_fetch(ticket: FetchTicket, fn: Callable[[], Any]) -> FetchResult:
    """Run fn and fold SourceUnavailable into the result.

    Anything else is a programming error and propagates.
    """
    try:
        return FetchResult(ticket=ticket, value=fn())
    except SourceUnavailable as exc:
        return FetchResult(ticket=ticket, error=exc)


class FetchSlot:
    """Generation counter plus in-flight/pending bookkeeping for one purpose."""

    def __init__(self, purpose: FetchPurpose):
        self.purpose = FetchPurpose(purpose)
        self.generation = 0
        self.in_flight: FetchTicket | None = None
        self.pending: FetchTicket | None = None
        self.stale_drops = 0

    @property
    def busy(self) -> bool:
        return self.in_flight is not None

    def issue(self, request: Any = None) -> FetchTicket | None:
        """Register a new request.

        Returns the ticket to start now, or None when another fetch is still
        in flight; in that case the request is parked as `pending` (replacing
        any older pending one) and started by complete().
        """
        self.generation += 1
        ticket = FetchTicket(purpose=self.purpose, generation=self.generation, request=request)
        if self.in_flight is not None:
            self.pending = ticket
            return None
        self.in_flight = ticket
        return ticket

    def invalidate(self) -> None:
        """Make whatever is in flight stale without issuing a replacement."""
        self.generation += 1
        self.pending = None

    def complete(self, result: FetchResult) -> tuple[bool, FetchTicket | None]:
        """Settle a landed result.

        Returns (apply, next_ticket): apply is True only for the newest
        generation; next_ticket is the parked request to start now, if any.
        """
        ticket = result.ticket
        if self.in_flight is None or ticket.generation != self.in_flight.generation:
            # Not ours (already settled or foreign); nothing to release.
            self.stale_drops += 1
            logger.debug("dropping orphan %s result gen=%d", self.purpose.value, ticket.generation)
            return False, None
        self.in_flight = None
        apply = ticket.generation == self.generation
        if not apply:
            self.stale_drops += 1
            logger.debug(
                "dropping stale %s result gen=%d current=%d",
                self.purpose.value,
                ticket.generation,
                self.generation,
            )
        next_ticket = self.pending
        self.pending = None
        if next_ticket is not None:
            self.in_flight = next_ticket
        return apply, next_ticket


# ─── Schedulers ───────────────────────────────────────────────────────────────


class Scheduler(Protocol):
    """Where blocking work runs, and how callbacks return to the loop thread."""

    def run_in_worker(self, fn: Callable[[], None], *, name: str = "") -> None: ...

    def call_on_loop(self, fn: Callable[..., None], *args: Any) -> None: ...


def submit(
    scheduler: Scheduler,
    ticket: FetchTicket,
    fn: Callable[[], Any],
    deliver: Callable[[FetchResult], None],
) -> None:
    """Run fn on a worker and hand its FetchResult to deliver on the loop.

    Every ticket is delivered exactly once so its slot is always released.
    An unexpected exception is logged with its traceback and delivered as a
    failed result naming the exception type.
    """

    def _work() -> None:
        try:
            result = run_fetch(ticket, fn)
        except Exception as exc:
            logger.exception("%s fetch gen=%d crashed", ticket.purpose.value, ticket.generation)
            error = SourceUnavailable(
                f"{ticket.purpose.value} fetch", exc, detail=f"unexpected {type(exc).__name__}: {exc}"
            )
            result = FetchResult(ticket=ticket, error=error)
        scheduler.call_on_loop(deliver, result)

    scheduler.run_in_worker(_work, name=f"fetch-{ticket.purpose.value}-{ticket.generation}")


class InlineScheduler:
    def run_in_worker(self, fn: Callable[[], None], *, name: str = "") -> None:
        fn()

    def call_on_loop(self, fn: Callable[..., None], *args: Any) -> None:
        fn(*args)


class DeferredScheduler:
    """Queues worker jobs; the test decides when (and in which order) they run."""

    def __init__(self):
        self.jobs: deque[tuple[str, Callable[[], None]]] = deque()

    def run_in_worker(self, fn: Callable[[], None], *, name: str = "") -> None:
        self.jobs.append((name, fn))

    def call_on_loop(self, fn: Callable[..., None], *args: Any) -> None:
        fn(*args)

    def run_next(self) -> bool:
        if not self.jobs:
            return False
        _, fn = self.jobs.popleft()
        fn()
        return True

    def run_last(self) -> bool:
        if not self.jobs:
            return False
        _, fn = self.jobs.pop()
        fn()
        return True

    def run_all(self) -> int:
        ran = 0
        while self.run_next():
            ran += 1
        return ran


class ThreadScheduler:
    """Daemon-thread workers with a loop-side callback queue.

    The owning thread calls drain() to run delivered callbacks; nothing
    touches coordinator state from a worker thread.
    """

    def __init__(self):
        self._callbacks: queue.Queue = queue.Queue()
        self._threads: list[threading.Thread] = []

    def run_in_worker(self, fn: Callable[[], None], *, name: str = "") -> None:
        thread = threading.Thread(target=fn, name=name or "fmail-lens-worker", daemon=True)
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)
        thread.start()

    def call_on_loop(self, fn: Callable[..., None], *args: Any) -> None:
        self._callbacks.put((fn, args))

    def drain(self, timeout: float | None = None) -> int:
        """Run queued callbacks; waits up to timeout for the first one."""
        ran = 0
        block = timeout is not None
        while True:
            try:
                fn, args = self._callbacks.get(block=block, timeout=timeout)
            except queue.Empty:
                return ran
            fn(*args)
            ran += 1
            block = False

    def join(self, timeout: float | None = None) -> None:
        for thread in list(self._threads):
            thread.join(timeout)

    @property
    def alive_workers(self) -> int:
        return sum(1 for t in self._threads if t.is_alive())
