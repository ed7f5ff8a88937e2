"""Message source contract consumed by the engine.

The store's file format and the daemon protocol belong to concrete adapters.
The engine only relies on the MessageSource protocol below, plus a cancellable
Subscription for push delivery.

MemorySource is a complete in-process adapter used by the CLI (fed from a
message dump) and by tests.

// [LAW:one-way-deps] This module imports core only; app/ and tui/ import it.
"""

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from fmail_lens.core.message import (
    Message,
    dedup_key,
    dm_peer,
    sort_messages,
)
from fmail_lens.core.threads import build_threads, flatten_thread, thread_index
from fmail_lens.errors import SourceUnavailable

logger = logging.getLogger(__name__)


# ─── Records ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MessageFilter:
    """Pull bounds. since/until are inclusive; limit > 0 keeps the newest N."""

    since: datetime | None = None
    until: datetime | None = None
    limit: int = 0

    def apply(self, messages: Iterable[Message]) -> list[Message]:
        ranged = [
            m
            for m in sort_messages(messages)
            if (self.since is None or m.time >= self.since)
            and (self.until is None or m.time <= self.until)
        ]
        if self.limit > 0:
            ranged = ranged[-self.limit:]
        return ranged


@dataclass(frozen=True)
class SubscriptionFilter:
    topic: str = ""  # "" = every topic
    include_dm: bool = False

    def matches(self, msg: Message) -> bool:
        if msg.is_dm:
            return self.include_dm
        return not self.topic or msg.to.strip() == self.topic


@dataclass(frozen=True)
class TopicInfo:
    name: str
    last_activity: datetime | None = None
    message_count: int = 0
    participants: tuple[str, ...] = ()
    last_message: Message | None = None


@dataclass(frozen=True)
class DMConversation:
    agent: str
    last_activity: datetime | None = None
    message_count: int = 0
    unread_count: int = 0


@dataclass(frozen=True)
class AgentRecord:
    name: str
    last_seen: datetime | None = None
    status: str = ""
    host: str = ""


@dataclass(frozen=True)
class SearchQuery:
    text: str = ""
    sender: str = ""
    to: str = ""
    since: datetime | None = None
    until: datetime | None = None

    def matches(self, msg: Message) -> bool:
        if self.sender and msg.sender.strip() != self.sender:
            return False
        if self.to and msg.to.strip() != self.to:
            return False
        if self.since is not None and msg.time < self.since:
            return False
        if self.until is not None and msg.time > self.until:
            return False
        return not self.text or self.text.lower() in msg.body.lower()


@dataclass(frozen=True)
class SearchResult:
    message: Message
    topic: str
    prev_in_thread: Message | None = None
    next_in_thread: Message | None = None


# ─── Subscription ─────────────────────────────────────────────────────────────


_CLOSED = object()


class Subscription:
    """Push channel for one subscriber.

    get() blocks until a message arrives or the subscription is cancelled;
    cancel() wakes every pending get() so receiver threads never leak.
    """

    def __init__(self, flt: SubscriptionFilter, on_cancel: Callable[["Subscription"], None] | None = None):
        self.filter = flt
        self._queue: queue.Queue = queue.Queue()
        self._cancelled = threading.Event()
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def publish(self, msg: Message) -> bool:
        if self.cancelled or not self.filter.matches(msg):
            return False
        self._queue.put(msg)
        return True

    def get(self, timeout: float | None = None) -> Message | None:
        """Next message, or None once cancelled (or on timeout)."""
        if self.cancelled:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # Re-post so every other blocked receiver wakes too.
            self._queue.put(_CLOSED)
            return None
        return item

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._queue.put(_CLOSED)
        if self._on_cancel is not None:
            self._on_cancel(self)

    def __iter__(self) -> Iterator[Message]:
        while True:
            msg = self.get()
            if msg is None:
                return
            yield msg


# ─── Protocol ─────────────────────────────────────────────────────────────────


class MessageSource(Protocol):
    """Pull and push access to the message store.

    Pull methods raise SourceUnavailable on IO/transport failure.
    """

    def topics(self) -> list[TopicInfo]: ...

    def messages(self, topic: str, flt: MessageFilter) -> list[Message]: ...

    def dm_conversations(self, self_agent: str) -> list[DMConversation]: ...

    def dms(self, agent: str, flt: MessageFilter) -> list[Message]: ...

    def agents(self) -> list[AgentRecord]: ...

    def search(self, query: SearchQuery) -> list[SearchResult]: ...

    def subscribe(self, flt: SubscriptionFilter) -> Subscription: ...


# ─── In-memory adapter ────────────────────────────────────────────────────────


@dataclass
class MemorySource:
    """Thread-safe in-process MessageSource.

    `self_agent` is the viewer; DMs are visible when the viewer is either
    party. append() fans new messages out to live subscriptions.
    `read_markers` maps a target ("task", "@bob") to the last read message ID
    and drives DMConversation.unread_count.
    """

    self_agent: str = ""
    read_markers: dict[str, str] = field(default_factory=dict)
    _messages: list[Message] = field(default_factory=list, init=False, repr=False)
    _keys: set = field(default_factory=set, init=False, repr=False)
    _agents: dict[str, AgentRecord] = field(default_factory=dict, init=False, repr=False)
    _subscriptions: list[Subscription] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def from_messages(
        cls,
        messages: Iterable[Message],
        self_agent: str = "",
        read_markers: dict[str, str] | None = None,
    ) -> "MemorySource":
        src = cls(self_agent=self_agent, read_markers=dict(read_markers or {}))
        src.extend(messages, notify=False)
        return src

    # Writers

    def append(self, msg: Message, *, notify: bool = True) -> bool:
        """Store msg once per identity; returns False for duplicates."""
        with self._lock:
            key = dedup_key(msg)
            if key in self._keys:
                return False
            self._keys.add(key)
            self._messages.append(msg)
            subscribers = list(self._subscriptions) if notify else []
        for sub in subscribers:
            sub.publish(msg)
        return True

    def extend(self, messages: Iterable[Message], *, notify: bool = True) -> int:
        return sum(1 for msg in messages if self.append(msg, notify=notify))

    def register_agent(self, record: AgentRecord) -> None:
        with self._lock:
            self._agents[record.name] = record

    def _snapshot(self) -> list[Message]:
        with self._lock:
            return list(self._messages)

    # MessageSource

    def topics(self) -> list[TopicInfo]:
        grouped: dict[str, list[Message]] = {}
        for msg in self._snapshot():
            if not msg.is_dm and msg.to.strip():
                grouped.setdefault(msg.to.strip(), []).append(msg)
        out = []
        for name in sorted(grouped):
            msgs = sort_messages(grouped[name])
            out.append(
                TopicInfo(
                    name=name,
                    last_activity=msgs[-1].time,
                    message_count=len(msgs),
                    participants=tuple(sorted({m.sender.strip() for m in msgs})),
                    last_message=msgs[-1],
                )
            )
        return out

    def messages(self, topic: str, flt: MessageFilter) -> list[Message]:
        topic = topic.strip()
        return flt.apply(m for m in self._snapshot() if not m.is_dm and m.to.strip() == topic)

    def _conversation(self, viewer: str, peer: str) -> list[Message]:
        out = []
        for msg in self._snapshot():
            if not msg.is_dm:
                continue
            sender, target = msg.sender.strip(), dm_peer(msg.to)
            if (sender, target) in ((viewer, peer), (peer, viewer)):
                out.append(msg)
        return out

    def dm_conversations(self, self_agent: str) -> list[DMConversation]:
        viewer = self_agent.strip() or self.self_agent
        peers: dict[str, list[Message]] = {}
        for msg in self._snapshot():
            if not msg.is_dm:
                continue
            sender, target = msg.sender.strip(), dm_peer(msg.to)
            if sender == viewer and target:
                peers.setdefault(target, []).append(msg)
            elif target == viewer and sender:
                peers.setdefault(sender, []).append(msg)
        out = [
            DMConversation(
                agent=peer,
                last_activity=max(m.time for m in msgs),
                message_count=len(msgs),
                unread_count=self._unread(viewer, peer, msgs),
            )
            for peer, msgs in peers.items()
        ]
        out.sort(key=lambda c: (c.last_activity, c.agent), reverse=True)
        return out

    def _unread(self, viewer: str, peer: str, msgs: list[Message]) -> int:
        """Messages from peer whose ID sorts after the viewer's @peer marker."""
        marker = self.read_markers.get(f"@{peer}", "").strip()
        return sum(
            1 for m in msgs if m.sender.strip() != viewer and (not marker or m.id.strip() > marker)
        )

    def dms(self, agent: str, flt: MessageFilter) -> list[Message]:
        return flt.apply(self._conversation(self.self_agent, agent.strip()))

    def agents(self) -> list[AgentRecord]:
        with self._lock:
            known = dict(self._agents)
        for msg in self._snapshot():
            name = msg.sender.strip()
            prev = known.get(name)
            if not name:
                continue
            if prev is None or prev.last_seen is None or msg.time > prev.last_seen:
                known[name] = AgentRecord(
                    name=name,
                    last_seen=msg.time,
                    status=prev.status if prev else "",
                    host=msg.host or (prev.host if prev else ""),
                )
        return [known[name] for name in sorted(known)]

    def search(self, query: SearchQuery) -> list[SearchResult]:
        messages = sort_messages(self._snapshot())
        by_thread = thread_index(build_threads(messages))
        results = []
        for msg in messages:
            if not query.matches(msg):
                continue
            prev_msg = next_msg = None
            thread = by_thread.get(msg.id.strip())
            if thread is not None:
                order = [node.message for node in flatten_thread(thread)]
                pos = next((i for i, m in enumerate(order) if m is msg), -1)
                if pos > 0:
                    prev_msg = order[pos - 1]
                if 0 <= pos < len(order) - 1:
                    next_msg = order[pos + 1]
            results.append(
                SearchResult(
                    message=msg,
                    topic=msg.to.strip(),
                    prev_in_thread=prev_msg,
                    next_in_thread=next_msg,
                )
            )
        results.sort(key=lambda r: (r.message.id, r.topic))
        return results

    def subscribe(self, flt: SubscriptionFilter) -> Subscription:
        sub = Subscription(flt, on_cancel=self._drop_subscription)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def _drop_subscription(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


# ─── Window collection ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CollectedWindow:
    messages: list[Message]
    has_older: bool
    topic_participants: dict[str, tuple[str, ...]]


def guarded(operation: str, call: Callable[[], list]) -> list:
    """Run a source call, re-raising IO and timeout failures as SourceUnavailable."""
    try:
        return call()
    except SourceUnavailable:
        raise
    except (OSError, TimeoutError) as exc:
        raise SourceUnavailable(operation, exc) from exc


def collect_window(source: MessageSource, flt: MessageFilter, self_agent: str) -> CollectedWindow:
    """Pull every topic plus the viewer's DMs within flt, deduplicated and sorted.

    A failing topic list or per-target fetch aborts the whole collection with
    SourceUnavailable. A failing DM conversation listing only drops DMs.
    `has_older` is set when any per-target fetch came back as a full page.

    A full page only covers its target back to its own oldest message, so
    the merged result is clamped to the newest of those page edges: every
    message at or after the clamp is complete across all targets, and the
    next older page (until = oldest - 1µs) resumes each target without gaps.
    """
    merged: list[Message] = []
    seen: set[tuple[str, str, str]] = set()
    participants: dict[str, set[str]] = {}
    has_older = False
    page_edge: datetime | None = None

    def _capped(batch: list[Message]) -> None:
        nonlocal has_older, page_edge
        if flt.limit <= 0 or len(batch) < flt.limit:
            return
        has_older = True
        oldest = min(m.time for m in batch)
        if page_edge is None or oldest > page_edge:
            page_edge = oldest

    def _merge(batch: list[Message], bucket: set[str] | None = None) -> None:
        for msg in batch:
            key = dedup_key(msg)
            if key in seen:
                continue
            seen.add(key)
            merged.append(msg)
            if bucket is not None and msg.sender.strip():
                bucket.add(msg.sender.strip())

    for topic in guarded("topics", source.topics):
        name = topic.name.strip()
        if not name:
            continue
        batch = guarded(f"messages({name})", lambda: source.messages(name, flt))
        _capped(batch)
        _merge(batch, participants.setdefault(name, set()))

    try:
        conversations = guarded("dm_conversations", lambda: source.dm_conversations(self_agent))
    except SourceUnavailable as exc:
        logger.warning("dm conversation listing failed, continuing without DMs: %s", exc)
        conversations = []
    for conv in conversations:
        agent = conv.agent.strip()
        if not agent:
            continue
        batch = guarded(f"dms({agent})", lambda: source.dms(agent, flt))
        _capped(batch)
        _merge(batch)

    if page_edge is not None:
        merged = [m for m in merged if m.time >= page_edge]
    return CollectedWindow(
        messages=sort_messages(merged),
        has_older=has_older,
        topic_participants={k: tuple(sorted(v)) for k, v in participants.items()},
    )
