"""Accumulated, deduplicated, chronologically sorted message set.

Each view owns one MessageSet. Every batch (poll page, older page, push)
passes through merge(), which consults the seen-set first.

// [LAW:single-enforcer] Dedup happens here and nowhere else in app/.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime

from fmail_lens.core.message import Message, dedup_key, message_sort_key


class MessageSet:
    """Sorted by (time, id, sender, to); optionally capped to the newest N."""

    def __init__(self, messages: Iterable[Message] = (), *, max_size: int | None = None):
        self.max_size = max_size if max_size and max_size > 0 else None
        self._items: list[Message] = []
        self._keys: list[tuple] = []
        self._seen: set[tuple[str, str, str]] = set()
        self.merge(messages)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._items)

    def __contains__(self, msg: object) -> bool:
        return isinstance(msg, Message) and dedup_key(msg) in self._seen

    def as_list(self) -> list[Message]:
        return list(self._items)

    @property
    def oldest(self) -> Message | None:
        return self._items[0] if self._items else None

    @property
    def newest(self) -> Message | None:
        return self._items[-1] if self._items else None

    def add(self, msg: Message) -> bool:
        """Insert one message; False when its identity was already seen."""
        key = dedup_key(msg)
        if key in self._seen:
            return False
        self._seen.add(key)
        sort_key = message_sort_key(msg)
        pos = bisect.bisect_right(self._keys, sort_key)
        self._keys.insert(pos, sort_key)
        self._items.insert(pos, msg)
        self._enforce_cap()
        return True

    def merge(self, messages: Iterable[Message]) -> list[Message]:
        """Insert a batch, returning only the messages that were new."""
        added = [msg for msg in messages if self.add(msg)]
        # Capping may have evicted part of this batch already.
        return [msg for msg in added if msg in self]

    def _enforce_cap(self) -> None:
        if self.max_size is None:
            return
        overflow = len(self._items) - self.max_size
        if overflow > 0:
            self._evict(slice(0, overflow))

    def _evict(self, span: slice) -> list[Message]:
        dropped = self._items[span]
        del self._items[span]
        del self._keys[span]
        for msg in dropped:
            self._seen.discard(dedup_key(msg))
        return dropped

    def drop_before(self, cutoff: datetime) -> list[Message]:
        """Evict everything strictly older than cutoff."""
        pos = bisect.bisect_left(self._keys, (cutoff,))
        return self._evict(slice(0, pos)) if pos else []

    def retain(self, keep: Callable[[Message], bool]) -> int:
        """Drop messages failing keep(); returns how many were dropped."""
        kept = [msg for msg in self._items if keep(msg)]
        dropped = len(self._items) - len(kept)
        if dropped:
            self.reset(kept)
        return dropped

    def reset(self, messages: Iterable[Message] = ()) -> None:
        self._items = []
        self._keys = []
        self._seen = set()
        self.merge(messages)

    def between(self, start: datetime, end: datetime) -> list[Message]:
        """Messages with start <= time < end (bisect, no full scan)."""
        lo = bisect.bisect_left(self._keys, (start,))
        hi = bisect.bisect_left(self._keys, (end,))
        return self._items[lo:hi]
