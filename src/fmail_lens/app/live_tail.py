"""Live tail feed: the newest messages across every target, as they arrive.

Bounded to the most recent `max_messages`. While paused, arrivals go to a
(equally bounded) buffer that resume() flushes into the feed. A filter
expression narrows what is visible without dropping anything from the feed.

Filter syntax: whitespace-separated tokens, `key:value` or bare text.
Keys: from, to, priority, tag (repeatable), text, dm (1/true/only).
Unknown keys contribute their value as text.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fmail_lens.app.message_set import MessageSet
from fmail_lens.core.message import PRIORITY_HIGH, Message, is_dm_target

LIVE_TAIL_MAX_MESSAGES = 2000

ROLE_HIGH = "high"
ROLE_HIGHLIGHT = "highlight"
ROLE_NORMAL = "normal"


def _eq_ci(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


@dataclass(frozen=True)
class LiveTailFilter:
    sender: str = ""
    to: str = ""
    priority: str = ""
    tags: tuple[str, ...] = ()
    text: str = ""
    dm_only: bool = False

    @property
    def is_empty(self) -> bool:
        return self.label() == "none"

    def label(self) -> str:
        parts = []
        if self.sender.strip():
            parts.append(f"from:{self.sender.strip()}")
        if self.to.strip():
            parts.append(f"to:{self.to.strip()}")
        if self.priority.strip():
            parts.append(f"priority:{self.priority.strip()}")
        parts.extend(f"tag:{tag.strip()}" for tag in self.tags if tag.strip())
        if self.text.strip():
            parts.append(f"text:{self.text.strip()}")
        if self.dm_only:
            parts.append("dm:only")
        return " ".join(parts) or "none"

    def matches(self, msg: Message) -> bool:
        if self.dm_only and not is_dm_target(msg.to):
            return False
        if self.sender.strip() and not _eq_ci(msg.sender, self.sender):
            return False
        if self.to.strip() and not _eq_ci(msg.to, self.to):
            return False
        if self.priority.strip() and not _eq_ci(msg.priority, self.priority):
            return False
        have = {tag.strip().lower() for tag in msg.tags}
        for want in self.tags:
            want = want.strip().lower()
            if want and want not in have:
                return False
        needle = self.text.strip().lower()
        return not needle or needle in msg.body.lower()


def parse_live_tail_filter(text: str) -> LiveTailFilter:
    values: dict[str, str] = {}
    tags: list[str] = []
    terms: list[str] = []
    dm_only = False
    for token in text.split():
        key, sep, value = token.partition(":")
        if not sep:
            terms.append(token)
            continue
        key, value = key.strip().lower(), value.strip()
        if key in ("from", "to", "priority"):
            values[key] = value
        elif key == "tag":
            if value:
                tags.append(value)
        elif key == "dm":
            dm_only = dm_only or value in ("1", "true", "only")
        elif value:
            terms.append(value)
    return LiveTailFilter(
        sender=values.get("from", ""),
        to=values.get("to", ""),
        priority=values.get("priority", ""),
        tags=tuple(tags),
        text=" ".join(terms).strip(),
        dm_only=dm_only,
    )


@dataclass
class LiveTail:
    max_messages: int = LIVE_TAIL_MAX_MESSAGES
    filter: LiveTailFilter = field(default_factory=LiveTailFilter)
    highlights: tuple[str, ...] = ()
    paused: bool = False
    _feed: MessageSet = field(init=False)
    _buffer: MessageSet = field(init=False)

    def __post_init__(self):
        self._feed = MessageSet(max_size=self.max_messages)
        self._buffer = MessageSet(max_size=self.max_messages)

    @property
    def feed_len(self) -> int:
        return len(self._feed)

    @property
    def buffered_len(self) -> int:
        return len(self._buffer)

    def push(self, msg: Message) -> bool:
        """Add an arrival; False for a duplicate of something already held."""
        if msg in self._feed:
            return False
        target = self._buffer if self.paused else self._feed
        return target.add(msg)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> int:
        """Unpause and flush the buffer; returns how many messages were flushed."""
        if not self.paused:
            return 0
        flushed = self._feed.merge(self._buffer)
        self._buffer.reset()
        self.paused = False
        return len(flushed)

    def toggle_pause(self) -> None:
        if self.paused:
            self.resume()
        else:
            self.pause()

    def set_filter(self, text: str) -> None:
        self.filter = parse_live_tail_filter(text)

    def clear_filter(self) -> None:
        self.filter = LiveTailFilter()

    def set_highlights(self, csv: str) -> None:
        self.highlights = tuple(part.strip().lower() for part in csv.split(",") if part.strip())

    def visible(self) -> list[Message]:
        return [msg for msg in self._feed if self.filter.matches(msg)]

    def is_highlighted(self, msg: Message) -> bool:
        if not self.highlights:
            return False
        haystack = f"{msg.sender} {msg.to} {msg.body}".lower()
        return any(needle in haystack for needle in self.highlights)

    def role(self, msg: Message) -> str:
        if _eq_ci(msg.priority, PRIORITY_HIGH):
            return ROLE_HIGH
        if self.is_highlighted(msg):
            return ROLE_HIGHLIGHT
        return ROLE_NORMAL

    def header(self) -> str:
        text = f"LIVE TAIL  filter: {self.filter.label()}"
        if self.paused:
            text += f"  PAUSED (+{self.buffered_len})" if self.buffered_len else "  PAUSED"
        return text
