"""Message value type and the ordering/identity rules every aggregator shares.

// [LAW:one-source-of-truth] Chronological order and dedup identity are defined
// here only; threads, graph, stats and the coordinator all import them.

Bodies arrive from sources as arbitrary JSON values. They are normalized to a
single string at construction so nothing downstream branches on body type.
"""

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

PRIORITY_LOW = "low"
PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"

DM_PREFIX = "@"


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_time(raw: object) -> datetime:
    """Parse a message timestamp from a datetime, ISO-8601 string or epoch seconds."""
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    if isinstance(raw, str) and raw.strip():
        text = raw.strip()
        # fromisoformat() before 3.11 rejects the "Z" suffix.
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"unparseable message time: {raw!r}")


def normalize_body(raw: object) -> str:
    """Collapse a source body (string, JSON value, None) to display text."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return json.dumps(raw, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def is_dm_target(target: str) -> bool:
    return target.strip().startswith(DM_PREFIX)


def dm_peer(target: str) -> str:
    """Agent name of a "@agent" target, or "" for topics."""
    target = target.strip()
    if not target.startswith(DM_PREFIX):
        return ""
    return target[len(DM_PREFIX):].strip()


@dataclass(frozen=True)
class Message:
    """One observed message. Immutable; identity is (id, sender, to)."""

    id: str
    sender: str
    to: str
    time: datetime
    body: str = ""
    reply_to: str = ""
    priority: str = ""
    tags: tuple[str, ...] = ()
    host: str = ""

    def __post_init__(self):
        # Frozen: normalize through object.__setattr__ once at the boundary.
        object.__setattr__(self, "time", ensure_utc(self.time))
        object.__setattr__(self, "body", normalize_body(self.body))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def is_dm(self) -> bool:
        return is_dm_target(self.to)

    @property
    def key(self) -> tuple[str, str, str]:
        return dedup_key(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, object]) -> "Message":
        """Build a Message from a source record.

        Accepts the store's field names ("from", "reply_to") and raises
        ValueError when id or time is missing or unparseable.
        """
        msg_id = str(raw.get("id", "") or "").strip()
        if not msg_id:
            raise ValueError("message record has no id")
        tags = raw.get("tags") or ()
        if isinstance(tags, str):
            tags = tuple(t.strip() for t in tags.split(",") if t.strip())
        return cls(
            id=msg_id,
            sender=str(raw.get("from", raw.get("sender", "")) or ""),
            to=str(raw.get("to", "") or ""),
            time=parse_time(raw.get("time")),
            body=raw.get("body"),
            reply_to=str(raw.get("reply_to", "") or ""),
            priority=str(raw.get("priority", "") or ""),
            tags=tuple(str(t) for t in tags),
            host=str(raw.get("host", "") or ""),
        )

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "id": self.id,
            "from": self.sender,
            "to": self.to,
            "time": self.time.isoformat(),
            "body": self.body,
        }
        if self.reply_to:
            out["reply_to"] = self.reply_to
        if self.priority:
            out["priority"] = self.priority
        if self.tags:
            out["tags"] = list(self.tags)
        if self.host:
            out["host"] = self.host
        return out


def dedup_key(msg: Message) -> tuple[str, str, str]:
    """Identity used by every seen-set: (ID, From, To), whitespace-trimmed."""
    return (msg.id.strip(), msg.sender.strip(), msg.to.strip())


def message_sort_key(msg: Message) -> tuple[datetime, str, str, str]:
    """Total chronological order: time, then id, then sender, then target."""
    return (msg.time, msg.id, msg.sender, msg.to)


def sort_messages(messages: Iterable[Message]) -> list[Message]:
    """Return a new chronologically sorted list."""
    return sorted(messages, key=message_sort_key)


def dedupe_messages(messages: Iterable[Message]) -> list[Message]:
    """Drop repeated identities, keeping the first occurrence, order preserved."""
    seen: set[tuple[str, str, str]] = set()
    out: list[Message] = []
    for msg in messages:
        key = dedup_key(msg)
        if key in seen:
            continue
        seen.add(key)
        out.append(msg)
    return out
