"""Read-only view of the viewer's persisted read markers and bookmarks.

The state file is owned by the interactive client; this engine only reads it
to support unread and bookmarked restrictions. Shape:

    {
      "read_markers": {"task": "20260209-120000-0001", "@alice": "..."},
      "bookmarks": [{"message_id": "...", "target": "task", "note": "follow up"}]
    }

Message IDs sort chronologically as strings, so "unread" means the ID sorts
after the target's marker.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from fmail_lens.core.message import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bookmark:
    message_id: str
    target: str = ""
    note: str = ""


@dataclass(frozen=True)
class ReadState:
    read_markers: dict[str, str] = field(default_factory=dict)
    bookmarks: tuple[Bookmark, ...] = ()

    def marker(self, target: str) -> str:
        return self.read_markers.get(target.strip(), "")

    def is_unread(self, msg: Message, target: str | None = None, self_agent: str = "") -> bool:
        """True when msg sorts after the read marker of its target.

        Messages the viewer sent are never unread; a target without a marker
        is entirely unread.
        """
        if self_agent and msg.sender.strip() == self_agent.strip():
            return False
        marker = self.marker(msg.to if target is None else target)
        return not marker or msg.id.strip() > marker

    def filter_unread(self, messages, target: str | None = None, self_agent: str = "") -> list[Message]:
        return [m for m in messages if self.is_unread(m, target, self_agent)]

    def _bookmark(self, message_id: str) -> Bookmark | None:
        message_id = message_id.strip()
        for bookmark in self.bookmarks:
            if bookmark.message_id == message_id:
                return bookmark
        return None

    def is_bookmarked(self, message_id: str) -> bool:
        return self._bookmark(message_id) is not None

    def bookmark_note(self, message_id: str) -> str:
        bookmark = self._bookmark(message_id)
        return bookmark.note if bookmark is not None else ""


def parse_read_state(raw: object) -> ReadState:
    """Build a ReadState from decoded JSON, skipping malformed entries."""
    if not isinstance(raw, dict):
        return ReadState()
    markers_raw = raw.get("read_markers") or {}
    markers = (
        {str(k).strip(): str(v).strip() for k, v in markers_raw.items() if str(v).strip()}
        if isinstance(markers_raw, dict)
        else {}
    )
    bookmarks = []
    for entry in raw.get("bookmarks") or []:
        if not isinstance(entry, dict) or not str(entry.get("message_id", "")).strip():
            logger.warning("skipping malformed bookmark entry: %r", entry)
            continue
        bookmarks.append(
            Bookmark(
                message_id=str(entry["message_id"]).strip(),
                target=str(entry.get("target") or entry.get("topic") or "").strip(),
                note=str(entry.get("note") or ""),
            )
        )
    return ReadState(read_markers=markers, bookmarks=tuple(bookmarks))


def load_read_state(path: Path | str | None) -> ReadState:
    """Missing path or file → empty state; unreadable/corrupt file → empty state (logged)."""
    if not path:
        return ReadState()
    path = Path(path).expanduser()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ReadState()
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("ignoring unreadable read state %s: %s", path, exc)
        return ReadState()
    return parse_read_state(raw)


# ─── Restriction predicates for LiveWindowCoordinator ─────────────────────────


def unread_only(state: ReadState, self_agent: str = "") -> Callable[[Message], bool]:
    return lambda msg: state.is_unread(msg, self_agent=self_agent)


def bookmarked_only(state: ReadState) -> Callable[[Message], bool]:
    ids = {b.message_id for b in state.bookmarks}
    return lambda msg: msg.id.strip() in ids
