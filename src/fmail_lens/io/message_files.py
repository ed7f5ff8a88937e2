"""Load message dumps (JSON array or JSON lines) for offline analysis.

Malformed input never aborts a load: undecodable files, lines and records are
logged at WARNING with their origin and skipped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from fmail_lens.core.message import Message

logger = logging.getLogger(__name__)


def _records(text: str, origin: str) -> Iterator[tuple[int, object]]:
    stripped = text.lstrip()
    if stripped.startswith("["):
        try:
            data = json.loads(stripped)
        except ValueError as exc:
            logger.warning("%s: skipping undecodable JSON array: %s", origin, exc)
            return
        yield from enumerate(data, start=1)
        return
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield lineno, json.loads(line)
        except ValueError as exc:
            logger.warning("%s: skipping undecodable line %d: %s", origin, lineno, exc)


def parse_messages(text: str, *, origin: str = "<input>") -> list[Message]:
    """Decode records into Messages, skipping (and logging) malformed ones."""
    messages: list[Message] = []
    for position, raw in _records(text, origin):
        if not isinstance(raw, dict):
            logger.warning("%s:%d: skipping non-object record", origin, position)
            continue
        try:
            messages.append(Message.from_dict(raw))
        except ValueError as exc:
            logger.warning("%s:%d: skipping malformed message: %s", origin, position, exc)
    return messages


def load_messages(paths: Iterable[Path | str]) -> list[Message]:
    """Read every file; a directory contributes its *.json and *.jsonl files."""
    messages: list[Message] = []
    for path in paths:
        path = Path(path).expanduser()
        files = sorted(p for p in path.iterdir() if p.suffix in (".json", ".jsonl")) if path.is_dir() else [path]
        for file in files:
            try:
                text = file.read_text(encoding="utf-8")
            except UnicodeDecodeError as exc:
                logger.warning("%s: skipping file that is not UTF-8: %s", file, exc)
                continue
            messages.extend(parse_messages(text, origin=str(file)))
    return messages
