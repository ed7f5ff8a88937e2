"""Reply-thread reconstruction over a flat message list.

Messages are laid out in an arena (one chronologically sorted list) and linked
by position. A message may only attach to a parent that appears *earlier* in
that order, so the parent relation is acyclic by construction:

- ReplyTo empty, equal to the message's own ID, or unknown -> root
- ReplyTo naming a later message -> link dropped, root

// [LAW:one-source-of-truth] (time, id, sender, to) ordering from core.message
// is the only tie-break; rebuilding from any permutation is identical.
// [LAW:dataflow-not-control-flow] Malformed links are data, not errors.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from fmail_lens.core.message import Message, sort_messages

MAX_DISPLAY_DEPTH = 10


@dataclass(frozen=True)
class ThreadNode:
    """One message placed in a thread.

    `parent` is the parent's Message value (not its node), so the structure
    holds no reference cycles. `depth` is clamped to MAX_DISPLAY_DEPTH;
    `true_depth` is not.
    """

    message: Message
    parent: Message | None
    child_ids: tuple[str, ...]
    depth: int
    true_depth: int

    @property
    def id(self) -> str:
        return self.message.id.strip()

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def depth_overflow(self) -> bool:
        """True when the node sits deeper than the renderer can indent."""
        return self.true_depth > MAX_DISPLAY_DEPTH


@dataclass(frozen=True)
class Thread:
    """A reply-connected component rooted at its earliest unlinked message."""

    root: Message
    nodes: tuple[ThreadNode, ...]  # chronological
    depth: int
    agents: tuple[str, ...]
    last_activity: datetime
    _by_id: dict[str, ThreadNode] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_by_id", {node.id: node for node in self.nodes})

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    @property
    def messages(self) -> list[Message]:
        return [node.message for node in self.nodes]

    @property
    def root_node(self) -> ThreadNode:
        return self._by_id[self.root.id.strip()]

    def node(self, message_id: str) -> ThreadNode | None:
        return self._by_id.get(message_id.strip())

    def parent_of(self, node: ThreadNode) -> ThreadNode | None:
        if node.parent is None:
            return None
        return self._by_id.get(node.parent.id.strip())

    def children_of(self, node: ThreadNode) -> list[ThreadNode]:
        return [self._by_id[child_id] for child_id in node.child_ids]


@dataclass(frozen=True)
class ThreadSummary:
    title: str
    message_count: int
    participant_count: int
    last_activity: datetime


# ─── Arena construction ───────────────────────────────────────────────────────


def _arena(messages: Iterable[Message]) -> list[Message]:
    """Chronological, one entry per message ID (earliest occurrence wins)."""
    arena: list[Message] = []
    seen: set[str] = set()
    for msg in sort_messages(messages):
        msg_id = msg.id.strip()
        if not msg_id or msg_id in seen:
            continue
        seen.add(msg_id)
        arena.append(msg)
    return arena


def _link(arena: list[Message]) -> list[int | None]:
    """Parent position for each arena slot, or None for roots."""
    position = {msg.id.strip(): i for i, msg in enumerate(arena)}
    parents: list[int | None] = []
    for i, msg in enumerate(arena):
        reply_to = msg.reply_to.strip()
        j = position.get(reply_to) if reply_to else None
        # j >= i covers self-replies and forward references alike.
        parents.append(j if j is not None and j < i else None)
    return parents


def _build_forest(messages: Iterable[Message]) -> list[Thread]:
    arena = _arena(messages)
    parents = _link(arena)

    children: list[list[int]] = [[] for _ in arena]
    true_depth = [0] * len(arena)
    root_of = list(range(len(arena)))
    # Parents precede children in the arena, so one forward pass settles depth
    # and root membership; children accumulate in chronological order.
    for i, parent in enumerate(parents):
        if parent is None:
            continue
        children[parent].append(i)
        true_depth[i] = true_depth[parent] + 1
        root_of[i] = root_of[parent]

    members: dict[int, list[int]] = {}
    for i, root in enumerate(root_of):
        members.setdefault(root, []).append(i)

    threads: list[Thread] = []
    for root, indexes in members.items():  # insertion order == root chronology
        nodes = tuple(
            ThreadNode(
                message=arena[i],
                parent=arena[parents[i]] if parents[i] is not None else None,
                child_ids=tuple(arena[c].id.strip() for c in children[i]),
                depth=min(true_depth[i], MAX_DISPLAY_DEPTH),
                true_depth=true_depth[i],
            )
            for i in indexes
        )
        agents = sorted({node.message.sender.strip() for node in nodes} - {""})
        threads.append(
            Thread(
                root=arena[root],
                nodes=nodes,
                depth=max(node.depth for node in nodes),
                agents=tuple(agents),
                last_activity=max(node.message.time for node in nodes),
            )
        )
    return threads


# ─── Public API ───────────────────────────────────────────────────────────────


def build_threads(messages: Iterable[Message]) -> list[Thread]:
    """Group messages into reply threads, earliest root first."""
    return _build_forest(messages)


def build_thread(messages: Iterable[Message], around_id: str) -> Thread | None:
    """Return the thread containing around_id, or None when it is unknown."""
    if not around_id.strip():
        return None
    return thread_for_message(_build_forest(messages), around_id)


def thread_index(threads: Iterable[Thread]) -> dict[str, Thread]:
    """Map every message ID to the thread that contains it."""
    index: dict[str, Thread] = {}
    for thread in threads:
        for node in thread.nodes:
            index[node.id] = thread
    return index


def thread_for_message(threads: Iterable[Thread], message_id: str) -> Thread | None:
    message_id = message_id.strip()
    for thread in threads:
        if message_id in thread:
            return thread
    return None


def iter_flatten(thread: Thread) -> Iterator[ThreadNode]:
    """Depth-first, parent before children, siblings chronological.

    Iterative so arbitrarily long reply chains do not hit the recursion limit.
    """
    stack = [thread.root_node]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(thread.children_of(node)))


def flatten_thread(thread: Thread | None) -> list[ThreadNode]:
    if thread is None or not thread.nodes:
        return []
    return list(iter_flatten(thread))


def thread_title(body: str) -> str:
    for line in body.splitlines():
        line = line.strip()
        if line:
            return line
    return ""


def summarize_thread(thread: Thread) -> ThreadSummary:
    return ThreadSummary(
        title=thread_title(thread.root.body),
        message_count=len(thread.nodes),
        participant_count=len({node.message.sender.strip() for node in thread.nodes} - {""}),
        last_activity=thread.last_activity,
    )


def is_cross_target_reply(node: ThreadNode) -> bool:
    """True when a reply lands in a different topic/DM than its parent."""
    if node.parent is None:
        return False
    return node.message.to.strip() != node.parent.to.strip()
