"""Who-talks-to-whom graph snapshots.

DMs contribute one directed edge sender -> peer. A topic is treated as a shared
channel: every topic message adds an edge from its sender to each *other*
agent that has ever posted in that topic (an audience approximation; the store
keeps no per-recipient delivery records).

The snapshot is bounded to `max_nodes` by folding the long tail into a
synthetic "others" node. Edges are re-aggregated against the folded node set,
and traffic that becomes others -> others is dropped and reported as
`others_internal` so the fold stays accountable.

// [LAW:one-source-of-truth] Node tallies are derived from the final edge list,
// so sum(edge.count) == sum(node.sent) == sum(node.received) by construction.
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from fmail_lens.core.message import Message, dm_peer, is_dm_target

DEFAULT_MAX_NODES = 12
DEFAULT_MAX_TOPICS = 10
OTHERS = "others"

EdgeKey = tuple[str, str]


@dataclass(frozen=True)
class GraphNode:
    name: str
    sent: int
    received: int

    @property
    def total(self) -> int:
        return self.sent + self.received


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    count: int


@dataclass(frozen=True)
class TopicSummary:
    name: str
    message_count: int
    participant_count: int


@dataclass(frozen=True)
class GraphSnapshot:
    messages: int
    nodes: tuple[GraphNode, ...]
    edges: tuple[GraphEdge, ...]
    topics: tuple[TopicSummary, ...]
    agent_topic_edges: tuple[GraphEdge, ...]
    absorbed: tuple[str, ...] = ()  # agents folded into OTHERS, by rank
    others_internal: int = 0  # edge weight lost to others -> others self-loops

    def node(self, name: str) -> GraphNode | None:
        for node in self.nodes:
            if node.name == name:
                return node
        return None


# ─── Phases ───────────────────────────────────────────────────────────────────


def _split(messages: Iterable[Message]):
    """Phase 1: DM edges, topic participants, topic volumes, agent->topic counts."""
    dm_edges: Counter[EdgeKey] = Counter()
    participants: dict[str, set[str]] = {}
    topic_senders: dict[str, list[str]] = {}
    agent_topic: Counter[EdgeKey] = Counter()
    for msg in messages:
        sender = msg.sender.strip()
        target = msg.to.strip()
        if not sender or not target:
            continue
        if is_dm_target(target):
            peer = dm_peer(target)
            if peer and peer != sender:
                dm_edges[(sender, peer)] += 1
            continue
        participants.setdefault(target, set()).add(sender)
        topic_senders.setdefault(target, []).append(sender)
        agent_topic[(sender, target)] += 1
    return dm_edges, participants, topic_senders, agent_topic


def _broadcast_edges(
    dm_edges: Mapping[EdgeKey, int],
    participants: Mapping[str, set[str]],
    topic_senders: Mapping[str, list[str]],
) -> Counter[EdgeKey]:
    """Phase 2: directed agent -> agent edge weights."""
    edges: Counter[EdgeKey] = Counter(dm_edges)
    for topic, senders in topic_senders.items():
        audience = participants[topic]
        if len(audience) <= 1:
            continue
        for sender, posted in Counter(senders).items():
            for peer in audience:
                if peer != sender:
                    edges[(sender, peer)] += posted
    return edges


def _tally(edges: Mapping[EdgeKey, int]) -> list[GraphNode]:
    """Phase 3: per-node sent/received, sorted by total desc then name."""
    sent: Counter[str] = Counter()
    received: Counter[str] = Counter()
    for (source, target), count in edges.items():
        if count <= 0 or source == target:
            continue
        sent[source] += count
        received[target] += count
    names = set(sent) | set(received)
    nodes = [GraphNode(name=name, sent=sent[name], received=received[name]) for name in names]
    nodes.sort(key=lambda n: (-n.total, n.name))
    return nodes


def _collapse_map(ranked: list[GraphNode], max_nodes: int) -> tuple[dict[str, str], tuple[str, ...]]:
    """Phase 4a: name -> displayed name, plus the absorbed names in rank order."""
    if len(ranked) <= max_nodes:
        return {node.name: node.name for node in ranked}, ()
    keep = max_nodes - 1
    mapping = {node.name: node.name for node in ranked[:keep]}
    absorbed = tuple(node.name for node in ranked[keep:])
    for name in absorbed:
        mapping[name] = OTHERS
    return mapping, absorbed


def _sorted_edges(edges: Mapping[EdgeKey, int]) -> tuple[GraphEdge, ...]:
    out = [GraphEdge(source=s, target=t, count=c) for (s, t), c in edges.items() if c > 0]
    out.sort(key=lambda e: (-e.count, e.source, e.target))
    return tuple(out)


def _topic_overlay(
    participants: Mapping[str, set[str]],
    topic_senders: Mapping[str, list[str]],
    agent_topic: Mapping[EdgeKey, int],
    mapping: Mapping[str, str],
    max_topics: int,
) -> tuple[tuple[TopicSummary, ...], tuple[GraphEdge, ...]]:
    """Phase 5: busiest topics and collapsed agent -> topic edges into them."""
    topics = [
        TopicSummary(name=name, message_count=len(senders), participant_count=len(participants[name]))
        for name, senders in topic_senders.items()
    ]
    topics.sort(key=lambda t: (-t.message_count, t.name))
    topics = topics[:max_topics] if max_topics > 0 else []
    kept = {t.name for t in topics}

    folded: Counter[EdgeKey] = Counter()
    for (agent, topic), count in agent_topic.items():
        if topic not in kept:
            continue
        # Agents that only ever broadcast alone have no node; they keep their name.
        folded[(mapping.get(agent, agent), topic)] += count
    return tuple(topics), _sorted_edges(folded)


# ─── Public API ───────────────────────────────────────────────────────────────


def build_graph_snapshot(
    messages: Iterable[Message],
    max_nodes: int = DEFAULT_MAX_NODES,
    *,
    max_topics: int = DEFAULT_MAX_TOPICS,
) -> GraphSnapshot:
    """Build a bounded, deterministic relationship graph.

    Args:
        messages: Any iterable of messages; order does not matter.
        max_nodes: Upper bound on len(snapshot.nodes), "others" included.
            Values <= 0 fall back to DEFAULT_MAX_NODES.
        max_topics: Number of busiest topics kept in the overlay.
    """
    if max_nodes <= 0:
        max_nodes = DEFAULT_MAX_NODES
    messages = list(messages)

    dm_edges, participants, topic_senders, agent_topic = _split(messages)
    edges = _broadcast_edges(dm_edges, participants, topic_senders)
    ranked = _tally(edges)
    mapping, absorbed = _collapse_map(ranked, max_nodes)

    folded: Counter[EdgeKey] = Counter()
    others_internal = 0
    for (source, target), count in edges.items():
        if count <= 0 or source == target:
            continue
        source, target = mapping[source], mapping[target]
        if source == target:
            others_internal += count
            continue
        folded[(source, target)] += count

    topics, agent_topic_edges = _topic_overlay(
        participants, topic_senders, agent_topic, mapping, max_topics
    )
    return GraphSnapshot(
        messages=len(messages),
        nodes=tuple(_tally(folded)),
        edges=_sorted_edges(folded),
        topics=topics,
        agent_topic_edges=agent_topic_edges,
        absorbed=absorbed,
        others_internal=others_internal,
    )
