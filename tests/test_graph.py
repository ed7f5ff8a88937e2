"""Unit tests for core.graph - edge weights, collapsing, accounting invariants."""

from fmail_lens.core.graph import OTHERS, build_graph_snapshot
from tests.harness import make_message


def _msgs(rows):
    """rows: list of (sender, to, count) -> distinct messages."""
    out = []
    n = 0
    for sender, to, count in rows:
        for _ in range(count):
            out.append(make_message(f"m{n:04d}", sender=sender, to=to, when=n))
            n += 1
    return out


def _edge_map(snapshot):
    return {(e.source, e.target): e.count for e in snapshot.edges}


def _check_invariants(snapshot, max_nodes):
    assert len(snapshot.nodes) <= max_nodes
    for node in snapshot.nodes:
        assert node.total == node.sent + node.received
    total_edges = sum(e.count for e in snapshot.edges)
    assert total_edges == sum(n.sent for n in snapshot.nodes)
    assert total_edges == sum(n.received for n in snapshot.nodes)
    assert all(e.source != e.target for e in snapshot.edges)


# ─── Scenarios ────────────────────────────────────────────────────────────────


def test_two_node_cap_folds_tail_into_others():
    """a: 5 to T, b: 3 to T, c: 1 DM to a; maxNodes=2 -> a + others."""
    msgs = _msgs([("a", "T", 5), ("b", "T", 3), ("c", "@a", 1)])
    snapshot = build_graph_snapshot(msgs, 2)

    assert [n.name for n in snapshot.nodes] == ["a", OTHERS]
    assert snapshot.absorbed == ("b", "c")
    assert _edge_map(snapshot) == {("a", OTHERS): 5, (OTHERS, "a"): 4}
    assert snapshot.others_internal == 0
    _check_invariants(snapshot, 2)

    others = snapshot.node(OTHERS)
    uncapped = build_graph_snapshot(msgs, 100)
    assert others.total == sum(uncapped.node(name).total for name in snapshot.absorbed)


def test_uncapped_topic_broadcast_and_dm_edges():
    msgs = _msgs([("a", "T", 5), ("b", "T", 3), ("c", "@a", 1)])
    snapshot = build_graph_snapshot(msgs, 12)
    assert _edge_map(snapshot) == {("a", "b"): 5, ("b", "a"): 3, ("c", "a"): 1}
    assert snapshot.node("a").sent == 5
    assert snapshot.node("a").received == 4
    assert snapshot.absorbed == ()
    _check_invariants(snapshot, 12)


def test_broadcast_reaches_every_other_participant():
    msgs = _msgs([("a", "T", 2), ("b", "T", 1), ("c", "T", 1)])
    edges = _edge_map(build_graph_snapshot(msgs))
    assert edges[("a", "b")] == 2
    assert edges[("a", "c")] == 2
    assert edges[("b", "c")] == 1


def test_solo_topic_and_self_dm_produce_no_edges():
    msgs = _msgs([("a", "lonely", 3), ("a", "@a", 2)])
    snapshot = build_graph_snapshot(msgs)
    assert snapshot.edges == ()
    assert snapshot.nodes == ()
    # The topic overlay still sees the solo poster.
    assert [(e.source, e.target, e.count) for e in snapshot.agent_topic_edges] == [("a", "lonely", 3)]


def test_internal_others_traffic_is_accounted():
    msgs = _msgs([("a", "T", 10), ("b", "T", 1), ("c", "@d", 2), ("d", "@c", 1)])
    snapshot = build_graph_snapshot(msgs, 2)
    _check_invariants(snapshot, 2)
    uncapped = build_graph_snapshot(msgs, 100)
    absorbed_total = sum(uncapped.node(name).total for name in snapshot.absorbed)
    others = snapshot.node(OTHERS)
    assert snapshot.others_internal == 3
    assert others.total + 2 * snapshot.others_internal == absorbed_total


def test_max_nodes_one_collapses_everything():
    msgs = _msgs([("a", "T", 2), ("b", "T", 2)])
    snapshot = build_graph_snapshot(msgs, 1)
    assert snapshot.nodes == ()
    assert snapshot.edges == ()
    assert snapshot.others_internal == 4


def test_non_positive_max_nodes_uses_default():
    msgs = _msgs([(f"agent{i}", "T", 1) for i in range(20)])
    snapshot = build_graph_snapshot(msgs, 0)
    assert len(snapshot.nodes) == 12


def test_topic_overlay_keeps_busiest_topics():
    msgs = _msgs([("a", "big", 4), ("b", "big", 1), ("a", "mid", 2), ("b", "small", 1)])
    snapshot = build_graph_snapshot(msgs, max_topics=2)
    assert [(t.name, t.message_count, t.participant_count) for t in snapshot.topics] == [
        ("big", 5, 2),
        ("mid", 2, 1),
    ]
    assert {e.target for e in snapshot.agent_topic_edges} == {"big", "mid"}


def test_empty_input():
    snapshot = build_graph_snapshot([])
    assert snapshot.messages == 0
    assert snapshot.nodes == ()
    assert snapshot.edges == ()
    assert snapshot.topics == ()


# ─── Properties ───────────────────────────────────────────────────────────────


def _random_messages(rng, n=80):
    agents = [f"ag{i}" for i in range(9)]
    targets = ["t1", "t2", "t3"] + [f"@{a}" for a in agents]
    return [
        make_message(f"r{i:03d}", sender=rng.choice(agents), to=rng.choice(targets), when=i)
        for i in range(n)
    ]


def test_invariants_hold_for_random_inputs_and_caps(rng):
    for _ in range(30):
        msgs = _random_messages(rng)
        uncapped = build_graph_snapshot(msgs, 1000)
        for max_nodes in (1, 2, 3, 5, 12):
            snapshot = build_graph_snapshot(msgs, max_nodes)
            _check_invariants(snapshot, max_nodes)
            if snapshot.absorbed:
                absorbed_total = sum(uncapped.node(name).total for name in snapshot.absorbed)
                others = snapshot.node(OTHERS)
                others_total = others.total if others else 0
                assert others_total + 2 * snapshot.others_internal == absorbed_total


def test_snapshot_is_independent_of_input_order(rng):
    msgs = _random_messages(rng)
    expected = build_graph_snapshot(msgs, 4)
    for _ in range(5):
        shuffled = list(msgs)
        rng.shuffle(shuffled)
        assert build_graph_snapshot(shuffled, 4) == expected
