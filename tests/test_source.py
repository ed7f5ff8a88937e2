"""Tests for the message source contract, MemorySource and window collection."""

import threading

import pytest

from fmail_lens.errors import SourceUnavailable
from fmail_lens.source import (
    AgentRecord,
    MemorySource,
    MessageFilter,
    SearchQuery,
    SubscriptionFilter,
    collect_window,
    guarded,
)
from tests.harness import FlakySource, at, make_message


def _store():
    return MemorySource.from_messages(
        [
            make_message("1", sender="alice", to="task", when=0),
            make_message("2", sender="bob", to="task", when=10, reply_to="1"),
            make_message("3", sender="bob", to="build", when=20),
            make_message("4", sender="bob", to="@me", when=30),
            make_message("5", sender="me", to="@bob", when=40),
            make_message("6", sender="carol", to="@dave", when=50),
        ],
        self_agent="me",
    )


# ─── Filters ──────────────────────────────────────────────────────────────────


def test_message_filter_bounds_are_inclusive_and_limit_keeps_newest():
    msgs = [make_message(str(i), when=i) for i in range(10)]
    assert [m.id for m in MessageFilter(since=at(2), until=at(5)).apply(msgs)] == ["2", "3", "4", "5"]
    assert [m.id for m in MessageFilter(limit=3).apply(reversed(msgs))] == ["7", "8", "9"]
    assert len(MessageFilter().apply(msgs)) == 10


def test_subscription_filter():
    dm = make_message("d", to="@me")
    topic = make_message("t", to="task")
    assert SubscriptionFilter(include_dm=True).matches(dm)
    assert not SubscriptionFilter().matches(dm)
    assert SubscriptionFilter(topic="task").matches(topic)
    assert not SubscriptionFilter(topic="build").matches(topic)


def test_search_query_matching():
    msg = make_message("x", sender="alice", to="task", body="Deploy the thing", when=5)
    assert SearchQuery(text="deploy").matches(msg)
    assert not SearchQuery(text="deploy", sender="bob").matches(msg)
    assert not SearchQuery(until=at(1)).matches(msg)


# ─── MemorySource queries ─────────────────────────────────────────────────────


def test_topics_exclude_dms_and_report_activity():
    topics = {t.name: t for t in _store().topics()}
    assert set(topics) == {"task", "build"}
    assert topics["task"].message_count == 2
    assert topics["task"].participants == ("alice", "bob")
    assert topics["task"].last_activity == at(10)


def test_messages_per_topic():
    src = _store()
    assert [m.id for m in src.messages("task", MessageFilter())] == ["1", "2"]
    assert [m.id for m in src.messages(" task ", MessageFilter(limit=1))] == ["2"]
    assert src.messages("nope", MessageFilter()) == []


def test_dm_conversations_only_include_the_viewer():
    src = _store()
    convs = src.dm_conversations("me")
    assert [(c.agent, c.message_count) for c in convs] == [("bob", 2)]
    assert [m.id for m in src.dms("bob", MessageFilter())] == ["4", "5"]
    assert src.dm_conversations("") == convs


def test_dm_unread_count_follows_the_peer_read_marker():
    messages = _store()._snapshot() + [make_message("7", sender="bob", to="@me", when=60)]
    assert MemorySource.from_messages(messages, "me").dm_conversations("me")[0].unread_count == 2
    marked = MemorySource.from_messages(messages, "me", read_markers={"@bob": "4"})
    (conv,) = marked.dm_conversations("me")
    assert (conv.agent, conv.message_count, conv.unread_count) == ("bob", 3, 1)


def test_append_deduplicates():
    src = MemorySource()
    msg = make_message("1")
    assert src.append(msg)
    assert not src.append(make_message("1"))
    assert src.extend([make_message("1"), make_message("2")]) == 1


def test_agents_merge_registered_records_with_activity():
    src = _store()
    src.register_agent(AgentRecord(name="alice", status="busy"))
    src.register_agent(AgentRecord(name="zoe"))
    agents = {a.name: a for a in src.agents()}
    assert agents["alice"].status == "busy"
    assert agents["alice"].last_seen == at(0)
    assert agents["bob"].last_seen == at(30)
    assert agents["zoe"].last_seen is None


def test_search_fills_thread_neighbours():
    src = MemorySource.from_messages(
        [
            make_message("A", body="start deploy", when=0),
            make_message("B", body="deploy ok", when=1, reply_to="A"),
            make_message("C", body="thanks", when=2, reply_to="B"),
        ]
    )
    results = src.search(SearchQuery(text="deploy"))
    assert [r.message.id for r in results] == ["A", "B"]
    assert results[0].prev_in_thread is None
    assert results[0].next_in_thread.id == "B"
    assert results[1].prev_in_thread.id == "A"
    assert results[1].next_in_thread.id == "C"
    assert results[1].topic == "task"


# ─── Subscriptions ────────────────────────────────────────────────────────────


def test_subscription_receives_matching_appends():
    src = MemorySource()
    sub = src.subscribe(SubscriptionFilter(topic="task"))
    src.append(make_message("1", to="task"))
    src.append(make_message("2", to="other"))
    src.append(make_message("1", to="task"))
    assert sub.get(timeout=0.1).id == "1"
    assert sub.get(timeout=0.01) is None


def test_cancel_unblocks_a_blocked_receiver_and_unregisters():
    src = MemorySource()
    sub = src.subscribe(SubscriptionFilter(include_dm=True))
    received = []
    done = threading.Event()

    def receiver():
        for msg in sub:
            received.append(msg)
        done.set()

    thread = threading.Thread(target=receiver, daemon=True)
    thread.start()
    src.append(make_message("1"))
    sub.cancel()
    assert done.wait(timeout=2.0)
    thread.join(timeout=2.0)
    assert not thread.is_alive()
    assert src.subscriber_count == 0
    assert not sub.publish(make_message("2"))
    sub.cancel()  # idempotent


def test_cancel_wakes_every_waiter():
    sub = MemorySource().subscribe(SubscriptionFilter())
    results = []
    threads = [threading.Thread(target=lambda: results.append(sub.get()), daemon=True) for _ in range(3)]
    for t in threads:
        t.start()
    sub.cancel()
    for t in threads:
        t.join(timeout=2.0)
    assert results == [None, None, None]


# ─── collect_window ───────────────────────────────────────────────────────────


def test_collect_window_merges_topics_and_dms_chronologically():
    window = collect_window(_store(), MessageFilter(), "me")
    assert [m.id for m in window.messages] == ["1", "2", "3", "4", "5"]
    assert window.topic_participants == {"task": ("alice", "bob"), "build": ("bob",)}
    assert not window.has_older


def test_collect_window_flags_full_pages():
    window = collect_window(_store(), MessageFilter(limit=2), "me")
    assert window.has_older
    window = collect_window(_store(), MessageFilter(limit=5), "me")
    assert not window.has_older


def test_full_page_clamps_quieter_targets_to_its_edge():
    src = MemorySource.from_messages(
        [make_message(f"a{i}", to="alpha", when=100 + i) for i in range(10)]
        + [make_message("b0", to="beta", when=0)]
    )
    window = collect_window(src, MessageFilter(limit=3), "")
    assert [m.id for m in window.messages] == ["a7", "a8", "a9"]
    assert window.has_older


def test_dm_listing_failure_drops_dms_only(caplog):
    src = FlakySource(self_agent="me", fail={"dm_conversations"})
    src.extend(_store()._snapshot(), notify=False)
    window = collect_window(src, MessageFilter(), "me")
    assert [m.id for m in window.messages] == ["1", "2", "3"]
    assert "dm conversation listing failed" in caplog.text


@pytest.mark.parametrize("operation", ["topics", "messages", "dms"])
def test_other_failures_abort_collection(operation):
    src = FlakySource(self_agent="me", fail={operation})
    src.extend(_store()._snapshot(), notify=False)
    with pytest.raises(SourceUnavailable):
        collect_window(src, MessageFilter(), "me")


def test_oserror_is_wrapped_as_source_unavailable():
    src = FlakySource(fail={"topics"}, raise_oserror=True)
    with pytest.raises(SourceUnavailable) as exc_info:
        collect_window(src, MessageFilter(), "me")
    assert exc_info.value.operation == "topics"
    assert isinstance(exc_info.value.cause, OSError)


def test_guarded_passes_results_through():
    assert guarded("noop", lambda: [1, 2]) == [1, 2]
    with pytest.raises(SourceUnavailable):
        guarded("timeout", _raise_timeout)


def _raise_timeout():
    raise TimeoutError("slow")
