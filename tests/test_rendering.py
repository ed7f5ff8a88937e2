"""Tests for rich renderables and formatting helpers."""

from datetime import timedelta

import pytest
from rich.console import Console

from fmail_lens.app.live_tail import LiveTail
from fmail_lens.core.graph import build_graph_snapshot
from fmail_lens.core.heatmap import build_heatmap_matrix, summarize_window
from fmail_lens.core.stats import compute_stats
from fmail_lens.core.threads import build_threads
from fmail_lens.rendering import (
    SPARK_CHARS,
    VIEW_RENDERERS,
    format_duration,
    render_live_tail,
    render_value,
    sparkline,
)
from tests.harness import at, make_message


def _text(renderable) -> str:
    console = Console(record=True, width=140, color_system=None)
    console.print(renderable)
    return console.export_text()


def _sample():
    return [
        make_message("A", sender="alice", to="task", body="Deploy plan", when=0),
        make_message("B", sender="bob", to="task", when=90, reply_to="A"),
        make_message("C", sender="carol", to="@alice", when=200),
    ]


# ─── Helpers ──────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "seconds, expected",
    [(None, "-"), (42, "42s"), (125, "2m05s"), (3 * 3600 + 120, "3h02m"), (2 * 86400 + 3600, "2d01h")],
)
def test_format_duration(seconds, expected):
    value = None if seconds is None else timedelta(seconds=seconds)
    assert format_duration(value) == expected


def test_sparkline_scales_to_peak():
    assert sparkline([]) == ""
    assert sparkline([0, 0]) == SPARK_CHARS[0] * 2
    line = sparkline([0, 5, 10])
    assert line[0] == SPARK_CHARS[0]
    assert line[-1] == SPARK_CHARS[-1]


# ─── Views ────────────────────────────────────────────────────────────────────


def test_every_view_has_a_renderer():
    assert set(VIEW_RENDERERS) == {"stats", "graph", "threads", "heatmap"}


def test_stats_render_shows_totals_and_latency():
    text = _text(render_value("stats", compute_stats(_sample(), at(0), at(hours=1))))
    assert "messages" in text
    assert "1m30s" in text
    assert "response latency" in text


def test_empty_stats_render_says_so():
    text = _text(render_value("stats", compute_stats([], at(0), at(hours=1))))
    assert "no messages in window" in text


def test_graph_render_lists_agents_and_others():
    msgs = [make_message(f"m{i}", sender=s, to="T", when=i) for i, s in enumerate("aaabbc")]
    text = _text(render_value("graph", build_graph_snapshot(msgs, 2)))
    assert "others" in text
    assert "internal traffic" in text


def test_threads_render_nests_replies():
    text = _text(render_value("threads", build_threads(_sample())))
    assert "2 threads" in text
    assert "Deploy plan" in text
    assert "bob → task" in text
    assert _text(render_value("threads", [])).strip() == "no threads"


def test_heatmap_render_includes_summary():
    msgs = _sample()
    matrix = build_heatmap_matrix(msgs, at(0), at(minutes=30), timedelta(minutes=10))
    text = _text(VIEW_RENDERERS["heatmap"](matrix, summarize_window(msgs, at(0), at(minutes=30))))
    assert "alice" in text
    assert "3 msgs" in text
    assert "first response 1m30s" in text


def test_live_tail_render():
    tail = LiveTail()
    assert "waiting for messages" in _text(render_live_tail(tail))
    tail.push(make_message("1", sender="alice", body="urgent thing", priority="high"))
    tail.pause()
    text = _text(render_live_tail(tail))
    assert "LIVE TAIL" in text
    assert "PAUSED" in text
    assert "urgent thing" in text
