"""Unit tests for core.heatmap - matrix totals, thresholds, sorting, breakdowns."""

from datetime import timedelta

import pytest

from fmail_lens.core.heatmap import (
    UNKNOWN_ROW,
    HeatmapMode,
    HeatmapSort,
    build_heatmap_matrix,
    cell_breakdown,
    cell_level,
    scaled_thresholds,
    summarize_window,
)
from fmail_lens.errors import InvalidWindow
from tests.harness import at, make_message

TEN_MIN = timedelta(minutes=10)


def _sample():
    return [
        make_message("1", sender="alice", to="task", when=0),
        make_message("2", sender="alice", to="task", when=60),
        make_message("3", sender="alice", to="@bob", when=700),
        make_message("4", sender="bob", to="build", when=1300),
        make_message("5", sender="bob", to="task", when=1500),
        make_message("6", sender="", to="task", when=1700),
    ]


# ─── Totals ───────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("mode", list(HeatmapMode))
def test_row_and_column_totals_match_in_window_count(mode):
    msgs = _sample() + [make_message("late", when=3600)]
    matrix = build_heatmap_matrix(msgs, at(0), at(minutes=30), TEN_MIN, mode)
    assert matrix.cols == 3
    assert sum(row.total for row in matrix.rows) == 6
    assert sum(matrix.column_totals()) == 6
    assert matrix.total == 6


def test_totals_hold_for_random_inputs_and_dividing_buckets(rng):
    msgs = [
        make_message(f"m{i}", sender=rng.choice("abcd"), to=rng.choice(["t1", "t2", "@a"]),
                     when=rng.randint(-600, 7800))
        for i in range(200)
    ]
    start, end = at(0), at(hours=2)
    expected = sum(1 for m in msgs if start <= m.time < end)
    for minutes in (1, 5, 10, 15, 30, 60, 120):
        for mode in HeatmapMode:
            matrix = build_heatmap_matrix(msgs, start, end, timedelta(minutes=minutes), mode)
            assert matrix.cols == 120 // minutes
            assert sum(r.total for r in matrix.rows) == expected
            assert sum(matrix.column_totals()) == expected


def test_agent_mode_rows_and_cells():
    matrix = build_heatmap_matrix(_sample(), at(0), at(minutes=30), TEN_MIN)
    assert matrix.row("alice").counts == (2, 1, 0)
    assert matrix.row("bob").counts == (0, 0, 2)
    assert matrix.row(UNKNOWN_ROW).counts == (0, 0, 1)


def test_topic_mode_shows_dms_as_their_own_rows():
    matrix = build_heatmap_matrix(_sample(), at(0), at(minutes=30), TEN_MIN, HeatmapMode.TOPICS)
    assert matrix.row("task").total == 4
    assert matrix.row("@bob").total == 1
    assert matrix.row("build").total == 1


def test_partial_last_column_is_cut_at_window_end():
    matrix = build_heatmap_matrix([], at(0), at(minutes=25), TEN_MIN)
    assert matrix.cols == 3
    assert matrix.column_range(2) == (at(minutes=20), at(minutes=25))
    assert matrix.rows == ()
    assert matrix.thresholds == (1, 1, 1)


# ─── Validation ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize("bucket", [timedelta(0), timedelta(minutes=-5)])
def test_non_positive_bucket_raises(bucket):
    with pytest.raises(InvalidWindow):
        build_heatmap_matrix([], at(0), at(minutes=30), bucket)


def test_end_before_start_raises():
    with pytest.raises(InvalidWindow):
        build_heatmap_matrix([], at(60), at(0), TEN_MIN)


# ─── Intensity ────────────────────────────────────────────────────────────────


def test_scaled_thresholds_use_nonzero_quantiles():
    assert scaled_thresholds([0, 0, 0]) == (1, 1, 1)
    assert scaled_thresholds(range(1, 11)) == (5, 8, 9)
    assert scaled_thresholds([7]) == (7, 7, 7)


def test_thresholds_are_non_decreasing(rng):
    for _ in range(50):
        counts = [rng.randint(0, 20) for _ in range(rng.randint(0, 30))]
        lo, mid, hi = scaled_thresholds(counts)
        assert 1 <= lo <= mid <= hi


def test_cell_level_boundaries():
    thresholds = (2, 4, 8)
    assert [cell_level(c, thresholds) for c in (0, 1, 2, 3, 4, 8, 9)] == [0, 1, 1, 2, 2, 3, 4]


# ─── Sorting ──────────────────────────────────────────────────────────────────


def test_sort_modes():
    msgs = [
        make_message("1", sender="zed", when=0),
        make_message("2", sender="zed", when=1),
        make_message("3", sender="zed", when=700),
        make_message("4", sender="amy", when=1300),
        make_message("5", sender="amy", when=1301),
        make_message("6", sender="max", when=1400),
    ]
    matrix = build_heatmap_matrix(msgs, at(0), at(minutes=30), TEN_MIN)
    assert [r.label for r in matrix.rows] == ["zed", "amy", "max"]
    assert [r.label for r in matrix.sorted_rows(HeatmapSort.NAME).rows] == ["amy", "max", "zed"]
    assert [r.label for r in matrix.sorted_rows(HeatmapSort.PEAK).rows] == ["zed", "amy", "max"]
    assert [r.label for r in matrix.sorted_rows(HeatmapSort.RECENCY).rows] == ["amy", "max", "zed"]
    assert matrix.sorted_rows("name").sort is HeatmapSort.NAME


def test_sort_cycles_through_all_modes():
    order = [HeatmapSort.TOTAL]
    for _ in range(len(HeatmapSort)):
        order.append(order[-1].next())
    assert order[-1] is HeatmapSort.TOTAL
    assert set(order) == set(HeatmapSort)


def test_peak_bucket():
    matrix = build_heatmap_matrix(_sample(), at(0), at(minutes=30), TEN_MIN)
    assert matrix.peak_bucket() == (at(minutes=20), 3)
    empty = build_heatmap_matrix([], at(0), at(minutes=30), TEN_MIN)
    assert empty.peak_bucket() == (None, 0)


# ─── Breakdown and summary ────────────────────────────────────────────────────


def test_cell_breakdown_agent_mode_counts_topics_and_dms():
    matrix = build_heatmap_matrix(_sample(), at(0), at(minutes=30), TEN_MIN)
    assert cell_breakdown(_sample(), matrix, "alice", 0) == ([("task", 2)], 0)
    assert cell_breakdown(_sample(), matrix, "alice", 1) == ([], 1)
    assert cell_breakdown(_sample(), matrix, "alice", 99) == ([], 0)


def test_cell_breakdown_topic_mode_counts_senders():
    msgs = _sample()
    matrix = build_heatmap_matrix(msgs, at(0), at(minutes=30), TEN_MIN, HeatmapMode.TOPICS)
    pairs, dm_count = cell_breakdown(msgs, matrix, "task", 2)
    assert pairs == [("bob", 1)]
    assert dm_count == 0


def test_summarize_window():
    msgs = [
        make_message("A", sender="alice", to="task", when=0),
        make_message("B", sender="bob", to="task", when=30, reply_to="A"),
        make_message("C", sender="carol", to="task", when=90, reply_to="A"),
        make_message("D", sender="alice", to="build", when=100),
        make_message("E", sender="bob", to="task", when=160, reply_to="D"),
    ]
    summary = summarize_window(msgs, at(0), at(hours=1))
    assert summary.total == 5
    assert summary.active_agents == 3
    assert (summary.most_active_agent, summary.most_active_count) == ("alice", 2)
    assert (summary.busiest_topic, summary.busiest_topic_count) == ("task", 4)
    # first responses: A -> 30s, D -> 60s
    assert summary.avg_first_response == timedelta(seconds=45)
