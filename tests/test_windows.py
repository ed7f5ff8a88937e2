"""Unit tests for core.windows - bounds, all-time resolution, bucketing."""

from datetime import timedelta

import pytest

from fmail_lens.core.windows import (
    ALL_TIME_PAD,
    bucket_count,
    bucket_index,
    bucket_start_time,
    choose_bucket_interval,
    filter_by_time,
    resolve_window,
    truncate,
    validate_bucket,
    validate_window,
)
from fmail_lens.errors import InvalidWindow
from tests.harness import T0, at, make_message


def test_validate_window_rejects_end_before_start():
    with pytest.raises(InvalidWindow):
        validate_window(at(10), at(0))


def test_invalid_window_is_a_value_error():
    """Callers that only know ValueError still catch it."""
    with pytest.raises(ValueError):
        validate_window(at(10), at(0))


def test_validate_window_allows_empty_span():
    assert validate_window(T0, T0) == (T0, T0)


@pytest.mark.parametrize("bucket", [timedelta(0), timedelta(seconds=-1)])
def test_validate_bucket_rejects_non_positive(bucket):
    with pytest.raises(InvalidWindow):
        validate_bucket(bucket)


def test_filter_by_time_is_half_open():
    msgs = [make_message("a", when=0), make_message("b", when=5), make_message("c", when=10)]
    assert [m.id for m in filter_by_time(msgs, at(0), at(10))] == ["a", "b"]


def test_resolve_window_all_time_pads_end():
    msgs = [make_message("a", when=0), make_message("b", when=60)]
    start, end = resolve_window(msgs, None, None, now=at(hours=5))
    assert start == at(0)
    assert end == at(60) + ALL_TIME_PAD
    assert len(filter_by_time(msgs, start, end)) == 2


def test_resolve_window_empty_collapses_to_now():
    now = at(hours=1)
    assert resolve_window([], None, None, now=now) == (now, now)


def test_resolve_window_keeps_explicit_bounds():
    assert resolve_window([], at(0), at(30), now=at(99)) == (at(0), at(30))


def test_resolve_window_derived_end_never_precedes_start():
    msgs = [make_message("a", when=0)]
    start, end = resolve_window(msgs, at(hours=2), None, now=at(0))
    assert end >= start


def test_choose_bucket_interval_keeps_bucket_count_bounded():
    for span in (timedelta(minutes=30), timedelta(hours=4), timedelta(days=1), timedelta(days=7)):
        interval = choose_bucket_interval(T0, T0 + span)
        assert bucket_count(T0, T0 + span, interval) <= 48


def test_choose_bucket_interval_picks_smallest_fitting_candidate():
    assert choose_bucket_interval(T0, T0 + timedelta(hours=4)) == timedelta(minutes=5)
    assert choose_bucket_interval(T0, T0 + timedelta(hours=24)) == timedelta(minutes=30)


def test_truncate_floors_to_epoch_multiple():
    assert truncate(at(minutes=7, seconds=30), timedelta(minutes=5)) == at(minutes=5)


def test_bucket_start_time_anchors_hourly_and_daily():
    ts = at(minutes=37)
    assert bucket_start_time(ts, timedelta(hours=2)) == T0
    assert bucket_start_time(ts, timedelta(days=1)) == T0.replace(hour=0)


def test_bucket_count_rounds_up_partial_bucket():
    assert bucket_count(T0, at(minutes=25), timedelta(minutes=10)) == 3
    assert bucket_count(T0, at(minutes=30), timedelta(minutes=10)) == 3
    assert bucket_count(T0, T0, timedelta(minutes=10)) == 0


def test_bucket_index():
    assert bucket_index(at(minutes=19), T0, timedelta(minutes=10)) == 1
