"""Test harness for fmail-lens.

Re-exports all public API for convenient imports:
    from tests.harness import make_message, FakeClock, run_app, ...
"""

from tests.harness.app_runner import run_app, wait_until
from tests.harness.assertions import (
    active_snapshot,
    is_following,
    live_subscriptions,
    message_count,
)
from tests.harness.builders import T0, FakeClock, FlakySource, at, make_message
from tests.harness.interactions import cycle_to_view, pan_steps, press_and_settle

__all__ = [
    "run_app",
    "wait_until",
    "press_and_settle",
    "cycle_to_view",
    "pan_steps",
    "active_snapshot",
    "is_following",
    "live_subscriptions",
    "message_count",
    "T0",
    "FakeClock",
    "FlakySource",
    "at",
    "make_message",
]
