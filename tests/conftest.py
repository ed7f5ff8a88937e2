"""Pytest configuration and shared fixtures for fmail-lens tests."""

import random

import pytest

import fmail_lens.io.logging_setup
import fmail_lens.io.perf_logging


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep settings, state and log files inside the test's tmp dir."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("FMAIL_LENS_LOG_DIR", str(tmp_path / "logs"))
    for name in ("FMAIL_LENS_SELF_AGENT", "FMAIL_LENS_STATE_PATH", "FMAIL_LENS_LOG_FILE", "FMAIL_LENS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    fmail_lens.io.logging_setup.reset()
    fmail_lens.io.perf_logging.set_enabled(True)


@pytest.fixture
def rng():
    """Seeded RNG for permutation-style property checks."""
    return random.Random(20260209)
