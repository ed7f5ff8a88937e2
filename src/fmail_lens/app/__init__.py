"""Stateful per-view coordination: windows, dedup, fetch scheduling."""
