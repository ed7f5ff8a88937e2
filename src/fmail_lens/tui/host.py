"""Textual host for live analytics views.

One LiveWindowCoordinator per analytics view, all fed from the same
MessageSource, plus a live tail with its own subscription.
Fetches and the push pump run as textual thread workers; their results hop
back onto the app thread through call_from_thread, so coordinators are only
ever touched from the event loop.

// [LAW:locality-or-seam] TextualScheduler is the only textual-aware piece
//   the coordinators see.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Footer, Static

from fmail_lens.app.coordinator import LiveWindowCoordinator, ViewSnapshot
from fmail_lens.app.live_tail import LiveTail
from fmail_lens.app.views import graph_view, heatmap_view, stats_view, threads_view
from fmail_lens.core.message import Message
from fmail_lens.io.settings import EngineSettings
from fmail_lens.rendering import render_live_tail, render_value, window_label
from fmail_lens.source import MessageSource, Subscription, SubscriptionFilter

logger = logging.getLogger(__name__)

TAIL_VIEW = "tail"
VIEW_ORDER = ("stats", "heatmap", "graph", "threads", TAIL_VIEW)


class TextualScheduler:
    """Scheduler backed by App.run_worker(thread=True) and call_from_thread."""

    def __init__(self, app: App):
        self.app = app
        self._loop_thread = threading.get_ident()

    def run_in_worker(self, fn: Callable[[], None], *, name: str = "") -> None:
        self.app.run_worker(fn, name=name, group="fmail-lens", thread=True, exclusive=False)

    def call_on_loop(self, fn: Callable[..., None], *args: Any) -> None:
        # call_from_thread refuses to run on the app's own thread.
        if threading.get_ident() == self._loop_thread:
            fn(*args)
        else:
            self.app.call_from_thread(fn, *args)


def status_line(snapshot: ViewSnapshot, *, zoom: str, live: bool) -> Text:
    text = Text()
    text.append(f" {snapshot.view} ", style="bold reverse")
    text.append(f"  {zoom}  {window_label(snapshot.window_start, snapshot.window_end)}")
    text.append("  following" if snapshot.following else "  paused window", style="dim")
    text.append(f"  {snapshot.message_count} msgs")
    if live:
        text.append("  ● live", style="green")
    if snapshot.has_error:
        text.append(f"  ⚠ {snapshot.error}", style="bold red")
    return text


class LensApp(App):
    """Full-screen stats / heatmap / graph / threads views plus a live tail."""

    TITLE = "fmail-lens"

    CSS = """
    #status { height: 1; }
    #body { height: 1fr; }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("v", "next_view", "Next view"),
        Binding("r", "refresh", "Refresh"),
        Binding("left,h", "pan(-1)", "Back"),
        Binding("right,l", "pan(1)", "Forward"),
        Binding("plus,equals_sign", "zoom_in", "Zoom in"),
        Binding("minus", "zoom_out", "Zoom out"),
        Binding("n", "jump_to_now", "Now"),
        Binding("p", "toggle_pause", "Pause tail"),
    ]

    def __init__(
        self,
        source: MessageSource,
        *,
        settings: EngineSettings | None = None,
        view: str = "stats",
        restrict: Callable[[Message], bool] | None = None,
        live: bool = True,
    ):
        super().__init__()
        self.source = source
        self.settings = settings or EngineSettings()
        self.active_view = view if view in VIEW_ORDER else VIEW_ORDER[0]
        self.restrict = restrict
        self.live = live
        self.coordinators: dict[str, LiveWindowCoordinator] = {}
        self.tail = LiveTail(max_messages=self.settings.live_tail_max_messages)
        self._tail_subscription: Subscription | None = None

    def compose(self) -> ComposeResult:
        yield Static("", id="status")
        with VerticalScroll():
            yield Static("", id="body")
        yield Footer()

    def on_mount(self) -> None:
        scheduler = TextualScheduler(self)
        specs = {
            "stats": stats_view(),
            "heatmap": heatmap_view(),
            "graph": graph_view(self.settings.graph_max_nodes, self.settings.graph_max_topics),
            "threads": threads_view(),
        }
        for name, spec in specs.items():
            coordinator = LiveWindowCoordinator(
                self.source,
                spec,
                scheduler=scheduler,
                self_agent=self.settings.self_agent,
                page_size=self.settings.page_size,
                max_messages=self.settings.view_max_messages,
                restrict=self.restrict,
                on_change=self._on_snapshot,
            )
            self.coordinators[name] = coordinator
            coordinator.reload()
            if self.live:
                coordinator.start_live()
        if self.live:
            self._start_tail(scheduler)
        self.set_interval(self.settings.tick_seconds, self._tick)
        logger.info("started %d views (live=%s)", len(self.coordinators), self.live)
        self._render_active()

    def _start_tail(self, scheduler: TextualScheduler) -> None:
        sub = self.source.subscribe(SubscriptionFilter(include_dm=True))
        self._tail_subscription = sub

        def _pump() -> None:
            for msg in sub:
                scheduler.call_on_loop(self._on_tail_message, msg)

        scheduler.run_in_worker(_pump, name="subscribe-tail")

    @property
    def coordinator(self) -> LiveWindowCoordinator | None:
        return self.coordinators.get(self.active_view)

    def _on_snapshot(self, snapshot: ViewSnapshot) -> None:
        if snapshot.view == self.active_view:
            self._render_active()

    def _on_tail_message(self, msg: Message) -> None:
        if self.restrict is not None and not self.restrict(msg):
            return
        if self.tail.push(msg) and self.active_view == TAIL_VIEW:
            self._render_active()

    def _tick(self) -> None:
        for coordinator in self.coordinators.values():
            coordinator.tick()

    def _render_active(self) -> None:
        status = self.query_one("#status", Static)
        body = self.query_one("#body", Static)
        coordinator = self.coordinator
        if coordinator is None:
            status.update(Text(f" {TAIL_VIEW} ", style="bold reverse"))
            body.update(render_live_tail(self.tail))
            return
        snapshot = coordinator.snapshot
        status.update(status_line(snapshot, zoom=coordinator.window.zoom.label, live=coordinator.live))
        body.update(render_value(snapshot.view, snapshot.value))

    def close_views(self) -> None:
        """Cancel every subscription so pump workers return."""
        for coordinator in self.coordinators.values():
            coordinator.close()
        if self._tail_subscription is not None:
            self._tail_subscription.cancel()

    def on_unmount(self) -> None:
        self.close_views()

    # ─── Actions ──────────────────────────────────────────────────────────────

    async def action_quit(self) -> None:
        self.close_views()
        self.exit()

    def action_next_view(self) -> None:
        index = VIEW_ORDER.index(self.active_view)
        self.active_view = VIEW_ORDER[(index + 1) % len(VIEW_ORDER)]
        self._render_active()

    def action_refresh(self) -> None:
        if self.coordinator is not None:
            self.coordinator.refresh()

    def action_pan(self, direction: int) -> None:
        if self.coordinator is None or not self.coordinator.pan(direction):
            self.notify("window cannot move that way", severity="warning", timeout=1)

    def action_zoom_in(self) -> None:
        if self.coordinator is not None:
            self.coordinator.zoom_in()
        self._render_active()

    def action_zoom_out(self) -> None:
        if self.coordinator is not None:
            self.coordinator.zoom_out()
        self._render_active()

    def action_jump_to_now(self) -> None:
        if self.coordinator is not None:
            self.coordinator.jump_to_now()
        self._render_active()

    def action_toggle_pause(self) -> None:
        self.tail.toggle_pause()
        if self.active_view == TAIL_VIEW:
            self._render_active()
