"""Rich renderables for analytics snapshots.

Pure functions: snapshot in, renderable out. Shared by the CLI (printed once)
and the textual host (re-rendered on every recompute).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from rich.console import Group, RenderableType
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from fmail_lens.app.live_tail import ROLE_HIGH, ROLE_HIGHLIGHT, ROLE_NORMAL, LiveTail
from fmail_lens.core.graph import GraphSnapshot
from fmail_lens.core.heatmap import HeatmapMatrix, HeatmapSummary
from fmail_lens.core.stats import StatsSnapshot
from fmail_lens.core.threads import Thread, flatten_thread, summarize_thread

SPARK_CHARS = "▁▂▃▄▅▆▇█"
# Index = cell level (0 empty .. 4 hottest).
HEAT_CHARS = (" ", "░", "▒", "▓", "█")
HEAT_STYLES = ("dim", "green", "yellow", "dark_orange", "bold red")


def format_duration(value: timedelta | None) -> str:
    if value is None:
        return "-"
    seconds = int(value.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m{seconds % 60:02d}s"
    if seconds < 86400:
        return f"{seconds // 3600}h{(seconds % 3600) // 60:02d}m"
    return f"{seconds // 86400}d{(seconds % 86400) // 3600:02d}h"


def format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value is not None else "-"


def sparkline(counts: Sequence[int]) -> str:
    peak = max(counts, default=0)
    if peak <= 0:
        return SPARK_CHARS[0] * len(counts)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round(c / peak * top)] for c in counts)


def window_label(start: datetime, end: datetime) -> str:
    return f"{format_time(start)} → {format_time(end)}"


# ─── Stats ────────────────────────────────────────────────────────────────────


def render_stats(stats: StatsSnapshot) -> RenderableType:
    summary = Table.grid(padding=(0, 2))
    summary.add_column(style="bold")
    summary.add_column()
    summary.add_row("window", window_label(stats.window_start, stats.window_end))
    summary.add_row("messages", str(stats.total_messages))
    summary.add_row("agents", str(stats.active_agents))
    summary.add_row("topics", str(stats.active_topics))
    if stats.is_empty:
        return Group(summary, Text("no messages in window", style="dim"))

    summary.add_row(
        "reply latency",
        f"avg {format_duration(stats.avg_reply)}  median {format_duration(stats.median_reply)}"
        f"  ({stats.reply_samples} samples)",
    )
    summary.add_row(
        "threads",
        f"{stats.thread_count} (avg {stats.thread_avg_messages:.1f} msgs, longest {stats.longest_thread_messages})",
    )
    if stats.most_replied_id:
        summary.add_row("most replied", f"{stats.most_replied_id} ({stats.most_replied_count})")
    summary.add_row(
        "busiest hour",
        f"{format_time(stats.busiest_hour_start)} ({stats.busiest_hour_count})",
    )
    summary.add_row(
        "quietest hour",
        f"{format_time(stats.quietest_hour_start)} ({stats.quietest_hour_count})",
    )
    summary.add_row(
        f"over time ({format_duration(stats.over_time_interval)})",
        sparkline(stats.over_time_counts),
    )

    latency = Table(title="response latency", expand=False)
    latency.add_column("bucket")
    latency.add_column("count", justify="right")
    latency.add_column("%", justify="right")
    for bucket in stats.response_latency:
        latency.add_row(bucket.label, str(bucket.count), f"{bucket.pct:.0f}")

    volumes = Table(title="top agents / topics", expand=False)
    volumes.add_column("agent")
    volumes.add_column("msgs", justify="right")
    volumes.add_column("topic")
    volumes.add_column("msgs", justify="right")
    rows = max(len(stats.top_agents), len(stats.topic_volumes))
    for i in range(rows):
        agent = stats.top_agents[i] if i < len(stats.top_agents) else None
        topic = stats.topic_volumes[i] if i < len(stats.topic_volumes) else None
        volumes.add_row(
            agent.label if agent else "",
            str(agent.count) if agent else "",
            topic.label if topic else "",
            str(topic.count) if topic else "",
        )
    return Group(summary, latency, volumes)


# ─── Graph ────────────────────────────────────────────────────────────────────


def render_graph(graph: GraphSnapshot, *, edge_limit: int = 20) -> RenderableType:
    nodes = Table(title=f"agents ({graph.messages} messages)")
    nodes.add_column("agent")
    nodes.add_column("sent", justify="right")
    nodes.add_column("received", justify="right")
    nodes.add_column("total", justify="right")
    for node in graph.nodes:
        nodes.add_row(node.name, str(node.sent), str(node.received), str(node.total))

    edges = Table(title="edges")
    edges.add_column("from")
    edges.add_column("to")
    edges.add_column("count", justify="right")
    for edge in graph.edges[:edge_limit]:
        edges.add_row(edge.source, edge.target, str(edge.count))

    parts: list[RenderableType] = [nodes, edges]
    if graph.absorbed:
        parts.append(
            Text(
                f"others = {', '.join(graph.absorbed)} (internal traffic {graph.others_internal})",
                style="dim",
            )
        )
    if graph.topics:
        topics = Table(title="topics")
        topics.add_column("topic")
        topics.add_column("msgs", justify="right")
        topics.add_column("agents", justify="right")
        for topic in graph.topics:
            topics.add_row(topic.name, str(topic.message_count), str(topic.participant_count))
        parts.append(topics)
    return Group(*parts)


# ─── Threads ──────────────────────────────────────────────────────────────────


def _node_label(message, *, overflow: bool) -> Text:
    title = message.body.splitlines()[0] if message.body else ""
    label = Text()
    label.append(message.time.strftime("%H:%M:%S"), style="dim")
    label.append(f" {message.sender} → {message.to} ", style="bold")
    label.append(title[:80])
    if overflow:
        label.append(" ↳", style="dim")
    return label


def render_threads(threads: Sequence[Thread], *, limit: int = 20) -> RenderableType:
    """Newest-activity threads first, each as an indented reply tree."""
    if not threads:
        return Text("no threads", style="dim")
    ordered = sorted(threads, key=lambda t: t.last_activity, reverse=True)[:limit]
    root = Tree(f"{len(threads)} threads", guide_style="dim")
    for thread in ordered:
        summary = summarize_thread(thread)
        branch = root.add(
            Text(f"{summary.title or thread.root.id}  ({summary.message_count} msgs, {summary.participant_count} agents)")
        )
        parents: dict[str, Tree] = {}
        for node in flatten_thread(thread):
            if node.is_root:
                parents[node.id] = branch.add(_node_label(node.message, overflow=False))
                continue
            holder = parents.get(node.parent.id.strip(), branch)
            parents[node.id] = holder.add(_node_label(node.message, overflow=node.depth_overflow))
    return root


# ─── Heatmap ──────────────────────────────────────────────────────────────────


def render_heatmap(
    matrix: HeatmapMatrix, summary: HeatmapSummary | None = None, *, max_rows: int = 30
) -> RenderableType:
    grid = Table(
        title=f"{matrix.mode.value} × {format_duration(matrix.bucket)} buckets (sort: {matrix.sort.value})",
        show_edge=False,
        pad_edge=False,
    )
    grid.add_column("row", no_wrap=True)
    grid.add_column("cells", no_wrap=True)
    grid.add_column("total", justify="right")
    for row in matrix.rows[:max_rows]:
        cells = Text()
        for count in row.counts:
            level = matrix.level(count)
            cells.append(HEAT_CHARS[level], style=HEAT_STYLES[level])
        grid.add_row(row.label, cells, str(row.total))
    grid.add_row("total", sparkline(matrix.column_totals()), str(matrix.total))

    parts: list[RenderableType] = [grid]
    peak_start, peak = matrix.peak_bucket()
    if peak_start is not None:
        parts.append(Text(f"peak {format_time(peak_start)} ({peak})", style="dim"))
    if summary is not None:
        parts.append(
            Text(
                f"{summary.total} msgs · {summary.active_agents} agents · "
                f"most active {summary.most_active_agent or '-'} ({summary.most_active_count}) · "
                f"busiest {summary.busiest_topic or '-'} ({summary.busiest_topic_count}) · "
                f"first response {format_duration(summary.avg_first_response)}",
                style="dim",
            )
        )
    return Group(*parts)


# ─── Live tail ────────────────────────────────────────────────────────────────


TAIL_ROLE_STYLES = {ROLE_HIGH: "bold red", ROLE_HIGHLIGHT: "bold yellow", ROLE_NORMAL: ""}


def render_live_tail(tail: LiveTail, *, limit: int = 200) -> RenderableType:
    """Header plus the newest visible arrivals, oldest first."""
    lines = Text(tail.header(), style="bold")
    visible = tail.visible()
    if not visible:
        lines.append("\nwaiting for messages", style="dim")
        return lines
    for msg in visible[-limit:]:
        title = msg.body.splitlines()[0] if msg.body else ""
        lines.append("\n")
        lines.append(msg.time.strftime("%H:%M:%S"), style="dim")
        lines.append(f" {msg.sender} → {msg.to} ", style="bold")
        lines.append(title[:120], style=TAIL_ROLE_STYLES[tail.role(msg)])
    return lines


# [LAW:one-source-of-truth] View name -> renderer for coordinator snapshots.
VIEW_RENDERERS = {
    "stats": render_stats,
    "graph": render_graph,
    "threads": render_threads,
    "heatmap": render_heatmap,
}


def render_value(view: str, value) -> RenderableType:
    return VIEW_RENDERERS[view](value)
