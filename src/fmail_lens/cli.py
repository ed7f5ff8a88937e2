"""CLI entry point for fmail-lens.

Offline subcommands analyze a JSON / JSON-lines message dump once and print
rich tables; `tui` serves the same dump through the live textual host.
"""

import argparse
import logging
import re
import sys
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from rich.console import Console

import fmail_lens.io.logging_setup
import fmail_lens.io.message_files
import fmail_lens.io.read_state
import fmail_lens.io.settings
from fmail_lens.core.graph import build_graph_snapshot
from fmail_lens.core.heatmap import HeatmapMode, HeatmapSort, build_heatmap_matrix, summarize_window
from fmail_lens.core.message import Message, parse_time
from fmail_lens.core.stats import compute_stats
from fmail_lens.core.threads import build_thread, build_threads
from fmail_lens.core.windows import choose_bucket_interval, resolve_window
from fmail_lens.errors import FmailLensError
from fmail_lens.rendering import render_graph, render_heatmap, render_stats, render_threads

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_duration(text: str) -> timedelta:
    """'90s', '15m', '4h', '7d', '2w' -> timedelta."""
    match = _DURATION_RE.match(text)
    if not match:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r} (expected e.g. 15m, 4h, 7d)")
    value, unit = match.groups()
    duration = timedelta(**{_DURATION_UNITS[unit]: int(value)})
    if duration <= timedelta(0):
        raise argparse.ArgumentTypeError(f"duration must be positive: {text!r}")
    return duration


def parse_timestamp(text: str) -> datetime:
    try:
        return parse_time(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("paths", nargs="+", help="Message dump files or directories (.json / .jsonl)")
    common.add_argument("--self-agent", default=None, help="Viewing agent (for DMs and unread state)")
    common.add_argument("--state", default=None, help="Read-state JSON (read markers + bookmarks)")
    restrict = common.add_mutually_exclusive_group()
    restrict.add_argument("--unread", action="store_true", help="Only messages after the read markers")
    restrict.add_argument("--bookmarked", action="store_true", help="Only bookmarked messages")
    common.add_argument("--since", type=parse_timestamp, default=None, help="Window start (ISO-8601)")
    common.add_argument("--until", type=parse_timestamp, default=None, help="Window end (ISO-8601)")
    common.add_argument(
        "--window",
        type=parse_duration,
        default=None,
        help="Window span ending at --until (or now), e.g. 4h",
    )

    parser = argparse.ArgumentParser(prog="fmail-lens", description="Message analytics for fmail")
    parser.add_argument(
        "--log-level", default=None, help="Log level (overrides $FMAIL_LENS_LOG_LEVEL), e.g. debug"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", parents=[common], help="Windowed message statistics")

    graph = sub.add_parser("graph", parents=[common], help="Who-talks-to-whom graph")
    graph.add_argument("--max-nodes", type=int, default=None)
    graph.add_argument("--max-topics", type=int, default=None)

    threads = sub.add_parser("threads", parents=[common], help="Reply threads")
    threads.add_argument("--around", default="", help="Show only the thread containing this message ID")
    threads.add_argument("--limit", type=int, default=20)

    heatmap = sub.add_parser("heatmap", parents=[common], help="Activity heatmap")
    heatmap.add_argument("--bucket", type=parse_duration, default=None)
    heatmap.add_argument("--mode", choices=[m.value for m in HeatmapMode], default=HeatmapMode.AGENTS.value)
    heatmap.add_argument("--sort", choices=[s.value for s in HeatmapSort], default=HeatmapSort.TOTAL.value)

    tui = sub.add_parser("tui", parents=[common], help="Live textual views over the dump")
    tui.add_argument("--view", choices=["stats", "heatmap", "graph", "threads", "tail"], default="stats")

    return parser


def _restrict(args, settings, state) -> tuple[Callable[[Message], bool] | None, str]:
    if args.unread:
        return fmail_lens.io.read_state.unread_only(state, settings.self_agent), "unread"
    if args.bookmarked:
        return fmail_lens.io.read_state.bookmarked_only(state), "bookmarked"
    return None, ""


def _window(messages: list[Message], args, now: datetime) -> tuple[datetime, datetime]:
    start, end = args.since, args.until
    if args.window is not None:
        if start is not None and end is None:
            end = start + args.window
        else:
            end = end or now
            start = end - args.window
    return resolve_window(messages, start, end, now=now)


def run(args, console: Console, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    settings = fmail_lens.io.settings.load_engine_settings()
    if args.self_agent:
        settings = replace(settings, self_agent=args.self_agent)
    messages = fmail_lens.io.message_files.load_messages(args.paths)
    state = fmail_lens.io.read_state.load_read_state(args.state or settings.state_path)
    restrict, restrict_label = _restrict(args, settings, state)
    if restrict is not None:
        messages = [m for m in messages if restrict(m)]
    logger.info("loaded %d messages from %d path(s)", len(messages), len(args.paths))

    if args.command == "tui":
        # Imported here so offline subcommands never pay for textual.
        from fmail_lens.source import MemorySource
        from fmail_lens.tui.host import LensApp

        source = MemorySource.from_messages(
            messages, self_agent=settings.self_agent, read_markers=state.read_markers
        )
        LensApp(source, settings=settings, view=args.view, restrict=restrict).run()
        return 0

    if args.command == "threads":
        if args.around:
            thread = build_thread(messages, args.around)
            if thread is None:
                console.print(f"[red]no message with id {args.around!r}[/red]")
                return 1
            console.print(render_threads([thread], limit=1))
        else:
            console.print(render_threads(build_threads(messages), limit=args.limit))
        return 0

    start, end = _window(messages, args, now)
    in_window = [m for m in messages if start <= m.time < end]
    if restrict_label:
        console.print(f"[dim]restricted to {restrict_label} messages[/dim]")

    if args.command == "stats":
        console.print(render_stats(compute_stats(messages, start, end)))
    elif args.command == "graph":
        snapshot = build_graph_snapshot(
            in_window,
            args.max_nodes or settings.graph_max_nodes,
            max_topics=args.max_topics or settings.graph_max_topics,
        )
        console.print(render_graph(snapshot))
    elif args.command == "heatmap":
        bucket = args.bucket or choose_bucket_interval(start, end)
        matrix = build_heatmap_matrix(messages, start, end, bucket, args.mode, args.sort)
        console.print(render_heatmap(matrix, summarize_window(messages, start, end)))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    # [LAW:single-enforcer] Runtime logger configuration is centralized in io.logging_setup.
    log_runtime = fmail_lens.io.logging_setup.configure(
        run_name=args.command, stream=args.command != "tui", level=args.log_level
    )
    logger.info(
        "logging configured level=%s file=%s",
        log_runtime.level_name,
        log_runtime.file_path,
    )
    console = Console()
    try:
        return run(args, console)
    except FmailLensError as exc:
        console.print(f"[red]error:[/red] {exc}")
        return 2
    except OSError as exc:
        console.print(f"[red]cannot read input:[/red] {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
