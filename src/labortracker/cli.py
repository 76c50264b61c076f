"""Command-line interface for Labor Tracker.

Labor Tracker times contractions and keeps a local log with notes.

CONCEPTS:
---------
- CONTRACTION: One timed interval with a start, an end and an intensity
               rating from 1 (light) to 5 (heavy).

- HISTORY:     The most recent contractions, newest first, with the
               duration of each and the minutes since the one before.

- BACKUP:      A JSON file holding every contraction plus the notes.
               Importing a backup replaces the current data.

- SHARE:       A link or QR code carrying a compact copy of the data,
               for moving it to another device.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime, time
from pathlib import Path
from typing import NoReturn

from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from labortracker import __version__, transfer
from labortracker.config import settings
from labortracker.errors import LaborTrackerError
from labortracker.models import DEFAULT_INTENSITY, intensity_label
from labortracker.storage import TrackerStorage
from labortracker.store import ConfirmationToken, EventLogStore, check_intensity
from labortracker.ticker import ElapsedTicker
from labortracker.timeutil import format_time

console = Console()

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.WARNING
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=verbose)],
    )


def open_store() -> EventLogStore:
    """Load the saved log into a store that saves itself on change."""
    return TrackerStorage(settings.get_data_dir()).load_store()


def parse_when(text: str) -> datetime:
    """Parse a start time given as an ISO datetime or a time of day (today)."""
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.combine(date.today(), time.fromisoformat(text))
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid time '{text}'. Use HH:MM[:SS] or YYYY-MM-DDTHH:MM[:SS]."
        ) from None


def position(text: str) -> int:
    """Convert a 1-based history number to a log index."""
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid contraction number: {text}") from None
    if value < 1:
        raise argparse.ArgumentTypeError("Contraction numbers start at 1")
    return value - 1


def ask_confirmation(store: EventLogStore, token: ConfirmationToken, assume_yes: bool = False) -> bool:
    """Show a pending operation and confirm or cancel it.

    Returns:
        True if the operation was carried out.
    """
    if not assume_yes:
        console.print(Panel(token.message, title="Please confirm", border_style="yellow"))
        response = console.input("Continue? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            store.cancel(token)
            console.print("[dim]Aborted[/dim]")
            return False
    store.confirm(token)
    return True


def prompt_intensity(default: int = DEFAULT_INTENSITY) -> int:
    """Prompt for an intensity rating until a valid one is given."""
    labels = ", ".join(f"{i} {intensity_label(i)}" for i in range(1, 6))
    while True:
        response = console.input(f"Intensity ({labels}) [{default}]: ").strip()
        if not response:
            return default
        try:
            return check_intensity(int(response))
        except (ValueError, LaborTrackerError):
            console.print("[red]Please select a valid intensity level (1-5).[/red]")


# Timer


async def run_timer(store: EventLogStore) -> None:
    """Time one contraction: show the elapsed time until Enter is pressed."""
    current = store.start_interval()
    loop = asyncio.get_running_loop()
    pressed: asyncio.Future = loop.create_future()

    def on_input() -> None:
        sys.stdin.readline()
        if not pressed.done():
            pressed.set_result(None)

    console.print(f"[green]Contraction started at {format_time(current.start_time)}.[/green] "
                  "[dim]Press Enter when it ends.[/dim]")
    fd = sys.stdin.fileno()
    with Live(console=console, refresh_per_second=4, transient=True) as live:
        ticker = ElapsedTicker(current.start_time, lambda text: live.update(Text(text, style="bold")))
        loop.add_reader(fd, on_input)
        ticker.start()
        try:
            await pressed
        finally:
            loop.remove_reader(fd)
            await ticker.stop()


def cmd_timer(args: argparse.Namespace) -> None:
    """Time a contraction interactively."""
    store = open_store()
    try:
        asyncio.run(run_timer(store))
    except KeyboardInterrupt:
        store.discard_current()
        console.print("\n[yellow]Timer discarded.[/yellow]")
        return

    intensity = args.intensity if args.intensity is not None else prompt_intensity()
    completed = store.end_interval(intensity=intensity)
    console.print(
        f"[green]Recorded contraction:[/green] {store.last_duration()} "
        f"(intensity {completed.intensity} - {intensity_label(completed.intensity)})"
    )
    between = store.time_between_last_two()
    if between is not None:
        console.print(f"Time since previous: {between} min")


def cmd_add(args: argparse.Namespace) -> None:
    """Record a past contraction."""
    store = open_store()
    interval = store.add_manual_interval(args.time, args.duration, intensity=args.intensity)
    console.print(
        f"[green]Added contraction at {format_time(interval.start_time)}[/green] "
        f"(intensity {interval.intensity} - {intensity_label(interval.intensity)})"
    )


# Display


def cmd_history(args: argparse.Namespace) -> None:
    """Show recent contractions."""
    store = open_store()
    entries = store.recent_history(args.limit or settings.history_limit)

    if not entries:
        console.print("[yellow]No contractions recorded yet.[/yellow]")
        return

    table = Table(title="Recent Contractions")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Time", style="cyan")
    table.add_column("Duration", style="white")
    table.add_column("Intensity", style="magenta")
    table.add_column("Interval", style="blue")

    for entry in entries:
        intensity = entry.interval.intensity
        table.add_row(
            str(entry.index + 1),
            format_time(entry.interval.start_time),
            entry.duration_text,
            f"{intensity} - {intensity_label(intensity)}",
            entry.gap_text,
        )

    console.print(table)


def cmd_stats(args: argparse.Namespace) -> None:
    """Show the latest duration and interval."""
    store = open_store()
    between = store.time_between_last_two()
    console.print(f"[bold]Contractions:[/bold] {len(store)}")
    console.print(f"[bold]Last duration:[/bold] {store.last_duration() or '--'}")
    console.print(f"[bold]Time between:[/bold] {f'{between} min' if between is not None else '--'}")


def cmd_chart(args: argparse.Namespace) -> None:
    """Show duration and interval for every completed contraction."""
    store = open_store()
    points = store.chart_series()

    if not points:
        console.print("[yellow]No completed contractions yet.[/yellow]")
        return

    longest = max(point.duration_seconds for point in points) or 1
    table = Table(title="Duration and Interval")
    table.add_column("Time", style="cyan")
    table.add_column("Duration (s)", justify="right")
    table.add_column("", style="red")
    table.add_column("Interval (min)", justify="right", style="blue")

    for point in points:
        bar = "█" * max(1, round(20 * point.duration_seconds / longest))
        interval = str(point.interval_minutes) if point.interval_minutes is not None else "-"
        table.add_row(point.label, str(point.duration_seconds), bar, interval)

    console.print(table)


# Editing


def cmd_edit(args: argparse.Namespace) -> None:
    """Edit a recorded contraction."""
    store = open_store()
    if args.time is None and args.duration is None and args.intensity is None:
        console.print("[yellow]Nothing to change. Use --time, --duration or --intensity.[/yellow]")
        return

    index = args.number
    if args.duration is not None:
        store.edit_duration(index, args.duration)
    if args.intensity is not None:
        store.edit_intensity(index, args.intensity)
    if args.time is not None:
        # Re-sorting may move the entry, so the start time goes last
        store.edit_start_time(index, args.time)
    console.print("[green]Contraction updated.[/green]")


def cmd_delete(args: argparse.Namespace) -> None:
    """Delete one contraction."""
    store = open_store()
    token = store.request_delete(args.number)
    if ask_confirmation(store, token, assume_yes=args.yes):
        console.print("[green]Contraction deleted.[/green]")


def cmd_clear(args: argparse.Namespace) -> None:
    """Clear all contractions and notes."""
    store = open_store()
    if not len(store) and not store.notes:
        console.print("[yellow]Nothing to clear[/yellow]")
        return
    token = store.request_clear()
    if ask_confirmation(store, token, assume_yes=args.yes):
        console.print("[green]All data cleared.[/green]")


def cmd_notes(args: argparse.Namespace) -> None:
    """Show or change the notes."""
    store = open_store()
    if args.clear:
        store.set_notes("")
        console.print("[green]Notes cleared.[/green]")
    elif args.append:
        store.set_notes(f"{store.notes}\n{args.append}" if store.notes else args.append)
        console.print("[green]Notes updated.[/green]")
    elif args.text is not None:
        store.set_notes(args.text)
        console.print("[green]Notes saved.[/green]")
    elif store.notes:
        console.print(Panel(store.notes, title="Notes"))
    else:
        console.print("[dim]No notes yet.[/dim]")


# Import / export


def cmd_export(args: argparse.Namespace) -> None:
    """Write a backup file."""
    store = open_store()
    path = transfer.write_export(store, args.output or Path.cwd())
    console.print(f"[green]Exported {len(store)} contractions to[/green] {path}")


def cmd_import(args: argparse.Namespace) -> None:
    """Replace current data with a backup file."""
    store = open_store()
    token = transfer.request_file_import(store, args.file)
    if ask_confirmation(store, token, assume_yes=args.yes):
        console.print(f"[green]Successfully imported {len(store)} contractions and notes from backup.[/green]")


def cmd_share(args: argparse.Namespace) -> None:
    """Print a share link."""
    store = open_store()
    url = transfer.share_url(store, args.base_url or settings.share_base_url, limit=settings.max_payload_chars)
    console.print(url, soft_wrap=True)


def cmd_qr(args: argparse.Namespace) -> None:
    """Save a QR code carrying the share link."""
    from labortracker.qr import save_qr

    store = open_store()
    url = transfer.share_url(store, args.base_url or settings.share_base_url, limit=settings.max_payload_chars)
    path = save_qr(url, args.output, scale=settings.qr_scale)
    console.print(f"[green]QR code saved to[/green] {path}")


def cmd_scan(args: argparse.Namespace) -> None:
    """Import data by scanning a QR code with the camera."""
    from labortracker.qr import scan_qr

    store = open_store()
    console.print("[dim]Hold the QR code up to the camera...[/dim]")
    text = scan_qr(camera_index=args.camera, timeout=args.timeout)
    if text is None:
        console.print("[yellow]No QR code found.[/yellow]")
        sys.exit(1)
    token = transfer.request_qr_import(store, text)
    if ask_confirmation(store, token, assume_yes=args.yes):
        console.print(f"[green]Successfully imported {len(store)} contractions from QR code![/green]")


def cmd_open_url(args: argparse.Namespace) -> None:
    """Import data carried by a share link."""
    store = open_store()
    result = transfer.check_url_import(store, args.url)
    if result.error is not None:
        raise result.error
    if result.token is None:
        console.print("[yellow]No import data found in this link.[/yellow]")
        return
    if ask_confirmation(store, result.token, assume_yes=args.yes):
        console.print(f"[green]Successfully imported {len(store)} contractions from link![/green]")
    console.print(f"[dim]{result.cleaned_url}[/dim]")


def cmd_version(args: argparse.Namespace) -> None:
    """Show version information."""
    console.print(f"labor-tracker v{__version__}")
    console.print(f"Data directory: {settings.get_data_dir()}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="labor-tracker",
        description="Labor Tracker - time contractions and keep a log",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed output")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    timer_parser = subparsers.add_parser("timer", help="Time a contraction now")
    timer_parser.add_argument("-i", "--intensity", type=int, help="Intensity 1-5 (prompted if omitted)")
    timer_parser.set_defaults(func=cmd_timer)

    add_parser = subparsers.add_parser("add", help="Record a past contraction")
    add_parser.add_argument("time", type=parse_when, help="Start time (HH:MM[:SS] or ISO datetime)")
    add_parser.add_argument("duration", help="Duration in seconds (90) or minutes:seconds (1:30)")
    add_parser.add_argument("-i", "--intensity", type=int, help="Intensity 1-5 (default 3)")
    add_parser.set_defaults(func=cmd_add)

    history_parser = subparsers.add_parser("history", help="Show recent contractions")
    history_parser.add_argument("-n", "--limit", type=int, help="Number of entries to show")
    history_parser.set_defaults(func=cmd_history)

    stats_parser = subparsers.add_parser("stats", help="Show last duration and interval")
    stats_parser.set_defaults(func=cmd_stats)

    chart_parser = subparsers.add_parser("chart", help="Show duration and interval over time")
    chart_parser.set_defaults(func=cmd_chart)

    edit_parser = subparsers.add_parser("edit", help="Edit a recorded contraction")
    edit_parser.add_argument("number", type=position, help="Contraction number from 'history'")
    edit_parser.add_argument("--time", type=parse_when, help="New start time (duration is kept)")
    edit_parser.add_argument("--duration", help="New duration in seconds or minutes:seconds")
    edit_parser.add_argument("--intensity", type=int, help="New intensity 1-5")
    edit_parser.set_defaults(func=cmd_edit)

    delete_parser = subparsers.add_parser("delete", help="Delete a contraction")
    delete_parser.add_argument("number", type=position, help="Contraction number from 'history'")
    delete_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    delete_parser.set_defaults(func=cmd_delete)

    clear_parser = subparsers.add_parser("clear", help="Clear all contractions and notes")
    clear_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    clear_parser.set_defaults(func=cmd_clear)

    notes_parser = subparsers.add_parser("notes", help="Show or change the notes")
    notes_parser.add_argument("text", nargs="?", help="Replace the notes with this text")
    notes_parser.add_argument("-a", "--append", help="Append a line to the notes")
    notes_parser.add_argument("--clear", action="store_true", help="Remove all notes")
    notes_parser.set_defaults(func=cmd_notes)

    export_parser = subparsers.add_parser("export", help="Write a backup file")
    export_parser.add_argument("-o", "--output", type=Path, help="Directory for the backup (default: current)")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Replace current data with a backup file")
    import_parser.add_argument("file", type=Path, help="Backup file to import")
    import_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    import_parser.set_defaults(func=cmd_import)

    share_parser = subparsers.add_parser("share", help="Print a share link")
    share_parser.add_argument("--base-url", help="Override the share base URL")
    share_parser.set_defaults(func=cmd_share)

    qr_parser = subparsers.add_parser("qr", help="Save a QR code with the share link")
    qr_parser.add_argument("-o", "--output", type=Path, default=Path("labor-tracker-qr.png"),
                           help="Image file to write")
    qr_parser.add_argument("--base-url", help="Override the share base URL")
    qr_parser.set_defaults(func=cmd_qr)

    scan_parser = subparsers.add_parser("scan", help="Import data from a QR code via the camera")
    scan_parser.add_argument("--camera", type=int, default=settings.camera_index, help="Camera index")
    scan_parser.add_argument("--timeout", type=float, default=settings.scan_timeout_seconds,
                             help="Seconds to wait for a code")
    scan_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    scan_parser.set_defaults(func=cmd_scan)

    open_parser = subparsers.add_parser("open-url", help="Import data from a share link")
    open_parser.add_argument("url", help="Share link")
    open_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    open_parser.set_defaults(func=cmd_open_url)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=cmd_version)

    return parser


def main() -> NoReturn:
    """Main entry point for the Labor Tracker CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    setup_logging(args.verbose)

    try:
        args.func(args)
    except LaborTrackerError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except OSError as e:
        logger.debug("I/O failure", exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
