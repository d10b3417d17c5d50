import threading
import time
import logging
from typing import Callable, List, Optional
from rich.live import Live
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.progress_bar import ProgressBar
from rich.text import Text
from bpff.domain.models import DisplaySnapshot, JobLine

NAME_WIDTH = 20

logger = logging.getLogger(__name__)


def format_size(size: float) -> str:
    """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
    if size <= 0:
        return "0B"
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    idx = 0
    val = float(size)
    while val >= 1024.0 and idx < len(units) - 1:
        val /= 1024.0
        idx += 1
    if idx == 0:
        return f"{int(val)}B"
    return f"{val:.1f}{units[idx]}"


def format_duration(seconds: Optional[float]) -> str:
    """Long form used for estimates: '1 days 2 hours 3 minutes 4 seconds', zero units omitted."""
    if seconds is None:
        return "calculating..."
    total = int(max(0, seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days} days")
    if hours:
        parts.append(f"{hours} hours")
    if minutes:
        parts.append(f"{minutes} minutes")
    if secs or not parts:
        parts.append(f"{secs} seconds")
    return " ".join(parts)


def format_job_name(name: str, width: int = NAME_WIDTH) -> str:
    if len(name) <= width:
        return name
    return name[:width - 3] + "..."


class Dashboard:
    """Rich Live view over `snapshot_fn()`, refreshed from a background thread."""

    def __init__(self, snapshot_fn: Callable[[], DisplaySnapshot], refresh_per_second: int = 2, console: Optional[Console] = None):
        self.snapshot_fn = snapshot_fn
        self.refresh_per_second = refresh_per_second
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    # --- Rendering ---

    def _render_job(self, job: JobLine) -> RenderableType:
        grid = Table.grid(padding=(0, 1))
        grid.add_column(no_wrap=True)
        grid.add_column(justify="right", width=6)
        grid.add_column(ratio=1)
        grid.add_column(justify="right", no_wrap=True)
        grid.add_column(justify="right", no_wrap=True)
        bar = ProgressBar(total=100, completed=job.percent, width=None)
        grid.add_row(
            Text(f"[{format_job_name(job.name)} ({job.ordinal}/{job.total})]"),
            f"{job.percent:.1f}%",
            bar,
            f"{job.speed:.2f}x Speed",
            f"{format_size(job.current_size)} / {format_size(job.original_size)}",
        )
        return grid

    def _render_stats(self, snap: DisplaySnapshot) -> RenderableType:
        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold")
        table.add_column()
        table.add_row("Runtime", format_duration(snap.runtime_seconds))
        table.add_row(
            "Saved",
            f"{format_size(snap.saved_bytes)} of {format_size(snap.total_bytes)} "
            f"({snap.completed_count} done, {snap.pending_count} pending, {snap.concurrency} parallel)",
        )
        est = snap.estimate
        if est is None:
            table.add_row("Estimate", "calculating...")
        else:
            table.add_row("By size", format_duration(est.eta_by_throughput))
            table.add_row("By duration", format_duration(est.eta_by_duration))
            table.add_row("Estimate", format_duration(est.eta_blended))
            table.add_row("Projected savings", format_size(est.projected_savings))
        return table

    def _render_status(self, snap: DisplaySnapshot) -> List[RenderableType]:
        lines: List[RenderableType] = []
        status = Text()
        if snap.paused:
            status.append("PAUSED ", style="yellow")
        if snap.shutdown_requested:
            status.append("SHUTDOWN PENDING ", style="yellow")
        if snap.finished:
            status.append("FINISHED ", style="green")
        if snap.status:
            status.append(snap.status)
        if status.plain:
            lines.append(status)
        for name in snap.moving:
            lines.append(Text(f"Overwriting {name}!", style="cyan"))
        for name in snap.failed:
            lines.append(Text(f"Failed to Process {name}!", style="red"))
        for message in snap.messages:
            lines.append(Text(message, style="magenta"))
        return lines

    def create_display(self) -> RenderableType:
        snap = self.snapshot_fn()
        rows: List[RenderableType] = []
        if snap.jobs:
            rows.extend(self._render_job(job) for job in snap.jobs)
        else:
            rows.append(Text("No active jobs", style="dim"))
        rows.append(Text(""))
        rows.append(self._render_stats(snap))
        status_lines = self._render_status(snap)
        if status_lines:
            rows.append(Text(""))
            rows.extend(status_lines)
        footer = "P pause  S shutdown  R rescan  < > threads  O workspace  E settings  Ctrl+C quit"
        return Panel(Group(*rows), title=Text(f"Processing {snap.directory}"), subtitle=footer, border_style="cyan")

    # --- Lifecycle ---

    def _refresh_loop(self):
        interval = 1.0 / max(1, self.refresh_per_second)
        while not self._stop_refresh.is_set():
            if self._live:
                try:
                    display = self.create_display()
                    with self._ui_lock:
                        self._live.update(display)
                except Exception:
                    logger.exception("Dashboard refresh failed")
            time.sleep(interval)

    def start(self):
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=self.refresh_per_second * 2)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            # Final update to show the FINISHED / interrupted state
            try:
                with self._ui_lock:
                    self._live.update(self.create_display())
            except Exception:
                logger.exception("Final dashboard update failed")
            self._live.stop()
            self._live = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
