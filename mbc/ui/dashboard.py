import threading
import time
from datetime import datetime
from typing import Optional
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from mbc.domain.models import FileStatus
from mbc.infrastructure.progress import format_duration
from mbc.ui.state import UIState

SEVERITY_STYLES = {
    "info": "white",
    "success": "green",
    "warning": "yellow",
    "error": "bright_red",
}

class Dashboard:
    """Renders the live dashboard UI."""

    def __init__(self, state: UIState, console: Optional[Console] = None):
        self.state = state
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    def format_time(self, seconds: float) -> str:
        """Format seconds to human readable time"""
        if seconds < 60:
            return f"{int(seconds):02d}s"
        elif seconds < 3600:
            return f"{int(seconds / 60):02d}m {int(seconds % 60):02d}s"
        else:
            return f"{int(seconds / 3600)}h {int((seconds % 3600) / 60):02d}m"

    def format_bar(self, percent: Optional[float], width: int = 30) -> str:
        if percent is None:
            return "[dim]" + "·" * width + "[/]"
        filled = int(width * min(percent, 100.0) / 100)
        return "[green]" + "█" * filled + "[/][dim]" + "·" * (width - filled) + "[/]"

    def _generate_menu_panel(self) -> Panel:
        return Panel(
            "[bright_red]S[/bright_red] stop after current step | [bright_red]Ctrl+C[/bright_red] abort now",
            title="MENU",
            border_style="white"
        )

    def _generate_status_panel(self) -> Panel:
        with self.state._lock:
            if self.state.stop_requested:
                status, color = "STOPPING", "yellow"
            elif self.state.finished:
                status, color = "FINISHED", "cyan"
            else:
                status, color = "ACTIVE", "green"

            lines = [f"[dim]Status:[/] [bold {color}]{status}[/]"]
            if self.state.operation:
                lines.append(
                    f"[dim]Batch:[/] {self.state.operation} | "
                    f"[dim]Files:[/] {self.state.processed_files}/{self.state.total_files} "
                    f"{self.format_bar(self.state.batch_percent, 20)}"
                )
            lines.append(
                f"[dim]Done:[/] {self.state.succeeded_count} | "
                f"[dim]Skipped:[/] {self.state.skipped_count} | "
                f"[dim]Failed:[/] {self.state.failed_count}"
            )
            if self.state.processing_start_time:
                elapsed = (datetime.now() - self.state.processing_start_time).total_seconds()
                lines.append(f"[dim]Running for:[/] {self.format_time(elapsed)}")

        return Panel("\n".join(lines), title="MEDIA BATCH STATUS", border_style="cyan")

    def _generate_processing_panel(self) -> Panel:
        with self.state._lock:
            if not self.state.active_jobs:
                return Panel("Nothing running", title="CURRENTLY PROCESSING", border_style="yellow")

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("Job", style="yellow", width=32, no_wrap=True, overflow="ellipsis")
            table.add_column("Stage", width=13, style="cyan")
            table.add_column("Progress", width=32)
            table.add_column("%", width=5, justify="right")
            table.add_column("Time", justify="right")

            for job in self.state.active_jobs.values():
                percent = f"{job.percent:.0f}" if job.percent is not None else "?"
                timing = format_duration(job.elapsed_seconds)
                if job.expected_total_seconds:
                    timing += f"/{format_duration(job.expected_total_seconds)}"
                table.add_row(
                    job.step_label or job.label,
                    job.stage,
                    self.format_bar(job.percent),
                    percent,
                    timing
                )

        return Panel(table, title="CURRENTLY PROCESSING", border_style="yellow")

    def _generate_recent_panel(self) -> Panel:
        with self.state._lock:
            if not self.state.recent_results:
                return Panel("No files finished yet", title="LAST FINISHED", border_style="green")

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("", width=1)
            table.add_column("File", width=36, no_wrap=True, overflow="ellipsis")
            table.add_column("Result", no_wrap=True, overflow="ellipsis")

            for result in list(self.state.recent_results):
                if result.status == FileStatus.SUCCESS:
                    icon, style = "✓", "green"
                elif result.status == FileStatus.SKIPPED:
                    icon, style = "⊘", "dim"
                else:
                    icon, style = "✗", "red"
                table.add_row(f"[{style}]{icon}[/]", result.file.name, f"[{style}]{result.message or ''}[/]")

        return Panel(table, title="LAST FINISHED", border_style="green")

    def _generate_log_panel(self) -> Panel:
        with self.state._lock:
            lines = list(self.state.log_lines)
        if not lines:
            return Panel("[dim]No messages[/]", title="LOG", border_style="blue")
        rendered = [
            f"[dim]{stamp:%H:%M:%S}[/] [{SEVERITY_STYLES.get(severity, 'white')}]{message}[/]"
            for stamp, severity, message in lines
        ]
        return Panel("\n".join(rendered), title="LOG", border_style="blue")

    def create_display(self) -> Group:
        return Group(
            self._generate_menu_panel(),
            self._generate_status_panel(),
            self._generate_processing_panel(),
            self._generate_recent_panel(),
            self._generate_log_panel()
        )

    def _refresh_loop(self):
        """Background thread to update Live display."""
        while not self._stop_refresh.is_set():
            if self._live:
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            time.sleep(0.5)

    def start(self):
        """Starts the Live display and refresh thread."""
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        """Stops the Live display and refresh thread."""
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
