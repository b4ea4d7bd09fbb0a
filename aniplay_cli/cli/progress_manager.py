"""
Manages a Rich Live display for chunked episode downloads.
Shows session statistics, overall episode progress and one bar per byte range.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text

log = logging.getLogger("aniplay_cli")


class ChunkProgressSink:
    """Forwards byte counts of one transfer to its own progress bar."""

    def __init__(self, manager: "ProgressManager", task_id: Optional[TaskID]):
        self._manager = manager
        self._task_id = task_id
        self._finished = False

    def add(self, n: int) -> None:
        self._manager.advance_task(self._task_id, n)

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._manager.remove_task(self._task_id)


class ProgressManager:
    """
    A live dashboard for a download session.

    Every byte range gets its own bar through chunk_sink(); episode-level
    outcomes feed the statistics panel.
    """

    def __init__(self, console: Console, enabled: bool = True):
        self.console = console
        self.enabled = enabled

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=20),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )

        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Live | None = None
        self._layout: Layout | None = None

        self._stats: dict[str, Any] = {
            "total_episodes": 0,
            "completed": 0,
            "failed": 0,
            "skipped": 0,
            "active_chunks": 0,
            "peak_concurrent": 0,
            "downloaded_size": 0,
            "start_time": None,
        }

        self._overall_task_id: TaskID | None = None
        self._active_tasks: dict[TaskID, str] = {}

    def log_message(self, message: str, level: str = "info"):
        """Logs through the shared handler so output stays above the live display."""
        getattr(log, level, log.info)(message)

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="stats", size=7),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _elapsed_seconds(self) -> float:
        if not self._stats["start_time"]:
            return 0.0
        return (datetime.now() - self._stats["start_time"]).total_seconds()

    def _generate_header(self) -> Panel:
        elapsed = self._elapsed_seconds()
        elapsed_str = (
            f"{int(elapsed // 3600):02d}:"
            f"{int((elapsed % 3600) // 60):02d}:{int(elapsed % 60):02d}"
        )
        header_text = Text()
        header_text.append("📺 aniplay ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        if elapsed > 0 and self._stats["downloaded_size"] > 0:
            speed_mb = self._stats["downloaded_size"] / elapsed / (1024 * 1024)
            header_text.append(" │ ", style="dim")
            header_text.append(f"⚡ {speed_mb:.1f} MB/s", style="magenta")
        return Panel(header_text, border_style="cyan")

    def _generate_stats_panel(self) -> Panel:
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Downloaded:",
            f"[green]{self._stats['completed']}[/green]",
            "Failed:",
            f"[red]{self._stats['failed']}[/red]",
        )
        remaining = (
            self._stats["total_episodes"]
            - self._stats["completed"]
            - self._stats["failed"]
            - self._stats["skipped"]
        )
        stats_table.add_row(
            "Skipped:",
            f"[yellow]{self._stats['skipped']}[/yellow]",
            "Remaining:",
            f"[cyan]{max(remaining, 0)}[/cyan]",
        )
        stats_table.add_row(
            "Active chunks:",
            f"[cyan]{self._stats['active_chunks']}[/cyan]",
            "Peak:",
            f"[magenta]{self._stats['peak_concurrent']}[/magenta]",
        )
        combined = Table.grid()
        combined.add_row(stats_table)
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(
            combined, title="[bold]📊 Session Statistics[/bold]", border_style="blue"
        )

    def _generate_progress_panel(self) -> Panel:
        if not self._active_tasks:
            return Panel(
                Text(
                    "Waiting for downloads to start...",
                    style="dim italic",
                    justify="center",
                ),
                title="[bold]📥 Active Chunks[/bold]",
                border_style="green",
            )
        return Panel(
            self.progress,
            title=f"[bold]📥 Active Chunks ({len(self._active_tasks)})[/bold]",
            border_style="green",
        )

    def _update_display(self):
        if not self.enabled or not self._layout:
            return

        self._layout["header"].update(self._generate_header())
        self._layout["stats"].update(self._generate_stats_panel())
        self._layout["progress"].update(self._generate_progress_panel())

    def initialize_session(self, total_episodes: int):
        self._stats["total_episodes"] = total_episodes
        self._stats["start_time"] = datetime.now()
        if self.enabled:
            self._overall_task_id = self.overall_progress.add_task(
                "Episodes", total=total_episodes, start=True
            )
        self._update_display()

    def chunk_sink(self, label: str, total: Optional[int]) -> ChunkProgressSink:
        """Creates a progress bar for one transfer and returns its sink."""
        if not self.enabled:
            return ChunkProgressSink(self, None)
        if len(label) > 55:
            label = "…" + label[-54:]
        task_id = self.progress.add_task(label, total=total, start=True)
        self._active_tasks[task_id] = label
        self._stats["active_chunks"] = len(self._active_tasks)
        self._stats["peak_concurrent"] = max(
            self._stats["peak_concurrent"], self._stats["active_chunks"]
        )
        self._update_display()
        return ChunkProgressSink(self, task_id)

    def advance_task(self, task_id: Optional[TaskID], n: int):
        self._stats["downloaded_size"] += n
        if task_id is not None and self.enabled:
            self.progress.advance(task_id, n)

    def remove_task(self, task_id: Optional[TaskID]):
        if task_id is None or not self.enabled:
            return
        try:
            self.progress.remove_task(task_id)
        except KeyError:
            pass
        self._active_tasks.pop(task_id, None)
        self._stats["active_chunks"] = len(self._active_tasks)
        self._update_display()

    def _record_episode(self, key: str):
        self._stats[key] += 1
        if self._overall_task_id is not None and self.enabled:
            self.overall_progress.update(
                self._overall_task_id,
                completed=(
                    self._stats["completed"]
                    + self._stats["failed"]
                    + self._stats["skipped"]
                ),
            )
        self._update_display()

    def episode_completed(self):
        self._record_episode("completed")

    def episode_failed(self):
        self._record_episode("failed")

    def episode_skipped(self):
        self._record_episode("skipped")

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        if not self.enabled:
            return self
        self._layout = self._create_layout()
        self._update_display()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=12,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
            self._live = None
