"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from aniplay_cli.models.config import AppConfig
from aniplay_cli.models.media import Episode
from aniplay_cli.models.stats import DownloadStats
from aniplay_cli.utils.formatting import format_duration, format_size

_SUGGESTIONS_MAP = {
    "NotAllowedError": [
        "• The host resolved to a private, loopback or otherwise internal address.",
        "• Check the base_url setting and any redirects of the site.",
    ],
    "DialTimeoutError": [
        "• The server did not answer in time.",
        "• Check your internet connection or raise `dial_timeout` in the config.",
    ],
    "NetworkError": [
        "• A network connection issue occurred.",
        "• The site might be temporarily unavailable. Try again in a few minutes.",
    ],
    "ServerRejectedError": [
        "• The media server refused the request.",
        "• The episode may have been removed; try another episode.",
    ],
    "PartialContentUnsupportedError": [
        "• The media server does not support byte-range downloads.",
        "• Stream the episode instead with `--stream`.",
    ],
    "FileIntegrityError": [
        "• The downloaded file was incomplete and has been removed.",
        "• Check free disk space and try again.",
        "• Lower `chunk_count` if the server drops parallel connections.",
    ],
    "ParseError": [
        "• The site returned data in an unexpected format.",
        "• The site layout may have changed.",
    ],
    "MediaNotFoundError": [
        "• No video was found on the episode page.",
        "• The episode may not be released yet.",
    ],
    "NoCandidatesError": [
        "• The site listed no playable video quality for this episode.",
    ],
    "PlayerError": [
        "• Make sure the player is installed and on your PATH.",
        "• Set another player with `aniplay-cli init --player mpv`.",
    ],
    "ConfigurationError": [
        "• Run `aniplay-cli validate` to see what is wrong.",
        "• Run `aniplay-cli init --force` to write a fresh configuration.",
    ],
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions = _SUGGESTIONS_MAP.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: AppConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Catalog:", f"[green]{config.base_url}[/green]")
    table.add_row("Download Root:", f"[dim]{config.download_root_path}[/dim]")
    table.add_row("Parallel Chunks:", str(config.chunk_count))
    table.add_row(
        "Timeouts:", f"connect {config.dial_timeout:g}s, read {config.read_timeout:g}s"
    )
    table.add_row("Player:", " ".join(config.player_command))
    table.add_row(
        "On Quit:", "Stop player" if config.stop_player_on_quit else "Leave player running"
    )
    table.add_row(
        "On Switch:",
        "Stop player" if config.stop_player_on_switch else "Wait for player to close",
    )
    table.add_row("JSON Logs:", "✓ Enabled" if config.json_logs else "✗ Disabled")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_episode_table(
    episodes: Sequence[Episode], title: str, console: Optional[Console] = None
):
    """Lists episodes with the numbers used to select them."""
    console = console or Console()
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Episode", style="cyan")
    for i, episode in enumerate(episodes, 1):
        table.add_row(str(i), escape(episode.label))
    console.print(table)


def print_download_summary(
    stats: DownloadStats, duration_s: float, progress_stats: dict | None = None
):
    """Displays the final summary of a download session."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{stats.episodes_downloaded}[/bold green]"
    )
    if stats.episodes_skipped_exists > 0:
        stats_table.add_row(
            "○ Skipped:", f"[yellow]{stats.episodes_skipped_exists} (exists)[/yellow]"
        )
    if stats.single_stream_fallbacks > 0:
        stats_table.add_row(
            "⚠ Single Stream:", f"[yellow]{stats.single_stream_fallbacks}[/yellow]"
        )
    if stats.episodes_failed > 0:
        stats_table.add_row(
            "✗ Failed:", f"[bold red]{stats.episodes_failed}[/bold red]"
        )

    stats_table.add_row("", "")
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.total_size_downloaded)}[/cyan]"
    )
    avg_speed = stats.total_size_downloaded / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if progress_stats:
        stats_table.add_row(
            "Peak Chunks:",
            f"[green]{progress_stats.get('peak_concurrent', 0)}[/green]",
        )

    for label, error in stats.failures:
        stats_table.add_row(f"[red]{escape(label)}[/red]", f"[dim]{escape(error)}[/dim]")

    if stats.episodes_failed:
        title = "📺 [bold]Download Finished With Errors[/bold]"
        border_color = "yellow"
    else:
        title = "📺 [bold]Download Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
