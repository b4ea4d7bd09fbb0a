"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from aniplay_cli import __version__
from aniplay_cli.core.episode_manager import EpisodeManager
from aniplay_cli.exceptions import AniplayCliError
from aniplay_cli.media.resolver import VideoURLResolver
from aniplay_cli.models.config import AppConfig
from aniplay_cli.net.dialer import TrustedDialer
from aniplay_cli.storage.config_manager import ConfigManager
from aniplay_cli.utils.formatting import parse_episode_range
from aniplay_cli.utils.structured_logger import create_structured_logger
from aniplay_cli.web.catalog import is_series

from .formatters import (
    format_error_with_suggestions,
    print_config,
    print_download_summary,
    print_validation_table,
)
from .progress_manager import ProgressManager
from .prompts import ask_for_download, ask_for_play_offline, select_anime, select_episode

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("aniplay_cli")

app = typer.Typer(
    name="aniplay-cli",
    help=(
        "Search, download and watch anime from the terminal. Use 'aniplay-cli"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "aniplay-cli"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
LOG_DIR = CONFIG_DIR / "logs"


def _load_config(cli_options: Optional[dict] = None) -> AppConfig:
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except AniplayCliError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


def _create_dialer(config: AppConfig) -> TrustedDialer:
    return TrustedDialer(timeout=config.dial_timeout, read_timeout=config.read_timeout)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """aniplay CLI"""
    if version:
        console.print(f"[bold]aniplay-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("aniplay_cli").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[yellow]No config file found, defaults are in use.[/] Run"
                " [cyan]aniplay-cli init[/cyan] to create one."
            )
            raise typer.Exit()
        config_data = ConfigManager(CONFIG_FILE).get_config_as_dict()
        print_config(CONFIG_FILE, config_data)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    player: Optional[str] = typer.Option(
        None, "--player", "-p", help="Media player executable (default: vlc)."
    ),
    download_root: Optional[str] = typer.Option(
        None, "--download-root", "-d", help="Directory that receives downloads."
    ),
    chunks: Optional[int] = typer.Option(
        None, "--chunks", "-c", help="Parallel byte ranges per download (1-32)."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Write a configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {
            "player": player,
            "download_root": download_root,
            "chunk_count": chunks,
        }.items()
        if value is not None
    }
    try:
        ConfigManager(CONFIG_FILE).save_new_config(settings)
    except AniplayCliError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e

    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    if shutil.which(player or AppConfig().player) is None:
        console.print(
            f"[yellow]⚠️  Player '{escape(player or AppConfig().player)}' was not"
            " found on your PATH.[/yellow]"
        )
    console.print("Ready to watch! Try: [cyan]aniplay-cli play <anime name>[/cyan]")


@app.command(name="play")
def play_command(
    query: list[str] = typer.Argument(  # noqa: B008
        ..., help="The anime to search for.", metavar="NAME"
    ),
    episode: Optional[int] = typer.Option(
        None, "--episode", "-e", help="Episode number to start with."
    ),
    download: Optional[bool] = typer.Option(
        None,
        "--download/--stream",
        help="Download the episode first, or stream it directly. Asks if omitted.",
    ),
):
    """Search an anime and watch it, navigating episodes with n/p/q."""
    config = _load_config()

    async def _play_async():
        structured, download_events, playback_events = create_structured_logger(
            LOG_DIR, config.json_logs
        )
        progress_manager = ProgressManager(console)
        try:
            async with _create_dialer(config) as dialer:
                manager = EpisodeManager(
                    config,
                    dialer,
                    console=console,
                    progress_manager=progress_manager,
                    download_events=download_events,
                    playback_events=playback_events,
                )
                await _play_session(
                    manager, progress_manager, " ".join(query), episode, download
                )
        finally:
            structured.close()

    asyncio.run(_play_async())


async def _play_session(
    manager: EpisodeManager,
    progress_manager: ProgressManager,
    query: str,
    episode_number: Optional[int],
    download: Optional[bool],
) -> None:
    anime = select_anime(await manager.catalog.search(query), console)
    episodes = await manager.catalog.list_episodes(anime.url)
    if not episodes:
        console.print("[red]✗ Failed to fetch episodes from the selected anime.[/red]")
        raise typer.Exit(code=1)

    if is_series(episodes):
        console.print(
            f"[cyan]The selected anime is a series with {len(episodes)} episodes.[/cyan]"
        )
        index = select_episode(episodes, console, episode_number)
    else:
        console.print(
            "[cyan]The selected anime is a movie/OVA. Starting playback...[/cyan]"
        )
        index = 0

    selected = episodes[index]
    try:
        media_url = await manager.resolve_episode(selected)
        if download if download is not None else ask_for_download(console):
            progress_manager.initialize_session(1)
            async with progress_manager:
                path = await manager.download_episode(anime.url, selected, media_url)
            if ask_for_play_offline(console):
                media_url = str(path)
        await manager.play(episodes, index, media_url)
    except AniplayCliError as e:
        console.print(format_error_with_suggestions(e, {"episode": selected.label}))
        raise typer.Exit(code=1) from e


@app.command(name="download")
def download_command(
    query: list[str] = typer.Argument(  # noqa: B008
        ..., help="The anime to search for.", metavar="NAME"
    ),
    episode: Optional[int] = typer.Option(
        None, "--episode", "-e", help="Download a single episode."
    ),
    episode_range: Optional[str] = typer.Option(
        None, "--range", "-r", help="Download an inclusive range of episodes, e.g. 1-12."
    ),
    chunks: Optional[int] = typer.Option(
        None, "--chunks", "-c", help="Parallel byte ranges per download (1-32)."
    ),
):
    """Download one episode or a range of episodes."""
    if (episode is None) == (episode_range is None):
        console.print("[red]✗ Use exactly one of --episode or --range.[/red]")
        raise typer.Exit(code=1)

    if episode_range is not None:
        try:
            start, end = parse_episode_range(episode_range)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--range") from e
    else:
        start = end = episode

    cli_options = {"chunk_count": chunks} if chunks is not None else None
    config = _load_config(cli_options)

    async def _download_async():
        structured, download_events, _ = create_structured_logger(
            LOG_DIR, config.json_logs
        )
        progress_manager = ProgressManager(console)
        try:
            async with _create_dialer(config) as dialer:
                manager = EpisodeManager(
                    config,
                    dialer,
                    console=console,
                    progress_manager=progress_manager,
                    download_events=download_events,
                )
                anime = select_anime(
                    await manager.catalog.search(" ".join(query)), console
                )
                episodes = await manager.catalog.list_episodes(anime.url)

                start_time = time.monotonic()
                async with progress_manager:
                    stats = await manager.download_range(anime.url, episodes, start, end)
                duration = time.monotonic() - start_time
        finally:
            structured.close()

        print_download_summary(stats, duration, progress_manager.get_statistics())
        if stats.episodes_failed:
            raise typer.Exit(code=1)

    asyncio.run(_download_async())


@app.command()
def resolve(
    page_url: str = typer.Argument(..., help="URL of an episode page."),
):
    """Print the direct media URL of an episode page."""
    config = _load_config()

    async def _resolve_async():
        async with _create_dialer(config) as dialer:
            return await VideoURLResolver(dialer).resolve(page_url)

    console.print(asyncio.run(_resolve_async()), soft_wrap=True, highlight=False)


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config = ConfigManager(CONFIG_FILE).load_config()
        print_validation_table(config)
    except AniplayCliError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def diagnose():
    """Diagnose common configuration, player and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[yellow]○ No config file found, defaults are in use.[/] Run"
            " [cyan]aniplay-cli init[/cyan] to create one."
        )

    try:
        config = ConfigManager(CONFIG_FILE).load_config()
        console.print("[green]✓[/] Configuration is valid and can be loaded.")
    except AniplayCliError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        config = AppConfig()
        issues_found = True

    if shutil.which(config.player):
        console.print(f"[green]✓[/] Player '{escape(config.player)}' found on PATH.")
    else:
        console.print(f"[red]✗ Player '{escape(config.player)}' not found on PATH.[/red]")
        issues_found = True

    console.print(f"\n[dim]Testing connectivity to {config.base_url}...[/dim]")

    async def test_connection():
        try:
            async with (
                _create_dialer(config) as dialer,
                dialer.request("GET", config.base_url) as resp,
            ):
                if resp.status < 400:
                    console.print("[green]✓[/] Successfully connected to the catalog.")
                    return True
                console.print(
                    f"[red]✗ Could not connect to the catalog (Status: {resp.status}).[/red]"
                )
                return False
        except AniplayCliError as e:
            console.print(f"[red]✗ Connection test failed: {e}[/red]")
            return False

    if not asyncio.run(test_connection()):
        issues_found = True
    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
