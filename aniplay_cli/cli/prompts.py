"""
Interactive selection prompts built on rich.prompt.
"""

from typing import Optional, Sequence

import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, IntPrompt

from aniplay_cli.core.episode_manager import find_episode_index
from aniplay_cli.models.media import Episode, SearchResult

from .formatters import print_episode_table


def _choose_index(console: Console, prompt: str, count: int) -> int:
    while True:
        choice = IntPrompt.ask(prompt, console=console, default=1)
        if 1 <= choice <= count:
            return choice - 1
        console.print(f"[red]Please enter a number between 1 and {count}.[/red]")


def select_anime(results: Sequence[SearchResult], console: Console) -> SearchResult:
    """Shows numbered search results and returns the chosen one."""
    if not results:
        raise typer.BadParameter("No anime found with the given name.")
    if len(results) == 1:
        console.print(f"[cyan]Found:[/cyan] {escape(results[0].name)}")
        return results[0]

    for i, result in enumerate(results, 1):
        console.print(f"  [dim]{i:>3}[/dim]  {escape(result.name)}")
    return results[_choose_index(console, "Select the anime", len(results))]


def select_episode(
    episodes: Sequence[Episode], console: Console, episode_number: Optional[int] = None
) -> int:
    """
    Returns the list index of the episode to start with.

    An explicit episode number skips the prompt.
    """
    if episode_number is not None:
        try:
            return find_episode_index(episodes, episode_number)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from e

    print_episode_table(episodes, "Episodes", console=console)
    return _choose_index(console, "Select the episode", len(episodes))


def ask_for_download(console: Console) -> bool:
    return Confirm.ask("Do you want to download the episode?", console=console, default=False)


def ask_for_play_offline(console: Console) -> bool:
    return Confirm.ask(
        "Do you want to play the downloaded version offline?",
        console=console,
        default=True,
    )
