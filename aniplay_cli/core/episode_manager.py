"""
The orchestrator that ties the catalog, the resolver, the downloader and the
playback controller together for one anime.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from rich.console import Console
from rich.markup import escape

from aniplay_cli.cli.formatters import format_error_with_suggestions
from aniplay_cli.cli.progress_manager import ProgressManager
from aniplay_cli.exceptions import (
    AniplayCliError,
    PartialContentUnsupportedError,
    ServerRejectedError,
)
from aniplay_cli.media import ChunkedDownloader, FileIntegrityChecker, VideoURLResolver
from aniplay_cli.models.config import AppConfig
from aniplay_cli.models.media import Episode
from aniplay_cli.models.stats import DownloadStats
from aniplay_cli.net.dialer import TrustedDialer
from aniplay_cli.utils.path import episode_path
from aniplay_cli.utils.structured_logger import DownloadLogger, PlaybackLogger
from aniplay_cli.web.catalog import AnimeFireCatalog

from .playback import PlaybackController, PlayerProcess

log = logging.getLogger(__name__)


def find_episode_index(episodes: Sequence[Episode], number: int) -> int:
    """Returns the list position of the episode with the given number."""
    for index, episode in enumerate(episodes):
        if episode.number == number:
            return index
    raise ValueError(f"Episode {number} not found.")


class EpisodeManager:
    """
    Runs the download and playback workflows for the episodes of one anime.

    Failures of a single episode are reported and recorded in the session
    statistics; they never abort the remaining episodes.
    """

    def __init__(
        self,
        config: AppConfig,
        dialer: TrustedDialer,
        console: Optional[Console] = None,
        progress_manager: Optional[ProgressManager] = None,
        download_events: Optional[DownloadLogger] = None,
        playback_events: Optional[PlaybackLogger] = None,
    ):
        self.config = config
        self.dialer = dialer
        self.console = console or Console()
        self.progress_manager = progress_manager
        self.playback_events = playback_events
        self.stats = DownloadStats()

        self.catalog = AnimeFireCatalog(dialer, config.base_url)
        self.resolver = VideoURLResolver(dialer)
        self.downloader = ChunkedDownloader(
            dialer,
            chunk_count=config.chunk_count,
            progress_factory=progress_manager.chunk_sink if progress_manager else None,
            events=download_events,
        )

    async def resolve_episode(self, episode: Episode) -> str:
        """Resolves an episode page into its direct media URL."""
        log.debug(f"Resolving episode {episode.number} from {episode.url}")
        return await self.resolver.resolve(episode.url)

    def episode_path(self, anime_url: str, episode: Episode) -> Path:
        return episode_path(self.config.download_root_path, anime_url, episode)

    async def download_episode(
        self,
        anime_url: str,
        episode: Episode,
        media_url: Optional[str] = None,
    ) -> Path:
        """
        Downloads one episode unless a complete copy already exists.

        Byte-range downloading is tried first; servers that refuse partial
        content are retried once with a single plain request.

        Returns:
            The path of the episode file.
        """
        destination = self.episode_path(anime_url, episode)
        if FileIntegrityChecker.is_complete_download(str(destination)):
            self._log(f"Episode {episode.number} already downloaded: [dim]{destination}[/dim]")
            self.stats.episodes_skipped_exists += 1
            if self.progress_manager:
                self.progress_manager.episode_skipped()
            return destination

        if media_url is None:
            media_url = await self.resolve_episode(episode)

        job = self.downloader.new_job(media_url, destination)
        try:
            await self.downloader.download(job)
            size = job.total_size
        except (PartialContentUnsupportedError, ServerRejectedError) as e:
            self._log(
                f"[yellow]Chunked download unavailable ({escape(str(e))}); "
                "falling back to a single stream.[/yellow]",
                level="warning",
            )
            sink = None
            if self.progress_manager:
                sink = self.progress_manager.chunk_sink(destination.name, None)
            size = await self.downloader.download_single_stream(
                media_url, destination, sink
            )
            self.stats.single_stream_fallbacks += 1

        self.stats.episodes_downloaded += 1
        self.stats.total_size_downloaded += size
        if self.progress_manager:
            self.progress_manager.episode_completed()
        self._log(f"[green]✓ Downloaded episode {episode.number}[/green]")
        return destination

    async def download_range(
        self, anime_url: str, episodes: Sequence[Episode], start: int, end: int
    ) -> DownloadStats:
        """Downloads every episode numbered start..end, continuing past failures."""
        selected = [e for e in episodes if start <= e.number <= end]
        if not selected:
            self._log(
                f"[yellow]No episodes between {start} and {end}.[/yellow]",
                level="warning",
            )
            return self.stats

        if self.progress_manager:
            self.progress_manager.initialize_session(len(selected))

        for episode in selected:
            try:
                await self.download_episode(anime_url, episode)
            except AniplayCliError as e:
                self.stats.record_failure(episode.label, e)
                if self.progress_manager:
                    self.progress_manager.episode_failed()
                log.debug(f"Episode {episode.number} failed: {e}")
                self.console.print(
                    format_error_with_suggestions(e, {"episode": episode.label})
                )
        return self.stats

    def create_player(self) -> PlayerProcess:
        return PlayerProcess(self.config.player_command)

    async def play(
        self,
        episodes: Sequence[Episode],
        start_index: int,
        media_url: Optional[str] = None,
        commands: Optional[TextIO] = None,
    ) -> None:
        """Plays episodes starting at start_index and hands control to the n/p/q loop."""
        controller = PlaybackController(
            episodes,
            self.resolve_episode,
            self.create_player,
            commands=commands if commands is not None else sys.stdin,
            console=self.console,
            stop_player_on_quit=self.config.stop_player_on_quit,
            stop_player_on_switch=self.config.stop_player_on_switch,
            events=self.playback_events,
        )
        await controller.run(start_index, media_url)

    def _log(self, message: str, level: str = "info"):
        if self.progress_manager:
            self.progress_manager.log_message(message, level)
        else:
            getattr(log, level, log.info)(message)
