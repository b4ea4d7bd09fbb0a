"""
Utilities for building download paths from catalog URLs.
"""

from pathlib import Path
from urllib.parse import unquote, urlparse

from pathvalidate import sanitize_filename

from aniplay_cli.models.media import Episode

UNKNOWN_SHOW = "unknown-show"


def show_id_from_url(anime_url: str) -> str:
    """
    Derives a filesystem-safe folder name from an anime page URL.

    The last non-empty path segment is used, e.g.
    'https://animefire.plus/video/naruto/' becomes 'naruto'.
    """
    segments = [s for s in urlparse(anime_url).path.split("/") if s]
    if not segments:
        return UNKNOWN_SHOW
    show_id = sanitize_filename(unquote(segments[-1]), platform="universal").strip()
    return show_id or UNKNOWN_SHOW


def episode_path(download_root: Path, anime_url: str, episode: Episode) -> Path:
    """Returns '<root>/<show>/<episode number>.mp4'."""
    return Path(download_root) / show_id_from_url(anime_url) / f"{episode.number}.mp4"
