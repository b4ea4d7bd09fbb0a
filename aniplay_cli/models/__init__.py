"""
Data Models Layer.

This package contains the configuration model and the data structures that
flow between the catalog, resolver, downloader and playback controller.
"""

from .config import AppConfig
from .media import (
    Chunk,
    ChunkStatus,
    DownloadJob,
    Episode,
    MediaCandidate,
    RenditionListing,
    SearchResult,
)
from .stats import DownloadStats

__all__ = [
    "AppConfig",
    "Chunk",
    "ChunkStatus",
    "DownloadJob",
    "DownloadStats",
    "Episode",
    "MediaCandidate",
    "RenditionListing",
    "SearchResult",
]
