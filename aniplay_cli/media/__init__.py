"""
Media Handling Layer.

This package is responsible for resolving episode pages into media URLs,
downloading the media in parallel byte ranges and verifying the result.
"""

from .downloader import ChunkedDownloader, NullProgressSink, ProgressSink, plan_chunks
from .integrity import FileIntegrityChecker
from .resolver import VideoURLResolver, is_higher_quality, select_highest_quality

__all__ = [
    "ChunkedDownloader",
    "FileIntegrityChecker",
    "NullProgressSink",
    "ProgressSink",
    "VideoURLResolver",
    "is_higher_quality",
    "plan_chunks",
    "select_highest_quality",
]
