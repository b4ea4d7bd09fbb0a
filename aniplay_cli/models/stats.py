"""
Dataclass for tracking download session statistics.
"""

from dataclasses import dataclass, field


@dataclass
class DownloadStats:
    """Tracks the outcome of every episode in a download session."""

    episodes_downloaded: int = 0
    episodes_skipped_exists: int = 0
    episodes_failed: int = 0
    single_stream_fallbacks: int = 0
    total_size_downloaded: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def episodes_processed(self) -> int:
        return (
            self.episodes_downloaded + self.episodes_skipped_exists + self.episodes_failed
        )

    def record_failure(self, episode_label: str, error: Exception) -> None:
        self.episodes_failed += 1
        self.failures.append((episode_label, str(error)))
