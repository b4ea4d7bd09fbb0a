"""
Structured logging system for better log analysis and debugging.
Provides JSON-formatted logs with context and metadata.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable logs.

    Usage:
        logger = StructuredLogger("aniplay_cli")
        logger.info("download_job_completed",
                    destination="/tmp/3.mp4",
                    size_mb=245.2,
                    duration_s=31.2)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable console output
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            json_log_path = log_dir / f"aniplay_cli_{timestamp}.jsonl"
            self._json_file = open(json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Session context (added to all log entries)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        """Format message for console output."""
        parts = [f"{event}:"]
        for key, value in context.items():
            if key not in ("level", "timestamp"):
                parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        """Write structured log entry to JSON file."""
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry) + "\n")
            self._json_file.flush()
        except (OSError, TypeError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        """Log debug event."""
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        """Log info event."""
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        """Log warning event."""
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        """Log error event."""
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class DownloadLogger:
    """Specialized logger for download events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def job_started(
        self, url: str, destination: str, total_size: int, chunk_count: int
    ):
        """Log chunked download started."""
        self.logger.debug(
            "download_job_started",
            url=url,
            destination=destination,
            total_size=total_size,
            chunk_count=chunk_count,
        )

    def chunk_failed(
        self, destination: str, chunk_index: int, bytes_written: int, error: str
    ):
        """Log a single byte range that could not be completed."""
        self.logger.error(
            "download_chunk_failed",
            destination=destination,
            chunk_index=chunk_index,
            bytes_written=bytes_written,
            error=error,
        )

    def job_completed(self, destination: str, size_bytes: int, duration_s: float):
        """Log chunked download completed."""
        self.logger.info(
            "download_job_completed",
            destination=destination,
            size_bytes=size_bytes,
            size_mb=round(size_bytes / (1024 * 1024), 2),
            duration_s=round(duration_s, 2),
        )

    def job_failed(self, destination: str, error: str):
        """Log chunked download failed."""
        self.logger.error("download_job_failed", destination=destination, error=error)

    def single_stream_completed(self, destination: str, size_bytes: int):
        """Log a fallback single-stream download completed."""
        self.logger.info(
            "download_single_stream_completed",
            destination=destination,
            size_bytes=size_bytes,
        )


class PlaybackLogger:
    """Specialized logger for player and navigation events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def player_started(self, episode: str, media_url: str, pid: int | None):
        """Log player process started."""
        self.logger.debug(
            "player_started", episode=episode, media_url=media_url, pid=pid
        )

    def player_exited(self, episode: str, returncode: int | None):
        """Log player process exited."""
        self.logger.debug("player_exited", episode=episode, returncode=returncode)

    def navigation(self, command: str, from_episode: str, to_episode: str | None):
        """Log a navigation command and its target."""
        self.logger.debug(
            "playback_navigation",
            command=command,
            from_episode=from_episode,
            to_episode=to_episode,
        )

    def navigation_failed(self, command: str, episode: str, error: str):
        """Log a navigation that could not resolve its target."""
        self.logger.warning(
            "playback_navigation_failed", command=command, episode=episode, error=error
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, DownloadLogger, PlaybackLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, download_logger, playback_logger)
    """
    base = StructuredLogger("aniplay_cli", log_dir=log_dir, enable_json=enable_json)
    download = DownloadLogger(base)
    playback = PlaybackLogger(base)

    return base, download, playback
