"""
Provides methods for checking the integrity of downloaded media files.
"""

import logging
import os

log = logging.getLogger(__name__)


class FileIntegrityChecker:
    """A collection of static methods for validating downloaded files."""

    @staticmethod
    def check_size(filepath: str, expected_size: int) -> bool:
        """
        Checks that a file exists and has exactly the expected length.

        Args:
            filepath: Path to the downloaded file.
            expected_size: Length in bytes announced by the server.

        Returns:
            True if the file is complete, False otherwise.
        """
        try:
            actual_size = os.path.getsize(filepath)
        except OSError as e:
            log.warning(f"Integrity check failed for '{filepath}': {e}")
            return False

        if actual_size != expected_size:
            log.warning(
                f"Integrity check failed for '{filepath}': "
                f"{actual_size} bytes on disk, expected {expected_size}."
            )
            return False
        return True

    @staticmethod
    def is_complete_download(filepath: str) -> bool:
        """
        Returns True if a previously downloaded episode can be reused.

        A non-empty file without leftover part files counts as complete.
        """
        try:
            if os.path.getsize(filepath) <= 0:
                return False
        except OSError:
            return False

        directory, name = os.path.split(filepath)
        prefix = f"{name}.part"
        try:
            leftovers = [f for f in os.listdir(directory or ".") if f.startswith(prefix)]
        except OSError as e:
            log.debug(f"Could not list '{directory}': {e}")
            return True
        if leftovers:
            log.debug(f"Found leftover part files for '{filepath}': {leftovers}")
            return False
        return True
