"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_BASE_URL = "https://animefire.plus/"
DEFAULT_DOWNLOAD_ROOT = "~/.local/aniplay/downloads/anime"
DEFAULT_PLAYER = "vlc"

MAX_CHUNK_COUNT = 32


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    # Source
    base_url: str = DEFAULT_BASE_URL

    # Download Settings
    download_root: str = DEFAULT_DOWNLOAD_ROOT
    chunk_count: int = 4
    dial_timeout: float = 10.0
    read_timeout: float = 90.0

    # Playback Settings
    player: str = DEFAULT_PLAYER
    player_args: list[str] = Field(default_factory=list)
    stop_player_on_quit: bool = False
    stop_player_on_switch: bool = False

    # Logging
    json_logs: bool = False

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Only http(s) catalog roots are accepted; a trailing slash is enforced."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Base URL must start with http:// or https://.")
        return v if v.endswith("/") else v + "/"

    @field_validator("download_root")
    @classmethod
    def validate_download_root(cls, v: str) -> str:
        if not v:
            raise ValueError("Download root cannot be empty.")
        return v

    @field_validator("chunk_count")
    @classmethod
    def validate_chunk_count(cls, v: int) -> int:
        """Ensures a reasonable number of parallel range requests."""
        if v < 1 or v > MAX_CHUNK_COUNT:
            raise ValueError(f"Chunk count must be between 1 and {MAX_CHUNK_COUNT}.")
        return v

    @field_validator("dial_timeout", "read_timeout")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("player")
    @classmethod
    def validate_player(cls, v: str) -> str:
        if not v:
            raise ValueError("Player command cannot be empty.")
        return v

    @property
    def download_root_path(self) -> Path:
        return Path(self.download_root).expanduser()

    @property
    def player_command(self) -> list[str]:
        """The player executable followed by its fixed arguments."""
        return [self.player, *self.player_args]

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        return set(cls.model_fields)
