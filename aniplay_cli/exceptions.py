"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class AniplayCliError(Exception):
    """Base exception for all application-specific errors."""


class NotAllowedError(AniplayCliError):
    """Raised when a peer or URL points at a disallowed address class."""


class DialTimeoutError(AniplayCliError):
    """Raised when connecting or the TLS handshake exceeds the dial timeout."""


class NetworkError(AniplayCliError):
    """Raised for transport failures and unexpected HTTP status codes."""


class ServerRejectedError(AniplayCliError):
    """Raised when the media server refuses the download probe."""


class PartialContentUnsupportedError(ServerRejectedError):
    """
    Raised when the server does not advertise byte-range support. Callers should
    fall back to a single-stream transfer.
    """


class FileIntegrityError(AniplayCliError):
    """Raised when a merged download does not match the expected size."""


class ResolverError(AniplayCliError):
    """Base class for failures to turn an episode page into a media URL."""


class ParseError(ResolverError):
    """Raised when a page or rendition listing cannot be decoded."""


class MediaNotFoundError(ResolverError):
    """Raised when an episode page exposes no media source."""


class NoCandidatesError(ResolverError):
    """Raised when a rendition listing offers no usable candidate."""


class PlayerError(AniplayCliError):
    """Raised when the external media player cannot be started."""


class ConfigurationError(AniplayCliError):
    """Raised for issues related to configuration loading or validation."""
