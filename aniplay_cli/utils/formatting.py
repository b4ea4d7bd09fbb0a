"""
Helper functions for formatting data into human-readable strings.
"""


def format_size(bytes_size: float) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def parse_episode_range(value: str) -> tuple[int, int]:
    """
    Parses an inclusive episode range such as '3-7'.

    A single number selects one episode. Raises ValueError on malformed input
    or a reversed range.
    """
    start_str, sep, end_str = value.strip().partition("-")
    start = int(start_str)
    end = int(end_str) if sep else start
    if start <= 0 or end < start:
        raise ValueError(f"Invalid episode range '{value}'.")
    return start, end
