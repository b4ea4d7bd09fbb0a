"""
Core application engine for orchestrating downloads and playback.

The `EpisodeManager` acts as the high-level session coordinator, delegating
downloads to the `ChunkedDownloader` and episode navigation to the
`PlaybackController`.
"""
