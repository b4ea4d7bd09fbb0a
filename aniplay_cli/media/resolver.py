"""
Turns an episode page into a direct media URL.

Resolution happens in two steps: the episode page names an intermediate
source, and that source returns a JSON listing of renditions from which the
highest resolution is picked.
"""

import json
import logging
import re
from typing import Iterable, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from pydantic import ValidationError

from aniplay_cli.exceptions import (
    MediaNotFoundError,
    NetworkError,
    NoCandidatesError,
    ParseError,
)
from aniplay_cli.models.media import MediaCandidate, RenditionListing
from aniplay_cli.net.dialer import TrustedDialer

log = logging.getLogger(__name__)

_QUALITY_LABEL = re.compile(r"\s*(\d+)\s*p?\s*", re.IGNORECASE)

VIDEO_SOURCE_ATTR = "data-video-src"


def parse_quality(label: Optional[str]) -> int:
    """Extracts the resolution from labels like '1080p'; malformed labels are 0."""
    if not label:
        return 0
    match = _QUALITY_LABEL.fullmatch(label)
    return int(match.group(1)) if match else 0


def is_higher_quality(quality1: str, quality2: str) -> bool:
    """Returns True if the first quality label describes a higher resolution."""
    return parse_quality(quality1) > parse_quality(quality2)


def select_highest_quality(candidates: Iterable[MediaCandidate]) -> MediaCandidate:
    """
    Picks the candidate with the largest resolution.

    The first candidate seen at the maximum wins. Labels without a resolution
    never beat one that has it.

    Raises:
        NoCandidatesError: If the list is empty or no label carries a resolution.
    """
    candidates = list(candidates)
    if not candidates:
        raise NoCandidatesError("No video data found in the response.")

    best: Optional[MediaCandidate] = None
    for candidate in candidates:
        best_label = best.quality_label if best else ""
        if is_higher_quality(candidate.quality_label, best_label):
            best = candidate

    if best is None:
        labels = ", ".join(repr(c.quality_label) for c in candidates)
        raise NoCandidatesError(f"No suitable video quality found among: {labels}")
    return best


def extract_video_source(html: str, page_url: str) -> str:
    """
    Finds the intermediate media source in an episode page.

    A <video> element is preferred; otherwise the first container carrying
    the source attribute is used.
    """
    soup = BeautifulSoup(html, "html.parser")
    element = soup.find("video") or soup.find(attrs={VIDEO_SOURCE_ATTR: True})
    if element is None:
        raise MediaNotFoundError(f"No video elements found in {page_url}")

    source = (element.get(VIDEO_SOURCE_ATTR) or element.get("src") or "").strip()
    if not source:
        raise MediaNotFoundError(f"Video element in {page_url} has no source")
    return urljoin(page_url, source)


class VideoURLResolver:
    """Resolves episode pages into playable media URLs through a TrustedDialer."""

    def __init__(self, dialer: TrustedDialer):
        self.dialer = dialer

    async def resolve_page(self, page_url: str) -> str:
        """Fetches an episode page and returns its intermediate media source URL."""
        async with self.dialer.request("GET", page_url) as response:
            if response.status >= 400:
                raise NetworkError(
                    f"Request for {page_url} failed with status {response.status}"
                )
            html = await response.text()

        source = extract_video_source(html, page_url)
        log.debug(f"Episode page {page_url} points at {source}")
        return source

    async def resolve_media(self, source_url: str) -> str:
        """Fetches a rendition listing and returns the best rendition's URL."""
        async with self.dialer.request("GET", source_url) as response:
            if response.status != 200:
                raise NetworkError(
                    f"Request for {source_url} failed with status {response.status}"
                )
            body = await response.read()

        try:
            listing = RenditionListing.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            raise ParseError(f"Invalid rendition listing from {source_url}: {e}") from e

        best = select_highest_quality(listing.data)
        log.debug(
            f"Selected {best.quality_label} out of "
            f"{[c.quality_label for c in listing.data]}"
        )
        return best.source_url

    async def resolve(self, page_url: str) -> str:
        """Runs both resolution steps for an episode page."""
        source = await self.resolve_page(page_url)
        return await self.resolve_media(source)
