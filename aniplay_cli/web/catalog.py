"""
Scrapes the AnimeFire catalog for search results and episode lists.
"""

import logging
from typing import Optional
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup

from aniplay_cli.exceptions import NetworkError
from aniplay_cli.models.config import DEFAULT_BASE_URL
from aniplay_cli.models.media import Episode, SearchResult
from aniplay_cli.net.dialer import TrustedDialer

log = logging.getLogger(__name__)

_SEARCH_RESULT_SELECTOR = ".row.ml-1.mr-1 a"
_NEXT_PAGE_SELECTOR = ".pagination .next a"
_EPISODE_SELECTOR = "a.lEp.epT.divNumEp.smallbox.px-2.mx-1.text-left.d-flex"


def normalize_query(query: str) -> str:
    """Turns 'One Piece' into the 'one-piece' slug used by the search page."""
    return "-".join(query.lower().split())


def parse_search_results(html: str, page_url: str) -> list[SearchResult]:
    soup = BeautifulSoup(html, "html.parser")
    results = []
    for link in soup.select(_SEARCH_RESULT_SELECTOR):
        href = link.get("href")
        name = link.get_text(strip=True)
        if not href or not name:
            continue
        results.append(SearchResult(name=name, url=urljoin(page_url, href)))
    return results


def parse_next_page(html: str, page_url: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    link = soup.select_one(_NEXT_PAGE_SELECTOR)
    if link is None or not link.get("href"):
        return None
    return urljoin(page_url, link["href"])


def parse_episodes(html: str, page_url: str) -> list[Episode]:
    """
    Extracts the episode links of an anime page, sorted by episode number.

    Links whose label carries no number are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    episodes = []
    for link in soup.select(_EPISODE_SELECTOR):
        label = link.get_text(strip=True)
        href = link.get("href")
        if not href:
            continue
        try:
            episodes.append(Episode.from_label(label, urljoin(page_url, href)))
        except ValueError as e:
            log.warning(f"Skipping episode link '{label}': {e}")
    episodes.sort(key=lambda episode: episode.number)
    return episodes


def is_series(episodes: list[Episode]) -> bool:
    """A title with more than one episode is a series; otherwise a movie or OVA."""
    return len(episodes) > 1


class AnimeFireCatalog:
    """
    Search and episode listing for the AnimeFire site.

    All requests go through the TrustedDialer.
    """

    def __init__(
        self,
        dialer: TrustedDialer,
        base_url: str = DEFAULT_BASE_URL,
        max_pages: int = 20,
    ):
        self.dialer = dialer
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.max_pages = max_pages

    def search_url(self, query: str) -> str:
        return urljoin(self.base_url, f"pesquisar/{quote(normalize_query(query))}")

    async def _fetch_html(self, url: str) -> str:
        async with self.dialer.request("GET", url) as response:
            if response.status >= 400:
                raise NetworkError(
                    f"Request for {url} failed with status {response.status}"
                )
            return await response.text()

    async def search(self, query: str) -> list[SearchResult]:
        """
        Returns the first page of results for a query.

        Empty result pages are skipped by following the pagination links.
        An empty list means nothing matched.
        """
        page_url: Optional[str] = self.search_url(query)
        for page in range(1, self.max_pages + 1):
            log.debug(f"Searching page {page}: {page_url}")
            html = await self._fetch_html(page_url)
            results = parse_search_results(html, page_url)
            if results:
                return results

            page_url = parse_next_page(html, page_url)
            if page_url is None:
                break
        return []

    async def list_episodes(self, anime_url: str) -> list[Episode]:
        """Returns the episodes of an anime page in ascending order."""
        html = await self._fetch_html(anime_url)
        episodes = parse_episodes(html, anime_url)
        log.debug(f"Found {len(episodes)} episodes at {anime_url}")
        return episodes
