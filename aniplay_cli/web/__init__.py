"""
Web Scraping Layer.

This package contains modules for fetching and parsing the anime catalog:
search results, pagination and episode lists.
"""

from .catalog import AnimeFireCatalog, is_series, normalize_query

__all__ = ["AnimeFireCatalog", "is_series", "normalize_query"]
