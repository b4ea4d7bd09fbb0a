"""
aniplay-cli: search, download and play anime episodes from the terminal.
"""

__version__ = "0.1.0"
