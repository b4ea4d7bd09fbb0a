"""
Data structures shared by the catalog, resolver, downloader and player.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

_FIRST_INTEGER = re.compile(r"\d+")


@dataclass(frozen=True)
class Episode:
    """One entry of a show's episode list."""

    label: str
    number: int
    url: str

    @classmethod
    def from_label(cls, label: str, url: str) -> "Episode":
        """
        Builds an episode whose number is the first integer embedded in the label.

        Raises:
            ValueError: If the label contains no digits.
        """
        label = label.strip()
        match = _FIRST_INTEGER.search(label)
        if not match:
            raise ValueError(f"No episode number in label '{label}'")
        return cls(label=label, number=int(match.group()), url=url)


@dataclass(frozen=True)
class SearchResult:
    name: str
    url: str


class MediaCandidate(BaseModel):
    """One rendition offered by a media listing."""

    quality_label: str = Field(alias="label")
    source_url: str = Field(alias="src")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True
        frozen = True


class RenditionListing(BaseModel):
    """The JSON document returned by an intermediate media URL."""

    data: list[MediaCandidate]


class ChunkStatus(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class Chunk:
    """A contiguous, inclusive byte range downloaded by exactly one task."""

    index: int
    start: int
    end: int
    bytes_written: int = 0
    status: ChunkStatus = ChunkStatus.PENDING

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    @property
    def range_header(self) -> str:
        return f"bytes={self.start}-{self.end}"


@dataclass
class DownloadJob:
    """A single chunked download; intermediate state lives only for one run."""

    source_url: str
    destination_path: Path
    chunk_count: int
    total_size: int = 0
    chunks: list[Chunk] = field(default_factory=list, repr=False)

    def part_path(self, index: int) -> Path:
        """Temporary file for one chunk, colocated with the destination."""
        return self.destination_path.with_name(
            f"{self.destination_path.name}.part{index}"
        )

    @property
    def bytes_written(self) -> int:
        return sum(chunk.bytes_written for chunk in self.chunks)

    @property
    def failed_chunks(self) -> list[Chunk]:
        return [c for c in self.chunks if c.status is not ChunkStatus.COMPLETE]
