"""
Handles the low-level downloading of media files over HTTP, splitting each file
into a fixed number of byte ranges that are fetched concurrently and merged in
order once every range task has finished.
"""

import asyncio
import logging
import os
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Optional, Protocol

import aiofiles

from aniplay_cli.exceptions import (
    AniplayCliError,
    ConfigurationError,
    FileIntegrityError,
    PartialContentUnsupportedError,
    ServerRejectedError,
)
from aniplay_cli.models.media import Chunk, ChunkStatus, DownloadJob
from aniplay_cli.net.dialer import TrustedDialer, ensure_url_allowed
from aniplay_cli.utils.structured_logger import DownloadLogger

from .integrity import FileIntegrityChecker

log = logging.getLogger(__name__)

# Byte ranges refer to the stored representation, so transfers must not be
# re-encoded in flight.
IDENTITY_ENCODING = {"Accept-Encoding": "identity"}


class ProgressSink(Protocol):
    """Receives byte counts for a single transfer."""

    def add(self, n: int) -> None: ...

    def finish(self) -> None: ...


class NullProgressSink:
    """A sink that ignores all progress updates."""

    def add(self, n: int) -> None:
        pass

    def finish(self) -> None:
        pass


ProgressFactory = Callable[[str, int], ProgressSink]


def _null_progress(label: str, total: int) -> ProgressSink:
    return NullProgressSink()


def plan_chunks(total_size: int, chunk_count: int) -> list[Chunk]:
    """
    Splits [0, total_size) into chunk_count inclusive byte ranges.

    The last range absorbs the remainder of the integer division.

    Raises:
        ValueError: If chunk_count is not positive or exceeds total_size.
    """
    if chunk_count <= 0:
        raise ValueError(f"Chunk count must be positive, got {chunk_count}.")
    if chunk_count > total_size:
        raise ValueError(
            f"Chunk count {chunk_count} exceeds the resource size of "
            f"{total_size} bytes."
        )

    chunk_size = total_size // chunk_count
    chunks = []
    for index in range(chunk_count):
        start = index * chunk_size
        end = start + chunk_size - 1
        if index == chunk_count - 1:
            end = total_size - 1
        chunks.append(Chunk(index=index, start=start, end=end))
    return chunks


class ChunkedDownloader:
    """
    Downloads a resource as parallel byte ranges through a TrustedDialer.

    A failed range does not stop its siblings; the job fails as a whole at the
    final size check. There is no per-range retry. Callers own the fallback
    to download_single_stream.
    """

    STREAM_BLOCK_SIZE = 65536  # 64 KB
    MERGE_BLOCK_SIZE = 1048576  # 1 MB

    def __init__(
        self,
        dialer: TrustedDialer,
        chunk_count: int = 4,
        progress_factory: Optional[ProgressFactory] = None,
        events: Optional[DownloadLogger] = None,
    ):
        self.dialer = dialer
        self.chunk_count = chunk_count
        self.progress_factory = progress_factory or _null_progress
        self.events = events
        self._destination_locks: OrderedDict[str, asyncio.Lock] = OrderedDict()
        self._max_locks = 1000
        self._destination_lock_main = asyncio.Lock()

    async def _get_destination_lock(self, destination: Path) -> asyncio.Lock:
        """Gets or creates the lock that serializes jobs writing to one path."""
        key = str(destination.resolve())
        async with self._destination_lock_main:
            if key in self._destination_locks:
                self._destination_locks.move_to_end(key)
                return self._destination_locks[key]

            lock = asyncio.Lock()
            self._destination_locks[key] = lock

            # Evict the oldest idle lock if over limit
            if len(self._destination_locks) > self._max_locks:
                for old_key, old_lock in self._destination_locks.items():
                    if not old_lock.locked():
                        del self._destination_locks[old_key]
                        break

            return lock

    def new_job(self, url: str, destination: Path) -> DownloadJob:
        return DownloadJob(
            source_url=url,
            destination_path=Path(destination),
            chunk_count=self.chunk_count,
        )

    async def probe(self, url: str) -> int:
        """
        Issues a HEAD request and returns the resource size.

        Raises:
            ServerRejectedError: On a non-success status or a missing size.
            PartialContentUnsupportedError: If byte ranges are not advertised.
        """
        async with self.dialer.request(
            "HEAD", url, headers=IDENTITY_ENCODING, allow_redirects=True
        ) as response:
            status = response.status
            accept_ranges = response.headers.get("Accept-Ranges", "")
            content_length = response.headers.get("Content-Length")

        if not 200 <= status < 300:
            raise ServerRejectedError(f"Server rejected the probe with status {status}")
        if "bytes" not in accept_ranges.lower():
            raise PartialContentUnsupportedError(
                "Server does not support partial content "
                f"(Accept-Ranges: '{accept_ranges or 'missing'}')"
            )
        try:
            total_size = int(content_length)
        except (TypeError, ValueError) as e:
            raise ServerRejectedError(
                f"Server sent an invalid Content-Length: {content_length!r}"
            ) from e
        if total_size <= 0:
            raise ServerRejectedError("Server reported an empty resource.")
        return total_size

    async def download(self, job: DownloadJob) -> None:
        """
        Runs a chunked download job to completion.

        All part files are removed whether the job succeeds, fails or is
        cancelled. On failure no destination file of the expected size is
        left behind.
        """
        lock = await self._get_destination_lock(job.destination_path)
        async with lock:
            await self._run_job(job)

    async def _run_job(self, job: DownloadJob) -> None:
        start_time = time.monotonic()
        job.total_size = await self.probe(job.source_url)
        try:
            job.chunks = plan_chunks(job.total_size, job.chunk_count)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        try:
            await asyncio.to_thread(
                job.destination_path.parent.mkdir, parents=True, exist_ok=True
            )
        except OSError as e:
            raise FileIntegrityError(
                f"Cannot create directory '{job.destination_path.parent}': {e}"
            ) from e

        log.debug(
            f"Downloading {job.total_size} bytes in {job.chunk_count} chunks "
            f"to '{job.destination_path.name}'"
        )
        if self.events:
            self.events.job_started(
                job.source_url, str(job.destination_path), job.total_size, job.chunk_count
            )

        try:
            await self._download_chunks(job)
            await self._merge(job)
        except OSError as e:
            raise FileIntegrityError(
                f"Failed to assemble '{job.destination_path.name}': {e}"
            ) from e
        finally:
            await self._remove_parts(job)

        try:
            await self._verify(job)
        except FileIntegrityError as e:
            if self.events:
                self.events.job_failed(str(job.destination_path), str(e))
            raise

        if self.events:
            self.events.job_completed(
                str(job.destination_path), job.total_size, time.monotonic() - start_time
            )

    async def _download_chunks(self, job: DownloadJob) -> None:
        """Starts one task per chunk and waits for every one of them."""
        tasks = []
        for chunk in job.chunks:
            sink = self.progress_factory(
                f"{job.destination_path.name} [{chunk.index + 1}/{job.chunk_count}]",
                chunk.size,
            )
            tasks.append(
                asyncio.create_task(
                    self._download_chunk(job, chunk, sink),
                    name=f"chunk-{chunk.index}",
                )
            )

        try:
            await asyncio.gather(*tasks)
        finally:
            # Nothing may touch the part files until every task has stopped
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _download_chunk(
        self, job: DownloadJob, chunk: Chunk, sink: ProgressSink
    ) -> None:
        """Fetches one byte range into its own part file; never raises on failure."""
        chunk.status = ChunkStatus.IN_FLIGHT
        try:
            ensure_url_allowed(job.source_url, self.dialer.address_filter)
            headers = {"Range": chunk.range_header, **IDENTITY_ENCODING}
            async with self.dialer.request(
                "GET", job.source_url, headers=headers
            ) as response:
                if response.status != 206:
                    raise ServerRejectedError(
                        f"Expected 206 Partial Content, got {response.status}"
                    )
                async with aiofiles.open(job.part_path(chunk.index), "wb") as f:
                    async for block in response.content.iter_chunked(
                        self.STREAM_BLOCK_SIZE
                    ):
                        if chunk.bytes_written + len(block) > chunk.size:
                            raise FileIntegrityError(
                                f"Server sent more than the requested {chunk.size} bytes"
                            )
                        await f.write(block)
                        chunk.bytes_written += len(block)
                        sink.add(len(block))

            if chunk.bytes_written != chunk.size:
                raise FileIntegrityError(
                    f"Received {chunk.bytes_written} of {chunk.size} bytes"
                )
            chunk.status = ChunkStatus.COMPLETE
        except (AniplayCliError, OSError) as e:
            chunk.status = ChunkStatus.FAILED
            log.error(f"[red]Chunk {chunk.index}: {e}[/red]")
            if self.events:
                self.events.chunk_failed(
                    str(job.destination_path), chunk.index, chunk.bytes_written, str(e)
                )
        finally:
            sink.finish()

    async def _merge(self, job: DownloadJob) -> None:
        """Concatenates the part files into the destination in index order."""
        async with aiofiles.open(job.destination_path, "wb") as out:
            for chunk in job.chunks:
                part_path = job.part_path(chunk.index)
                if not await asyncio.to_thread(part_path.is_file):
                    log.debug(f"Part file for chunk {chunk.index} is missing.")
                    continue
                async with aiofiles.open(part_path, "rb") as part:
                    while block := await part.read(self.MERGE_BLOCK_SIZE):
                        await out.write(block)

    async def _remove_parts(self, job: DownloadJob) -> None:
        for index in range(job.chunk_count):
            try:
                await asyncio.to_thread(job.part_path(index).unlink, missing_ok=True)
            except OSError as e:
                log.warning(f"Could not remove part file {index}: {e}")

    async def _verify(self, job: DownloadJob) -> None:
        """Checks the merged file; a file that fails is deleted."""
        if FileIntegrityChecker.check_size(
            str(job.destination_path), job.total_size
        ) and job.bytes_written == job.total_size:
            return

        incomplete = [c.index for c in job.failed_chunks]
        await asyncio.to_thread(job.destination_path.unlink, missing_ok=True)
        raise FileIntegrityError(
            f"Downloaded {job.bytes_written} of {job.total_size} bytes for "
            f"'{job.destination_path.name}' (incomplete chunks: {incomplete})"
        )

    async def download_single_stream(
        self,
        url: str,
        destination: Path,
        sink: Optional[ProgressSink] = None,
    ) -> int:
        """
        Downloads a resource with one plain GET request.

        This is the fallback for servers without byte-range support.

        Returns:
            The number of bytes written.
        """
        destination = Path(destination)
        sink = sink or NullProgressSink()
        temp_path = destination.with_name(f"{destination.name}.part")
        lock = await self._get_destination_lock(destination)

        async with lock:
            written = 0
            try:
                await asyncio.to_thread(
                    destination.parent.mkdir, parents=True, exist_ok=True
                )
                async with self.dialer.request(
                    "GET", url, headers=IDENTITY_ENCODING
                ) as response:
                    if response.status != 200:
                        raise ServerRejectedError(
                            f"Server rejected the download with status {response.status}"
                        )
                    expected = response.content_length
                    async with aiofiles.open(temp_path, "wb") as f:
                        async for block in response.content.iter_chunked(
                            self.STREAM_BLOCK_SIZE
                        ):
                            await f.write(block)
                            written += len(block)
                            sink.add(len(block))

                if expected is not None and written != expected:
                    raise FileIntegrityError(
                        f"Downloaded {written} of {expected} bytes for "
                        f"'{destination.name}'"
                    )
                await asyncio.to_thread(os.replace, temp_path, destination)
            except OSError as e:
                raise FileIntegrityError(
                    f"Failed to write '{destination.name}': {e}"
                ) from e
            finally:
                sink.finish()
                await asyncio.to_thread(temp_path.unlink, missing_ok=True)

        if self.events:
            self.events.single_stream_completed(str(destination), written)
        return written
