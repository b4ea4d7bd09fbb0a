import asyncio
import io

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from rich.console import Console

from aniplay_cli.cli.progress_manager import ProgressManager
from aniplay_cli.core.episode_manager import EpisodeManager, find_episode_index
from aniplay_cli.models.config import AppConfig
from aniplay_cli.models.media import Episode
from conftest import media_handler, permissive_dialer


def _site_app(payload, accept_ranges=True, missing=()):
    """Episode pages at /ep/N point at /media/N.json, which lists /files/N.mp4."""

    async def episode_page(request):
        number = request.match_info["number"]
        if int(number) in missing:
            return web.Response(status=404)
        html = f'<html><video data-video-src="/media/{number}.json"></video></html>'
        return web.Response(text=html, content_type="text/html")

    async def listing(request):
        number = request.match_info["number"]
        base = f"{request.scheme}://{request.host}"
        body = {
            "data": [
                {"label": "360p", "src": f"{base}/files/low.mp4"},
                {"label": "720p", "src": f"{base}/files/{number}.mp4"},
            ]
        }
        return web.json_response(body)

    app = web.Application()
    app.router.add_get("/ep/{number}", episode_page)
    app.router.add_get("/media/{number}.json", listing)
    app.router.add_get("/files/{name}", media_handler(payload, accept_ranges))
    return app


def _episodes(server, numbers):
    return [
        Episode(label=f"Episódio {n}", number=n, url=str(server.make_url(f"/ep/{n}")))
        for n in numbers
    ]


def _run(app, tmp_path, action, progress_manager=None):
    config = AppConfig(download_root=str(tmp_path), chunk_count=3)

    async def scenario():
        async with TestServer(app, host="127.0.0.1") as server:
            async with permissive_dialer(timeout=5) as dialer:
                manager = EpisodeManager(
                    config,
                    dialer,
                    console=Console(file=io.StringIO()),
                    progress_manager=progress_manager,
                )
                return manager, await action(manager, server)

    return asyncio.run(scenario())


ANIME_URL = "https://animefire.plus/animes/naruto"


class TestFindEpisodeIndex:
    def test_found(self, episodes):
        assert find_episode_index(episodes, 3) == 2

    def test_missing(self, episodes):
        with pytest.raises(ValueError):
            find_episode_index(episodes, 9)


class TestDownloadEpisode:
    def test_downloads_best_rendition(self, tmp_path, payload):
        async def action(manager, server):
            (episode,) = _episodes(server, [1])
            return await manager.download_episode(ANIME_URL, episode)

        manager, path = _run(_site_app(payload), tmp_path, action)
        assert path == tmp_path / "naruto" / "1.mp4"
        assert path.read_bytes() == payload
        assert manager.stats.episodes_downloaded == 1
        assert manager.stats.total_size_downloaded == len(payload)
        assert manager.stats.single_stream_fallbacks == 0

    def test_existing_file_is_skipped(self, tmp_path, payload):
        existing = tmp_path / "naruto" / "1.mp4"
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"already here")

        async def action(manager, server):
            (episode,) = _episodes(server, [1])
            return await manager.download_episode(ANIME_URL, episode)

        manager, path = _run(_site_app(payload), tmp_path, action)
        assert path == existing
        assert path.read_bytes() == b"already here"
        assert manager.stats.episodes_skipped_exists == 1
        assert manager.stats.episodes_downloaded == 0

    def test_falls_back_to_single_stream(self, tmp_path, payload):
        async def action(manager, server):
            (episode,) = _episodes(server, [2])
            return await manager.download_episode(ANIME_URL, episode)

        manager, path = _run(_site_app(payload, accept_ranges=False), tmp_path, action)
        assert path.read_bytes() == payload
        assert manager.stats.single_stream_fallbacks == 1
        assert manager.stats.episodes_downloaded == 1


class TestDownloadRange:
    def test_failures_do_not_stop_the_range(self, tmp_path, payload):
        progress = ProgressManager(Console(file=io.StringIO()), enabled=False)

        async def action(manager, server):
            episodes = _episodes(server, [1, 2, 3, 4])
            return await manager.download_range(ANIME_URL, episodes, 1, 3)

        manager, stats = _run(_site_app(payload, missing={2}), tmp_path, action, progress)

        assert stats.episodes_downloaded == 2
        assert stats.episodes_failed == 1
        assert stats.failures[0][0] == "Episódio 2"
        assert sorted(p.name for p in (tmp_path / "naruto").iterdir()) == [
            "1.mp4",
            "3.mp4",
        ]
        summary = progress.get_statistics()
        assert (summary["total_episodes"], summary["completed"], summary["failed"]) == (
            3,
            2,
            1,
        )

        panel = manager.console.file.getvalue()
        assert "NetworkError" in panel
        assert "Suggestions" in panel
        assert "Episódio 2" in panel

    def test_empty_range(self, tmp_path, payload):
        async def action(manager, server):
            return await manager.download_range(ANIME_URL, _episodes(server, [1]), 5, 9)

        _, stats = _run(_site_app(payload), tmp_path, action)
        assert stats.episodes_processed == 0
