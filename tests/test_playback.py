import asyncio
import io
import os
import signal
import sys
import time

import pytest
from rich.console import Console

from aniplay_cli.core.playback import (
    Command,
    CommandReader,
    PlaybackController,
    PlaybackState,
    PlayerProcess,
)
from aniplay_cli.exceptions import MediaNotFoundError, PlayerError


class FakePlayer:
    """Records lifecycle calls into a shared journal instead of spawning."""

    def __init__(self, journal):
        self.journal = journal
        self.pid = 4242
        self.media_url = None
        self._running = False

    @property
    def running(self):
        return self._running

    async def start(self, media_url):
        self.media_url = media_url
        self._running = True
        self.journal.append(("start", media_url))

    async def join(self):
        self._running = False
        self.journal.append(("join", self.media_url))
        return 0

    async def stop(self):
        self._running = False
        self.journal.append(("stop", self.media_url))
        return -15


def _controller(
    episodes, keys, journal, failing=(), commands=None, player_factory=None, **kwargs
):
    async def resolve(episode):
        if episode.number in failing:
            raise MediaNotFoundError(f"no video for episode {episode.number}")
        return f"media://{episode.number}"

    return PlaybackController(
        episodes,
        resolve,
        player_factory or (lambda: FakePlayer(journal)),
        commands=commands if commands is not None else io.StringIO(keys),
        console=Console(file=io.StringIO()),
        **kwargs,
    )


def _output(controller):
    return controller.console.file.getvalue()


def _read_all(stream, count):
    async def scenario():
        reader = CommandReader(stream)
        return [await reader.read() for _ in range(count)]

    return asyncio.run(scenario())


class TestCommandReader:
    def test_skips_unknown_characters(self):
        assert _read_all(io.StringIO("x\n N"), 1) == [Command.NEXT]

    def test_end_of_input(self):
        assert _read_all(io.StringIO("zz\n"), 2) == [None, None]

    def test_commands_are_read_in_order(self):
        assert _read_all(io.StringIO("p\nq\n"), 2) == [Command.PREV, Command.QUIT]

    def test_cancelled_playback_does_not_wait_for_input(self, episodes):
        read_fd, write_fd = os.pipe()
        stream = os.fdopen(read_fd, "r")
        controller = _controller(episodes, "", [], commands=stream)

        async def scenario():
            task = asyncio.create_task(controller.run(0))
            await asyncio.sleep(0.3)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        started = time.monotonic()
        try:
            asyncio.run(scenario())
            elapsed = time.monotonic() - started
        finally:
            os.close(write_fd)
            controller.reader.thread.join(timeout=5)
            stream.close()

        assert elapsed < 2
        assert not controller.reader.thread.is_alive()


class TestPlaybackController:
    def test_navigation_releases_before_starting(self, episodes):
        journal = []
        controller = _controller(episodes, "pnnq", journal)
        asyncio.run(controller.run(1))

        assert journal == [
            ("start", "media://2"),
            ("join", "media://2"),
            ("start", "media://1"),
            ("join", "media://1"),
            ("start", "media://2"),
            ("join", "media://2"),
            ("start", "media://3"),
        ]
        assert controller.current_index == 2
        assert controller.state is PlaybackState.STOPPED

    def test_next_at_last_episode_is_a_no_op(self, episodes):
        journal = []
        controller = _controller(episodes, "nq", journal)
        asyncio.run(controller.run(2))

        assert journal == [("start", "media://3")]
        assert controller.current_index == 2
        assert "Already at the last episode." in _output(controller)

    def test_prev_at_first_episode_is_a_no_op(self, episodes):
        journal = []
        controller = _controller(episodes, "pq", journal)
        asyncio.run(controller.run(0))

        assert journal == [("start", "media://1")]
        assert "Already at the first episode." in _output(controller)

    def test_quit_leaves_player_running_by_default(self, episodes):
        journal = []
        controller = _controller(episodes, "q", journal)
        asyncio.run(controller.run(0))

        assert journal == [("start", "media://1")]
        assert controller.session.player.running
        assert "Quitting video playback." in _output(controller)

    @pytest.mark.skipif(sys.platform == "win32", reason="checks the child by pid")
    def test_quit_leaves_real_player_process_alive(self, episodes):
        sleeper = [sys.executable, "-c", "import time; time.sleep(30)"]
        controller = _controller(
            episodes, "q", [], player_factory=lambda: PlayerProcess(sleeper)
        )
        asyncio.run(controller.run(0))

        pid = controller.session.player.pid
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            alive = False
        else:
            alive = True
            os.kill(pid, signal.SIGTERM)
        assert alive
        assert controller.state is PlaybackState.STOPPED

    def test_quit_can_stop_the_player(self, episodes):
        journal = []
        controller = _controller(episodes, "q", journal, stop_player_on_quit=True)
        asyncio.run(controller.run(0))

        assert journal == [("start", "media://1"), ("stop", "media://1")]
        assert controller.session.player is None

    def test_switch_can_stop_the_player(self, episodes):
        journal = []
        controller = _controller(episodes, "nq", journal, stop_player_on_switch=True)
        asyncio.run(controller.run(0))

        assert journal == [
            ("start", "media://1"),
            ("stop", "media://1"),
            ("start", "media://2"),
        ]

    def test_end_of_input_waits_for_player(self, episodes):
        journal = []
        controller = _controller(episodes, "", journal)
        asyncio.run(controller.run(0))

        assert journal == [("start", "media://1"), ("join", "media://1")]
        assert controller.state is PlaybackState.STOPPED

    def test_failed_switch_keeps_position(self, episodes):
        journal = []
        controller = _controller(episodes, "nq", journal, failing={2})
        asyncio.run(controller.run(0))

        assert controller.current_index == 0
        assert ("start", "media://2") not in journal
        assert "Failed to play next episode" in _output(controller)

    def test_given_media_url_skips_resolution(self, episodes):
        journal = []
        controller = _controller(episodes, "q", journal, failing={1})
        asyncio.run(controller.run(0, "/downloads/show/1.mp4"))

        assert journal == [("start", "/downloads/show/1.mp4")]

    @pytest.mark.parametrize("index", [-1, 3])
    def test_start_index_out_of_range(self, episodes, index):
        controller = _controller(episodes, "q", [])
        with pytest.raises(PlayerError):
            asyncio.run(controller.run(index))

    def test_empty_episode_list_is_rejected(self):
        with pytest.raises(ValueError):
            _controller([], "q", [])


class TestPlayerProcess:
    def test_exit_code_is_reported(self):
        player = PlayerProcess([sys.executable, "-c", "import sys; sys.exit(3)"])

        async def scenario():
            await player.start("ignored")
            return await player.join()

        assert asyncio.run(scenario()) == 3
        assert not player.running

    def test_stop_terminates_a_running_player(self):
        player = PlayerProcess(
            [sys.executable, "-c", "import time; time.sleep(60)"], stop_grace_period=5
        )

        async def scenario():
            await player.start("ignored")
            assert player.running
            await player.stop()

        asyncio.run(scenario())
        assert not player.running

    def test_missing_executable(self, tmp_path):
        player = PlayerProcess([str(tmp_path / "no-such-player")])
        with pytest.raises(PlayerError):
            asyncio.run(player.start("ignored"))

    def test_cannot_start_twice(self):
        player = PlayerProcess([sys.executable, "-c", "pass"])

        async def scenario():
            await player.start("ignored")
            try:
                await player.start("ignored")
            finally:
                await player.join()

        with pytest.raises(PlayerError):
            asyncio.run(scenario())

    def test_empty_command_is_rejected(self):
        with pytest.raises(PlayerError):
            PlayerProcess([])
