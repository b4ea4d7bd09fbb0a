"""
Episode navigation while an external media player runs.

The controller owns exactly one player process at a time. Navigation
commands are read one at a time; before a new episode starts, the previous
player is awaited (or stopped), so two players never compete for the
terminal or the audio device.
"""

import asyncio
import logging
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, TextIO

from rich.console import Console
from rich.markup import escape

from aniplay_cli.exceptions import AniplayCliError, PlayerError
from aniplay_cli.models.media import Episode
from aniplay_cli.utils.structured_logger import PlaybackLogger

log = logging.getLogger(__name__)


class Command(Enum):
    """Single-character navigation commands."""

    NEXT = "n"
    PREV = "p"
    QUIT = "q"


class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPED = "stopped"


class CommandReader:
    """
    Reads navigation commands from a text stream.

    The blocking reads happen on a daemon thread that hands each character
    to the event loop, so no executor worker is ever parked on the stream
    and cancelling a pending read returns at once.
    """

    def __init__(self, stream: TextIO):
        self.stream = stream
        self._queue: Optional[asyncio.Queue] = None
        self._thread: Optional[threading.Thread] = None
        self._at_eof = False

    @property
    def thread(self) -> Optional[threading.Thread]:
        return self._thread

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(
            target=self._pump, args=(loop,), name="command-reader", daemon=True
        )
        self._thread.start()

    def _pump(self, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            try:
                char = self.stream.read(1)
            except (OSError, ValueError) as e:
                log.debug(f"Command stream closed: {e}")
                char = ""
            try:
                loop.call_soon_threadsafe(self._queue.put_nowait, char)
            except RuntimeError:
                # Event loop already closed
                return
            if not char:
                return

    async def read(self) -> Optional[Command]:
        """
        Waits until a character maps to a command.

        Unknown characters and newlines are skipped. Returns None at end of input.
        """
        if self._at_eof:
            return None
        if self._thread is None:
            self._start()
        while True:
            char = await self._queue.get()
            if not char:
                self._at_eof = True
                return None
            try:
                return Command(char.lower())
            except ValueError:
                continue


class PlayerProcess:
    """
    A supervised handle for one external player process.

    The media URL is passed as the only positional argument. The player's
    standard streams are detached from the terminal.
    """

    def __init__(self, command: Sequence[str], stop_grace_period: float = 3.0):
        if not command:
            raise PlayerError("No player command configured.")
        self.command = list(command)
        self.stop_grace_period = stop_grace_period
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self, media_url: str) -> None:
        """Spawns the player; a handle can only be started once."""
        if self._process is not None:
            raise PlayerError("Player process has already been started.")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                media_url,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise PlayerError(
                f"Failed to start video player '{self.command[0]}': {e}"
            ) from e
        log.debug(f"Started {self.command[0]} (pid {self._process.pid})")

    async def join(self) -> Optional[int]:
        """Waits for the player to exit and returns its exit code."""
        if self._process is None:
            return None
        returncode = await self._process.wait()
        if returncode != 0:
            log.debug(f"Player exited with status {returncode}")
        return returncode

    async def stop(self) -> Optional[int]:
        """Terminates the player, killing it if it ignores the request."""
        if not self.running:
            return await self.join()

        try:
            self._process.terminate()
        except ProcessLookupError:
            return await self.join()

        try:
            return await asyncio.wait_for(
                self._process.wait(), timeout=self.stop_grace_period
            )
        except asyncio.TimeoutError:
            log.debug(f"Player did not exit after {self.stop_grace_period}s, killing.")
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            return await self._process.wait()


@dataclass
class PlaybackSession:
    """The episode list, the current position and the player that owns it."""

    episodes: Sequence[Episode]
    current_index: int
    player: Optional[PlayerProcess] = None

    @property
    def current_episode(self) -> Episode:
        return self.episodes[self.current_index]


MediaResolver = Callable[[Episode], Awaitable[str]]
PlayerFactory = Callable[[], PlayerProcess]


class PlaybackController:
    """
    Maps navigation commands onto player restarts.

    The loop handles one command at a time. Releasing the previous player
    (join, or stop when configured) is the rendezvous point that orders one
    transition before the next.
    """

    def __init__(
        self,
        episodes: Sequence[Episode],
        resolve_media: MediaResolver,
        player_factory: PlayerFactory,
        commands: Optional[TextIO] = None,
        console: Optional[Console] = None,
        stop_player_on_quit: bool = False,
        stop_player_on_switch: bool = False,
        events: Optional[PlaybackLogger] = None,
    ):
        if not episodes:
            raise ValueError("Cannot play an empty episode list.")
        self.episodes = list(episodes)
        self.resolve_media = resolve_media
        self.player_factory = player_factory
        self.commands = commands if commands is not None else sys.stdin
        self.console = console or Console()
        self.stop_player_on_quit = stop_player_on_quit
        self.stop_player_on_switch = stop_player_on_switch
        self.events = events
        self.reader = CommandReader(self.commands)

        self.state = PlaybackState.IDLE
        self.session: Optional[PlaybackSession] = None

    @property
    def current_index(self) -> Optional[int]:
        return self.session.current_index if self.session else None

    async def run(self, start_index: int, media_url: Optional[str] = None) -> None:
        """
        Plays the episode at start_index and processes commands until quit or
        end of input.

        If media_url is given (e.g. a local file) it is played instead of
        resolving the start episode.
        """
        if not 0 <= start_index < len(self.episodes):
            raise PlayerError(f"Current episode index {start_index} not found.")

        self.session = PlaybackSession(self.episodes, start_index)
        if media_url is None:
            media_url = await self.resolve_media(self.session.current_episode)
        await self._start_player(start_index, media_url)

        self.console.print(
            "Press [bold]'n'[/bold] for next episode, [bold]'p'[/bold] for previous"
            " episode, [bold]'q'[/bold] to quit:"
        )

        while True:
            command = await self.reader.read()

            if command is None:
                log.warning("Failed to read command: end of input.")
                await self._release_player(stop=False)
                self.state = PlaybackState.STOPPED
                return

            if command is Command.QUIT:
                self.console.print("[cyan]Quitting video playback.[/cyan]")
                if self.stop_player_on_quit:
                    await self._release_player(stop=True)
                self.state = PlaybackState.STOPPED
                return

            if command is Command.NEXT:
                await self.next()
            else:
                await self.prev()

    async def next(self) -> bool:
        """Moves to the following episode; a no-op at the end of the list."""
        index = self.session.current_index
        if index + 1 >= len(self.episodes):
            self.console.print("[yellow]Already at the last episode.[/yellow]")
            return False
        return await self._switch(index + 1, Command.NEXT)

    async def prev(self) -> bool:
        """Moves to the preceding episode; a no-op at the start of the list."""
        index = self.session.current_index
        if index <= 0:
            self.console.print("[yellow]Already at the first episode.[/yellow]")
            return False
        return await self._switch(index - 1, Command.PREV)

    async def _switch(self, target_index: int, command: Command) -> bool:
        direction = "next" if command is Command.NEXT else "previous"
        current = self.session.current_episode
        target = self.episodes[target_index]
        self.console.print(
            f"[cyan]Switching to {direction} episode:[/cyan] {escape(target.label)}"
        )
        if self.events:
            self.events.navigation(command.name.lower(), current.label, target.label)

        if self.session.player and self.session.player.running:
            if self.stop_player_on_switch:
                self.console.print("[dim]Stopping the current player...[/dim]")
            else:
                self.console.print("[dim]Waiting for the current player to close...[/dim]")
        await self._release_player(stop=self.stop_player_on_switch)

        try:
            media_url = await self.resolve_media(target)
            await self._start_player(target_index, media_url)
        except AniplayCliError as e:
            self.console.print(
                f"[red]✗ Failed to play {direction} episode:[/red] {escape(str(e))}"
            )
            if self.events:
                self.events.navigation_failed(
                    command.name.lower(), target.label, str(e)
                )
            return False
        return True

    async def _start_player(self, index: int, media_url: str) -> None:
        player = self.player_factory()
        await player.start(media_url)
        self.session.current_index = index
        self.session.player = player
        self.state = PlaybackState.PLAYING
        if self.events:
            self.events.player_started(
                self.session.current_episode.label, media_url, player.pid
            )

    async def _release_player(self, stop: bool) -> None:
        """Stops or awaits the current player; ownership ends only once it exited."""
        player = self.session.player
        if player is None:
            return
        returncode = await (player.stop() if stop else player.join())
        self.session.player = None
        self.state = PlaybackState.IDLE
        if self.events:
            self.events.player_exited(self.session.current_episode.label, returncode)
