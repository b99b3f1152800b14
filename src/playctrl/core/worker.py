"""QThread worker for running the asyncio engine in a Qt application.

Qt widgets must run in the main thread, but the reconciliation loop uses
asyncio. This worker runs the event loop in a background thread and bridges
views and errors to the main thread via Qt signals.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from PySide6.QtCore import QThread, Signal

from playctrl.api.album_art import ArtFetcher, UrlArtFetcher
from playctrl.api.endpoint import EndpointAdapter, MprisEndpointAdapter
from playctrl.api.mixer import MixerAdapter, PulseMixerAdapter
from playctrl.core.config import ConfigManager, SettingsStore
from playctrl.core.reconcile import ReconciliationLoop
from playctrl.errors import PlayerError
from playctrl.models.command import Command
from playctrl.models.view import PlayerView

logger = logging.getLogger(__name__)


class EngineWorker(QThread):
    """Background thread hosting the reconciliation loop.

    Adapters and the settings store are created inside the thread by
    factories, since Qt D-Bus proxies and QSettings belong to the thread that
    made them.

    Example:
        worker = EngineWorker()
        worker.view_published.connect(view_store.update_from_view)
        worker.error_occurred.connect(lambda e: print(f"Error: {e}"))
        worker.start()
        worker.play_pause()
    """

    # Data signals
    view_published = Signal(object)  # PlayerView
    started_engine = Signal()
    stopped_engine = Signal()

    # Error signal
    error_occurred = Signal(object)  # PlayerError

    def __init__(  # noqa: PLR0913
        self,
        poll_interval: float = 1.0,
        endpoint_timeout: float = 1.0,
        endpoint_factory: Callable[[], EndpointAdapter] = MprisEndpointAdapter,
        mixer_factory: Callable[[], MixerAdapter | None] = PulseMixerAdapter,
        fetcher_factory: Callable[[], ArtFetcher] = UrlArtFetcher,
        settings_factory: Callable[[], SettingsStore] = ConfigManager,
    ) -> None:
        """Initialize the worker.

        Args:
            poll_interval: Seconds between periodic ticks.
            endpoint_timeout: Per-endpoint query timeout in seconds.
            endpoint_factory: Creates the endpoint adapter.
            mixer_factory: Creates the mixer adapter (may return None).
            fetcher_factory: Creates the album art fetcher.
            settings_factory: Creates the settings store.
        """
        super().__init__()
        self._poll_interval = poll_interval
        self._endpoint_timeout = endpoint_timeout
        self._endpoint_factory = endpoint_factory
        self._mixer_factory = mixer_factory
        self._fetcher_factory = fetcher_factory
        self._settings_factory = settings_factory
        self._engine: ReconciliationLoop | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._should_run = True

    @property
    def poll_interval(self) -> float:
        """Return seconds between periodic ticks."""
        return self._poll_interval

    @property
    def is_running(self) -> bool:
        """Return True if the engine loop is running."""
        return self._engine is not None and self._engine.is_running

    def stop(self) -> None:
        """Signal the worker to stop (called from main thread)."""
        self._should_run = False
        loop = self._loop
        if self._engine and loop and not loop.is_closed():
            # Queued even before run_until_complete starts, so the stop is not lost.
            # A loop closed meanwhile means the engine already stopped.
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(self._engine.stop)

    # -- Commands (thread-safe, called from the main thread) ---------------------

    def dispatch(self, command: Command) -> None:
        """Dispatch a command on the engine thread.

        Thread-safe call from main thread. Errors are emitted via the
        error_occurred signal.

        Args:
            command: The command to run.
        """
        if self._loop and self._loop.is_running() and self._engine:
            asyncio.run_coroutine_threadsafe(self._engine.dispatch(command), self._loop)

    def play_pause(self, application_key: str | None = None) -> None:
        """Toggle playback of a player (None for the primary player)."""
        self.dispatch(Command.play_pause(application_key))

    def next_track(self, application_key: str | None = None) -> None:
        """Skip to the next track."""
        self.dispatch(Command.next(application_key))

    def previous_track(self, application_key: str | None = None) -> None:
        """Go back to the previous track."""
        self.dispatch(Command.previous(application_key))

    def seek(self, position_ms: int, application_key: str | None = None) -> None:
        """Seek to an absolute position in milliseconds."""
        self.dispatch(Command.seek(position_ms, application_key))

    def set_volume(self, application_key: str | None, level: float) -> None:
        """Set a player's volume (0.0-1.0)."""
        self.dispatch(Command.set_volume(application_key, level))

    def select_player(self, application_key: str | None) -> None:
        """Select the player shown in single-player mode."""
        self.dispatch(Command.select_player(application_key))

    def discover_players(self) -> None:
        """Force an out-of-cadence discovery tick."""
        self.dispatch(Command.discover_players())

    def set_player_enabled(self, application_key: str, enabled: bool) -> None:
        """Show or hide an application in multi-player mode."""
        self.dispatch(Command.set_player_enabled(application_key, enabled))

    def set_auto_detect(self, enabled: bool) -> None:
        """Toggle auto-enabling of discovered players."""
        self.dispatch(Command.set_auto_detect(enabled))

    def set_show_all_players(self, enabled: bool) -> None:
        """Toggle multi-player mode."""
        self.dispatch(Command.set_show_all(enabled))

    def set_hide_inactive_players(self, enabled: bool) -> None:
        """Toggle hiding of stopped players."""
        self.dispatch(Command.set_hide_inactive(enabled))

    def request_refresh(self) -> None:
        """Request an immediate tick."""
        self.dispatch(Command.refresh())

    # -- Thread body ---------------------------------------------------------------

    def run(self) -> None:
        """Run the worker thread (entry point)."""
        # Create new event loop for this thread
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        endpoints: EndpointAdapter | None = None
        mixer: MixerAdapter | None = None
        try:
            endpoints = self._endpoint_factory()
            mixer = self._mixer_factory()
            self._engine = ReconciliationLoop(
                endpoints,
                mixer,
                self._fetcher_factory(),
                self._settings_factory(),
                on_publish=self._on_publish,
                on_error=self._on_error,
                poll_interval=self._poll_interval,
                endpoint_timeout=self._endpoint_timeout,
            )
            if self._should_run:
                self.started_engine.emit()
                self._loop.run_until_complete(self._engine.run())
        except Exception as e:
            logger.exception("Engine stopped with an error")
            self.error_occurred.emit(e)
        finally:
            # Clean up
            if self._engine is not None:
                self._engine.close()
            if mixer is not None:
                mixer.close()
            if endpoints is not None:
                endpoints.close()
            self._loop.run_until_complete(self._loop.shutdown_default_executor())
            self._loop.close()
            self._loop = None
            self._engine = None
            self.stopped_engine.emit()

    def _on_publish(self, view: PlayerView) -> None:
        """Forward a published view to the main thread."""
        self.view_published.emit(view)

    def _on_error(self, error: PlayerError) -> None:
        """Forward a reported error to the main thread."""
        self.error_occurred.emit(error)
