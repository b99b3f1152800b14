"""Reconciliation loop: the engine's only stateful orchestrator.

Every tick polls the registry and the mixer, filters by the user's settings,
diffs album art URLs against the previous tick, and publishes a complete new
``PlayerView``. Ticks are requested through one queue (periodic timer, user
commands, art arrivals, manual refresh) and consumed one at a time, so the
execution order is linear.

Commands flow the other way: they go straight to the endpoint or the volume
controller and the next tick observes the result.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from enum import Enum

from playctrl.api.album_art.provider import ArtFetcher
from playctrl.api.endpoint import EndpointAdapter
from playctrl.api.mixer import MixerAdapter
from playctrl.core.art_cache import AlbumArtCache, ArtCacheEntry, ArtState
from playctrl.core.config import SettingsStore
from playctrl.core.registry import DEFAULT_ENDPOINT_TIMEOUT, PlayerRegistry
from playctrl.core.volume import VolumeController
from playctrl.errors import (
    EndpointCommandFailed,
    EndpointVanished,
    MixerUnavailable,
    PlayerError,
    UnknownPlayer,
)
from playctrl.models.command import Command, CommandKind
from playctrl.models.mixer import MixerStream
from playctrl.models.player import LogicalPlayer
from playctrl.models.settings import Settings
from playctrl.models.view import PlayerView, PlayerViewEntry

logger = logging.getLogger(__name__)

# Seconds between periodic ticks
DEFAULT_POLL_INTERVAL = 1.0

# Seconds an endpoint command may take before it is reported as failed
DEFAULT_COMMAND_TIMEOUT = 2.0


class TickRequest(Enum):
    """Why a tick was requested."""

    PERIODIC = "periodic"
    DISCOVER = "discover"
    COMMAND = "command"
    SETTINGS = "settings"
    ART = "art"
    MANUAL = "manual"
    STOP = "stop"


class ReconciliationLoop:
    """Poll, diff and publish player state; dispatch user commands.

    The loop is the single writer of the published view. Views are immutable
    and replaced wholesale, so readers need no lock.

    Example:
        loop = ReconciliationLoop(
            MprisEndpointAdapter(),
            PulseMixerAdapter(),
            UrlArtFetcher(),
            ConfigManager(),
            on_publish=lambda view: print(view.keys),
        )
        await loop.run()
    """

    def __init__(  # noqa: PLR0913
        self,
        endpoints: EndpointAdapter,
        mixer: MixerAdapter | None,
        fetcher: ArtFetcher,
        settings_store: SettingsStore,
        *,
        on_publish: Callable[[PlayerView], None] | None = None,
        on_error: Callable[[PlayerError], None] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        endpoint_timeout: float = DEFAULT_ENDPOINT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        """Initialize the loop.

        Args:
            endpoints: Endpoint capability.
            mixer: Mixer capability, None if there is no system mixer.
            fetcher: Album art fetcher.
            settings_store: Source of Settings, read every tick.
            on_publish: Called with every published view.
            on_error: Called with every reported error.
            poll_interval: Seconds between periodic ticks.
            endpoint_timeout: Per-endpoint query timeout in seconds.
            command_timeout: Endpoint command timeout in seconds.
        """
        self._endpoints = endpoints
        self._settings_store = settings_store
        self._on_publish = on_publish
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._command_timeout = command_timeout

        self._registry = PlayerRegistry(endpoints, endpoint_timeout)
        self._volume = VolumeController(endpoints, mixer, self.get_player, command_timeout)
        self._art_cache = AlbumArtCache(fetcher, on_resolved=self._on_art_resolved)

        self._settings = Settings()
        self._view = PlayerView()
        self._previous: list[LogicalPlayer] = []
        self._players: dict[str, LogicalPlayer] = {}
        self._art_urls: dict[str, str] = {}
        # Application keys in order of first appearance (used as an ordered set)
        self._order: dict[str, None] = {}
        self._command_locks: dict[str, asyncio.Lock] = {}
        self._enumeration_failing = False

        self._queue: asyncio.Queue[TickRequest] | None = None
        self._queued: set[TickRequest] = set()
        self._running = False

    # -- Read side ---------------------------------------------------------------

    @property
    def view(self) -> PlayerView:
        """Return the last published view."""
        return self._view

    @property
    def settings(self) -> Settings:
        """Return the settings used by the last tick."""
        return self._settings

    @property
    def registry(self) -> PlayerRegistry:
        """Return the player registry."""
        return self._registry

    @property
    def volume(self) -> VolumeController:
        """Return the volume controller."""
        return self._volume

    @property
    def art_cache(self) -> AlbumArtCache:
        """Return the album art cache."""
        return self._art_cache

    @property
    def is_running(self) -> bool:
        """Return True while ``run()`` is consuming tick requests."""
        return self._running

    @property
    def poll_interval(self) -> float:
        """Return seconds between periodic ticks."""
        return self._poll_interval

    def get_player(self, application_key: str) -> LogicalPlayer | None:
        """Return the logical player of the last refresh, filtered or not."""
        return self._players.get(application_key)

    # -- Tick scheduling ---------------------------------------------------------

    def _tick_queue(self) -> asyncio.Queue[TickRequest]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def request_tick(self, reason: TickRequest = TickRequest.MANUAL) -> None:
        """Queue a tick. Must be called on the loop's thread.

        A reason already waiting in the queue is not queued twice.

        Args:
            reason: Why the tick is needed.
        """
        if reason in self._queued:
            return
        self._queued.add(reason)
        self._tick_queue().put_nowait(reason)

    def stop(self) -> None:
        """Ask ``run()`` to return after the current tick."""
        self._running = False
        self._queued.discard(TickRequest.STOP)
        self.request_tick(TickRequest.STOP)

    def close(self) -> None:
        """Release the endpoint query threads. Call after ``run()`` returns."""
        self._registry.close()

    async def run(self) -> None:
        """Consume tick requests until stopped.

        A periodic timer feeds the queue; the first tick is a discovery.
        """
        queue = self._tick_queue()
        self._running = True
        ticker = asyncio.get_running_loop().create_task(self._ticker(), name="tick-timer")
        self.request_tick(TickRequest.DISCOVER)
        try:
            while self._running:
                reason = await queue.get()
                self._queued.discard(reason)
                if reason is TickRequest.STOP:
                    break
                await self.tick(reason)
        finally:
            self._running = False
            ticker.cancel()
            self._art_cache.clear()
            logger.debug("Reconciliation loop stopped")

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self.request_tick(TickRequest.PERIODIC)

    # -- Tick --------------------------------------------------------------------

    async def tick(self, reason: TickRequest = TickRequest.MANUAL) -> PlayerView:
        """Run one reconciliation cycle and publish the result.

        Per-endpoint, mixer and art failures are reported and isolated. An
        error while assembling the view propagates.

        Args:
            reason: Why the tick runs.

        Returns:
            The published view.
        """
        settings = self._load_settings()

        players = await self._registry.refresh()
        self._check_enumeration()
        self._players = {p.application_key: p for p in players}

        if reason is TickRequest.DISCOVER:
            settings = self._auto_enable(players, settings)
        self._settings = settings

        visible = self._filter(players, settings)
        streams = await self._list_streams()
        self._diff_art(visible)
        self._update_order(players)
        self._log_changes(players)

        view = self._assemble(visible, streams, settings)
        self._publish(view)
        self._previous = players
        return view

    def _load_settings(self) -> Settings:
        try:
            return self._settings_store.load_settings()
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to load settings, keeping previous: %s", e)
            return self._settings

    def _check_enumeration(self) -> None:
        error = self._registry.enumeration_error
        if error is not None:
            if not self._enumeration_failing:
                logger.warning("Cannot enumerate media players: %s", error)
            else:
                logger.debug("Cannot enumerate media players: %s", error)
            self._enumeration_failing = True
        elif self._enumeration_failing:
            logger.info("Media player enumeration recovered")
            self._enumeration_failing = False

    def _auto_enable(self, players: list[LogicalPlayer], settings: Settings) -> Settings:
        """Enable newly discovered applications when auto-detect is on."""
        if not settings.auto_detect_new:
            return settings
        new_keys = {p.application_key for p in players} - settings.enabled_application_keys
        if not new_keys:
            return settings
        logger.info("Auto-enabling discovered players: %s", ", ".join(sorted(new_keys)))
        updated = replace(
            settings,
            enabled_application_keys=settings.enabled_application_keys | new_keys,
        )
        self._settings_store.save_settings(updated)
        return updated

    def _filter(self, players: list[LogicalPlayer], settings: Settings) -> list[LogicalPlayer]:
        """Apply display mode, enabled set and inactive hiding."""
        if not settings.show_all_players:
            selected = settings.selected_application_key
            if selected:
                return [p for p in players if p.application_key == selected]
            if not players:
                return []
            rank = self._order_rank()
            active = min(
                players,
                key=lambda p: (-p.status.rank, rank.get(p.application_key, len(rank))),
            )
            return [active]

        shown = [p for p in players if settings.is_enabled(p.application_key)]
        if settings.hide_inactive_players:
            shown = [p for p in shown if p.is_active]
        return shown

    async def _list_streams(self) -> list[MixerStream]:
        try:
            return await self._volume.list_streams()
        except MixerUnavailable as e:
            self._report(e)
            return []

    def _diff_art(self, visible: list[LogicalPlayer]) -> None:
        """Release art URLs no longer shown and request new ones."""
        current = {p.application_key: p.art_url for p in visible if p.art_url}
        for key, old_url in self._art_urls.items():
            if current.get(key) != old_url:
                self._art_cache.release(old_url)
        for key, new_url in current.items():
            if self._art_urls.get(key) != new_url:
                self._art_cache.request(new_url)
        self._art_urls = current

    def _update_order(self, players: list[LogicalPlayer]) -> None:
        present = {p.application_key for p in players}
        for key in [k for k in self._order if k not in present]:
            del self._order[key]
        for player in players:
            self._order.setdefault(player.application_key, None)

    def _order_rank(self) -> dict[str, int]:
        return {key: index for index, key in enumerate(self._order)}

    def _log_changes(self, players: list[LogicalPlayer]) -> None:
        before = {p.application_key for p in self._previous}
        after = {p.application_key for p in players}
        for key in sorted(after - before):
            logger.info("Player appeared: %s", key)
        for key in sorted(before - after):
            logger.info("Player disappeared: %s", key)

    def _assemble(
        self,
        visible: list[LogicalPlayer],
        streams: list[MixerStream],
        settings: Settings,
    ) -> PlayerView:
        rank = self._order_rank()
        entries = []
        for player in sorted(visible, key=lambda p: rank[p.application_key]):
            volume, backend = self._volume.resolve_volume(player, streams)
            entries.append(
                PlayerViewEntry(
                    player=player,
                    art=self._art_cache.art_for(player.art_url),
                    volume=volume,
                    volume_backend=backend,
                )
            )
        return PlayerView(
            entries=tuple(entries),
            sequence=self._view.sequence + 1,
            selected_application_key=settings.selected_application_key,
        )

    def _publish(self, view: PlayerView) -> None:
        self._view = view
        if self._on_publish is not None:
            self._on_publish(view)

    def _on_art_resolved(self, entry: ArtCacheEntry) -> None:
        if entry.state is ArtState.FAILED and entry.error is not None:
            self._report(entry.error)
        if self._queue is not None:
            self.request_tick(TickRequest.ART)

    # -- Commands ----------------------------------------------------------------

    async def dispatch(self, command: Command) -> PlayerError | None:
        """Execute a user command.

        Does not wait for a tick to confirm the effect. Commands for the same
        application are serialized; failures are reported, never raised.

        Args:
            command: The command.

        Returns:
            The reported error, or None on success.
        """
        try:
            await self._execute(command)
        except PlayerError as e:
            self._report(e)
            return e
        return None

    async def _execute(self, command: Command) -> None:  # noqa: PLR0912
        kind = command.kind
        if command.is_endpoint_command:
            await self._execute_endpoint_command(command)
        elif kind is CommandKind.SELECT_PLAYER:
            self._save_settings(
                replace(self._load_settings(), selected_application_key=command.application_key)
            )
        elif kind is CommandKind.DISCOVER_PLAYERS:
            self.request_tick(TickRequest.DISCOVER)
        elif kind is CommandKind.SET_PLAYER_ENABLED:
            settings = self._load_settings()
            keys = set(settings.enabled_application_keys)
            if command.application_key:
                if command.enabled:
                    keys.add(command.application_key)
                else:
                    keys.discard(command.application_key)
            self._save_settings(replace(settings, enabled_application_keys=frozenset(keys)))
        elif kind is CommandKind.SET_AUTO_DETECT:
            self._save_settings(replace(self._load_settings(), auto_detect_new=command.enabled))
        elif kind is CommandKind.SET_SHOW_ALL:
            self._save_settings(replace(self._load_settings(), show_all_players=command.enabled))
        elif kind is CommandKind.SET_HIDE_INACTIVE:
            self._save_settings(
                replace(self._load_settings(), hide_inactive_players=command.enabled)
            )
        elif kind is CommandKind.REFRESH:
            self.request_tick(TickRequest.MANUAL)

    def _save_settings(self, settings: Settings) -> None:
        """Persist settings changed by an explicit user command."""
        self._settings_store.save_settings(settings)
        self._settings = settings
        self.request_tick(TickRequest.SETTINGS)

    def _resolve_target(self, command: Command) -> LogicalPlayer:
        key = command.application_key
        if key is None:
            primary = self._view.primary
            if primary is None:
                raise UnknownPlayer("No player to control")
            key = primary.application_key
        player = self._players.get(key)
        if player is None:
            raise UnknownPlayer(f"No player for {key}", application_key=key)
        return player

    async def _execute_endpoint_command(self, command: Command) -> None:
        player = self._resolve_target(command)
        key = player.application_key
        lock = self._command_locks.setdefault(key, asyncio.Lock())
        async with lock:
            if command.kind is CommandKind.SET_VOLUME:
                # No optimistic update: the next tick shows the real level
                await self._volume.set_volume(key, command.level)
                return

            # The winner may have changed while waiting for the lock
            player = self._players.get(key, player)
            await self._send(player, command)

        if command.kind is CommandKind.PLAY_PAUSE:
            self._publish_toggled(key)
        else:
            self.request_tick(TickRequest.COMMAND)

    async def _send(self, player: LogicalPlayer, command: Command) -> None:
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, self._endpoints.command, player.endpoint_id, command),
                timeout=self._command_timeout,
            )
        except EndpointCommandFailed as e:
            e.application_key = player.application_key
            raise
        except (EndpointVanished, TimeoutError) as e:
            raise EndpointCommandFailed(
                f"{command.kind.value} on {player.display_name} failed: {e or 'timeout'}",
                application_key=player.application_key,
                endpoint_id=player.endpoint_id,
            ) from e
        logger.debug("Sent %s to %s", command.kind.value, player.endpoint_id)

    def _publish_toggled(self, application_key: str) -> None:
        """Republish the current view with one player's play/pause state flipped.

        The next tick replaces this guess with the observed state.
        """
        entry = self._view.get(application_key)
        if entry is None:
            return
        status = entry.player.status.toggled()
        updated = replace(entry, player=entry.player.with_status(status))
        entries = tuple(updated if e is entry else e for e in self._view.entries)
        self._publish(replace(self._view, entries=entries, sequence=self._view.sequence + 1))

    def _report(self, error: PlayerError) -> None:
        logger.debug("Reporting %s: %s", type(error).__name__, error)
        if self._on_error is not None:
            self._on_error(error)
