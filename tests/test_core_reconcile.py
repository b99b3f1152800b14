"""Tests for the ReconciliationLoop."""

import asyncio

import pytest
from conftest import (
    FakeArtFetcher,
    FakeEndpointAdapter,
    FakeMixerAdapter,
    MemorySettingsStore,
    make_snapshot,
)

from playctrl.core.reconcile import ReconciliationLoop, TickRequest
from playctrl.errors import (
    ArtFetchFailed,
    EndpointCommandFailed,
    EndpointVanished,
    MixerUnavailable,
    PlayerError,
    UnknownPlayer,
)
from playctrl.models.command import Command, CommandKind
from playctrl.models.mixer import MixerStream
from playctrl.models.player import PlaybackStatus
from playctrl.models.settings import Settings
from playctrl.models.view import VOLUME_BACKEND_MIXER, VOLUME_BACKEND_OWN, PlayerView

U1 = "https://example.com/u1.jpg"
U2 = "https://example.com/u2.jpg"


def _show_all(*keys: str, hide_inactive: bool = False) -> MemorySettingsStore:
    return MemorySettingsStore(
        Settings(
            enabled_application_keys=frozenset(keys),
            show_all_players=True,
            hide_inactive_players=hide_inactive,
        )
    )


class Harness:
    """A loop wired to fakes, recording published views and errors."""

    def __init__(
        self,
        endpoints: FakeEndpointAdapter,
        store: MemorySettingsStore,
        mixer: FakeMixerAdapter | None = None,
        fetcher: FakeArtFetcher | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        self.endpoints = endpoints
        self.store = store
        self.mixer = mixer if mixer is not None else FakeMixerAdapter()
        self.fetcher = fetcher if fetcher is not None else FakeArtFetcher()
        self.views: list[PlayerView] = []
        self.errors: list[PlayerError] = []
        self.loop = ReconciliationLoop(
            self.endpoints,
            self.mixer,
            self.fetcher,
            self.store,
            on_publish=self.views.append,
            on_error=self.errors.append,
            poll_interval=poll_interval,
            endpoint_timeout=0.5,
            command_timeout=1.0,
        )


class TestTick:
    """Test a single reconciliation tick."""

    @pytest.mark.asyncio
    async def test_publishes_view(self) -> None:
        """Test a tick publishes a view with increasing sequence."""
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc", status=PlaybackStatus.PLAYING)]), _show_all("vlc"))

        first = await h.loop.tick()
        second = await h.loop.tick()

        assert first.keys == ["vlc"]
        assert second.sequence == first.sequence + 1
        assert h.views == [first, second]
        assert h.loop.view is second

    @pytest.mark.asyncio
    async def test_enumeration_failure_publishes_empty_view(self) -> None:
        """Test a failed enumeration does not abort the tick."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc")])
        endpoints.enumeration_error = ConnectionError("no session bus")
        h = Harness(endpoints, _show_all("vlc"))

        view = await h.loop.tick()
        assert view.is_empty

    @pytest.mark.asyncio
    async def test_settings_failure_keeps_previous(self) -> None:
        """Test a failing settings store falls back to the last settings."""

        class BrokenStore(MemorySettingsStore):
            def load_settings(self) -> Settings:
                raise OSError("settings unreadable")

        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), BrokenStore())
        view = await h.loop.tick()
        assert view.keys == ["vlc"]
        assert h.loop.settings == Settings()

    @pytest.mark.asyncio
    async def test_mixer_volume_shown(self) -> None:
        """Test players without own volume show their mixer stream volume."""
        endpoints = FakeEndpointAdapter(
            [
                make_snapshot("firefox.a", "firefox", PlaybackStatus.PLAYING),
                make_snapshot("vlc", supports_own_volume=True, own_volume=0.8),
            ]
        )
        mixer = FakeMixerAdapter([MixerStream("Firefox", 3, volume=0.6)])
        h = Harness(endpoints, _show_all("firefox", "vlc"), mixer=mixer)

        view = await h.loop.tick()

        firefox = view.get("firefox")
        vlc = view.get("vlc")
        assert firefox is not None
        assert vlc is not None
        assert (firefox.volume, firefox.volume_backend) == (0.6, VOLUME_BACKEND_MIXER)
        assert (vlc.volume, vlc.volume_backend) == (0.8, VOLUME_BACKEND_OWN)

    @pytest.mark.asyncio
    async def test_mixer_unavailable_reported_once(self) -> None:
        """Test a missing mixer is reported once and ticks go on."""
        mixer = FakeMixerAdapter()
        mixer.unavailable = True
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), _show_all("vlc"), mixer=mixer)

        await h.loop.tick()
        view = await h.loop.tick()

        assert view.keys == ["vlc"]
        assert len([e for e in h.errors if isinstance(e, MixerUnavailable)]) == 1


class TestVanishingEndpoints:
    """Test endpoints disappearing between ticks."""

    @pytest.mark.asyncio
    async def test_sole_endpoint_removes_player(self) -> None:
        """Test a player whose only endpoint vanished leaves the view."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        h = Harness(endpoints, _show_all("vlc", "spotify"))
        await h.loop.tick()

        endpoints.remove("spotify")
        view = await h.loop.tick()

        assert view.keys == ["vlc"]
        assert view.get("spotify") is None
        assert h.loop.get_player("spotify") is None

    @pytest.mark.asyncio
    async def test_remaining_endpoint_keeps_player(self) -> None:
        """Test a player keeps its entry while another endpoint remains."""
        endpoints = FakeEndpointAdapter(
            [
                make_snapshot("firefox.a", "firefox", PlaybackStatus.PLAYING),
                make_snapshot("firefox.b", "firefox", PlaybackStatus.PAUSED),
            ]
        )
        h = Harness(endpoints, _show_all("firefox"))
        await h.loop.tick()

        endpoints.remove("firefox.a")
        view = await h.loop.tick()

        entry = view.get("firefox")
        assert entry is not None
        assert entry.player.endpoint_id == "firefox.b"
        assert entry.player.endpoint_ids == frozenset({"firefox.b"})

    @pytest.mark.asyncio
    async def test_hung_endpoint_keeps_others_visible(self) -> None:
        """Test ticks keep showing reachable players while another endpoint hangs."""
        endpoints = FakeEndpointAdapter(
            [make_snapshot("hung.a"), make_snapshot("vlc.a", status=PlaybackStatus.PLAYING)]
        )
        endpoints.slow["hung.a"] = 2.0
        h = Harness(endpoints, _show_all("hung", "vlc"))
        try:
            for _ in range(10):
                view = await h.loop.tick()
                assert view.keys == ["vlc"]
            assert endpoints.describe_calls["hung.a"] == 1
        finally:
            h.loop.close()
        assert h.loop.registry.pending_endpoints == frozenset()


class TestOrdering:
    """Test stable first-appearance ordering."""

    @pytest.mark.asyncio
    async def test_new_players_append(self) -> None:
        """Test players keep their position and newcomers go last."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        h = Harness(endpoints, _show_all("vlc", "spotify", "amarok"))
        first = await h.loop.tick()

        endpoints.add(make_snapshot("amarok", status=PlaybackStatus.PLAYING))
        second = await h.loop.tick()

        assert first.keys == ["spotify", "vlc"]
        assert second.keys == ["spotify", "vlc", "amarok"]

    @pytest.mark.asyncio
    async def test_status_changes_do_not_reorder(self) -> None:
        """Test playback changes never reorder the view."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        h = Harness(endpoints, _show_all("vlc", "spotify"))
        await h.loop.tick()

        endpoints.add(make_snapshot("vlc", status=PlaybackStatus.PLAYING))
        view = await h.loop.tick()
        assert view.keys == ["spotify", "vlc"]

    @pytest.mark.asyncio
    async def test_returning_player_goes_last(self) -> None:
        """Test a player that left and came back is treated as new."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        h = Harness(endpoints, _show_all("vlc", "spotify"))
        await h.loop.tick()

        endpoints.remove("spotify")
        await h.loop.tick()
        endpoints.add(make_snapshot("spotify"))
        view = await h.loop.tick()
        assert view.keys == ["vlc", "spotify"]


class TestFiltering:
    """Test display mode filtering."""

    @pytest.mark.asyncio
    async def test_single_mode_follows_most_active(self) -> None:
        """Test single mode shows the most active player without a selection."""
        endpoints = FakeEndpointAdapter(
            [
                make_snapshot("vlc", status=PlaybackStatus.PAUSED),
                make_snapshot("spotify", status=PlaybackStatus.PLAYING),
            ]
        )
        h = Harness(endpoints, MemorySettingsStore())
        view = await h.loop.tick()
        assert view.keys == ["spotify"]

    @pytest.mark.asyncio
    async def test_single_mode_tie_uses_order(self) -> None:
        """Test equally active players resolve to the first shown."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        h = Harness(endpoints, MemorySettingsStore())
        view = await h.loop.tick()
        assert view.keys == ["spotify"]

    @pytest.mark.asyncio
    async def test_single_mode_selected(self) -> None:
        """Test single mode shows the selected player only."""
        endpoints = FakeEndpointAdapter(
            [
                make_snapshot("vlc", status=PlaybackStatus.PAUSED),
                make_snapshot("spotify", status=PlaybackStatus.PLAYING),
            ]
        )
        h = Harness(endpoints, MemorySettingsStore(Settings(selected_application_key="vlc")))
        view = await h.loop.tick()
        assert view.keys == ["vlc"]
        assert view.selected_application_key == "vlc"

    @pytest.mark.asyncio
    async def test_single_mode_selected_absent(self) -> None:
        """Test a selected player that is not running shows nothing."""
        endpoints = FakeEndpointAdapter([make_snapshot("spotify", status=PlaybackStatus.PLAYING)])
        h = Harness(endpoints, MemorySettingsStore(Settings(selected_application_key="vlc")))
        view = await h.loop.tick()
        assert view.is_empty

    @pytest.mark.asyncio
    async def test_show_all_only_enabled(self) -> None:
        """Test multi-player mode shows enabled applications only."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        h = Harness(endpoints, _show_all("vlc"))
        view = await h.loop.tick()
        assert view.keys == ["vlc"]
        # Filtered players stay addressable
        assert h.loop.get_player("spotify") is not None

    @pytest.mark.asyncio
    async def test_hide_inactive(self) -> None:
        """Test stopped players are hidden when requested."""
        endpoints = FakeEndpointAdapter(
            [make_snapshot("vlc"), make_snapshot("spotify", status=PlaybackStatus.PAUSED)]
        )
        h = Harness(endpoints, _show_all("vlc", "spotify", hide_inactive=True))
        view = await h.loop.tick()
        assert view.keys == ["spotify"]


class TestDiscovery:
    """Test auto-enabling of discovered players."""

    @pytest.mark.asyncio
    async def test_discover_enables_new_players(self) -> None:
        """Test a discovery tick enables new applications."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc"), make_snapshot("spotify")])
        store = MemorySettingsStore(Settings(show_all_players=True))
        h = Harness(endpoints, store)

        view = await h.loop.tick(TickRequest.DISCOVER)

        assert store.settings.enabled_application_keys == frozenset({"vlc", "spotify"})
        assert store.saves == 1
        assert view.keys == ["spotify", "vlc"]

    @pytest.mark.asyncio
    async def test_periodic_tick_does_not_enable(self) -> None:
        """Test periodic ticks never write settings."""
        store = MemorySettingsStore(Settings(show_all_players=True))
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), store)

        view = await h.loop.tick(TickRequest.PERIODIC)
        assert view.is_empty
        assert store.saves == 0

    @pytest.mark.asyncio
    async def test_auto_detect_off(self) -> None:
        """Test discovery leaves settings alone when auto-detect is off."""
        store = MemorySettingsStore(Settings(show_all_players=True, auto_detect_new=False))
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), store)

        await h.loop.tick(TickRequest.DISCOVER)
        assert store.saves == 0
        assert store.settings.enabled_application_keys == frozenset()


class TestAlbumArt:
    """Test album art diffing across ticks."""

    @pytest.mark.asyncio
    async def test_changed_url_keeps_shared_art(self) -> None:
        """Test a url still used by another player stays cached."""
        endpoints = FakeEndpointAdapter(
            [make_snapshot("vlc", art_url=U1), make_snapshot("spotify", art_url=U1)]
        )
        h = Harness(endpoints, _show_all("vlc", "spotify"))
        await h.loop.tick()
        entry = h.loop.art_cache.get(U1)
        assert entry is not None
        assert entry.ref_count == 2

        endpoints.add(make_snapshot("vlc", art_url=U2))
        await h.loop.tick()

        entry = h.loop.art_cache.get(U1)
        assert entry is not None
        assert entry.ref_count == 1
        assert U2 in h.loop.art_cache
        await h.loop.art_cache.wait(U2)
        assert h.fetcher.calls[U2] == 1
        assert h.fetcher.calls[U1] == 1

    @pytest.mark.asyncio
    async def test_art_appears_on_next_tick(self) -> None:
        """Test the placeholder is replaced once the image is ready."""
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc", art_url=U1)]), _show_all("vlc"))
        view = await h.loop.tick()
        entry = view.get("vlc")
        assert entry is not None
        assert not entry.has_art

        await h.loop.art_cache.wait(U1)
        view = await h.loop.tick(TickRequest.ART)
        entry = view.get("vlc")
        assert entry is not None
        assert entry.has_art

    @pytest.mark.asyncio
    async def test_removed_player_releases_art(self) -> None:
        """Test art of a vanished player is evicted."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc", art_url=U1)])
        h = Harness(endpoints, _show_all("vlc"))
        await h.loop.tick()

        endpoints.remove("vlc")
        await h.loop.tick()
        assert U1 not in h.loop.art_cache

    @pytest.mark.asyncio
    async def test_failed_art_is_reported(self) -> None:
        """Test a failed fetch is reported and leaves the placeholder."""
        fetcher = FakeArtFetcher()
        fetcher.failing.add(U1)
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc", art_url=U1)]), _show_all("vlc"), fetcher=fetcher)
        await h.loop.tick()
        await h.loop.art_cache.wait(U1)

        view = await h.loop.tick()
        entry = view.get("vlc")
        assert entry is not None
        assert entry.art is None
        assert any(isinstance(e, ArtFetchFailed) for e in h.errors)


class TestCommands:
    """Test command dispatch."""

    @pytest.mark.asyncio
    async def test_play_pause_is_optimistic(self) -> None:
        """Test play/pause republishes the toggled state at once."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc", status=PlaybackStatus.PLAYING)])
        h = Harness(endpoints, _show_all("vlc"))
        before = await h.loop.tick()

        assert await h.loop.dispatch(Command.play_pause("vlc")) is None

        assert endpoints.commands[0][0] == "vlc"
        assert endpoints.commands[0][1].kind is CommandKind.PLAY_PAUSE
        entry = h.loop.view.get("vlc")
        assert entry is not None
        assert entry.player.status is PlaybackStatus.PAUSED
        assert h.loop.view.sequence == before.sequence + 1
        assert h.views[-1] is h.loop.view

        # The next tick shows what the endpoint reports
        entry = (await h.loop.tick()).get("vlc")
        assert entry is not None
        assert entry.player.status is PlaybackStatus.PLAYING

    @pytest.mark.asyncio
    async def test_keyless_command_targets_primary(self) -> None:
        """Test a command without key goes to the primary player."""
        endpoints = FakeEndpointAdapter(
            [make_snapshot("vlc"), make_snapshot("spotify", status=PlaybackStatus.PLAYING)]
        )
        h = Harness(endpoints, _show_all("vlc", "spotify"))
        await h.loop.tick()

        await h.loop.dispatch(Command.next())
        assert endpoints.commands[0][0] == "spotify"

    @pytest.mark.asyncio
    async def test_unknown_player(self) -> None:
        """Test a command for an absent application is reported."""
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), _show_all("vlc"))
        await h.loop.tick()

        error = await h.loop.dispatch(Command.next("spotify"))
        assert isinstance(error, UnknownPlayer)
        assert h.errors == [error]

    @pytest.mark.asyncio
    async def test_keyless_without_players(self) -> None:
        """Test a keyless command with nothing displayed is reported."""
        h = Harness(FakeEndpointAdapter(), _show_all())
        await h.loop.tick()
        assert isinstance(await h.loop.dispatch(Command.play_pause()), UnknownPlayer)

    @pytest.mark.asyncio
    async def test_failed_command_is_not_toggled(self) -> None:
        """Test a failed play/pause is reported and the view is unchanged."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc", status=PlaybackStatus.PLAYING)])
        endpoints.command_error = EndpointVanished("vlc is gone")
        h = Harness(endpoints, _show_all("vlc"))
        before = await h.loop.tick()

        error = await h.loop.dispatch(Command.play_pause("vlc"))

        assert isinstance(error, EndpointCommandFailed)
        assert error.application_key == "vlc"
        assert h.loop.view is before

    @pytest.mark.asyncio
    async def test_seek_requests_tick(self) -> None:
        """Test track commands ask for a confirming tick."""
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), _show_all("vlc"))
        await h.loop.tick()

        await h.loop.dispatch(Command.seek(30_000, "vlc"))
        assert [c.position_ms for _, c in h.endpoints.commands] == [30_000]
        assert TickRequest.COMMAND in h.loop._queued

    @pytest.mark.asyncio
    async def test_same_player_commands_are_serialized(self) -> None:
        """Test commands for one application never overlap."""
        endpoints = FakeEndpointAdapter([make_snapshot("vlc")])
        endpoints.command_delay = 0.05
        h = Harness(endpoints, _show_all("vlc"))
        await h.loop.tick()

        await asyncio.gather(
            h.loop.dispatch(Command.next("vlc")),
            h.loop.dispatch(Command.previous("vlc")),
        )
        assert [event for event, _ in endpoints.events] == ["start", "end", "start", "end"]

    @pytest.mark.asyncio
    async def test_failed_own_volume_write_keeps_volume(self) -> None:
        """Test a rejected volume write leaves the displayed volume alone."""
        endpoints = FakeEndpointAdapter(
            [make_snapshot("vlc", status=PlaybackStatus.PLAYING, supports_own_volume=True, own_volume=0.8)]
        )
        h = Harness(endpoints, _show_all("vlc"))
        await h.loop.tick()
        endpoints.command_error = EndpointCommandFailed("Volume is read-only")

        error = await h.loop.dispatch(Command.set_volume("vlc", 0.42))
        assert isinstance(error, EndpointCommandFailed)
        assert error in h.errors

        entry = (await h.loop.tick()).get("vlc")
        assert entry is not None
        assert entry.volume == 0.8
        assert entry.volume_backend == VOLUME_BACKEND_OWN

    @pytest.mark.asyncio
    async def test_volume_through_mixer(self) -> None:
        """Test volume commands reach the mixer for players without own volume."""
        mixer = FakeMixerAdapter([MixerStream("Firefox", 5)])
        endpoints = FakeEndpointAdapter([make_snapshot("firefox.a", "firefox", PlaybackStatus.PLAYING)])
        h = Harness(endpoints, _show_all("firefox"), mixer=mixer)
        await h.loop.tick()

        assert await h.loop.dispatch(Command.set_volume("firefox", 0.25)) is None
        assert mixer.volume_calls == [(5, 0.25)]
        assert endpoints.commands == []


class TestSettingsCommands:
    """Test commands that change settings."""

    @pytest.mark.asyncio
    async def test_select_player(self) -> None:
        """Test selecting a player persists it and refreshes."""
        store = MemorySettingsStore()
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), store)

        await h.loop.dispatch(Command.select_player("vlc"))
        assert store.settings.selected_application_key == "vlc"
        assert TickRequest.SETTINGS in h.loop._queued

        await h.loop.dispatch(Command.select_player(None))
        assert store.settings.selected_application_key is None

    @pytest.mark.asyncio
    async def test_set_player_enabled(self) -> None:
        """Test enabling and disabling applications."""
        store = _show_all("vlc")
        h = Harness(FakeEndpointAdapter(), store)

        await h.loop.dispatch(Command.set_player_enabled("spotify", True))
        assert store.settings.enabled_application_keys == frozenset({"vlc", "spotify"})
        await h.loop.dispatch(Command.set_player_enabled("vlc", False))
        assert store.settings.enabled_application_keys == frozenset({"spotify"})

    @pytest.mark.asyncio
    async def test_toggles(self) -> None:
        """Test the display toggles."""
        store = MemorySettingsStore()
        h = Harness(FakeEndpointAdapter(), store)

        await h.loop.dispatch(Command.set_show_all(True))
        await h.loop.dispatch(Command.set_hide_inactive(True))
        await h.loop.dispatch(Command.set_auto_detect(False))

        assert store.settings.show_all_players
        assert store.settings.hide_inactive_players
        assert not store.settings.auto_detect_new
        assert store.saves == 3

    @pytest.mark.asyncio
    async def test_discover_and_refresh_request_ticks(self) -> None:
        """Test discovery and refresh only queue ticks."""
        h = Harness(FakeEndpointAdapter(), MemorySettingsStore())
        await h.loop.dispatch(Command.discover_players())
        await h.loop.dispatch(Command.refresh())
        assert {TickRequest.DISCOVER, TickRequest.MANUAL} <= h.loop._queued


class TestRun:
    """Test the tick queue consumer."""

    @pytest.mark.asyncio
    async def test_request_tick_dedups(self) -> None:
        """Test a queued reason is not queued twice."""
        h = Harness(FakeEndpointAdapter(), MemorySettingsStore())
        h.loop.request_tick(TickRequest.PERIODIC)
        h.loop.request_tick(TickRequest.PERIODIC)
        h.loop.request_tick(TickRequest.MANUAL)
        assert h.loop._tick_queue().qsize() == 2

    @pytest.mark.asyncio
    async def test_run_discovers_then_polls(self) -> None:
        """Test run starts with a discovery and keeps ticking until stopped."""
        store = MemorySettingsStore(Settings(show_all_players=True))
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), store, poll_interval=0.01)

        task = asyncio.create_task(h.loop.run())
        for _ in range(200):
            if len(h.views) >= 3:
                break
            await asyncio.sleep(0.01)
        h.loop.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert len(h.views) >= 3
        assert h.views[0].keys == ["vlc"]
        assert store.saves == 1
        assert not h.loop.is_running

    @pytest.mark.asyncio
    async def test_stop_before_run(self) -> None:
        """Test a stop requested before run starts ends run without ticking."""
        h = Harness(FakeEndpointAdapter([make_snapshot("vlc")]), MemorySettingsStore())
        h.loop.stop()

        await asyncio.wait_for(h.loop.run(), timeout=2.0)

        assert h.views == []
        assert not h.loop.is_running
