"""Test fixtures for playctrl tests.

The fakes implement the adapter interfaces in memory, so engine tests run
without a session bus, a sound server or the network.
"""

import asyncio
import os
import threading
import time
from collections import Counter

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from playctrl.api.album_art.provider import AlbumArt, ArtFetcher  # noqa: E402
from playctrl.api.endpoint import EndpointAdapter  # noqa: E402
from playctrl.api.mixer import MixerAdapter  # noqa: E402
from playctrl.errors import (  # noqa: E402
    ArtFetchFailed,
    EndpointCommandFailed,
    EndpointVanished,
    MixerUnavailable,
)
from playctrl.models.command import Command  # noqa: E402
from playctrl.models.mixer import MixerStream  # noqa: E402
from playctrl.models.player import EndpointSnapshot, PlaybackStatus  # noqa: E402
from playctrl.models.settings import Settings  # noqa: E402


def make_snapshot(
    endpoint_id: str,
    application_key: str | None = None,
    status: PlaybackStatus = PlaybackStatus.STOPPED,
    **kwargs: object,
) -> EndpointSnapshot:
    """Build a snapshot, deriving the key from the endpoint id by default."""
    key = application_key or endpoint_id.split(".")[0]
    return EndpointSnapshot(
        endpoint_id=endpoint_id, application_key=key, status=status, **kwargs  # type: ignore[arg-type]
    )


class FakeEndpointAdapter(EndpointAdapter):
    """In-memory endpoints keyed by endpoint id."""

    def __init__(self, snapshots: list[EndpointSnapshot] | None = None) -> None:
        self.snapshots: dict[str, EndpointSnapshot] = {s.endpoint_id: s for s in snapshots or []}
        self.vanishing: set[str] = set()
        self.slow: dict[str, float] = {}
        self.enumeration_error: Exception | None = None
        self.command_error: Exception | None = None
        self.command_delay = 0.0
        self.describe_calls: Counter[str] = Counter()
        self.commands: list[tuple[str, Command]] = []
        self.events: list[tuple[str, str]] = []
        self.closed = False
        self._lock = threading.Lock()

    def add(self, snapshot: EndpointSnapshot) -> None:
        self.snapshots[snapshot.endpoint_id] = snapshot

    def remove(self, endpoint_id: str) -> None:
        self.snapshots.pop(endpoint_id, None)

    def list_endpoints(self) -> list[str]:
        if self.enumeration_error is not None:
            raise self.enumeration_error
        return sorted(self.snapshots)

    def describe(self, endpoint_id: str) -> EndpointSnapshot:
        with self._lock:
            self.describe_calls[endpoint_id] += 1
        if endpoint_id in self.slow:
            time.sleep(self.slow[endpoint_id])
        if endpoint_id in self.vanishing or endpoint_id not in self.snapshots:
            raise EndpointVanished(f"{endpoint_id} is gone", endpoint_id=endpoint_id)
        return self.snapshots[endpoint_id]

    def command(self, endpoint_id: str, command: Command) -> None:
        with self._lock:
            self.events.append(("start", endpoint_id))
        if self.command_delay:
            time.sleep(self.command_delay)
        with self._lock:
            self.events.append(("end", endpoint_id))
        if self.command_error is not None:
            raise self.command_error
        self.commands.append((endpoint_id, command))

    def close(self) -> None:
        self.closed = True


class FakeMixerAdapter(MixerAdapter):
    """In-memory mixer streams."""

    def __init__(self, streams: list[MixerStream] | None = None) -> None:
        self.streams = list(streams or [])
        self.unavailable = False
        self.list_calls = 0
        self.list_delay = 0.0
        self.volume_calls: list[tuple[int, float]] = []
        self.closed = False

    def list_streams(self) -> list[MixerStream]:
        self.list_calls += 1
        if self.list_delay:
            time.sleep(self.list_delay)
        if self.unavailable:
            raise MixerUnavailable("Sound server unavailable")
        return list(self.streams)

    def set_stream_volume(self, handle: int, level: float) -> None:
        if self.unavailable:
            raise MixerUnavailable("Sound server unavailable")
        if not any(s.handle == handle for s in self.streams):
            raise EndpointCommandFailed(f"Mixer stream {handle} is gone")
        self.volume_calls.append((handle, level))

    def close(self) -> None:
        self.closed = True


class FakeArtFetcher(ArtFetcher):
    """Counts fetches per URL; optionally holds them until released."""

    def __init__(self, gated: bool = False) -> None:
        self.calls: Counter[str] = Counter()
        self.failing: set[str] = set()
        self._gated = gated
        self._gate: asyncio.Event | None = None

    @property
    def name(self) -> str:
        return "Fake"

    @property
    def gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    def open_gate(self) -> None:
        self.gate.set()

    async def fetch(self, url: str) -> AlbumArt:
        self.calls[url] += 1
        if self._gated:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if url in self.failing:
            raise ArtFetchFailed(f"Cannot fetch {url}", url=url)
        return AlbumArt(data=f"image:{url}".encode(), url=url, source=self.name)


class MemorySettingsStore:
    """Settings held in memory."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.saves = 0

    def load_settings(self) -> Settings:
        return self.settings

    def save_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.saves += 1


@pytest.fixture
def endpoints() -> FakeEndpointAdapter:
    """Return an empty fake endpoint adapter."""
    return FakeEndpointAdapter()


@pytest.fixture
def mixer() -> FakeMixerAdapter:
    """Return an empty fake mixer."""
    return FakeMixerAdapter()


@pytest.fixture
def fetcher() -> FakeArtFetcher:
    """Return an ungated fake art fetcher."""
    return FakeArtFetcher()


@pytest.fixture
def settings_store() -> MemorySettingsStore:
    """Return an in-memory settings store with default settings."""
    return MemorySettingsStore()
