"""Player models: per-endpoint snapshots and deduplicated logical players."""

import logging
from dataclasses import dataclass, replace
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Unknown"
DEFAULT_ARTIST = "Unknown Artist"


class PlaybackStatus(Enum):
    """Playback status as reported over MPRIS.

    Values are the MPRIS wire strings. Statuses are totally ordered by
    ``rank``: Playing > Paused > Stopped.
    """

    PLAYING = "Playing"
    PAUSED = "Paused"
    STOPPED = "Stopped"

    @property
    def rank(self) -> int:
        """Return the dedup priority (higher wins)."""
        return _STATUS_RANK[self]

    @property
    def is_playing(self) -> bool:
        """Return True if playing."""
        return self is PlaybackStatus.PLAYING

    def toggled(self) -> "PlaybackStatus":
        """Return the status a play/pause toggle is expected to produce."""
        if self is PlaybackStatus.PLAYING:
            return PlaybackStatus.PAUSED
        return PlaybackStatus.PLAYING

    @classmethod
    def parse(cls, value: object) -> "PlaybackStatus":
        """Parse an MPRIS status string, falling back to Stopped."""
        if isinstance(value, str):
            for status in cls:
                if status.value.lower() == value.strip().lower():
                    return status
        return cls.STOPPED


_STATUS_RANK = {
    PlaybackStatus.PLAYING: 2,
    PlaybackStatus.PAUSED: 1,
    PlaybackStatus.STOPPED: 0,
}


@dataclass(frozen=True, slots=True)
class EndpointSnapshot:
    """State of one bus endpoint, captured by a single poll.

    Snapshots are never mutated; every poll produces new ones.

    Attributes:
        endpoint_id: Bus name of the endpoint (unstable across restarts).
        application_key: Stable grouping key of the owning application.
        status: Current playback status.
        title: Track title.
        artist: Track artist(s), comma separated.
        art_url: Album art URL, if the player advertises one.
        position_ms: Playback position in milliseconds, None if unknown.
        position_updated_at: Monotonic time the position was last seen to
            change, None if it never moved or is not reported.
        supports_own_volume: Whether the endpoint accepts volume writes.
        own_volume: Endpoint-reported volume 0.0-1.0, None if unknown.
        identity: Human-readable application name (MPRIS Identity).
    """

    endpoint_id: str
    application_key: str
    status: PlaybackStatus = PlaybackStatus.STOPPED
    title: str = DEFAULT_TITLE
    artist: str = DEFAULT_ARTIST
    art_url: str | None = None
    position_ms: int | None = None
    position_updated_at: float | None = None
    supports_own_volume: bool = False
    own_volume: float | None = None
    identity: str = ""

    def __post_init__(self) -> None:
        """Clamp own volume to 0.0-1.0."""
        if self.own_volume is not None and not 0.0 <= self.own_volume <= 1.0:
            clamped = max(0.0, min(1.0, self.own_volume))
            logger.warning(
                "Endpoint %s volume %.2f out of range, clamped to %.2f",
                self.endpoint_id,
                self.own_volume,
                clamped,
            )
            object.__setattr__(self, "own_volume", clamped)

    @property
    def display_name(self) -> str:
        """Return identity or application key as fallback."""
        return self.identity or self.application_key


@dataclass(frozen=True, slots=True)
class LogicalPlayer:
    """One control surface per application.

    Attributes:
        application_key: Grouping key shared by all grouped endpoints.
        winner: The snapshot chosen by the dedup tie-break.
        endpoint_ids: Every endpoint currently grouped under the key.
    """

    application_key: str
    winner: EndpointSnapshot
    endpoint_ids: frozenset[str] = frozenset()

    @property
    def status(self) -> PlaybackStatus:
        """Return the winner's playback status."""
        return self.winner.status

    @property
    def art_url(self) -> str | None:
        """Return the winner's art URL."""
        return self.winner.art_url

    @property
    def endpoint_id(self) -> str:
        """Return the endpoint commands are sent to."""
        return self.winner.endpoint_id

    @property
    def display_name(self) -> str:
        """Return a name for display."""
        return self.winner.display_name

    @property
    def is_active(self) -> bool:
        """Return True unless stopped."""
        return self.winner.status is not PlaybackStatus.STOPPED

    def with_status(self, status: PlaybackStatus) -> "LogicalPlayer":
        """Return a copy whose winner reports ``status``."""
        return replace(self, winner=replace(self.winner, status=status))
