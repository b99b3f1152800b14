"""The immutable view published to the presentation layer."""

from dataclasses import dataclass

from playctrl.api.album_art.provider import AlbumArt
from playctrl.models.player import LogicalPlayer, PlaybackStatus

VOLUME_BACKEND_OWN = "own"
VOLUME_BACKEND_MIXER = "mixer"


@dataclass(frozen=True, slots=True)
class PlayerViewEntry:
    """One logical player as displayed.

    Attributes:
        player: The logical player.
        art: Resolved album art, None for the placeholder.
        volume: Displayed volume 0.0-1.0, None if no backend reports one.
        volume_backend: "own", "mixer" or None.
    """

    player: LogicalPlayer
    art: AlbumArt | None = None
    volume: float | None = None
    volume_backend: str | None = None

    @property
    def application_key(self) -> str:
        """Return the player's application key."""
        return self.player.application_key

    @property
    def has_art(self) -> bool:
        """Return True if real art (not the placeholder) is available."""
        return self.art is not None and self.art.is_valid


@dataclass(frozen=True, slots=True)
class PlayerView:
    """Complete, ordered snapshot of all displayed players.

    Each tick replaces the previous view wholesale; ``sequence`` grows with
    every publication so views are totally ordered.

    Attributes:
        entries: Players in stable first-appearance order.
        sequence: Publication counter.
        selected_application_key: Selection at publication time.
    """

    entries: tuple[PlayerViewEntry, ...] = ()
    sequence: int = 0
    selected_application_key: str | None = None

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def keys(self) -> list[str]:
        """Return application keys in display order."""
        return [e.application_key for e in self.entries]

    @property
    def is_empty(self) -> bool:
        """Return True if no player is displayed."""
        return not self.entries

    @property
    def any_playing(self) -> bool:
        """Return True if any displayed player is playing."""
        return any(e.player.status is PlaybackStatus.PLAYING for e in self.entries)

    @property
    def primary(self) -> PlayerViewEntry | None:
        """Return the entry keyless commands act on.

        The selected player if displayed, else the first playing one,
        else the first one.
        """
        if self.selected_application_key:
            entry = self.get(self.selected_application_key)
            if entry:
                return entry
        for entry in self.entries:
            if entry.player.status is PlaybackStatus.PLAYING:
                return entry
        return self.entries[0] if self.entries else None

    def get(self, key: str) -> PlayerViewEntry | None:
        """Return the entry for ``key``, or None."""
        for entry in self.entries:
            if entry.application_key == key:
                return entry
        return None
