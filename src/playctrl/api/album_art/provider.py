"""Album art data and the fetcher interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AlbumArt:
    """Fetched album art image.

    Attributes:
        data: Raw image bytes.
        mime_type: MIME type (e.g., "image/jpeg").
        url: URL the image was fetched from.
        source: Fetcher name that supplied this art.
    """

    data: bytes
    mime_type: str = "image/jpeg"
    url: str = ""
    source: str = ""

    @property
    def is_valid(self) -> bool:
        """Check if this album art has valid data."""
        return len(self.data) > 0


class ArtFetcher(ABC):
    """Abstract base class for album art fetchers.

    Implementations must not block the event loop: blocking I/O belongs in
    an executor.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the fetcher name for logging."""

    @abstractmethod
    async def fetch(self, url: str) -> AlbumArt:
        """Fetch the image behind ``url``.

        Args:
            url: Art URL advertised by a player.

        Returns:
            The fetched AlbumArt.

        Raises:
            ArtFetchFailed: On network, file or size errors.
        """
