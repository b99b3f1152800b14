"""Reference-counted album art cache with coalesced fetches.

``request()`` never waits for the network: it returns the entry at once and
the fetch runs as a separate task. All entry state transitions happen on the
event loop thread (requests, releases and fetch completions), which keeps
them serialized without locks.

There is no LRU retention. Album art is cheap to refetch, so an entry is
evicted as soon as no player references its URL.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from playctrl.api.album_art.provider import AlbumArt, ArtFetcher
from playctrl.errors import ArtFetchFailed

logger = logging.getLogger(__name__)


class ArtState(Enum):
    """Fetch state of a cache entry."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass(eq=False)
class ArtCacheEntry:
    """Cache slot for one art URL.

    Every requester of a URL shares the same entry, so concurrent observers
    see the same image or the same failure.

    Attributes:
        url: The art URL.
        state: Current fetch state.
        art: The image once READY.
        error: The failure once FAILED.
        ref_count: Number of players currently pointing at the URL.
    """

    url: str
    state: ArtState = ArtState.PENDING
    art: AlbumArt | None = None
    error: ArtFetchFailed | None = None
    ref_count: int = 0
    task: "asyncio.Task[None] | None" = field(default=None, repr=False)

    @property
    def is_ready(self) -> bool:
        """Return True if the image is available."""
        return self.state is ArtState.READY

    @property
    def in_flight(self) -> bool:
        """Return True while a fetch is running."""
        return self.task is not None and not self.task.done()


class AlbumArtCache:
    """Resolve art URLs to images asynchronously.

    At most one fetch per URL is in flight. Failures are cached as FAILED and
    only retried by the next explicit ``request()``.

    Must be used from within a running event loop.

    Example:
        cache = AlbumArtCache(UrlArtFetcher(), on_resolved=lambda e: print(e.state))
        entry = cache.request("https://example.com/cover.jpg")
        ...
        cache.release("https://example.com/cover.jpg")
    """

    def __init__(
        self,
        fetcher: ArtFetcher,
        on_resolved: Callable[[ArtCacheEntry], None] | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            fetcher: Fetcher used for every URL.
            on_resolved: Called on the loop thread when a fetch completes
                (READY or FAILED) for an entry that is still cached.
        """
        self._fetcher = fetcher
        self._on_resolved = on_resolved
        self._entries: dict[str, ArtCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def get(self, url: str) -> ArtCacheEntry | None:
        """Return the entry for ``url`` without touching its reference count."""
        return self._entries.get(url)

    def art_for(self, url: str | None) -> AlbumArt | None:
        """Return the image for ``url`` if READY, else None (placeholder)."""
        if not url:
            return None
        entry = self._entries.get(url)
        return entry.art if entry and entry.is_ready else None

    def request(self, url: str) -> ArtCacheEntry:
        """Take a reference on ``url``, starting a fetch if needed.

        Joins an in-flight fetch instead of issuing a new one. A FAILED entry
        is fetched again.

        Args:
            url: Art URL.

        Returns:
            The shared entry (PENDING, READY or FAILED).
        """
        entry = self._entries.get(url)
        if entry is None:
            entry = ArtCacheEntry(url=url)
            self._entries[url] = entry
            self._start_fetch(entry)
        elif entry.state is ArtState.FAILED and not entry.in_flight:
            logger.debug("Retrying failed album art fetch for %s", url)
            self._start_fetch(entry)
        entry.ref_count += 1
        return entry

    def release(self, url: str) -> None:
        """Drop a reference on ``url``; evict the entry at zero.

        An in-flight fetch of an evicted entry is cancelled.

        Args:
            url: Art URL.
        """
        entry = self._entries.get(url)
        if entry is None:
            logger.debug("Release of uncached album art %s ignored", url)
            return
        entry.ref_count -= 1
        if entry.ref_count > 0:
            return
        del self._entries[url]
        if entry.in_flight and entry.task is not None:
            entry.task.cancel()
        logger.debug("Evicted album art %s", url)

    async def wait(self, url: str) -> ArtCacheEntry | None:
        """Wait until the current fetch for ``url`` finishes.

        Args:
            url: Art URL.

        Returns:
            The entry, or None if it is not cached (or got evicted).
        """
        entry = self._entries.get(url)
        if entry is None:
            return None
        if entry.task is not None:
            await asyncio.wait({entry.task})
        return self._entries.get(url)

    def clear(self) -> None:
        """Cancel all fetches and drop every entry."""
        for entry in self._entries.values():
            if entry.in_flight and entry.task is not None:
                entry.task.cancel()
        self._entries.clear()

    def _start_fetch(self, entry: ArtCacheEntry) -> None:
        entry.state = ArtState.PENDING
        entry.error = None
        entry.task = asyncio.get_running_loop().create_task(
            self._fetch(entry), name=f"album-art:{entry.url}"
        )

    async def _fetch(self, entry: ArtCacheEntry) -> None:
        """Fetch one URL and record the outcome on its entry."""
        art: AlbumArt | None = None
        error: ArtFetchFailed | None = None
        try:
            art = await self._fetcher.fetch(entry.url)
            if not art.is_valid:
                error = ArtFetchFailed(f"Empty album art from {entry.url}", url=entry.url)
        except ArtFetchFailed as e:
            error = e
        except Exception as e:  # noqa: BLE001
            logger.warning("%s unexpected error for %s: %s", self._fetcher.name, entry.url, e)
            error = ArtFetchFailed(str(e), url=entry.url)

        if self._entries.get(entry.url) is not entry:
            # Evicted while fetching
            logger.debug("Discarding album art for evicted %s", entry.url)
            return

        if error is None:
            entry.state = ArtState.READY
            entry.art = art
        else:
            logger.debug("Album art fetch failed for %s: %s", entry.url, error)
            entry.state = ArtState.FAILED
            entry.art = None
            entry.error = error

        if self._on_resolved is not None:
            self._on_resolved(entry)
