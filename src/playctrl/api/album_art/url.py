"""Album art fetcher for the URLs MPRIS players advertise.

Players publish ``mpris:artUrl`` either as a local ``file://`` path (most
desktop players cache covers on disk) or as an ``http(s)://`` URL (browsers,
streaming clients).
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path

from playctrl.api.album_art.provider import AlbumArt, ArtFetcher
from playctrl.errors import ArtFetchFailed

logger = logging.getLogger(__name__)

USER_AGENT = "PlayCTRL/1.0"

# Request timeout in seconds
REQUEST_TIMEOUT = 5

# Refuse anything larger than this
MAX_IMAGE_SIZE = 10 * 1024 * 1024


class UrlArtFetcher(ArtFetcher):
    """Fetch album art from ``file://`` and ``http(s)://`` URLs.

    Example:
        fetcher = UrlArtFetcher()
        art = await fetcher.fetch("file:///home/me/.cache/cover.jpg")
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT, max_size: int = MAX_IMAGE_SIZE) -> None:
        """Initialize the fetcher.

        Args:
            timeout: HTTP timeout in seconds.
            max_size: Maximum accepted image size in bytes.
        """
        self._timeout = timeout
        self._max_size = max_size

    @property
    def name(self) -> str:
        """Return fetcher name."""
        return "URL"

    async def fetch(self, url: str) -> AlbumArt:
        """Fetch album art, running blocking I/O in the default executor.

        Args:
            url: ``file://``, ``http://`` or ``https://`` URL.

        Returns:
            The fetched AlbumArt.

        Raises:
            ArtFetchFailed: On unsupported schemes, I/O errors or oversize images.
        """
        scheme = urllib.parse.urlsplit(url).scheme.lower()
        if scheme == "file":
            reader = self._read_file
        elif scheme in ("http", "https"):
            reader = self._fetch_http
        else:
            raise ArtFetchFailed(f"Unsupported album art URL: {url}", url=url)

        loop = asyncio.get_running_loop()
        try:
            data, mime_type = await loop.run_in_executor(None, reader, url)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise ArtFetchFailed(f"Failed to fetch album art from {url}: {e}", url=url) from e

        if not data:
            raise ArtFetchFailed(f"Empty album art from {url}", url=url)
        logger.debug("Loaded album art from %s (%d bytes)", url, len(data))
        return AlbumArt(data=data, mime_type=mime_type, url=url, source=self.name)

    def _check_size(self, size: int, url: str) -> None:
        """Raise if ``size`` exceeds the cap."""
        if size > self._max_size:
            raise ArtFetchFailed(
                f"Album art too large: {size} bytes (max: {self._max_size} bytes)",
                url=url,
            )

    def _read_file(self, url: str) -> tuple[bytes, str]:
        """Read a local file (blocking).

        Args:
            url: file:// URL.

        Returns:
            Tuple of (data, mime type).
        """
        path = Path(urllib.request.url2pathname(urllib.parse.urlsplit(url).path))
        self._check_size(path.stat().st_size, url)
        return path.read_bytes(), _guess_mime_type(str(path))

    def _fetch_http(self, url: str) -> tuple[bytes, str]:
        """Download over HTTP (blocking).

        Args:
            url: http(s):// URL.

        Returns:
            Tuple of (data, mime type).
        """
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with urllib.request.urlopen(req, timeout=self._timeout) as response:
            length = response.headers.get("Content-Length")
            if length and length.isdigit():
                self._check_size(int(length), url)
            # Read one byte past the cap to detect oversize bodies
            data = response.read(self._max_size + 1)
            self._check_size(len(data), url)
            mime_type = response.headers.get_content_type()
        if not mime_type.startswith("image/"):
            mime_type = _guess_mime_type(url)
        return data, mime_type


def _guess_mime_type(path: str) -> str:
    """Guess an image MIME type from a path, defaulting to JPEG."""
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type if mime_type and mime_type.startswith("image/") else "image/jpeg"
