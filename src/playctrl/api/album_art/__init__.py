"""Album art fetching.

Players advertise cover art as a URL; the fetcher turns it into image bytes.
"""

from playctrl.api.album_art.provider import AlbumArt, ArtFetcher
from playctrl.api.album_art.url import UrlArtFetcher

__all__ = [
    "AlbumArt",
    "ArtFetcher",
    "UrlArtFetcher",
]
