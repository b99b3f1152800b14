"""Adapters for the external capabilities the engine consumes.

Classes:
    EndpointAdapter / MprisEndpointAdapter: media players on the session bus.
    MixerAdapter / PulseMixerAdapter: per-stream volume on the system mixer.
    ArtFetcher / UrlArtFetcher: album art download.
"""

from playctrl.api.album_art import AlbumArt, ArtFetcher, UrlArtFetcher
from playctrl.api.endpoint import EndpointAdapter, MprisEndpointAdapter
from playctrl.api.mixer import MixerAdapter, PulseMixerAdapter

__all__ = [
    "AlbumArt",
    "ArtFetcher",
    "EndpointAdapter",
    "MixerAdapter",
    "MprisEndpointAdapter",
    "PulseMixerAdapter",
    "UrlArtFetcher",
]
