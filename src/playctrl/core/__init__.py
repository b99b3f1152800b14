"""Core engine layer.

This module contains the reconciliation engine and the glue that bridges
it with a Qt application.

Classes:
    PlayerRegistry: Endpoint discovery and per-application dedup.
    VolumeController: Own-volume vs mixer routing.
    AlbumArtCache: Coalesced, reference-counted art fetches.
    ReconciliationLoop: Tick queue, filtering, publishing and commands.
    ViewStore: Latest published view with Qt signals.
    EngineWorker: QThread hosting the asyncio engine.
    ConfigManager: QSettings wrapper for configuration.
"""

from playctrl.core.art_cache import AlbumArtCache
from playctrl.core.config import ConfigManager
from playctrl.core.reconcile import ReconciliationLoop
from playctrl.core.registry import PlayerRegistry
from playctrl.core.state import ViewStore
from playctrl.core.volume import VolumeController
from playctrl.core.worker import EngineWorker

__all__ = [
    "AlbumArtCache",
    "ConfigManager",
    "EngineWorker",
    "PlayerRegistry",
    "ReconciliationLoop",
    "ViewStore",
    "VolumeController",
]
