"""View store with Qt signals for reactive UI updates.

The ViewStore holds the last published PlayerView on the GUI thread and
emits Qt signals when it changes. UI widgets connect to these signals to
update themselves.

This follows the Observer pattern via Qt's signal/slot mechanism.
"""

import logging

from PySide6.QtCore import QObject, Signal

from playctrl.models.player import LogicalPlayer
from playctrl.models.view import PlayerView, PlayerViewEntry

logger = logging.getLogger(__name__)


class ViewStore(QObject):
    """Latest published view, emitting Qt signals on changes.

    Views arrive from the engine worker thread through a queued signal and
    are replaced wholesale, never patched.

    Example:
        store = ViewStore()
        store.players_changed.connect(lambda entries: print(len(entries)))
        worker.view_published.connect(store.update_from_view)
    """

    # Full view on every accepted update
    view_changed = Signal(object)  # PlayerView

    # Finer-grained signals, emitted only when that part changed
    # Note: Using object for complex types (PySide6 limitation)
    players_changed = Signal(object)  # tuple[PlayerViewEntry, ...]
    art_changed = Signal(object)  # dict[str, AlbumArt | None]
    playing_changed = Signal(bool)  # any player playing

    def __init__(self) -> None:
        """Initialize the store with an empty view."""
        super().__init__()
        self._view = PlayerView()

    @property
    def view(self) -> PlayerView:
        """Return the current view."""
        return self._view

    @property
    def entries(self) -> tuple[PlayerViewEntry, ...]:
        """Return the displayed entries in order."""
        return self._view.entries

    @property
    def any_playing(self) -> bool:
        """Return True if any displayed player is playing."""
        return self._view.any_playing

    def get_entry(self, application_key: str) -> PlayerViewEntry | None:
        """Get a displayed entry by application key.

        Args:
            application_key: The key to look up.

        Returns:
            The entry if displayed, else None.
        """
        return self._view.get(application_key)

    def get_player(self, application_key: str) -> LogicalPlayer | None:
        """Get a displayed logical player by application key."""
        entry = self._view.get(application_key)
        return entry.player if entry else None

    @staticmethod
    def _art_map(view: PlayerView) -> dict[str, object]:
        return {e.application_key: e.art for e in view.entries}

    def update_from_view(self, view: PlayerView) -> None:
        """Replace the current view and emit signals for what changed.

        Views older than the current one (lower sequence) are ignored. The
        check only applies within one engine run: ``clear()`` resets it.

        Args:
            view: The newly published view.
        """
        if view.sequence and view.sequence < self._view.sequence:
            logger.debug(
                "Ignoring stale view %d (current %d)", view.sequence, self._view.sequence
            )
            return
        self._replace(view)

    def _replace(self, view: PlayerView) -> None:
        old = self._view
        self._view = view

        players_changed = tuple(e.player for e in old.entries) != tuple(
            e.player for e in view.entries
        ) or tuple((e.volume, e.volume_backend) for e in old.entries) != tuple(
            (e.volume, e.volume_backend) for e in view.entries
        )
        art_changed = self._art_map(old) != self._art_map(view)
        playing_changed = old.any_playing != view.any_playing

        self.view_changed.emit(view)
        if players_changed:
            self.players_changed.emit(view.entries)
        if art_changed:
            self.art_changed.emit(self._art_map(view))
        if playing_changed:
            self.playing_changed.emit(view.any_playing)

    def clear(self) -> None:
        """Drop the current view (engine stopped).

        The sequence goes back to 0, so a restarted engine counting from 1
        is accepted.
        """
        self._replace(PlayerView())
