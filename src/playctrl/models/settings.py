"""User settings read by the engine each tick."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Settings:
    """Display and selection preferences.

    Attributes:
        enabled_application_keys: Applications shown in multi-player mode.
        auto_detect_new: Enable newly discovered applications on discovery.
        selected_application_key: Player shown in single-player mode,
            None to follow the most active player.
        show_all_players: Multi-player mode.
        hide_inactive_players: Hide stopped players in multi-player mode.
    """

    enabled_application_keys: frozenset[str] = frozenset()
    auto_detect_new: bool = True
    selected_application_key: str | None = None
    show_all_players: bool = False
    hide_inactive_players: bool = False

    def is_enabled(self, key: str) -> bool:
        """Return True if ``key`` is enabled for multi-player mode."""
        return key in self.enabled_application_keys
