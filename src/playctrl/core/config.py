"""Configuration manager using QSettings for persistent storage."""

import logging
from typing import Protocol, cast

from PySide6.QtCore import QSettings

from playctrl.models.settings import Settings

logger = logging.getLogger(__name__)

# Player selection
_KEY_ENABLED_PLAYERS = "players/enabled"
_KEY_AUTO_DETECT = "players/auto_detect"
_KEY_SELECTED_PLAYER = "players/selected"
_KEY_SHOW_ALL = "players/show_all"
_KEY_HIDE_INACTIVE = "players/hide_inactive"

# Monitoring
_KEY_POLL_INTERVAL_MS = "monitoring/poll_interval_ms"
_KEY_ENDPOINT_TIMEOUT = "monitoring/endpoint_timeout"


class SettingsStore(Protocol):
    """Anything the engine can read Settings from and write them to."""

    def load_settings(self) -> Settings:
        """Return the current settings."""
        ...

    def save_settings(self, settings: Settings) -> None:
        """Persist settings."""
        ...


class ConfigManager:
    """Wrapper around QSettings for type-safe config access.

    QSettings stores config in platform-specific locations:
    - Linux: ~/.config/PlayCTRL/PlayCTRL.conf
    - macOS: ~/Library/Preferences/com.PlayCTRL.PlayCTRL.plist

    QSettings is reentrant, not thread-safe: create one ConfigManager per
    thread that needs one.

    Example:
        config = ConfigManager()
        settings = config.load_settings()
        config.save_settings(replace(settings, show_all_players=True))
    """

    def __init__(self, organization: str = "PlayCTRL", application: str = "PlayCTRL") -> None:
        """Initialize the config manager.

        Args:
            organization: Organization name for QSettings.
            application: Application name for QSettings.
        """
        self._settings = QSettings(organization, application)

    @property
    def settings(self) -> QSettings:
        """Return the underlying QSettings instance."""
        return self._settings

    # -- Player settings ---------------------------------------------------------

    def get_enabled_players(self) -> frozenset[str]:
        """Return application keys enabled for multi-player mode."""
        raw_data = self._settings.value(_KEY_ENABLED_PLAYERS, [])
        # A single-element list comes back as a plain string from INI storage
        if isinstance(raw_data, str):
            return frozenset({raw_data}) if raw_data else frozenset()
        if not isinstance(raw_data, list):
            return frozenset()
        data = cast(list[object], raw_data)
        return frozenset(str(item) for item in data if item)

    def set_enabled_players(self, keys: frozenset[str]) -> None:
        """Set application keys enabled for multi-player mode.

        Args:
            keys: Enabled application keys.
        """
        self._settings.setValue(_KEY_ENABLED_PLAYERS, sorted(keys))

    def get_auto_detect(self) -> bool:
        """Return whether newly discovered players are enabled automatically.

        Returns:
            True by default.
        """
        return bool(self._settings.value(_KEY_AUTO_DETECT, True, bool))

    def set_auto_detect(self, enabled: bool) -> None:
        """Enable or disable auto-detection of new players.

        Args:
            enabled: Whether to auto-enable discovered players.
        """
        self._settings.setValue(_KEY_AUTO_DETECT, enabled)

    def get_selected_player(self) -> str | None:
        """Return the selected application key, or None to follow the active player."""
        value = self._settings.value(_KEY_SELECTED_PLAYER, "", str)
        return str(value) if value else None

    def set_selected_player(self, key: str | None) -> None:
        """Set the selected application key.

        Args:
            key: Application key, or None to clear the selection.
        """
        if key:
            self._settings.setValue(_KEY_SELECTED_PLAYER, key)
        else:
            self._settings.remove(_KEY_SELECTED_PLAYER)

    def get_show_all_players(self) -> bool:
        """Return whether multi-player mode is on (default False)."""
        return bool(self._settings.value(_KEY_SHOW_ALL, False, bool))

    def set_show_all_players(self, enabled: bool) -> None:
        """Enable or disable multi-player mode.

        Args:
            enabled: Whether to show all players.
        """
        self._settings.setValue(_KEY_SHOW_ALL, enabled)

    def get_hide_inactive_players(self) -> bool:
        """Return whether stopped players are hidden (default False)."""
        return bool(self._settings.value(_KEY_HIDE_INACTIVE, False, bool))

    def set_hide_inactive_players(self, enabled: bool) -> None:
        """Enable or disable hiding of stopped players.

        Args:
            enabled: Whether to hide stopped players.
        """
        self._settings.setValue(_KEY_HIDE_INACTIVE, enabled)

    def load_settings(self) -> Settings:
        """Return all player settings as a Settings value."""
        return Settings(
            enabled_application_keys=self.get_enabled_players(),
            auto_detect_new=self.get_auto_detect(),
            selected_application_key=self.get_selected_player(),
            show_all_players=self.get_show_all_players(),
            hide_inactive_players=self.get_hide_inactive_players(),
        )

    def save_settings(self, settings: Settings) -> None:
        """Persist all player settings.

        Args:
            settings: Settings to save.
        """
        self.set_enabled_players(settings.enabled_application_keys)
        self.set_auto_detect(settings.auto_detect_new)
        self.set_selected_player(settings.selected_application_key)
        self.set_show_all_players(settings.show_all_players)
        self.set_hide_inactive_players(settings.hide_inactive_players)
        logger.debug("Saved settings: %s", settings)

    # -- Monitoring settings -----------------------------------------------------

    def get_poll_interval_ms(self) -> int:
        """Return the tick interval in milliseconds.

        Returns:
            Interval in milliseconds (default 1000).
        """
        value = self._settings.value(_KEY_POLL_INTERVAL_MS, 1000, int)
        return max(250, min(10000, int(value)))  # type: ignore[arg-type]

    def set_poll_interval_ms(self, milliseconds: int) -> None:
        """Set the tick interval.

        Args:
            milliseconds: Interval in milliseconds (250-10000).
        """
        self._settings.setValue(_KEY_POLL_INTERVAL_MS, max(250, min(10000, milliseconds)))

    def get_endpoint_timeout(self) -> float:
        """Return the per-endpoint query timeout in seconds.

        Returns:
            Timeout in seconds (default 1.0).
        """
        value = self._settings.value(_KEY_ENDPOINT_TIMEOUT, 1.0, float)
        return max(0.1, min(10.0, float(value)))  # type: ignore[arg-type]

    def set_endpoint_timeout(self, seconds: float) -> None:
        """Set the per-endpoint query timeout.

        Args:
            seconds: Timeout in seconds (0.1-10).
        """
        self._settings.setValue(_KEY_ENDPOINT_TIMEOUT, max(0.1, min(10.0, seconds)))

    # -- General settings --------------------------------------------------------

    def clear(self) -> None:
        """Clear all settings (useful for testing or reset)."""
        self._settings.clear()

    def sync(self) -> None:
        """Force settings to be written to disk."""
        self._settings.sync()
