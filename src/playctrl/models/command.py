"""Command model for the control surface."""

from dataclasses import dataclass
from enum import Enum


class CommandKind(Enum):
    """Kinds of commands accepted by the engine."""

    PLAY_PAUSE = "play_pause"
    NEXT = "next"
    PREVIOUS = "previous"
    SEEK = "seek"
    SET_VOLUME = "set_volume"
    SELECT_PLAYER = "select_player"
    DISCOVER_PLAYERS = "discover_players"
    SET_PLAYER_ENABLED = "set_player_enabled"
    SET_AUTO_DETECT = "set_auto_detect"
    SET_SHOW_ALL = "set_show_all"
    SET_HIDE_INACTIVE = "set_hide_inactive"
    REFRESH = "refresh"


# Kinds forwarded as-is to an endpoint adapter
_ENDPOINT_KINDS = frozenset(
    {
        CommandKind.PLAY_PAUSE,
        CommandKind.NEXT,
        CommandKind.PREVIOUS,
        CommandKind.SEEK,
        CommandKind.SET_VOLUME,
    }
)


@dataclass(frozen=True, slots=True)
class Command:
    """A user command.

    Attributes:
        kind: What to do.
        application_key: Target player, None for the primary player
            (or "no selection" for SELECT_PLAYER).
        position_ms: Seek target in milliseconds.
        level: Volume level 0.0-1.0.
        enabled: Flag value for the SET_* toggles.
    """

    kind: CommandKind
    application_key: str | None = None
    position_ms: int = 0
    level: float = 0.0
    enabled: bool = False

    @property
    def is_endpoint_command(self) -> bool:
        """Return True if the command is executed by an endpoint."""
        return self.kind in _ENDPOINT_KINDS

    @classmethod
    def play_pause(cls, key: str | None = None) -> "Command":
        """Toggle playback."""
        return cls(CommandKind.PLAY_PAUSE, key)

    @classmethod
    def next(cls, key: str | None = None) -> "Command":
        """Skip to the next track."""
        return cls(CommandKind.NEXT, key)

    @classmethod
    def previous(cls, key: str | None = None) -> "Command":
        """Go back to the previous track."""
        return cls(CommandKind.PREVIOUS, key)

    @classmethod
    def seek(cls, position_ms: int, key: str | None = None) -> "Command":
        """Seek to an absolute position."""
        return cls(CommandKind.SEEK, key, position_ms=max(0, position_ms))

    @classmethod
    def set_volume(cls, key: str | None, level: float) -> "Command":
        """Set a player's volume."""
        return cls(CommandKind.SET_VOLUME, key, level=level)

    @classmethod
    def select_player(cls, key: str | None) -> "Command":
        """Select the player shown in single-player mode."""
        return cls(CommandKind.SELECT_PLAYER, key)

    @classmethod
    def discover_players(cls) -> "Command":
        """Force an out-of-cadence discovery tick."""
        return cls(CommandKind.DISCOVER_PLAYERS)

    @classmethod
    def set_player_enabled(cls, key: str, enabled: bool) -> "Command":
        """Show or hide one application in multi-player mode."""
        return cls(CommandKind.SET_PLAYER_ENABLED, key, enabled=enabled)

    @classmethod
    def set_auto_detect(cls, enabled: bool) -> "Command":
        """Toggle auto-enabling of newly discovered players."""
        return cls(CommandKind.SET_AUTO_DETECT, enabled=enabled)

    @classmethod
    def set_show_all(cls, enabled: bool) -> "Command":
        """Toggle multi-player mode."""
        return cls(CommandKind.SET_SHOW_ALL, enabled=enabled)

    @classmethod
    def set_hide_inactive(cls, enabled: bool) -> "Command":
        """Toggle hiding of stopped players."""
        return cls(CommandKind.SET_HIDE_INACTIVE, enabled=enabled)

    @classmethod
    def refresh(cls) -> "Command":
        """Request an immediate tick."""
        return cls(CommandKind.REFRESH)
