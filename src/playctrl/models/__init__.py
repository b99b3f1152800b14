"""Data models for players, mixer streams, commands, settings and views."""

from playctrl.models.command import Command, CommandKind
from playctrl.models.mixer import MixerStream
from playctrl.models.player import EndpointSnapshot, LogicalPlayer, PlaybackStatus
from playctrl.models.settings import Settings
from playctrl.models.view import PlayerView, PlayerViewEntry

__all__ = [
    "Command",
    "CommandKind",
    "EndpointSnapshot",
    "LogicalPlayer",
    "MixerStream",
    "PlaybackStatus",
    "PlayerView",
    "PlayerViewEntry",
    "Settings",
]
