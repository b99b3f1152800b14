"""Media player endpoints exposed over the session bus (MPRIS).

The ``EndpointAdapter`` interface is what the engine consumes; the MPRIS
implementation talks to the D-Bus session bus through Qt's D-Bus module.
All adapter calls are blocking and must run off the event loop thread.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

from PySide6.QtCore import QMetaType
from PySide6.QtDBus import (
    QDBusArgument,
    QDBusConnection,
    QDBusInterface,
    QDBusMessage,
    QDBusObjectPath,
    QDBusVariant,
)

from playctrl.errors import EndpointCommandFailed, EndpointVanished
from playctrl.models.command import Command, CommandKind
from playctrl.models.player import (
    DEFAULT_ARTIST,
    DEFAULT_TITLE,
    EndpointSnapshot,
    PlaybackStatus,
)

logger = logging.getLogger(__name__)

MPRIS_BUS_PREFIX = "org.mpris.MediaPlayer2."
MPRIS_OBJECT_PATH = "/org/mpris/MediaPlayer2"
MPRIS_ROOT_INTERFACE = "org.mpris.MediaPlayer2"
MPRIS_PLAYER_INTERFACE = "org.mpris.MediaPlayer2.Player"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

# Per-call D-Bus timeout in milliseconds
DEFAULT_CALL_TIMEOUT_MS = 1000

# D-Bus errors meaning the endpoint is gone rather than misbehaving
_VANISHED_ERRORS = frozenset(
    {
        "org.freedesktop.DBus.Error.ServiceUnknown",
        "org.freedesktop.DBus.Error.NameHasNoOwner",
        "org.freedesktop.DBus.Error.NoReply",
        "org.freedesktop.DBus.Error.Timeout",
        "org.freedesktop.DBus.Error.Disconnected",
        "org.freedesktop.DBus.Error.UnknownObject",
    }
)

_PLAYER_METHODS = {
    CommandKind.PLAY_PAUSE: "PlayPause",
    CommandKind.NEXT: "Next",
    CommandKind.PREVIOUS: "Previous",
}


def application_key_from_bus_name(bus_name: str) -> str:
    """Derive the grouping key from an MPRIS bus name.

    Examples:
        "org.mpris.MediaPlayer2.vlc"                     -> "vlc"
        "org.mpris.MediaPlayer2.firefox.instance_1_84"   -> "firefox"
    """
    name = bus_name.removeprefix(MPRIS_BUS_PREFIX)
    return name.split(".")[0].lower()


class EndpointAdapter(ABC):
    """Capability to enumerate, query and command player endpoints.

    Any call may fail once the endpoint has vanished.
    """

    @abstractmethod
    def list_endpoints(self) -> list[str]:
        """Return the ids of all currently reachable endpoints.

        Raises:
            Exception: If enumeration itself is impossible.
        """

    @abstractmethod
    def describe(self, endpoint_id: str) -> EndpointSnapshot:
        """Return a fresh snapshot of one endpoint.

        Raises:
            EndpointVanished: If the endpoint is gone.
        """

    @abstractmethod
    def command(self, endpoint_id: str, command: Command) -> None:
        """Execute an endpoint command (play/pause, next, previous, seek, volume).

        Raises:
            EndpointCommandFailed: If the endpoint rejects the write.
            EndpointVanished: If the endpoint is gone.
        """

    def close(self) -> None:  # noqa: B027
        """Release bus resources."""


class MprisEndpointAdapter(EndpointAdapter):
    """MPRIS endpoints on the D-Bus session bus.

    Tracks the last position per endpoint so snapshots can report when the
    position last moved, which the registry uses to break ties between
    endpoints of one application.

    Example:
        adapter = MprisEndpointAdapter()
        for endpoint_id in adapter.list_endpoints():
            print(adapter.describe(endpoint_id))
    """

    def __init__(self, call_timeout_ms: int = DEFAULT_CALL_TIMEOUT_MS) -> None:
        """Initialize the adapter.

        Args:
            call_timeout_ms: Timeout for each bus round-trip.
        """
        self._call_timeout_ms = call_timeout_ms
        self._lock = threading.Lock()
        # endpoint_id -> (last position ms, monotonic time it last changed or None)
        self._positions: dict[str, tuple[int, float | None]] = {}
        # endpoint_id -> mpris:trackid of the current track
        self._track_ids: dict[str, str] = {}

    def _interface(self, service: str, path: str, interface: str) -> QDBusInterface:
        """Create a proxy bound to the calling thread."""
        iface = QDBusInterface(service, path, interface, QDBusConnection.sessionBus())
        iface.setTimeout(self._call_timeout_ms)
        return iface

    def _call(self, iface: QDBusInterface, method: str, *args: Any) -> list[Any]:
        """Call a method, translating D-Bus errors.

        Raises:
            EndpointVanished: The endpoint is gone or does not answer.
            EndpointCommandFailed: The endpoint answered with any other error.
        """
        reply = iface.call(method, *args)
        if reply.type() != QDBusMessage.MessageType.ErrorMessage:
            return list(reply.arguments())

        error_name = reply.errorName()
        message = f"{iface.service()} {method} failed: {error_name} {reply.errorMessage()}"
        if error_name in _VANISHED_ERRORS:
            raise EndpointVanished(message, endpoint_id=iface.service())
        raise EndpointCommandFailed(message, endpoint_id=iface.service())

    def list_endpoints(self) -> list[str]:
        """Return MPRIS bus names currently owned on the session bus."""
        bus = QDBusConnection.sessionBus()
        if not bus.isConnected():
            raise ConnectionError("D-Bus session bus is not available")
        iface = self._interface(
            "org.freedesktop.DBus", "/org/freedesktop/DBus", "org.freedesktop.DBus"
        )
        names = self._call(iface, "ListNames")
        bus_names = [str(name) for name in (names[0] if names else [])]
        endpoints = sorted(name for name in bus_names if name.startswith(MPRIS_BUS_PREFIX))

        # Forget position history of endpoints that are gone
        with self._lock:
            for stale in set(self._positions) - set(endpoints):
                self._positions.pop(stale, None)
                self._track_ids.pop(stale, None)
        return endpoints

    def describe(self, endpoint_id: str) -> EndpointSnapshot:
        """Read root and player properties of one endpoint."""
        props = self._interface(endpoint_id, MPRIS_OBJECT_PATH, PROPERTIES_INTERFACE)
        root = _first_dict(self._call(props, "GetAll", MPRIS_ROOT_INTERFACE))
        player = _first_dict(self._call(props, "GetAll", MPRIS_PLAYER_INTERFACE))

        metadata = player.get("Metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}

        title = str(metadata.get("xesam:title") or DEFAULT_TITLE)
        artists = metadata.get("xesam:artist")
        if isinstance(artists, list) and artists:
            artist = ", ".join(str(a) for a in artists)
        elif isinstance(artists, str) and artists:
            artist = artists
        else:
            artist = DEFAULT_ARTIST
        art_url = metadata.get("mpris:artUrl") or None

        track_id = metadata.get("mpris:trackid")
        position_ms, updated_at = self._observe_position(endpoint_id, player.get("Position"))
        with self._lock:
            if track_id:
                self._track_ids[endpoint_id] = str(track_id)
            else:
                self._track_ids.pop(endpoint_id, None)

        volume = player.get("Volume")
        supports_volume = isinstance(volume, (int, float)) and bool(player.get("CanControl", True))

        return EndpointSnapshot(
            endpoint_id=endpoint_id,
            application_key=application_key_from_bus_name(endpoint_id),
            status=PlaybackStatus.parse(player.get("PlaybackStatus")),
            title=title,
            artist=artist,
            art_url=str(art_url) if art_url else None,
            position_ms=position_ms,
            position_updated_at=updated_at,
            supports_own_volume=supports_volume,
            own_volume=float(volume) if supports_volume else None,
            identity=str(root.get("Identity") or ""),
        )

    def _observe_position(
        self, endpoint_id: str, raw_position: object
    ) -> tuple[int | None, float | None]:
        """Record a position reading and return (position ms, last change time)."""
        if not isinstance(raw_position, int):
            return None, None
        position_ms = raw_position // 1000
        with self._lock:
            previous = self._positions.get(endpoint_id)
            if previous is None:
                updated_at = None
            elif previous[0] != position_ms:
                updated_at = time.monotonic()
            else:
                updated_at = previous[1]
            self._positions[endpoint_id] = (position_ms, updated_at)
        return position_ms, updated_at

    def command(self, endpoint_id: str, command: Command) -> None:
        """Send an endpoint command over MPRIS."""
        try:
            if command.kind in _PLAYER_METHODS:
                player = self._interface(endpoint_id, MPRIS_OBJECT_PATH, MPRIS_PLAYER_INTERFACE)
                self._call(player, _PLAYER_METHODS[command.kind])
            elif command.kind is CommandKind.SEEK:
                self._seek(endpoint_id, command.position_ms)
            elif command.kind is CommandKind.SET_VOLUME:
                props = self._interface(endpoint_id, MPRIS_OBJECT_PATH, PROPERTIES_INTERFACE)
                self._call(
                    props,
                    "Set",
                    MPRIS_PLAYER_INTERFACE,
                    "Volume",
                    QDBusVariant(float(command.level)),
                )
            else:
                raise EndpointCommandFailed(
                    f"{command.kind.value} is not an endpoint command",
                    endpoint_id=endpoint_id,
                )
        except EndpointVanished as e:
            raise EndpointCommandFailed(str(e), endpoint_id=endpoint_id) from e

    def _seek(self, endpoint_id: str, position_ms: int) -> None:
        """Seek to an absolute position using SetPosition."""
        with self._lock:
            track_id = self._track_ids.get(endpoint_id)
        if not track_id:
            raise EndpointCommandFailed(
                f"{endpoint_id} has no track id, cannot seek", endpoint_id=endpoint_id
            )
        position_us = QDBusArgument()
        position_us.add(position_ms * 1000, QMetaType.Type.LongLong.value)
        player = self._interface(endpoint_id, MPRIS_OBJECT_PATH, MPRIS_PLAYER_INTERFACE)
        self._call(player, "SetPosition", QDBusObjectPath(track_id), position_us)


def _first_dict(arguments: list[Any]) -> dict[str, Any]:
    """Return the first reply argument converted to a dict."""
    if not arguments:
        return {}
    value = _to_python(arguments[0])
    return value if isinstance(value, dict) else {}


def _to_python(value: Any) -> Any:  # noqa: PLR0911
    """Convert Qt D-Bus values (variants, nested arguments) to plain Python."""
    if isinstance(value, QDBusVariant):
        return _to_python(value.variant())
    if isinstance(value, QDBusObjectPath):
        return value.path()
    if isinstance(value, QDBusArgument):
        return _read_argument(value)
    if isinstance(value, dict):
        return {str(k): _to_python(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_python(v) for v in value]
    return value


def _read_argument(arg: QDBusArgument) -> Any:
    """Demarshal a QDBusArgument of unknown shape (nested a{sv}, arrays)."""
    kind = arg.currentType()
    if kind == QDBusArgument.ElementType.MapType:
        result: dict[str, Any] = {}
        arg.beginMap()
        while not arg.atEnd():
            arg.beginMapEntry()
            key = _to_python(arg.asVariant())
            result[str(key)] = _to_python(arg.asVariant())
            arg.endMapEntry()
        arg.endMap()
        return result
    if kind == QDBusArgument.ElementType.ArrayType:
        items: list[Any] = []
        arg.beginArray()
        while not arg.atEnd():
            items.append(_to_python(arg.asVariant()))
        arg.endArray()
        return items
    return _to_python(arg.asVariant())
