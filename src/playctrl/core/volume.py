"""Volume arbitration between a player's own control and the system mixer.

MPRIS volume is precise and authoritative when a player implements it.
Several common players (chiefly browsers) never do, so the fallback is the
per-stream volume of the system mixer, matched to the player by name.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from playctrl.api.endpoint import EndpointAdapter
from playctrl.api.mixer import MixerAdapter
from playctrl.errors import (
    EndpointCommandFailed,
    EndpointVanished,
    MixerUnavailable,
    NoVolumeBackend,
    UnknownPlayer,
)
from playctrl.models.command import Command
from playctrl.models.mixer import MixerStream
from playctrl.models.player import LogicalPlayer
from playctrl.models.view import VOLUME_BACKEND_MIXER, VOLUME_BACKEND_OWN

logger = logging.getLogger(__name__)

# Seconds a volume write may take before it is reported as failed
DEFAULT_WRITE_TIMEOUT = 2.0


def match_stream(player: LogicalPlayer, streams: Sequence[MixerStream]) -> MixerStream | None:
    """Find the mixer stream belonging to a player.

    Matches the application key first, then the player's identity. The
    first matching stream wins.

    Args:
        player: The logical player.
        streams: Streams as listed by the mixer.

    Returns:
        The matching stream, or None.
    """
    for name in (player.application_key, player.winner.identity):
        if not name:
            continue
        for stream in streams:
            if stream.matches(name):
                return stream
    return None


class VolumeController:
    """Apply volume changes through the right backend.

    A successful write does not touch any cached snapshot; the new level
    shows up with the next reconciliation tick.

    Example:
        controller = VolumeController(adapter, mixer, lookup=players.get)
        backend = await controller.set_volume("vlc", 0.42)
    """

    def __init__(
        self,
        endpoints: EndpointAdapter,
        mixer: MixerAdapter | None,
        lookup: Callable[[str], LogicalPlayer | None],
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ) -> None:
        """Initialize the controller.

        Args:
            endpoints: Endpoint capability for own-volume writes.
            mixer: Mixer capability, None if there is no system mixer.
            lookup: Returns the current logical player for a key.
            write_timeout: Timeout for a single write, in seconds.
        """
        self._endpoints = endpoints
        self._mixer = mixer
        self._lookup = lookup
        self._write_timeout = write_timeout
        self._mixer_reported = False
        self._listing: asyncio.Future[list[MixerStream]] | None = None

    @property
    def mixer_available(self) -> bool:
        """Return False once the mixer has been found unavailable."""
        return self._mixer is not None and not self._mixer_reported

    async def list_streams(self) -> list[MixerStream]:
        """List mixer streams off the event loop.

        A listing still running from an earlier call is awaited again instead
        of starting another, so a hung mixer holds at most one thread.

        Returns:
            Active streams, or an empty list while the mixer is unavailable.

        Raises:
            MixerUnavailable: The first time the mixer turns out unavailable.
        """
        if self._mixer is None:
            return self._mixer_unavailable(MixerUnavailable("No system mixer configured"))
        try:
            if self._listing is None or self._listing.done():
                loop = asyncio.get_running_loop()
                self._listing = loop.run_in_executor(None, self._mixer.list_streams)
            streams = await asyncio.wait_for(
                asyncio.shield(self._listing), timeout=self._write_timeout
            )
        except MixerUnavailable as e:
            return self._mixer_unavailable(e)
        except TimeoutError:
            return self._mixer_unavailable(MixerUnavailable("System mixer did not answer"))
        if self._mixer_reported:
            logger.info("System mixer is available again")
            self._mixer_reported = False
        return streams

    def _mixer_unavailable(self, error: MixerUnavailable) -> list[MixerStream]:
        """Raise the first time, then degrade silently to own-volume only."""
        if not self._mixer_reported:
            self._mixer_reported = True
            logger.warning("%s; volume control limited to players' own volume", error)
            raise error
        return []

    def resolve_volume(
        self, player: LogicalPlayer, streams: Sequence[MixerStream]
    ) -> tuple[float | None, str | None]:
        """Return the volume to display for a player and where it came from.

        Args:
            player: The logical player.
            streams: Streams listed during the same tick.

        Returns:
            Tuple of (volume or None, backend name or None).
        """
        if player.winner.supports_own_volume:
            return player.winner.own_volume, VOLUME_BACKEND_OWN
        stream = match_stream(player, streams)
        if stream is not None:
            return min(1.0, stream.volume), VOLUME_BACKEND_MIXER
        return None, None

    async def set_volume(self, application_key: str, level: float) -> str:
        """Set a player's volume.

        Args:
            application_key: Target player.
            level: Volume 0.0-1.0 (clamped).

        Returns:
            The backend used: "own" or "mixer".

        Raises:
            UnknownPlayer: If no player has this key.
            EndpointCommandFailed: If the write was rejected or timed out.
            NoVolumeBackend: If neither backend can control the player.
            MixerUnavailable: The first time the mixer turns out unavailable.
        """
        player = self._lookup(application_key)
        if player is None:
            raise UnknownPlayer(
                f"No player for {application_key}", application_key=application_key
            )
        clamped = max(0.0, min(1.0, level))
        if clamped != level:
            logger.warning("Volume %.2f for %s clamped to %.2f", level, application_key, clamped)

        if player.winner.supports_own_volume:
            await self._write(
                application_key,
                player.endpoint_id,
                self._endpoints.command,
                player.endpoint_id,
                Command.set_volume(application_key, clamped),
            )
            logger.debug("Set own volume of %s to %.2f", application_key, clamped)
            return VOLUME_BACKEND_OWN

        streams = await self.list_streams()
        stream = match_stream(player, streams)
        if stream is None or self._mixer is None:
            raise NoVolumeBackend(
                f"No volume control available for {player.display_name}",
                application_key=application_key,
            )
        await self._write(
            application_key,
            player.endpoint_id,
            self._mixer.set_stream_volume,
            stream.handle,
            clamped,
        )
        logger.debug(
            "Set mixer stream %d (%s) volume to %.2f for %s",
            stream.handle,
            stream.application_name,
            clamped,
            application_key,
        )
        return VOLUME_BACKEND_MIXER

    async def _write(
        self, application_key: str, endpoint_id: str, func: Callable[..., Any], *args: Any
    ) -> None:
        """Run a write, mapping failures to EndpointCommandFailed."""
        try:
            await self._run(func, *args)
        except EndpointCommandFailed as e:
            e.application_key = application_key
            raise
        except (EndpointVanished, TimeoutError) as e:
            raise EndpointCommandFailed(
                f"Volume write for {application_key} failed: {e or 'timeout'}",
                application_key=application_key,
                endpoint_id=endpoint_id,
            ) from e

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking adapter call in the executor with a timeout."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, func, *args), timeout=self._write_timeout
        )
