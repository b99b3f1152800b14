"""System mixer access (PulseAudio / PipeWire-pulse).

Used as the volume fallback for players that do not implement MPRIS volume,
chiefly browsers. Calls are blocking and must run off the event loop thread.
"""

import logging
import threading
from abc import ABC, abstractmethod

import pulsectl

from playctrl.errors import EndpointCommandFailed, MixerUnavailable
from playctrl.models.mixer import MixerStream

logger = logging.getLogger(__name__)

# Mixer levels are accepted up to 150% like pavucontrol
MAX_STREAM_VOLUME = 1.5


class MixerAdapter(ABC):
    """Capability to list playback streams and set their volume."""

    @abstractmethod
    def list_streams(self) -> list[MixerStream]:
        """Return the active playback streams.

        Raises:
            MixerUnavailable: If the mixer cannot be reached.
        """

    @abstractmethod
    def set_stream_volume(self, handle: int, level: float) -> None:
        """Set one stream's volume on all channels.

        Raises:
            MixerUnavailable: If the mixer cannot be reached.
            EndpointCommandFailed: If the stream is gone.
        """

    def close(self) -> None:  # noqa: B027
        """Release mixer resources."""


class PulseMixerAdapter(MixerAdapter):
    """Mixer backed by pulsectl (works against pipewire-pulse as well).

    The pulsectl client is not thread-safe, so every call holds a lock. A
    lost connection is dropped and re-established on the next call.
    """

    def __init__(self, client_name: str = "playctrl") -> None:
        """Initialize the adapter.

        Args:
            client_name: Client name announced to the sound server.
        """
        self._client_name = client_name
        self._pulse: pulsectl.Pulse | None = None
        self._lock = threading.Lock()

    def _pulse_connect(self) -> pulsectl.Pulse:
        if self._pulse is None:
            self._pulse = pulsectl.Pulse(self._client_name)
        return self._pulse

    def _reset(self) -> None:
        if self._pulse is not None:
            try:
                self._pulse.close()
            except pulsectl.PulseError:
                logger.debug("Error closing pulse connection", exc_info=True)
        self._pulse = None

    def list_streams(self) -> list[MixerStream]:
        """List sink inputs with their owning application name."""
        with self._lock:
            try:
                sink_inputs = self._pulse_connect().sink_input_list()
            except pulsectl.PulseError as e:
                self._reset()
                raise MixerUnavailable(f"Sound server unavailable: {e}") from e

        streams: list[MixerStream] = []
        for sink_input in sink_inputs:
            name = sink_input.proplist.get("application.name", "") or sink_input.name or ""
            streams.append(
                MixerStream(
                    application_name=name,
                    handle=sink_input.index,
                    volume=sink_input.volume.value_flat,
                )
            )
        return streams

    def set_stream_volume(self, handle: int, level: float) -> None:
        """Set a sink input's volume, clamped to 0-150%."""
        clamped = max(0.0, min(MAX_STREAM_VOLUME, level))
        with self._lock:
            try:
                pulse = self._pulse_connect()
                sink_input = pulse.sink_input_info(handle)
                pulse.volume_set_all_chans(sink_input, clamped)
            except pulsectl.PulseIndexError as e:
                raise EndpointCommandFailed(f"Mixer stream {handle} is gone: {e}") from e
            except pulsectl.PulseError as e:
                self._reset()
                raise MixerUnavailable(f"Sound server unavailable: {e}") from e
        logger.debug("Set mixer stream %d volume to %.2f", handle, clamped)

    def close(self) -> None:
        """Close the pulse connection."""
        with self._lock:
            self._reset()
