"""Mixer stream model."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class MixerStream:
    """An active playback stream on the system mixer.

    Attributes:
        application_name: Name of the owning application (e.g. "Firefox").
        handle: Mixer-specific stream index.
        volume: Current volume, 1.0 being 100%.
    """

    application_name: str
    handle: int
    volume: float = 1.0

    def matches(self, name: str) -> bool:
        """Loosely match the owning application against ``name``.

        Case-insensitive, and either name may contain the other, since
        browsers advertise a generic process name instead of the per-tab
        identity. Empty names never match.
        """
        own = self.application_name.strip().lower()
        other = name.strip().lower()
        if not own or not other:
            return False
        return own in other or other in own
