"""Error taxonomy for the player engine.

Per-endpoint and per-fetch errors are isolated: they never abort a
reconciliation tick. They are reported to the consumer as notifications.
"""


class PlayerError(Exception):
    """Base class for all engine errors.

    Attributes:
        application_key: Logical player involved, if any.
        endpoint_id: Endpoint involved, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        application_key: str | None = None,
        endpoint_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.application_key = application_key
        self.endpoint_id = endpoint_id


class EndpointVanished(PlayerError):
    """The endpoint disappeared mid-query."""


class EndpointCommandFailed(PlayerError):
    """The endpoint rejected a write."""


class NoVolumeBackend(PlayerError):
    """Neither own-volume nor a matching mixer stream is available."""


class ArtFetchFailed(PlayerError):
    """Album art could not be fetched or decoded.

    Attributes:
        url: The art URL.
    """

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class MixerUnavailable(PlayerError):
    """The system mixer cannot be reached."""


class UnknownPlayer(PlayerError):
    """A command targeted an application that is not currently present."""
