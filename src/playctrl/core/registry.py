"""Player registry: endpoint discovery and per-application deduplication.

One application may expose several endpoints (browsers register one per
tab or instance). The registry groups endpoints by application key and picks
one winner per group, so the user gets one control surface per application.

Every ``refresh()`` recomputes the grouping from scratch; the registry only
remembers which endpoint queries are still running. Diffing across calls
is the reconciliation loop's job.
"""

import asyncio
import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from playctrl.api.endpoint import EndpointAdapter
from playctrl.errors import EndpointCommandFailed, EndpointVanished
from playctrl.models.player import EndpointSnapshot, LogicalPlayer

logger = logging.getLogger(__name__)

# Seconds each endpoint query may take before the endpoint is treated as absent
DEFAULT_ENDPOINT_TIMEOUT = 1.0

# Threads reserved for endpoint queries
DEFAULT_QUERY_WORKERS = 8


def _winner_sort_key(snapshot: EndpointSnapshot) -> tuple[int, int, float, str]:
    """Sort key where the smallest key is the winner.

    Order: highest playback status, then most recently moving position
    (endpoints with a live position beat those without), then the
    lexically first endpoint id.
    """
    has_position = snapshot.position_updated_at is not None
    return (
        -snapshot.status.rank,
        0 if has_position else 1,
        -(snapshot.position_updated_at or 0.0),
        snapshot.endpoint_id,
    )


def select_winner(snapshots: Iterable[EndpointSnapshot]) -> EndpointSnapshot:
    """Pick the snapshot representing an application.

    Args:
        snapshots: Non-empty snapshots sharing one application key.

    Returns:
        The winning snapshot.

    Raises:
        ValueError: If ``snapshots`` is empty.
    """
    return min(snapshots, key=_winner_sort_key)


def group_snapshots(snapshots: Iterable[EndpointSnapshot]) -> list[LogicalPlayer]:
    """Group snapshots into logical players.

    Args:
        snapshots: Snapshots of all reachable endpoints.

    Returns:
        One LogicalPlayer per application key, ordered by key.
    """
    groups: dict[str, list[EndpointSnapshot]] = {}
    for snapshot in snapshots:
        groups.setdefault(snapshot.application_key, []).append(snapshot)

    return [
        LogicalPlayer(
            application_key=key,
            winner=select_winner(members),
            endpoint_ids=frozenset(s.endpoint_id for s in members),
        )
        for key, members in sorted(groups.items())
    ]


class PlayerRegistry:
    """Produce the current set of logical players from live endpoints.

    Adapter calls block, so they run on a small thread pool owned by the
    registry, apart from the loop's default executor used for commands and
    art. Each endpoint query has its own timeout: a slow or hung endpoint is
    dropped from this refresh instead of stalling the batch. A timed-out
    query keeps its thread until the adapter returns; until then the
    endpoint is skipped rather than queried again, so a hung endpoint pins
    at most one thread.

    Example:
        registry = PlayerRegistry(MprisEndpointAdapter())
        players = await registry.refresh()
        registry.close()
    """

    def __init__(
        self,
        adapter: EndpointAdapter,
        endpoint_timeout: float = DEFAULT_ENDPOINT_TIMEOUT,
        max_workers: int = DEFAULT_QUERY_WORKERS,
    ) -> None:
        """Initialize the registry.

        Args:
            adapter: Endpoint capability to query.
            endpoint_timeout: Per-endpoint query timeout in seconds.
            max_workers: Threads available for endpoint queries.
        """
        self._adapter = adapter
        self._endpoint_timeout = endpoint_timeout
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._enumeration_error: Exception | None = None
        self._listing: asyncio.Future[list[str]] | None = None
        self._in_flight: dict[str, asyncio.Future[EndpointSnapshot]] = {}

    @property
    def adapter(self) -> EndpointAdapter:
        """Return the endpoint adapter."""
        return self._adapter

    @property
    def endpoint_timeout(self) -> float:
        """Return the per-endpoint timeout in seconds."""
        return self._endpoint_timeout

    @endpoint_timeout.setter
    def endpoint_timeout(self, seconds: float) -> None:
        self._endpoint_timeout = seconds

    @property
    def enumeration_error(self) -> Exception | None:
        """Return the error of the last refresh's enumeration, if it failed."""
        return self._enumeration_error

    @property
    def pending_endpoints(self) -> frozenset[str]:
        """Return endpoints whose previous query has not returned yet."""
        return frozenset(self._in_flight)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="playctrl-query"
            )
        return self._executor

    def close(self) -> None:
        """Release the query threads without waiting for hung calls."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        if self._listing is not None:
            self._listing.cancel()
            self._listing = None
        for future in self._in_flight.values():
            future.cancel()
        self._in_flight.clear()

    async def refresh(self) -> list[LogicalPlayer]:
        """Enumerate endpoints and return deduplicated logical players.

        Never raises for adapter failures: if enumeration fails, the result
        is empty and ``enumeration_error`` is set for the caller to report.

        Returns:
            Logical players ordered by application key.
        """
        loop = asyncio.get_running_loop()
        # A listing still running from an earlier refresh is awaited again
        if self._listing is None or self._listing.done():
            self._listing = loop.run_in_executor(
                self._get_executor(), self._adapter.list_endpoints
            )
        try:
            endpoint_ids = await asyncio.wait_for(
                asyncio.shield(self._listing), timeout=self._endpoint_timeout
            )
        except Exception as e:  # noqa: BLE001
            self._enumeration_error = e
            return []
        self._enumeration_error = None

        results = await asyncio.gather(
            *(self._describe(endpoint_id) for endpoint_id in endpoint_ids)
        )
        return group_snapshots(s for s in results if s is not None)

    def _forget(self, endpoint_id: str, future: asyncio.Future[EndpointSnapshot]) -> None:
        if self._in_flight.get(endpoint_id) is future:
            del self._in_flight[endpoint_id]

    async def _describe(self, endpoint_id: str) -> EndpointSnapshot | None:
        """Query one endpoint, returning None if it failed, timed out or is busy."""
        if endpoint_id in self._in_flight:
            logger.debug("Endpoint %s is still answering an earlier query", endpoint_id)
            return None

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._get_executor(), self._adapter.describe, endpoint_id)
        self._in_flight[endpoint_id] = future
        future.add_done_callback(partial(self._forget, endpoint_id))
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._endpoint_timeout)
        except EndpointVanished:
            logger.debug("Endpoint %s vanished during refresh", endpoint_id)
        except EndpointCommandFailed as e:
            logger.debug("Endpoint %s rejected the query: %s", endpoint_id, e)
        except TimeoutError:
            logger.debug(
                "Endpoint %s did not answer within %.1fs", endpoint_id, self._endpoint_timeout
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Unexpected error querying endpoint %s: %s", endpoint_id, e)
        return None
