from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

import httpx
from tenacity import AsyncRetrying, RetryCallState, before_sleep_log, retry_if_result, stop_after_attempt

if TYPE_CHECKING:
    from .sync_queue import OfflineSyncQueue, ReplayResult

logger = logging.getLogger(__name__)


class NetworkStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


StatusListener = Callable[[NetworkStatus, NetworkStatus], Awaitable[None]]


class NetworkMonitor:
    """Last known connectivity state plus change notifications."""

    def __init__(self, initial: NetworkStatus = NetworkStatus.ONLINE) -> None:
        self._status = NetworkStatus(initial)
        self._listeners: List[StatusListener] = []

    @property
    def status(self) -> NetworkStatus:
        return self._status

    def is_online(self) -> bool:
        return self._status is NetworkStatus.ONLINE

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set_status(self, status: NetworkStatus) -> None:
        status = NetworkStatus(status)
        if status is self._status:
            return
        previous, self._status = self._status, status
        logger.info("Network status changed: %s -> %s", previous.value, status.value)
        for listener in list(self._listeners):
            try:
                await listener(previous, status)
            except Exception:  # noqa: BLE001
                logger.exception("Network listener failed")

    async def probe(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> NetworkStatus:
        """Check reachability of ``url`` and record the result."""

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                response = await client.head(url)
        except httpx.HTTPError as exc:
            logger.info("Connectivity probe to %s failed: %s", url, exc)
            status = NetworkStatus.OFFLINE
        else:
            status = NetworkStatus.ONLINE if response.status_code < 500 else NetworkStatus.OFFLINE
        await self.set_status(status)
        return status


async def retry_deferred(
    monitor: NetworkMonitor,
    queue: "OfflineSyncQueue",
    *,
    max_attempts: int,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> "ReplayResult":
    """Replay ``queue`` again each time a backed-off action falls due.

    Stops once a pass leaves nothing deferred, the connection drops, a pass is
    interrupted, or ``max_attempts`` passes have run; returns the last pass.
    """

    def still_waiting(result: "ReplayResult") -> bool:
        return bool(result.deferred) and not result.interrupted and monitor.is_online()

    def until_due(retry_state: RetryCallState) -> float:
        return queue.seconds_until_retry() or 0.0

    options: Dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
    retrying = AsyncRetrying(
        retry=retry_if_result(still_waiting),
        wait=until_due,
        stop=stop_after_attempt(max_attempts),
        before_sleep=before_sleep_log(logger, logging.INFO),
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        **options,
    )
    return await retrying(queue.replay)


def replay_on_reconnect(
    monitor: NetworkMonitor,
    queue: "OfflineSyncQueue",
    *,
    retry_attempts: int = 0,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Callable[[], None]:
    """Replay ``queue`` whenever ``monitor`` goes from offline to online.

    With ``retry_attempts`` set, actions left waiting on a backoff keep being
    retried in the background while the connection holds.
    """

    retries: Set[asyncio.Task] = set()

    async def on_change(previous: NetworkStatus, current: NetworkStatus) -> None:
        if previous is NetworkStatus.OFFLINE and current is NetworkStatus.ONLINE and len(queue):
            logger.info("Back online with %d queued actions; replaying", len(queue))
            result = await queue.replay()
            if retry_attempts > 0 and result.deferred and not result.interrupted:
                task = asyncio.create_task(
                    retry_deferred(monitor, queue, max_attempts=retry_attempts, sleep=sleep)
                )
                retries.add(task)
                task.add_done_callback(retries.discard)

    unsubscribe = monitor.subscribe(on_change)

    def stop() -> None:
        unsubscribe()
        for task in list(retries):
            task.cancel()

    return stop
