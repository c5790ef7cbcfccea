from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from ..core.config import QUEUE_KEY, QUEUE_SCHEMA_VERSION
from ..core.temp_ids import TemporaryIdResolver, generate_temp_id, is_temporary
from ..data.backend import TaskBackend
from ..data.storage import KeyValueStore, load_versioned, save_versioned
from ..domain import ActionType, QueuedAction, ResourceType
from ..domain.errors import (
    PermanentBackendError,
    ResourceConflictError,
    RetryableBackendError,
    SyncError,
    TransientBackendError,
)

logger = logging.getLogger(__name__)

# already-landed effects of these actions count as success on replay
_IDEMPOTENT_ACTIONS = frozenset({ActionType.DELETE, ActionType.RESTORE, ActionType.COMPLETE})


def retry_delay(attempt_index: int, *, base: float, cap: float, rng: Optional[random.Random] = None) -> float:
    """Seconds before retry ``attempt_index + 1``: doubling from ``base`` with 20% jitter, capped at ``cap``."""

    delay = base * 2**attempt_index
    delay += delay * 0.2 * (rng or random).uniform(-1.0, 1.0)
    return min(max(delay, base), cap)


class ActionOutcome(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"


SettledListener = Callable[[QueuedAction, ActionOutcome, Any], Awaitable[None]]


@dataclass
class RejectedAction:
    action: QueuedAction
    error: SyncError

    @property
    def user_message(self) -> str:
        return self.error.user_message


@dataclass
class ReplayResult:
    applied: List[QueuedAction] = field(default_factory=list)
    rejected: List[RejectedAction] = field(default_factory=list)
    deferred: List[QueuedAction] = field(default_factory=list)
    interrupted: bool = False
    skipped: bool = False
    remaining: int = 0


@dataclass(frozen=True)
class QueueStats:
    total: int
    retrying: int
    oldest_created_at: Optional[datetime]


class OfflineSyncQueue:
    """Durable, ordered queue of mutations made while the server was unreachable.

    Actions replay in creation order. A transient failure stops the pass and
    keeps everything queued; a permanent failure drops the action and reports
    it; any other server failure keeps the action (and every later action for
    the same resource) for the next pass until ``max_retries`` is reached.
    Such an action is skipped until its backoff, recorded in ``next_retry_at``,
    has elapsed.
    """

    def __init__(
        self,
        store: KeyValueStore,
        backend: TaskBackend,
        resolver: TemporaryIdResolver,
        *,
        max_queue_size: int = 100,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._resolver = resolver
        self._max_queue_size = max_queue_size
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._actions: List[QueuedAction] = []
        self._listeners: List[SettledListener] = []
        self._write_lock = asyncio.Lock()
        self._replay_lock = asyncio.Lock()
        self._handlers: Dict[ActionType, Callable[[QueuedAction, str], Awaitable[Any]]] = {
            ActionType.CREATE: self._create,
            ActionType.UPDATE: self._update,
            ActionType.DELETE: self._delete,
            ActionType.COMPLETE: self._complete,
            ActionType.RESTORE: self._restore,
        }

    async def load(self) -> None:
        records = await load_versioned(self._store, QUEUE_KEY, QUEUE_SCHEMA_VERSION)
        self._actions = [QueuedAction.from_record(record) for record in records or []]
        logger.info("Loaded %d queued offline actions", len(self._actions))

    async def _persist(self) -> None:
        async with self._write_lock:
            records = [action.to_record() for action in self._actions]
            await save_versioned(self._store, QUEUE_KEY, QUEUE_SCHEMA_VERSION, records)

    def add_listener(self, listener: SettledListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def actions(self) -> List[QueuedAction]:
        return list(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def stats(self) -> QueueStats:
        return QueueStats(
            total=len(self._actions),
            retrying=sum(1 for action in self._actions if action.retry_count > 0),
            oldest_created_at=min((action.created_at for action in self._actions), default=None),
        )

    def seconds_until_retry(self) -> Optional[float]:
        """Time until the earliest backed-off action is due; ``None`` when nothing is waiting."""

        pending = [action.next_retry_at for action in self._actions if action.next_retry_at is not None]
        if not pending:
            return None
        return max((min(pending) - self._clock()).total_seconds(), 0.0)

    async def enqueue(
        self,
        action_type: ActionType,
        resource_type: ResourceType,
        payload: Dict[str, Any],
        owner_user_id: str,
        *,
        resource_id: Optional[str] = None,
        cache_key: Optional[str] = None,
    ) -> QueuedAction:
        action_type = ActionType(action_type)
        if resource_id is None:
            if action_type is not ActionType.CREATE:
                raise ValueError(f"{action_type.value} actions need a resource_id.")
            resource_id = generate_temp_id()

        created_at = self._clock()
        action = QueuedAction(
            id=f"offline_{int(created_at.timestamp() * 1000)}_{uuid4().hex[:9]}",
            action_type=action_type,
            resource_type=ResourceType(resource_type),
            resource_id=resource_id,
            payload=dict(payload),
            created_at=created_at,
            owner_user_id=owner_user_id,
            cache_key=cache_key,
        )
        self._actions.append(action)
        await self._persist()
        logger.info(
            "Queued %s %s %s (queue size %d)",
            action.action_type.value,
            action.resource_type.value,
            action.resource_id,
            len(self._actions),
        )
        if len(self._actions) > self._max_queue_size * 0.8:
            logger.warning("Offline queue at %d of %d actions", len(self._actions), self._max_queue_size)
        return action

    async def clear(self) -> None:
        self._actions = []
        await self._persist()

    async def replay(self) -> ReplayResult:
        """Send queued actions to the backend; safe to call on every connectivity signal."""

        if self._replay_lock.locked():
            logger.debug("Replay already in progress; skipping")
            return ReplayResult(skipped=True, remaining=len(self._actions))

        async with self._replay_lock:
            result = ReplayResult()
            held: set[str] = set()
            failed_creates: Dict[str, SyncError] = {}

            for action in list(self._actions):
                if action not in self._actions:
                    continue
                if action.resource_id in failed_creates:
                    dependent = PermanentBackendError(
                        f"Create of {action.resource_id} was rejected.",
                        user_message=failed_creates[action.resource_id].user_message,
                    )
                    await self._reject(action, dependent, result)
                    continue
                if action.resource_id in held:
                    result.deferred.append(action)
                    continue
                if action.next_retry_at is not None and action.next_retry_at > self._clock():
                    held.add(action.resource_id)
                    result.deferred.append(action)
                    continue

                try:
                    response = await self._execute(action)
                except TransientBackendError as exc:
                    action.last_error = str(exc)
                    result.interrupted = True
                    logger.info("Replay paused at %s: %s", action.id, exc)
                    break
                except ResourceConflictError as exc:
                    if action.action_type not in _IDEMPOTENT_ACTIONS:
                        await self._reject(action, exc, result)
                        failed_creates.update(self._create_failure(action, exc))
                        continue
                    logger.info("%s %s already applied server-side", action.action_type.value, action.resource_id)
                    response = None
                except RetryableBackendError as exc:
                    action.retry_count += 1
                    action.last_error = str(exc)
                    if action.retry_count >= self._max_retries:
                        await self._reject(action, exc, result)
                        failed_creates.update(self._create_failure(action, exc))
                    else:
                        delay = retry_delay(
                            action.retry_count - 1, base=self._retry_base_delay, cap=self._retry_max_delay
                        )
                        action.next_retry_at = self._clock() + timedelta(seconds=delay)
                        logger.info(
                            "Retrying %s (%d/%d) in %.1fs", action.id, action.retry_count, self._max_retries, delay
                        )
                        held.add(action.resource_id)
                        result.deferred.append(action)
                        await self._persist()
                    continue
                except PermanentBackendError as exc:
                    await self._reject(action, exc, result)
                    failed_creates.update(self._create_failure(action, exc))
                    continue

                await self._apply(action, response, result)

            await self._persist()
            result.remaining = len(self._actions)
            logger.info(
                "Replay finished: %d applied, %d rejected, %d deferred, %d remaining",
                len(result.applied),
                len(result.rejected),
                len(result.deferred),
                result.remaining,
            )
            return result

    def _create_failure(self, action: QueuedAction, error: SyncError) -> Dict[str, SyncError]:
        return {action.resource_id: error} if action.action_type is ActionType.CREATE else {}

    async def _execute(self, action: QueuedAction) -> Any:
        target = self._resolver.resolve(action.resource_id, action.resource_type)
        if action.action_type is not ActionType.CREATE and is_temporary(target):
            raise PermanentBackendError(
                f"No synced id for {action.resource_id}.",
                user_message="This change refers to an item that was never saved.",
            )
        logger.debug("Replaying %s %s %s", action.action_type.value, action.resource_type.value, target)
        return await self._handlers[action.action_type](action, target)

    async def _create(self, action: QueuedAction, target: str) -> Any:
        payload = dict(action.payload, client_id=action.resource_id)
        return await self._backend.create_resource(action.resource_type, payload)

    async def _update(self, action: QueuedAction, target: str) -> Any:
        return await self._backend.update_resource(action.resource_type, target, action.payload)

    async def _delete(self, action: QueuedAction, target: str) -> Any:
        return await self._backend.soft_delete_resource(action.resource_type, target)

    async def _complete(self, action: QueuedAction, target: str) -> Any:
        return await self._backend.update_resource(action.resource_type, target, {"status": "completed"})

    async def _restore(self, action: QueuedAction, target: str) -> Any:
        return await self._backend.restore_resource(action.resource_type, target)

    async def _apply(self, action: QueuedAction, response: Any, result: ReplayResult) -> None:
        if action.action_type is ActionType.CREATE:
            real_id = str((response or {})["id"])
            await self._resolver.record(action.resource_id, real_id, action.resource_type)
            self._rewrite_references(action.resource_id, real_id)
        self._actions.remove(action)
        await self._persist()
        result.applied.append(action)
        await self._notify(action, ActionOutcome.APPLIED, response)

    async def _reject(self, action: QueuedAction, error: SyncError, result: ReplayResult) -> None:
        self._actions.remove(action)
        await self._persist()
        result.rejected.append(RejectedAction(action=action, error=error))
        logger.warning(
            "Dropped offline %s %s %s: %s",
            action.action_type.value,
            action.resource_type.value,
            action.resource_id,
            error,
        )
        await self._notify(action, ActionOutcome.REJECTED, error)

    def _rewrite_references(self, temp_id: str, real_id: str) -> None:
        for queued in self._actions:
            if queued.resource_id == temp_id and queued.action_type is not ActionType.CREATE:
                queued.resource_id = real_id

    async def _notify(self, action: QueuedAction, outcome: ActionOutcome, detail: Any) -> None:
        for listener in list(self._listeners):
            try:
                await listener(action, outcome, detail)
            except Exception:  # noqa: BLE001
                logger.exception("Queue listener failed for %s", action.id)
