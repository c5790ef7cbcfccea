from __future__ import annotations

import asyncio
import itertools
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..data.cache import ViewCache
from ..domain import ActionType, QueuedAction, ResourceType, ScheduledReminder
from ..domain.errors import TransientBackendError
from .network import NetworkMonitor
from .sync_queue import ActionOutcome, OfflineSyncQueue

logger = logging.getLogger(__name__)

Predict = Callable[[Any], Any]
Check = Callable[[Any], None]
Commit = Callable[[], Awaitable[Any]]


class MutationStatus(str, Enum):
    APPLIED = "applied"
    QUEUED = "queued"
    STILL_SYNCING = "still_syncing"


class RollbackPolicy(str, Enum):
    # roll back on every commit failure, timeouts included
    ON_FAILURE = "on_failure"
    # queue the offline intent instead when the commit fails for connectivity reasons
    DEFER_ON_TRANSIENT = "defer_on_transient"


@dataclass(frozen=True)
class OfflineIntent:
    """What to enqueue when the commit cannot reach the server."""

    action_type: ActionType
    resource_type: ResourceType
    payload: Dict[str, Any]
    owner_user_id: str
    resource_id: Optional[str] = None


@dataclass
class MutationResult:
    status: MutationStatus
    data: Any = None
    action: Optional[QueuedAction] = None
    message: Optional[str] = None
    item_id: Optional[str] = None
    reminders: List[ScheduledReminder] = field(default_factory=list)


@dataclass
class _Layer:
    token: int
    predict: Predict
    committed: bool = False
    action_id: Optional[str] = None


@dataclass
class _KeyState:
    base: Any
    layers: List[_Layer] = field(default_factory=list)


class OptimisticCache:
    """Applies predicted values to cached views ahead of the server.

    Each in-flight mutation is a layer on top of the last confirmed value of
    its key. The visible value is always the confirmed base with every live
    layer replayed in call order, so rolling back one mutation never erases
    another one that is still pending. Layers for queued offline actions stay
    live until the queue reports them applied or rejected.

    Predictions are replayed whenever an earlier layer settles, against a base
    the caller never saw. State checks that may refuse a mutation belong in
    ``check``, which runs once against the visible value when the mutation
    starts; a prediction should treat a missing target as a no-op.
    """

    def __init__(
        self,
        views: ViewCache,
        queue: OfflineSyncQueue,
        network: NetworkMonitor,
        *,
        persist: bool = True,
    ) -> None:
        self._views = views
        self._queue = queue
        self._network = network
        self._persist_enabled = persist
        self._states: Dict[str, _KeyState] = {}
        self._queued: Dict[str, Tuple[str, _Layer]] = {}
        self._tokens = itertools.count(1)
        queue.add_listener(self._on_action_settled)

    def current(self, key: str, default: Any = None) -> Any:
        return self._views.read(key, default)

    def pending_count(self, key: str) -> int:
        state = self._states.get(key)
        return len(state.layers) if state else 0

    async def run_optimistic(
        self,
        key: str,
        predict: Predict,
        commit: Commit,
        *,
        check: Optional[Check] = None,
        offline: Optional[OfflineIntent] = None,
        rollback_policy: RollbackPolicy = RollbackPolicy.ON_FAILURE,
    ) -> MutationResult:
        # the cache write happens before the first await
        if check is not None:
            check(self._views.read(key))
        layer = self._push(key, predict)
        return await asyncio.shield(self._settle(key, layer, commit, offline, rollback_policy))

    async def reconcile(self, key: str, transform: Predict) -> Any:
        """Fold server-confirmed data into the base value of ``key``."""

        state = self._states.get(key)
        if state is None:
            self._views.write(key, transform(self._views.read(key)))
        else:
            state.base = transform(deepcopy(state.base))
            self._recompute(key, state)
        await self._persist(key)
        return self._views.read(key)

    def _push(self, key: str, predict: Predict) -> _Layer:
        state = self._states.get(key)
        if state is None:
            state = _KeyState(base=self._views.read(key))
        predicted = predict(self._views.read(key))
        layer = _Layer(token=next(self._tokens), predict=predict)
        state.layers.append(layer)
        self._states[key] = state
        self._views.write(key, predicted)
        return layer

    async def _settle(
        self,
        key: str,
        layer: _Layer,
        commit: Commit,
        offline: Optional[OfflineIntent],
        rollback_policy: RollbackPolicy,
    ) -> MutationResult:
        await self._persist(key)

        if offline is not None and not self._network.is_online():
            action = await self._defer(key, layer, offline)
            return MutationResult(status=MutationStatus.QUEUED, action=action, item_id=action.resource_id)

        try:
            data = await commit()
        except TransientBackendError as exc:
            if offline is not None and rollback_policy is RollbackPolicy.DEFER_ON_TRANSIENT:
                logger.info("Commit for %s hit a connectivity error; queueing instead: %s", key, exc)
                action = await self._defer(key, layer, offline)
                return MutationResult(
                    status=MutationStatus.QUEUED,
                    action=action,
                    item_id=action.resource_id,
                    message=exc.user_message,
                )
            await self._rollback(key, layer, exc)
            raise
        except Exception as exc:
            await self._rollback(key, layer, exc)
            raise

        await self._confirm(key, layer)
        return MutationResult(status=MutationStatus.APPLIED, data=data)

    async def _defer(self, key: str, layer: _Layer, intent: OfflineIntent) -> QueuedAction:
        action = await self._queue.enqueue(
            intent.action_type,
            intent.resource_type,
            intent.payload,
            intent.owner_user_id,
            resource_id=intent.resource_id,
            cache_key=key,
        )
        layer.action_id = action.id
        self._queued[action.id] = (key, layer)
        return action

    async def _confirm(self, key: str, layer: _Layer) -> None:
        state = self._states.get(key)
        if state is None or layer not in state.layers:
            return
        layer.committed = True
        self._fold(key, state)
        self._recompute(key, state)
        await self._persist(key)

    async def _rollback(self, key: str, layer: _Layer, error: BaseException) -> None:
        state = self._states.get(key)
        if state is None or layer not in state.layers:
            return
        state.layers.remove(layer)
        self._fold(key, state)
        self._recompute(key, state)
        await self._persist(key)
        logger.info("Rolled back optimistic update %d on %s: %s", layer.token, key, error)

    def _fold(self, key: str, state: _KeyState) -> None:
        # committed layers join the base only once nothing older is pending
        while state.layers and state.layers[0].committed:
            confirmed = state.layers.pop(0)
            state.base = self._replay(key, confirmed, deepcopy(state.base))

    def _recompute(self, key: str, state: _KeyState) -> None:
        value = deepcopy(state.base)
        for layer in state.layers:
            value = self._replay(key, layer, value)
        self._views.write(key, value)
        if not state.layers:
            self._states.pop(key, None)

    def _replay(self, key: str, layer: _Layer, value: Any) -> Any:
        # a layer that no longer applies to the new base leaves the value as is
        snapshot = deepcopy(value)
        try:
            return layer.predict(value)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipped optimistic update %d on %s during replay: %s", layer.token, key, exc)
            return snapshot

    async def _persist(self, key: str) -> None:
        if self._persist_enabled:
            await self._views.persist(key)

    async def _on_action_settled(self, action: QueuedAction, outcome: ActionOutcome, detail: Any) -> None:
        entry = self._queued.pop(action.id, None)
        if entry is None:
            # queued before a restart; the layer is gone, so drop the stale view
            if outcome is ActionOutcome.REJECTED and action.cache_key:
                await self._views.invalidate(action.cache_key)
            return
        key, layer = entry
        if outcome is ActionOutcome.APPLIED:
            await self._confirm(key, layer)
        else:
            await self._rollback(key, layer, detail)
