"""Service layer composing the offline queue, optimistic cache and task facade."""

from __future__ import annotations

from .context import ServiceContext
from .limits import TierLimits
from .network import NetworkMonitor, NetworkStatus, replay_on_reconnect, retry_deferred
from .optimistic import MutationResult, MutationStatus, OfflineIntent, OptimisticCache, RollbackPolicy
from .sync_queue import ActionOutcome, OfflineSyncQueue, QueueStats, RejectedAction, ReplayResult
from .tasks import TaskMutationFacade, empty_view, view_key

__all__ = [
    "ActionOutcome",
    "MutationResult",
    "MutationStatus",
    "NetworkMonitor",
    "NetworkStatus",
    "OfflineIntent",
    "OfflineSyncQueue",
    "OptimisticCache",
    "QueueStats",
    "RejectedAction",
    "ReplayResult",
    "RollbackPolicy",
    "ServiceContext",
    "TaskMutationFacade",
    "TierLimits",
    "empty_view",
    "replay_on_reconnect",
    "retry_deferred",
    "view_key",
]
