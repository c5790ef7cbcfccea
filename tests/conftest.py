"""
Shared fixtures for the Elaro sync core.

The Supabase backend is replaced by ``FakeBackend``, an in-memory
implementation of the backend protocol with scripted failures.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from elaro.config import AppSettings, LimitSettings, ReminderSettings, StorageSettings, SupabaseSettings, SyncSettings
from elaro.data import MemoryStore
from elaro.domain import CurrentUser, ResourceType, ScheduledReminder, SubscriptionTier
from elaro.domain.errors import ResourceConflictError
from elaro.services import NetworkMonitor, NetworkStatus, ServiceContext

NOW = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
USER_ID = "user-1"


class FakeBackend:
    """Dict-backed backend; ``fail_next`` queues errors for the next mutations."""

    def __init__(self) -> None:
        self.rows: Dict[ResourceType, Dict[str, Dict[str, Any]]] = {rt: {} for rt in ResourceType}
        self.reminders: Dict[Tuple[str, str], List[ScheduledReminder]] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self.failures: List[Exception] = []
        self.user = CurrentUser(id=USER_ID, subscription_tier=SubscriptionTier.FREE)
        self.courses = 0
        self._ids = itertools.count(1)

    def fail_next(self, *errors: Exception) -> None:
        self.failures.extend(errors)

    def calls_named(self, name: str) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    def seed(self, resource_type: ResourceType, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record, user_id=self.user.id, status=record.get("status", "pending"), deleted_at=None)
        self.rows[resource_type][row["id"]] = row
        return dict(row)

    def _mutation(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if self.failures:
            raise self.failures.pop(0)

    async def create_resource(self, resource_type: ResourceType, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._mutation("create", resource_type, payload.get("client_id"))
        client_id = payload.get("client_id")
        for row in self.rows[resource_type].values():
            if client_id and row.get("client_id") == client_id:
                return dict(row)
        row_id = f"r{next(self._ids)}"
        return self.seed(resource_type, dict(payload, id=row_id))

    async def update_resource(
        self, resource_type: ResourceType, resource_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._mutation("update", resource_type, resource_id, dict(payload))
        row = self.rows[resource_type].get(resource_id)
        if row is None or row["deleted_at"]:
            raise ResourceConflictError(f"{resource_id} does not exist or was deleted.")
        row.update(payload)
        return dict(row)

    async def soft_delete_resource(self, resource_type: ResourceType, resource_id: str) -> None:
        self._mutation("soft_delete", resource_type, resource_id)
        row = self.rows[resource_type].get(resource_id)
        if row is None or row["deleted_at"]:
            raise ResourceConflictError(f"{resource_id} does not exist.")
        row["deleted_at"] = NOW.isoformat()
        self.reminders.pop((resource_type.value, resource_id), None)

    async def restore_resource(self, resource_type: ResourceType, resource_id: str) -> Dict[str, Any]:
        self._mutation("restore", resource_type, resource_id)
        row = self.rows[resource_type].get(resource_id)
        if row is None or not row["deleted_at"]:
            raise ResourceConflictError(f"{resource_id} is not deleted.")
        row["deleted_at"] = None
        return dict(row)

    async def replace_reminders(
        self, resource_type: ResourceType, item_id: str, reminders: List[ScheduledReminder]
    ) -> int:
        self.calls.append(("replace_reminders", resource_type, item_id, len(reminders)))
        self.reminders[(resource_type.value, item_id)] = list(reminders)
        return len(reminders)

    async def get_current_user(self) -> CurrentUser:
        self.calls.append(("get_current_user",))
        return self.user

    async def count_created_since(self, resource_type: ResourceType, user_id: str, since: datetime) -> int:
        return len(self.rows[resource_type])

    async def count_courses(self, user_id: str) -> int:
        return self.courses


def build_settings(
    *,
    monthly_free: int = 15,
    max_free: int = 3,
    jitter_minutes: int = 30,
) -> AppSettings:
    return AppSettings(
        supabase=SupabaseSettings(url=None, anon_key=None),
        storage=StorageSettings(
            assignments_table="assignments",
            lectures_table="lectures",
            study_sessions_table="study_sessions",
            reminders_table="reminders",
            users_table="users",
            courses_table="courses",
        ),
        sync=SyncSettings(max_queue_size=100, max_retries=3, probe_timeout=1.0),
        reminders=ReminderSettings(
            jitter_minutes=jitter_minutes,
            preferred_hour=10,
            spaced_intervals={
                SubscriptionTier.FREE: (1, 3, 7, 14, 30),
                SubscriptionTier.PREMIUM: (1, 3, 7, 14, 30, 60, 120),
            },
            max_count={SubscriptionTier.FREE: max_free, SubscriptionTier.PREMIUM: 10},
        ),
        limits=LimitSettings(
            monthly_tasks={SubscriptionTier.FREE: monthly_free, SubscriptionTier.PREMIUM: 70},
            courses={SubscriptionTier.FREE: 2, SubscriptionTier.PREMIUM: 10},
        ),
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings():
    return build_settings()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_context(backend, settings, store):
    """Factory for a fully wired ``ServiceContext`` over the fake backend."""

    def factory(
        *,
        online: bool = True,
        context_settings: Optional[AppSettings] = None,
        context_store: Optional[MemoryStore] = None,
    ) -> ServiceContext:
        return ServiceContext(
            settings=context_settings or settings,
            store=context_store or store,
            backend=backend,
            network=NetworkMonitor(NetworkStatus.ONLINE if online else NetworkStatus.OFFLINE),
            user_id_provider=lambda: USER_ID,
            clock=lambda: NOW,
        )

    return factory
