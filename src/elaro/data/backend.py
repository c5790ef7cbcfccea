from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Protocol, TypeVar

import httpx
from postgrest.exceptions import APIError

from ..config.settings import StorageSettings
from ..domain import CurrentUser, ResourceType, ScheduledReminder
from ..domain.errors import (
    PermanentBackendError,
    ResourceConflictError,
    RetryableBackendError,
    SessionRequiredError,
    SyncError,
    TransientBackendError,
)
from .repositories import CourseRepository, ItemRepository, ReminderRepository, UserRepository
from .supabase import SupabaseGateway, SupabaseNotInitializedError, SupabaseSessionMissingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgREST "no rows" plus Postgres permission, data and integrity classes
_CONFLICT_CODES = {"PGRST116"}
_PERMANENT_CODES = {"42501", "PGRST301", "PGRST302", "P0001"}
_PERMANENT_CODE_CLASSES = ("22", "23")


class TaskBackend(Protocol):
    """Server capabilities the sync core depends on. Every call may raise a ``SyncError``."""

    async def create_resource(self, resource_type: ResourceType, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_resource(
        self, resource_type: ResourceType, resource_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def soft_delete_resource(self, resource_type: ResourceType, resource_id: str) -> None: ...

    async def restore_resource(self, resource_type: ResourceType, resource_id: str) -> Dict[str, Any]: ...

    async def replace_reminders(
        self, resource_type: ResourceType, item_id: str, reminders: List[ScheduledReminder]
    ) -> int: ...

    async def get_current_user(self) -> CurrentUser: ...

    async def count_created_since(self, resource_type: ResourceType, user_id: str, since: datetime) -> int: ...

    async def count_courses(self, user_id: str) -> int: ...

def translate_error(exc: Exception) -> SyncError:
    """Map client library failures onto the sync error taxonomy."""

    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return TransientBackendError(str(exc))
    if isinstance(exc, (SupabaseSessionMissingError, SupabaseNotInitializedError)):
        return SessionRequiredError(str(exc))
    if isinstance(exc, APIError):
        code = str(exc.code or "")
        message = exc.message or str(exc)
        if code in _CONFLICT_CODES:
            return ResourceConflictError(message)
        if code in _PERMANENT_CODES or code.startswith(_PERMANENT_CODE_CLASSES):
            return PermanentBackendError(message, user_message=exc.message or None)
        return RetryableBackendError(message)
    return RetryableBackendError(str(exc))


@dataclass
class SupabaseTaskBackend:
    """``TaskBackend`` backed by Supabase tables; blocking client calls run off the event loop."""

    gateway: SupabaseGateway
    storage: StorageSettings
    items: ItemRepository = field(init=False)
    reminders: ReminderRepository = field(init=False)
    users: UserRepository = field(init=False)
    courses: CourseRepository = field(init=False)

    def __post_init__(self) -> None:
        self.items = ItemRepository(gateway=self.gateway, storage=self.storage)
        self.reminders = ReminderRepository(gateway=self.gateway, table_name=self.storage.reminders_table)
        self.users = UserRepository(gateway=self.gateway, table_name=self.storage.users_table)
        self.courses = CourseRepository(gateway=self.gateway, table_name=self.storage.courses_table)

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            translated = translate_error(exc)
            logger.debug("Backend call %s failed: %s", getattr(func, "__name__", func), translated)
            raise translated from exc

    async def create_resource(self, resource_type: ResourceType, payload: Dict[str, Any]) -> Dict[str, Any]:
        row = await self._call(self.items.insert, resource_type, payload)
        if row is None:
            raise RetryableBackendError(f"Create {resource_type.value} returned no row.")
        return row

    async def update_resource(
        self, resource_type: ResourceType, resource_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        row = await self._call(self.items.update, resource_type, resource_id, payload)
        if row is None:
            raise ResourceConflictError(f"{resource_type.value} {resource_id} does not exist or was deleted.")
        return row

    async def soft_delete_resource(self, resource_type: ResourceType, resource_id: str) -> None:
        # reminders go first: a failure here leaves the row untouched, and a retried delete cancels again
        cancelled = await self._call(self.reminders.cancel_future, resource_type, resource_id, reason="deleted")
        row = await self._call(self.items.soft_delete, resource_type, resource_id)
        if row is None:
            raise ResourceConflictError(f"{resource_type.value} {resource_id} does not exist.")
        logger.info("Soft-deleted %s %s and cancelled %d reminders", resource_type.value, resource_id, cancelled)

    async def restore_resource(self, resource_type: ResourceType, resource_id: str) -> Dict[str, Any]:
        row = await self._call(self.items.restore, resource_type, resource_id)
        if row is None:
            raise ResourceConflictError(f"{resource_type.value} {resource_id} does not exist.")
        return row

    async def replace_reminders(
        self, resource_type: ResourceType, item_id: str, reminders: List[ScheduledReminder]
    ) -> int:
        await self._call(self.reminders.cancel_future, resource_type, item_id, reason="rescheduled")
        return await self._call(self.reminders.insert_many, reminders)

    async def get_current_user(self) -> CurrentUser:
        user_id = await self._call(self.gateway.current_user_id)
        user = await self._call(self.users.fetch, user_id)
        if user is None:
            raise PermanentBackendError(f"User {user_id} not found.")
        return user

    async def count_created_since(self, resource_type: ResourceType, user_id: str, since: datetime) -> int:
        return await self._call(self.items.count_created_since, resource_type, user_id, since)

    async def count_courses(self, user_id: str) -> int:
        return await self._call(self.courses.count_active, user_id)
