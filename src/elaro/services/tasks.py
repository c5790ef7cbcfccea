from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..config.settings import ReminderSettings
from ..core.scheduler import compute_reminder_times
from ..core.temp_ids import TemporaryIdResolver, generate_temp_id, is_temporary
from ..data.backend import TaskBackend
from ..domain import (
    ActionType,
    CurrentUser,
    ItemPayload,
    ItemState,
    QueuedAction,
    ReminderMode,
    ReminderOptions,
    ResourceType,
    ScheduledReminder,
    TaskStatus,
    payload_class_for,
    payload_from_record,
)
from ..domain.errors import ResourceConflictError, SyncError, TaskStateError
from .limits import TierLimits
from .network import NetworkMonitor
from .optimistic import MutationResult, MutationStatus, OfflineIntent, OptimisticCache
from .sync_queue import ActionOutcome, OfflineSyncQueue

logger = logging.getLogger(__name__)

STILL_SYNCING_MESSAGE = "This item is still syncing. Please try again in a moment."


def view_key(resource_type: ResourceType) -> str:
    return f"tasks:{ResourceType(resource_type).value}"


def empty_view() -> Dict[str, Dict[str, Any]]:
    return {"items": {}, "deleted": {}}


def _view(value: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(value, dict):
        return empty_view()
    value.setdefault("items", {})
    value.setdefault("deleted", {})
    return value


def _jsonable(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in changes.items()}


def _adopt_row(temp_id: str, real_id: str, row: Dict[str, Any]) -> Callable[[Any], Any]:
    """Re-key a locally created record under its server id and merge the server row."""

    def transform(value: Any) -> Any:
        view = _view(value)
        for bucket in ("items", "deleted"):
            if temp_id in view[bucket]:
                view[bucket][real_id] = view[bucket].pop(temp_id)
        if real_id in view["items"]:
            view["items"][real_id].update(row)
        return view

    return transform


def _reminder_text(payload: ItemPayload, mode: ReminderMode, offset: float) -> tuple[str, str]:
    name = payload.display_name
    if mode is ReminderMode.SPACED_REPETITION:
        return (
            f'Spaced Repetition: Review "{name}"',
            f'It\'s time to review your study session on "{name}" to strengthen your memory.',
        )
    lead = f"{int(offset)} minutes" if offset < 60 else f"{offset / 60:g} hours"
    if payload.resource_type is ResourceType.ASSIGNMENT:
        return f"Assignment due: {name}", f'"{name}" is due in {lead}.'
    if payload.resource_type is ResourceType.LECTURE:
        return f"Upcoming lecture: {name}", f"{name} starts in {lead}."
    return f"Study session: {name}", f'Your study session on "{name}" starts in {lead}.'


class TaskMutationFacade:
    """User-facing task operations.

    Every operation resolves temporary ids first and answers ``still_syncing``
    rather than touching an item the server does not know yet. Cache updates
    and rollback are left to :class:`OptimisticCache`; this class only builds
    the predictions and backend calls. Reminder sets are recomputed after every
    applied create or update, including ones applied later by queue replay.
    """

    def __init__(
        self,
        optimistic: OptimisticCache,
        queue: OfflineSyncQueue,
        resolver: TemporaryIdResolver,
        backend: TaskBackend,
        network: NetworkMonitor,
        limits: TierLimits,
        reminder_settings: ReminderSettings,
        *,
        user_id_provider: Callable[[], str],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._optimistic = optimistic
        self._resolver = resolver
        self._backend = backend
        self._network = network
        self._limits = limits
        self._reminders = reminder_settings
        self._user_id_provider = user_id_provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        queue.add_listener(self._on_action_settled)

    def cached_view(self, resource_type: ResourceType) -> Dict[str, Dict[str, Any]]:
        return _view(self._optimistic.current(view_key(resource_type)))

    def state_of(self, item_id: str, resource_type: ResourceType) -> Optional[ItemState]:
        target = self._resolver.resolve(item_id, resource_type)
        view = self.cached_view(resource_type)
        if target in view["deleted"]:
            return ItemState.DELETED
        record = view["items"].get(target)
        if record is None:
            return None
        if is_temporary(target):
            return ItemState.LOCAL_ONLY
        if record.get("status") == TaskStatus.COMPLETED.value:
            return ItemState.COMPLETED
        return ItemState.SYNCED

    def _still_syncing(self, item_id: str) -> MutationResult:
        logger.info("Refusing to modify %s until it has synced", item_id)
        return MutationResult(status=MutationStatus.STILL_SYNCING, item_id=item_id, message=STILL_SYNCING_MESSAGE)

    def _intent(
        self, action_type: ActionType, resource_type: ResourceType, resource_id: str, payload: Dict[str, Any]
    ) -> OfflineIntent:
        return OfflineIntent(
            action_type=action_type,
            resource_type=resource_type,
            payload=payload,
            owner_user_id=self._user_id_provider(),
            resource_id=resource_id,
        )

    async def complete_task(self, task_id: str, resource_type: ResourceType) -> MutationResult:
        resource_type = ResourceType(resource_type)
        target = self._resolver.resolve(task_id, resource_type)
        if is_temporary(target):
            return self._still_syncing(task_id)

        def check(value: Any) -> None:
            if target in _view(value)["deleted"]:
                raise TaskStateError(
                    f"{resource_type.value} {target} is deleted.",
                    user_message="Restore this item before completing it.",
                )

        def predict(value: Any) -> Any:
            view = _view(value)
            record = view["items"].get(target)
            if record is not None:
                record["status"] = TaskStatus.COMPLETED.value
            return view

        async def commit() -> Any:
            try:
                return await self._backend.update_resource(
                    resource_type, target, {"status": TaskStatus.COMPLETED.value}
                )
            except ResourceConflictError:
                logger.info("%s %s already completed or gone", resource_type.value, target)
                return None

        result = await self._optimistic.run_optimistic(
            view_key(resource_type),
            predict,
            commit,
            check=check,
            offline=self._intent(ActionType.COMPLETE, resource_type, target, {}),
        )
        result.item_id = target
        return result

    async def delete_task(self, task_id: str, resource_type: ResourceType) -> MutationResult:
        resource_type = ResourceType(resource_type)
        target = self._resolver.resolve(task_id, resource_type)
        if is_temporary(target):
            return self._still_syncing(task_id)

        def predict(value: Any) -> Any:
            view = _view(value)
            record = view["items"].pop(target, None)
            if record is not None:
                view["deleted"][target] = record
            return view

        async def commit() -> Any:
            # reminders are cancelled by the backend as part of the soft delete
            try:
                return await self._backend.soft_delete_resource(resource_type, target)
            except ResourceConflictError:
                logger.info("%s %s already deleted", resource_type.value, target)
                return None

        result = await self._optimistic.run_optimistic(
            view_key(resource_type),
            predict,
            commit,
            offline=self._intent(ActionType.DELETE, resource_type, target, {}),
        )
        result.item_id = target
        return result

    async def restore_task(self, task_id: str, resource_type: ResourceType) -> MutationResult:
        resource_type = ResourceType(resource_type)
        target = self._resolver.resolve(task_id, resource_type)
        if is_temporary(target):
            return self._still_syncing(task_id)

        def predict(value: Any) -> Any:
            view = _view(value)
            record = view["deleted"].pop(target, None)
            if record is not None:
                view["items"][target] = record
            return view

        async def commit() -> Any:
            try:
                return await self._backend.restore_resource(resource_type, target)
            except ResourceConflictError:
                logger.info("%s %s already restored", resource_type.value, target)
                return None

        result = await self._optimistic.run_optimistic(
            view_key(resource_type),
            predict,
            commit,
            offline=self._intent(ActionType.RESTORE, resource_type, target, {}),
        )
        result.item_id = target
        return result

    async def create_schedulable_item(self, payload: ItemPayload) -> MutationResult:
        resource_type = payload.resource_type
        record = payload.to_record()
        temp_id = generate_temp_id()
        user: Optional[CurrentUser] = None
        if self._network.is_online():
            user = await self._backend.get_current_user()
            await self._limits.ensure_can_create(user, resource_type)

        def predict(value: Any) -> Any:
            view = _view(value)
            # once the server id is known the same prediction lands under it
            item_id = self._resolver.resolve(temp_id, resource_type)
            view["items"][item_id] = dict(record, id=item_id, status=TaskStatus.PENDING.value)
            return view

        async def commit() -> Any:
            row = await self._backend.create_resource(resource_type, dict(record, client_id=temp_id))
            await self._resolver.record(temp_id, str(row["id"]), resource_type)
            return row

        key = view_key(resource_type)
        result = await self._optimistic.run_optimistic(
            key,
            predict,
            commit,
            offline=self._intent(ActionType.CREATE, resource_type, temp_id, record),
        )
        if result.status is not MutationStatus.APPLIED:
            result.item_id = temp_id
            return result

        item_id = str(result.data["id"])
        result.item_id = item_id
        await self._optimistic.reconcile(key, _adopt_row(temp_id, item_id, result.data))
        await self._attach_reminders(result, item_id, payload, user)
        return result

    async def update_schedulable_item(
        self, item_id: str, resource_type: ResourceType, changes: Dict[str, Any]
    ) -> MutationResult:
        resource_type = ResourceType(resource_type)
        allowed = {item.name for item in fields(payload_class_for(resource_type))}
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValueError(f"Unknown {resource_type.value} fields: {', '.join(unknown)}")
        target = self._resolver.resolve(item_id, resource_type)
        if is_temporary(target):
            return self._still_syncing(item_id)
        serialized = _jsonable(changes)

        def check(value: Any) -> None:
            if target in _view(value)["deleted"]:
                raise TaskStateError(
                    f"{resource_type.value} {target} is deleted.",
                    user_message="Restore this item before editing it.",
                )

        def predict(value: Any) -> Any:
            view = _view(value)
            record = view["items"].get(target)
            if record is not None:
                record.update(serialized)
            return view

        async def commit() -> Any:
            return await self._backend.update_resource(resource_type, target, serialized)

        result = await self._optimistic.run_optimistic(
            view_key(resource_type),
            predict,
            commit,
            check=check,
            offline=self._intent(ActionType.UPDATE, resource_type, target, serialized),
        )
        result.item_id = target
        if result.status is MutationStatus.APPLIED:
            payload = payload_from_record(resource_type, result.data)
            await self._attach_reminders(result, target, payload)
        return result

    async def _attach_reminders(
        self,
        result: MutationResult,
        item_id: str,
        payload: ItemPayload,
        user: Optional[CurrentUser] = None,
    ) -> None:
        # the item is saved either way; a failed reminder set is reported, not rolled back
        try:
            result.reminders = await self.schedule_reminders(item_id, payload, user)
        except SyncError as exc:
            logger.warning("Could not schedule reminders for %s: %s", item_id, exc)
            result.message = exc.user_message

    async def schedule_reminders(
        self, item_id: str, payload: ItemPayload, user: Optional[CurrentUser] = None
    ) -> List[ScheduledReminder]:
        """Recompute the reminder set of an item and replace the stored one."""

        if user is None:
            user = await self._backend.get_current_user()
        tier = user.subscription_tier
        mode = payload.reminder_mode
        if mode is ReminderMode.SPACED_REPETITION:
            offsets: List[float] = list(self._reminders.intervals_for(tier))
            options = ReminderOptions(
                max_count=self._reminders.max_count_for(tier),
                jitter_minutes=self._reminders.jitter_minutes,
                preferred_hour=self._reminders.preferred_hour,
                mode=mode,
                seed_key=item_id,
            )
        else:
            offsets = list(payload.reminders)
            options = ReminderOptions(max_count=self._reminders.max_count_for(tier), mode=mode)

        times = compute_reminder_times(payload.schedule_time, offsets, options, now=self._clock())
        reminders = []
        for slot in times:
            title, body = _reminder_text(payload, mode, slot.offset)
            reminders.append(
                ScheduledReminder(
                    item_id=item_id,
                    resource_type=payload.resource_type,
                    user_id=user.id,
                    reminder_time=slot.at,
                    reminder_type=mode,
                    offset=slot.offset,
                    title=title,
                    body=body,
                )
            )
        stored = await self._backend.replace_reminders(payload.resource_type, item_id, reminders)
        logger.info("Scheduled %d reminders for %s %s", stored, payload.resource_type.value, item_id)
        return reminders

    async def _on_action_settled(self, action: QueuedAction, outcome: ActionOutcome, detail: Any) -> None:
        if outcome is not ActionOutcome.APPLIED:
            return
        if action.action_type is ActionType.CREATE:
            item_id = str(detail["id"])
            await self._optimistic.reconcile(
                view_key(action.resource_type), _adopt_row(action.resource_id, item_id, detail)
            )
        elif action.action_type is ActionType.UPDATE:
            item_id = self._resolver.resolve(action.resource_id, action.resource_type)
        else:
            return
        payload = payload_from_record(action.resource_type, detail)
        try:
            await self.schedule_reminders(item_id, payload)
        except SyncError as exc:
            logger.warning("Could not schedule reminders for replayed %s: %s", item_id, exc)
