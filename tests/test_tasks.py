"""Tests for services/tasks.py — the task mutation facade end to end."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import build_settings
from elaro.core import is_temporary
from elaro.domain import (
    ActionType,
    AssignmentPayload,
    ItemState,
    LecturePayload,
    ReminderMode,
    ResourceType,
    StudySessionPayload,
)
from elaro.domain.errors import (
    PermanentBackendError,
    ResourceConflictError,
    RetryableBackendError,
    TaskStateError,
    TierLimitExceededError,
)
from elaro.services import MutationStatus, NetworkStatus, view_key

DUE = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)
ASSIGNMENTS = view_key(ResourceType.ASSIGNMENT)


def _essay(**overrides):
    values = dict(course_id="c1", title="Essay", due_date=DUE, reminders=[60])
    values.update(overrides)
    return AssignmentPayload(**values)


def _seed_assignment(context, backend, item_id="t1", *, deleted=False):
    row = backend.seed(ResourceType.ASSIGNMENT, dict(_essay().to_record(), id=item_id))
    view = context.tasks.cached_view(ResourceType.ASSIGNMENT)
    if deleted:
        backend.rows[ResourceType.ASSIGNMENT][item_id]["deleted_at"] = "2024-02-01T00:00:00+00:00"
        view["deleted"][item_id] = row
    else:
        view["items"][item_id] = row
    context.views.write(ASSIGNMENTS, view)
    return row


class TestOfflineDelete:
    def test_delete_is_visible_and_queued_without_network(self, make_context, backend):
        async def scenario():
            context = make_context(online=False)
            await context.start()
            _seed_assignment(context, backend)
            result = await context.tasks.delete_task("t1", ResourceType.ASSIGNMENT)
            return result, context.tasks.cached_view(ResourceType.ASSIGNMENT), context.queue.actions()

        result, view, actions = asyncio.run(scenario())
        assert result.status is MutationStatus.QUEUED
        assert "t1" not in view["items"]
        assert "t1" in view["deleted"]
        assert [(action.action_type, action.resource_id) for action in actions] == [(ActionType.DELETE, "t1")]
        assert backend.calls_named("soft_delete") == []

    def test_reconnect_replays_delete_once(self, make_context, backend):
        async def scenario():
            context = make_context(online=False)
            await context.start()
            _seed_assignment(context, backend)
            await context.tasks.delete_task("t1", ResourceType.ASSIGNMENT)
            await context.network.set_status(NetworkStatus.ONLINE)
            return context, context.tasks.cached_view(ResourceType.ASSIGNMENT)

        context, view = asyncio.run(scenario())
        assert len(backend.calls_named("soft_delete")) == 1
        assert len(context.queue) == 0
        assert backend.rows[ResourceType.ASSIGNMENT]["t1"]["deleted_at"]
        assert "t1" not in view["items"]


class TestOfflineCreate:
    def test_temporary_id_resolves_after_replay(self, make_context, backend):
        async def scenario():
            context = make_context(online=False)
            await context.start()
            created = await context.tasks.create_schedulable_item(_essay())
            temp_id = created.item_id
            before = {
                "resolved": context.resolver.resolve(temp_id),
                "state": context.tasks.state_of(temp_id, ResourceType.ASSIGNMENT),
                "complete": await context.tasks.complete_task(temp_id, ResourceType.ASSIGNMENT),
                "view": context.tasks.cached_view(ResourceType.ASSIGNMENT),
            }
            await context.network.set_status(NetworkStatus.ONLINE)
            after = {
                "resolved": [context.resolver.resolve(temp_id) for _ in range(2)],
                "state": context.tasks.state_of(temp_id, ResourceType.ASSIGNMENT),
                "view": context.tasks.cached_view(ResourceType.ASSIGNMENT),
            }
            return created, before, after

        created, before, after = asyncio.run(scenario())
        temp_id = created.item_id
        assert created.status is MutationStatus.QUEUED
        assert is_temporary(temp_id)

        assert before["resolved"] == temp_id
        assert before["state"] is ItemState.LOCAL_ONLY
        assert before["complete"].status is MutationStatus.STILL_SYNCING
        assert before["complete"].message
        assert temp_id in before["view"]["items"]

        assert after["resolved"] == ["r1", "r1"]
        assert after["state"] is ItemState.SYNCED
        assert temp_id not in after["view"]["items"]
        assert after["view"]["items"]["r1"]["client_id"] == temp_id

        reminders = backend.reminders[("assignment", "r1")]
        assert [reminder.reminder_time for reminder in reminders] == [datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)]

    def test_offline_create_skips_limit_check(self, make_context, backend):
        async def scenario():
            context = make_context(online=False, context_settings=build_settings(monthly_free=0))
            return await context.tasks.create_schedulable_item(_essay())

        assert asyncio.run(scenario()).status is MutationStatus.QUEUED
        assert backend.calls_named("get_current_user") == []

    def test_edits_wait_for_sync(self, make_context):
        async def scenario():
            context = make_context(online=False)
            created = await context.tasks.create_schedulable_item(_essay())
            return [
                await context.tasks.update_schedulable_item(created.item_id, ResourceType.ASSIGNMENT, {"title": "x"}),
                await context.tasks.delete_task(created.item_id, ResourceType.ASSIGNMENT),
                await context.tasks.restore_task(created.item_id, ResourceType.ASSIGNMENT),
            ], len(context.queue)

        results, queued = asyncio.run(scenario())
        assert [result.status for result in results] == [MutationStatus.STILL_SYNCING] * 3
        assert queued == 1


class TestOnlineCreate:
    def test_create_schedules_minutes_before_reminders(self, make_context, backend):
        async def scenario():
            context = make_context()
            result = await context.tasks.create_schedulable_item(_essay(reminders=[60, 1440]))
            return context, result

        context, result = asyncio.run(scenario())
        assert result.status is MutationStatus.APPLIED
        assert result.item_id == "r1"
        assert [reminder.offset for reminder in result.reminders] == [60, 1440]
        assert result.reminders[0].title == "Assignment due: Essay"
        assert len(backend.reminders[("assignment", "r1")]) == 2
        view = context.tasks.cached_view(ResourceType.ASSIGNMENT)
        assert list(view["items"]) == ["r1"]
        assert view["items"]["r1"]["status"] == "pending"
        assert len(context.resolver) == 1

    def test_tier_limit_blocks_create(self, make_context, backend):
        async def scenario():
            context = make_context(context_settings=build_settings(monthly_free=1))
            backend.seed(ResourceType.ASSIGNMENT, {"id": "existing"})
            with pytest.raises(TierLimitExceededError) as excinfo:
                await context.tasks.create_schedulable_item(_essay())
            return context, excinfo.value

        context, error = asyncio.run(scenario())
        assert "limit of 1 assignments" in error.user_message
        assert backend.calls_named("create") == []
        assert context.tasks.cached_view(ResourceType.ASSIGNMENT)["items"] == {}

    def test_limits_are_per_resource_type(self, make_context, backend):
        async def scenario():
            context = make_context(context_settings=build_settings(monthly_free=1))
            backend.seed(ResourceType.ASSIGNMENT, {"id": "existing"})
            lecture = LecturePayload(course_id="c1", lecture_date=DUE, lecture_name="Intro")
            return await context.tasks.create_schedulable_item(lecture)

        assert asyncio.run(scenario()).status is MutationStatus.APPLIED

    def test_spaced_repetition_is_deterministic_across_edits(self, make_context, backend):
        async def scenario():
            context = make_context()
            session = StudySessionPayload(course_id="c1", topic="Kinematics", session_date=DUE, has_spaced_repetition=True)
            created = await context.tasks.create_schedulable_item(session)
            updated = await context.tasks.update_schedulable_item(
                created.item_id, ResourceType.STUDY_SESSION, {"description": "chapter 2"}
            )
            return created, updated

        created, updated = asyncio.run(scenario())
        assert [reminder.offset for reminder in created.reminders] == [1, 3, 7]
        assert all(reminder.reminder_type is ReminderMode.SPACED_REPETITION for reminder in created.reminders)
        assert [r.reminder_time for r in created.reminders] == [r.reminder_time for r in updated.reminders]
        assert len(backend.reminders[("study_session", created.item_id)]) == 3
        assert created.reminders[0].title == 'Spaced Repetition: Review "Kinematics"'

    def test_reminder_failure_is_reported_not_rolled_back(self, make_context, backend):
        async def scenario():
            context = make_context()

            async def broken(*args):
                raise RetryableBackendError("reminders table unavailable")

            backend.replace_reminders = broken
            result = await context.tasks.create_schedulable_item(_essay())
            return context, result

        context, result = asyncio.run(scenario())
        assert result.status is MutationStatus.APPLIED
        assert result.message
        assert result.reminders == []
        assert "r1" in context.tasks.cached_view(ResourceType.ASSIGNMENT)["items"]


class TestOnlineTransitions:
    def test_complete_delete_restore(self, make_context, backend):
        async def scenario():
            context = make_context()
            _seed_assignment(context, backend)
            backend.reminders[("assignment", "t1")] = ["placeholder"]
            states = [context.tasks.state_of("t1", ResourceType.ASSIGNMENT)]
            await context.tasks.delete_task("t1", ResourceType.ASSIGNMENT)
            states.append(context.tasks.state_of("t1", ResourceType.ASSIGNMENT))
            await context.tasks.restore_task("t1", ResourceType.ASSIGNMENT)
            states.append(context.tasks.state_of("t1", ResourceType.ASSIGNMENT))
            await context.tasks.complete_task("t1", ResourceType.ASSIGNMENT)
            states.append(context.tasks.state_of("t1", ResourceType.ASSIGNMENT))
            return states

        states = asyncio.run(scenario())
        assert states == [ItemState.SYNCED, ItemState.DELETED, ItemState.SYNCED, ItemState.COMPLETED]
        assert ("assignment", "t1") not in backend.reminders
        assert backend.rows[ResourceType.ASSIGNMENT]["t1"]["status"] == "completed"

    def test_completing_a_deleted_item_is_refused(self, make_context, backend):
        async def scenario():
            context = make_context()
            _seed_assignment(context, backend, deleted=True)
            with pytest.raises(TaskStateError):
                await context.tasks.complete_task("t1", ResourceType.ASSIGNMENT)
            with pytest.raises(TaskStateError):
                await context.tasks.update_schedulable_item("t1", ResourceType.ASSIGNMENT, {"title": "x"})

        asyncio.run(scenario())
        assert backend.calls_named("update") == []

    def test_rejected_restore_under_pending_complete(self, make_context, backend):
        async def scenario():
            context = make_context()
            _seed_assignment(context, backend, deleted=True)
            gate = asyncio.Event()

            async def refuse_restore(resource_type, resource_id):
                await gate.wait()
                raise PermanentBackendError("restore refused")

            backend.restore_resource = refuse_restore
            restore = asyncio.create_task(context.tasks.restore_task("t1", ResourceType.ASSIGNMENT))
            await asyncio.sleep(0)
            complete = asyncio.create_task(context.tasks.complete_task("t1", ResourceType.ASSIGNMENT))
            await asyncio.sleep(0)
            predicted = context.tasks.cached_view(ResourceType.ASSIGNMENT)

            gate.set()
            outcomes = await asyncio.gather(restore, complete, return_exceptions=True)
            return predicted, outcomes, context.tasks.cached_view(ResourceType.ASSIGNMENT)

        predicted, (restore_outcome, complete_outcome), view = asyncio.run(scenario())
        assert predicted["items"]["t1"]["status"] == "completed"
        assert isinstance(restore_outcome, PermanentBackendError)
        assert complete_outcome.status is MutationStatus.APPLIED
        assert "t1" not in view["items"]
        assert view["deleted"]["t1"]["status"] == "pending"

    def test_complete_of_vanished_item_counts_as_success(self, make_context, backend):
        async def scenario():
            context = make_context()
            context.views.write(ASSIGNMENTS, {"items": {"ghost": {"id": "ghost"}}, "deleted": {}})
            result = await context.tasks.complete_task("ghost", ResourceType.ASSIGNMENT)
            return result, context.tasks.cached_view(ResourceType.ASSIGNMENT)

        result, view = asyncio.run(scenario())
        assert result.status is MutationStatus.APPLIED
        assert view["items"]["ghost"]["status"] == "completed"

    def test_update_of_vanished_item_rolls_back(self, make_context, backend):
        async def scenario():
            context = make_context()
            context.views.write(ASSIGNMENTS, {"items": {"ghost": {"id": "ghost", "title": "old"}}, "deleted": {}})
            with pytest.raises(ResourceConflictError):
                await context.tasks.update_schedulable_item("ghost", ResourceType.ASSIGNMENT, {"title": "new"})
            return context.tasks.cached_view(ResourceType.ASSIGNMENT)

        assert asyncio.run(scenario())["items"]["ghost"]["title"] == "old"

    def test_update_serializes_datetimes_and_reschedules(self, make_context, backend):
        async def scenario():
            context = make_context()
            _seed_assignment(context, backend)
            new_due = datetime(2024, 3, 12, 9, 0, tzinfo=timezone.utc)
            return await context.tasks.update_schedulable_item("t1", ResourceType.ASSIGNMENT, {"due_date": new_due})

        result = asyncio.run(scenario())
        assert result.status is MutationStatus.APPLIED
        assert backend.rows[ResourceType.ASSIGNMENT]["t1"]["due_date"] == "2024-03-12T09:00:00+00:00"
        assert [r.reminder_time for r in backend.reminders[("assignment", "t1")]] == [
            datetime(2024, 3, 12, 8, 0, tzinfo=timezone.utc)
        ]

    def test_update_rejects_unknown_fields(self, make_context):
        context = make_context()
        with pytest.raises(ValueError):
            asyncio.run(context.tasks.update_schedulable_item("t1", ResourceType.ASSIGNMENT, {"colour": "red"}))

    def test_offline_complete_is_queued(self, make_context, backend):
        async def scenario():
            context = make_context(online=False)
            _seed_assignment(context, backend)
            result = await context.tasks.complete_task("t1", ResourceType.ASSIGNMENT)
            return result, context.tasks.state_of("t1", ResourceType.ASSIGNMENT)

        result, state = asyncio.run(scenario())
        assert result.status is MutationStatus.QUEUED
        assert result.action.action_type is ActionType.COMPLETE
        assert state is ItemState.COMPLETED
