"""Domain models for offline-aware task mutations."""

from __future__ import annotations

from .enums import ActionType, ItemState, ReminderMode, ResourceType, SubscriptionTier, TaskStatus
from .models import (
    AssignmentPayload,
    CurrentUser,
    ItemPayload,
    LecturePayload,
    QueuedAction,
    ReminderOptions,
    ReminderTime,
    ScheduledReminder,
    StudySessionPayload,
    payload_class_for,
    payload_from_record,
)

__all__ = [
    "ActionType",
    "AssignmentPayload",
    "CurrentUser",
    "ItemPayload",
    "ItemState",
    "LecturePayload",
    "QueuedAction",
    "ReminderMode",
    "ReminderOptions",
    "ReminderTime",
    "ResourceType",
    "ScheduledReminder",
    "StudySessionPayload",
    "SubscriptionTier",
    "TaskStatus",
    "payload_class_for",
    "payload_from_record",
]
