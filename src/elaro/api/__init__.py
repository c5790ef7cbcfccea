"""Request and response models for the HTTP surface."""

from __future__ import annotations

from .models import (
    AssignmentIn,
    CreateItemRequest,
    LectureIn,
    MutationPayload,
    NetworkStatusRequest,
    QueueActionPayload,
    QueueSnapshotPayload,
    ReminderRequest,
    ReminderTimePayload,
    ReplayPayload,
    StudySessionIn,
    UpdateItemRequest,
)

__all__ = [
    "AssignmentIn",
    "CreateItemRequest",
    "LectureIn",
    "MutationPayload",
    "NetworkStatusRequest",
    "QueueActionPayload",
    "QueueSnapshotPayload",
    "ReminderRequest",
    "ReminderTimePayload",
    "ReplayPayload",
    "StudySessionIn",
    "UpdateItemRequest",
]
