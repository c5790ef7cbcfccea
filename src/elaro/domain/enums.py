from __future__ import annotations

from enum import Enum


class ActionType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    COMPLETE = "COMPLETE"
    RESTORE = "RESTORE"


class ResourceType(str, Enum):
    ASSIGNMENT = "assignment"
    LECTURE = "lecture"
    STUDY_SESSION = "study_session"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ReminderMode(str, Enum):
    MINUTES_BEFORE = "minutes_before"
    SPACED_REPETITION = "spaced_repetition"


class ItemState(str, Enum):
    LOCAL_ONLY = "local_only"
    SYNCED = "synced"
    COMPLETED = "completed"
    DELETED = "deleted"
