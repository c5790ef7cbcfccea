from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

from .enums import ActionType, ReminderMode, ResourceType, SubscriptionTier


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO timestamp; naive values are treated as UTC."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported datetime value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_datetime(value: Any) -> Optional[datetime]:
    return parse_datetime(value) if value else None


def _minutes(values: Any) -> List[int]:
    return [int(item) for item in (values or [])]


@dataclass(slots=True)
class AssignmentPayload:
    resource_type: ClassVar[ResourceType] = ResourceType.ASSIGNMENT

    course_id: str
    title: str
    due_date: datetime
    description: str = ""
    submission_method: Optional[str] = None
    submission_link: Optional[str] = None
    reminders: List[int] = field(default_factory=list)

    @property
    def schedule_time(self) -> datetime:
        return self.due_date

    @property
    def reminder_mode(self) -> ReminderMode:
        return ReminderMode.MINUTES_BEFORE

    @property
    def display_name(self) -> str:
        return self.title

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AssignmentPayload":
        return cls(
            course_id=str(record["course_id"]),
            title=str(record["title"]),
            due_date=parse_datetime(record["due_date"]),
            description=record.get("description") or "",
            submission_method=record.get("submission_method"),
            submission_link=record.get("submission_link"),
            reminders=_minutes(record.get("reminders")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "course_id": self.course_id,
            "title": self.title,
            "due_date": self.due_date.isoformat(),
            "description": self.description,
            "submission_method": self.submission_method,
            "submission_link": self.submission_link,
            "reminders": list(self.reminders),
        }


@dataclass(slots=True)
class LecturePayload:
    resource_type: ClassVar[ResourceType] = ResourceType.LECTURE

    course_id: str
    lecture_date: datetime
    lecture_name: Optional[str] = None
    description: str = ""
    is_recurring: bool = False
    recurring_pattern: Optional[str] = None
    reminders: List[int] = field(default_factory=list)

    @property
    def schedule_time(self) -> datetime:
        return self.lecture_date

    @property
    def reminder_mode(self) -> ReminderMode:
        return ReminderMode.MINUTES_BEFORE

    @property
    def display_name(self) -> str:
        return self.lecture_name or "Lecture"

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "LecturePayload":
        return cls(
            course_id=str(record["course_id"]),
            lecture_date=parse_datetime(record["lecture_date"]),
            lecture_name=record.get("lecture_name"),
            description=record.get("description") or "",
            is_recurring=bool(record.get("is_recurring", False)),
            recurring_pattern=record.get("recurring_pattern"),
            reminders=_minutes(record.get("reminders")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "course_id": self.course_id,
            "lecture_date": self.lecture_date.isoformat(),
            "lecture_name": self.lecture_name,
            "description": self.description,
            "is_recurring": self.is_recurring,
            "recurring_pattern": self.recurring_pattern,
            "reminders": list(self.reminders),
        }


@dataclass(slots=True)
class StudySessionPayload:
    resource_type: ClassVar[ResourceType] = ResourceType.STUDY_SESSION

    course_id: str
    topic: str
    session_date: datetime
    description: str = ""
    has_spaced_repetition: bool = False
    reminders: List[int] = field(default_factory=list)

    @property
    def schedule_time(self) -> datetime:
        return self.session_date

    @property
    def reminder_mode(self) -> ReminderMode:
        if self.has_spaced_repetition:
            return ReminderMode.SPACED_REPETITION
        return ReminderMode.MINUTES_BEFORE

    @property
    def display_name(self) -> str:
        return self.topic

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "StudySessionPayload":
        return cls(
            course_id=str(record["course_id"]),
            topic=str(record["topic"]),
            session_date=parse_datetime(record["session_date"]),
            description=record.get("description") or "",
            has_spaced_repetition=bool(record.get("has_spaced_repetition", False)),
            reminders=_minutes(record.get("reminders")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "course_id": self.course_id,
            "topic": self.topic,
            "session_date": self.session_date.isoformat(),
            "description": self.description,
            "has_spaced_repetition": self.has_spaced_repetition,
            "reminders": list(self.reminders),
        }


ItemPayload = Union[AssignmentPayload, LecturePayload, StudySessionPayload]

_PAYLOAD_TYPES: Dict[ResourceType, Type[Any]] = {
    ResourceType.ASSIGNMENT: AssignmentPayload,
    ResourceType.LECTURE: LecturePayload,
    ResourceType.STUDY_SESSION: StudySessionPayload,
}

if set(_PAYLOAD_TYPES) != set(ResourceType):  # pragma: no cover - guards new enum members
    raise RuntimeError("Every ResourceType needs a payload class.")


def payload_class_for(resource_type: ResourceType) -> Type[Any]:
    return _PAYLOAD_TYPES[ResourceType(resource_type)]


def payload_from_record(resource_type: ResourceType, record: Dict[str, Any]) -> ItemPayload:
    return payload_class_for(resource_type).from_record(record)


@dataclass(slots=True)
class QueuedAction:
    id: str
    action_type: ActionType
    resource_type: ResourceType
    resource_id: str
    payload: Dict[str, Any]
    created_at: datetime
    owner_user_id: str
    retry_count: int = 0
    last_error: Optional[str] = None
    cache_key: Optional[str] = None
    next_retry_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "QueuedAction":
        return cls(
            id=str(record["id"]),
            action_type=ActionType(record["action_type"]),
            resource_type=ResourceType(record["resource_type"]),
            resource_id=str(record["resource_id"]),
            payload=dict(record.get("payload") or {}),
            created_at=parse_datetime(record["created_at"]),
            owner_user_id=str(record["owner_user_id"]),
            retry_count=int(record.get("retry_count", 0)),
            last_error=record.get("last_error"),
            cache_key=record.get("cache_key"),
            next_retry_at=_optional_datetime(record.get("next_retry_at")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type.value,
            "resource_type": self.resource_type.value,
            "resource_id": self.resource_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "owner_user_id": self.owner_user_id,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "cache_key": self.cache_key,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


@dataclass(frozen=True)
class CurrentUser:
    id: str
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CurrentUser":
        raw_tier = record.get("subscription_tier") or SubscriptionTier.FREE.value
        try:
            tier = SubscriptionTier(raw_tier)
        except ValueError:
            # paid plans carry marketing names server-side
            tier = SubscriptionTier.PREMIUM
        return cls(id=str(record["id"]), subscription_tier=tier)


@dataclass(frozen=True)
class ReminderOptions:
    max_count: int
    jitter_minutes: int = 0
    deterministic: bool = True
    preferred_hour: Optional[int] = None
    mode: ReminderMode = ReminderMode.MINUTES_BEFORE
    seed_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_count < 0:
            raise ValueError("max_count must be >= 0")
        if self.jitter_minutes < 0:
            raise ValueError("jitter_minutes must be >= 0")
        if self.preferred_hour is not None and not 0 <= self.preferred_hour <= 23:
            raise ValueError("preferred_hour must be between 0 and 23")


@dataclass(frozen=True)
class ReminderTime:
    at: datetime
    offset: float
    index: int


@dataclass(slots=True)
class ScheduledReminder:
    item_id: str
    resource_type: ResourceType
    user_id: str
    reminder_time: datetime
    reminder_type: ReminderMode
    offset: float
    title: str
    body: str

    def to_record(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "resource_type": self.resource_type.value,
            "user_id": self.user_id,
            "reminder_time": self.reminder_time.isoformat(),
            "reminder_type": self.reminder_type.value,
            "offset": self.offset,
            "title": self.title,
            "body": self.body,
            "completed": False,
        }
