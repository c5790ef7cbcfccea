from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..domain import (
    AssignmentPayload,
    LecturePayload,
    QueuedAction,
    ReminderMode,
    ReminderOptions,
    ReminderTime,
    ScheduledReminder,
    StudySessionPayload,
)


class AssignmentIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resource_type: Literal["assignment"] = "assignment"
    course_id: str
    title: str = Field(min_length=1)
    due_date: datetime
    description: str = Field(default="")
    submission_method: Optional[str] = Field(default=None)
    submission_link: Optional[str] = Field(default=None)
    reminders: List[int] = Field(default_factory=list)

    def to_domain(self) -> AssignmentPayload:
        return AssignmentPayload(
            course_id=self.course_id,
            title=self.title,
            due_date=self.due_date,
            description=self.description,
            submission_method=self.submission_method,
            submission_link=self.submission_link,
            reminders=list(self.reminders),
        )


class LectureIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resource_type: Literal["lecture"] = "lecture"
    course_id: str
    lecture_date: datetime
    lecture_name: Optional[str] = Field(default=None)
    description: str = Field(default="")
    is_recurring: bool = Field(default=False)
    recurring_pattern: Optional[str] = Field(default=None)
    reminders: List[int] = Field(default_factory=list)

    def to_domain(self) -> LecturePayload:
        return LecturePayload(
            course_id=self.course_id,
            lecture_date=self.lecture_date,
            lecture_name=self.lecture_name,
            description=self.description,
            is_recurring=self.is_recurring,
            recurring_pattern=self.recurring_pattern,
            reminders=list(self.reminders),
        )


class StudySessionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resource_type: Literal["study_session"] = "study_session"
    course_id: str
    topic: str = Field(min_length=1)
    session_date: datetime
    description: str = Field(default="")
    has_spaced_repetition: bool = Field(default=False)
    reminders: List[int] = Field(default_factory=list)

    def to_domain(self) -> StudySessionPayload:
        return StudySessionPayload(
            course_id=self.course_id,
            topic=self.topic,
            session_date=self.session_date,
            description=self.description,
            has_spaced_repetition=self.has_spaced_repetition,
            reminders=list(self.reminders),
        )


CreateItemRequest = Annotated[
    Union[AssignmentIn, LectureIn, StudySessionIn],
    Field(discriminator="resource_type"),
]


class UpdateItemRequest(BaseModel):
    changes: Dict[str, Any]


class ReminderRequest(BaseModel):
    base_time: datetime
    offsets: List[float] = Field(min_length=1)
    max_count: int = Field(ge=0)
    jitter_minutes: int = Field(default=0, ge=0)
    deterministic: bool = Field(default=True)
    preferred_hour: Optional[int] = Field(default=None, ge=0, le=23)
    mode: ReminderMode = Field(default=ReminderMode.MINUTES_BEFORE)
    seed_key: Optional[str] = Field(default=None)

    def to_options(self) -> ReminderOptions:
        return ReminderOptions(
            max_count=self.max_count,
            jitter_minutes=self.jitter_minutes,
            deterministic=self.deterministic,
            preferred_hour=self.preferred_hour,
            mode=self.mode,
            seed_key=self.seed_key,
        )


class ReminderTimePayload(BaseModel):
    at: datetime
    offset: float
    index: int

    @classmethod
    def from_domain(cls, slot: ReminderTime) -> "ReminderTimePayload":
        return cls(at=slot.at, offset=slot.offset, index=slot.index)


class ScheduledReminderPayload(BaseModel):
    reminder_time: datetime
    reminder_type: ReminderMode
    offset: float
    title: str
    body: str

    @classmethod
    def from_domain(cls, reminder: ScheduledReminder) -> "ScheduledReminderPayload":
        return cls(
            reminder_time=reminder.reminder_time,
            reminder_type=reminder.reminder_type,
            offset=reminder.offset,
            title=reminder.title,
            body=reminder.body,
        )


class QueueActionPayload(BaseModel):
    id: str
    action_type: str
    resource_type: str
    resource_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    retry_count: int = Field(default=0)
    last_error: Optional[str] = Field(default=None)
    next_retry_at: Optional[datetime] = Field(default=None)

    @classmethod
    def from_domain(cls, action: QueuedAction) -> "QueueActionPayload":
        return cls(
            id=action.id,
            action_type=action.action_type.value,
            resource_type=action.resource_type.value,
            resource_id=action.resource_id,
            payload=action.payload,
            created_at=action.created_at,
            retry_count=action.retry_count,
            last_error=action.last_error,
            next_retry_at=action.next_retry_at,
        )


class MutationPayload(BaseModel):
    status: str
    item_id: Optional[str] = Field(default=None)
    message: Optional[str] = Field(default=None)
    data: Optional[Dict[str, Any]] = Field(default=None)
    queued_action: Optional[QueueActionPayload] = Field(default=None)
    reminders: List[ScheduledReminderPayload] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: Any) -> "MutationPayload":
        return cls(
            status=result.status.value,
            item_id=result.item_id,
            message=result.message,
            data=result.data if isinstance(result.data, dict) else None,
            queued_action=QueueActionPayload.from_domain(result.action) if result.action else None,
            reminders=[ScheduledReminderPayload.from_domain(item) for item in result.reminders],
        )


class RejectedActionPayload(BaseModel):
    action: QueueActionPayload
    message: str


class ReplayPayload(BaseModel):
    applied: int
    deferred: int
    remaining: int
    interrupted: bool
    skipped: bool
    rejected: List[RejectedActionPayload] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: Any) -> "ReplayPayload":
        return cls(
            applied=len(result.applied),
            deferred=len(result.deferred),
            remaining=result.remaining,
            interrupted=result.interrupted,
            skipped=result.skipped,
            rejected=[
                RejectedActionPayload(action=QueueActionPayload.from_domain(item.action), message=item.user_message)
                for item in result.rejected
            ],
        )


class QueueSnapshotPayload(BaseModel):
    total: int
    retrying: int
    oldest_created_at: Optional[datetime] = Field(default=None)
    actions: List[QueueActionPayload] = Field(default_factory=list)


class NetworkStatusRequest(BaseModel):
    status: Literal["online", "offline"]
