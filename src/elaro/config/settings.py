from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from ..domain.enums import ResourceType, SubscriptionTier

load_dotenv()


@dataclass(frozen=True)
class SupabaseSettings:
    url: Optional[str]
    anon_key: Optional[str]
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)

    @property
    def missing_env_vars(self) -> list[str]:
        missing = []
        if not self.url:
            missing.append("SUPABASE_URL")
        if not self.anon_key:
            missing.append("SUPABASE_ANON_KEY")
        return missing


@dataclass(frozen=True)
class StorageSettings:
    assignments_table: str
    lectures_table: str
    study_sessions_table: str
    reminders_table: str
    users_table: str
    courses_table: str

    def table_for(self, resource_type: ResourceType) -> str:
        tables = {
            ResourceType.ASSIGNMENT: self.assignments_table,
            ResourceType.LECTURE: self.lectures_table,
            ResourceType.STUDY_SESSION: self.study_sessions_table,
        }
        return tables[resource_type]


@dataclass(frozen=True)
class SyncSettings:
    max_queue_size: int
    max_retries: int
    probe_timeout: float
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0


@dataclass(frozen=True)
class ReminderSettings:
    jitter_minutes: int
    preferred_hour: int
    spaced_intervals: Dict[SubscriptionTier, Tuple[int, ...]]
    max_count: Dict[SubscriptionTier, int]

    def intervals_for(self, tier: SubscriptionTier) -> Tuple[int, ...]:
        return self.spaced_intervals[tier]

    def max_count_for(self, tier: SubscriptionTier) -> int:
        return self.max_count[tier]


@dataclass(frozen=True)
class LimitSettings:
    monthly_tasks: Dict[SubscriptionTier, int]
    courses: Dict[SubscriptionTier, int]

    def monthly_limit_for(self, tier: SubscriptionTier) -> int:
        return self.monthly_tasks[tier]

    def course_limit_for(self, tier: SubscriptionTier) -> int:
        return self.courses[tier]


@dataclass(frozen=True)
class AppSettings:
    supabase: SupabaseSettings
    storage: StorageSettings
    sync: SyncSettings
    reminders: ReminderSettings
    limits: LimitSettings


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _intervals_from_env(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        values = tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        return default
    return values or default


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    supabase = SupabaseSettings(
        url=os.getenv("SUPABASE_URL"),
        anon_key=os.getenv("SUPABASE_ANON_KEY"),
        access_token=os.getenv("SUPABASE_ACCESS_TOKEN"),
        refresh_token=os.getenv("SUPABASE_REFRESH_TOKEN"),
    )

    storage = StorageSettings(
        assignments_table=os.getenv("ELARO_ASSIGNMENTS_TABLE", "assignments"),
        lectures_table=os.getenv("ELARO_LECTURES_TABLE", "lectures"),
        study_sessions_table=os.getenv("ELARO_STUDY_SESSIONS_TABLE", "study_sessions"),
        reminders_table=os.getenv("ELARO_REMINDERS_TABLE", "reminders"),
        users_table=os.getenv("ELARO_USERS_TABLE", "users"),
        courses_table=os.getenv("ELARO_COURSES_TABLE", "courses"),
    )

    sync = SyncSettings(
        max_queue_size=_int_from_env("ELARO_SYNC_MAX_QUEUE_SIZE", 100),
        max_retries=_int_from_env("ELARO_SYNC_MAX_RETRIES", 3),
        probe_timeout=float(os.getenv("ELARO_NETWORK_PROBE_TIMEOUT", "5")),
        retry_base_delay=float(os.getenv("ELARO_SYNC_RETRY_BASE_DELAY", "1")),
        retry_max_delay=float(os.getenv("ELARO_SYNC_RETRY_MAX_DELAY", "30")),
    )

    reminders = ReminderSettings(
        jitter_minutes=_int_from_env("ELARO_REMINDER_JITTER_MINUTES", 30),
        preferred_hour=_int_from_env("ELARO_REMINDER_PREFERRED_HOUR", 10),
        spaced_intervals={
            SubscriptionTier.FREE: _intervals_from_env("ELARO_SRS_INTERVALS_FREE", (1, 3, 7, 14, 30)),
            SubscriptionTier.PREMIUM: _intervals_from_env("ELARO_SRS_INTERVALS_PREMIUM", (1, 3, 7, 14, 30)),
        },
        max_count={
            SubscriptionTier.FREE: _int_from_env("ELARO_REMINDER_MAX_FREE", 3),
            SubscriptionTier.PREMIUM: _int_from_env("ELARO_REMINDER_MAX_PREMIUM", 10),
        },
    )

    limits = LimitSettings(
        monthly_tasks={
            SubscriptionTier.FREE: _int_from_env("ELARO_MONTHLY_TASKS_FREE", 15),
            SubscriptionTier.PREMIUM: _int_from_env("ELARO_MONTHLY_TASKS_PREMIUM", 70),
        },
        courses={
            SubscriptionTier.FREE: _int_from_env("ELARO_COURSES_FREE", 2),
            SubscriptionTier.PREMIUM: _int_from_env("ELARO_COURSES_PREMIUM", 10),
        },
    )

    return AppSettings(
        supabase=supabase,
        storage=storage,
        sync=sync,
        reminders=reminders,
        limits=limits,
    )
