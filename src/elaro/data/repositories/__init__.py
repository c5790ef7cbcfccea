"""Supabase repositories for schedulable items, courses, reminders and users."""

from __future__ import annotations

from .courses import CourseRepository
from .items import ItemRepository
from .reminders import ReminderRepository
from .users import UserRepository

__all__ = ["CourseRepository", "ItemRepository", "ReminderRepository", "UserRepository"]
