from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from ...domain import ResourceType, ScheduledReminder
from ..supabase import SupabaseGateway


@dataclass(slots=True)
class ReminderRepository:
    gateway: SupabaseGateway
    table_name: str

    def cancel_future(self, resource_type: ResourceType, item_id: str, *, reason: str) -> int:
        """Mark every unsent future reminder of an item as handled. Returns the count."""

        now = datetime.now(timezone.utc).isoformat()
        response = (
            self.gateway.table(self.table_name)
            .update({"completed": True, "action_taken": reason, "dismissed_at": now})
            .eq("user_id", self.gateway.current_user_id())
            .eq("resource_type", resource_type.value)
            .eq("item_id", item_id)
            .eq("completed", False)
            .gt("reminder_time", now)
            .execute()
        )
        return len(response.data or [])

    def insert_many(self, reminders: Iterable[ScheduledReminder]) -> int:
        records = [reminder.to_record() for reminder in reminders]
        if not records:
            return 0
        response = self.gateway.table(self.table_name).insert(records).execute()
        return len(response.data or [])
