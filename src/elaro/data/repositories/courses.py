from __future__ import annotations

from dataclasses import dataclass

from ..supabase import SupabaseGateway


@dataclass(slots=True)
class CourseRepository:
    gateway: SupabaseGateway
    table_name: str

    def count_active(self, user_id: str) -> int:
        response = (
            self.gateway.table(self.table_name)
            .select("id", count="exact")
            .eq("user_id", user_id)
            .is_("deleted_at", "null")
            .execute()
        )
        return response.count or 0
