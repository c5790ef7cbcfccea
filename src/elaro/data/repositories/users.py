from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ...domain import CurrentUser
from ..supabase import SupabaseGateway


@dataclass(slots=True)
class UserRepository:
    gateway: SupabaseGateway
    table_name: str

    def fetch(self, user_id: str) -> Optional[CurrentUser]:
        response = (
            self.gateway.table(self.table_name)
            .select("id, subscription_tier")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return CurrentUser.from_record(response.data[0])
