from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ...config.settings import StorageSettings
from ...domain import ResourceType
from ..supabase import SupabaseGateway


@dataclass(slots=True)
class ItemRepository:
    """Rows for assignments, lectures and study sessions, soft-deleted via ``deleted_at``."""

    gateway: SupabaseGateway
    storage: StorageSettings

    def _table(self, resource_type: ResourceType):
        return self.gateway.table(self.storage.table_for(resource_type))

    def insert(self, resource_type: ResourceType, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = dict(record, user_id=self.gateway.current_user_id())
        # client_id makes a replayed create land on the row it already produced
        on_conflict = "client_id" if payload.get("client_id") else "id"
        response = self._table(resource_type).upsert(payload, on_conflict=on_conflict).execute()
        rows = response.data or []
        return rows[0] if rows else None

    def update(self, resource_type: ResourceType, item_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        response = (
            self._table(resource_type)
            .update(changes)
            .eq("id", item_id)
            .eq("user_id", self.gateway.current_user_id())
            .is_("deleted_at", "null")
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    def set_deleted_at(
        self, resource_type: ResourceType, item_id: str, deleted_at: Optional[datetime]
    ) -> Optional[Dict[str, Any]]:
        response = (
            self._table(resource_type)
            .update({"deleted_at": deleted_at.isoformat() if deleted_at else None})
            .eq("id", item_id)
            .eq("user_id", self.gateway.current_user_id())
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    def soft_delete(self, resource_type: ResourceType, item_id: str) -> Optional[Dict[str, Any]]:
        return self.set_deleted_at(resource_type, item_id, datetime.now(timezone.utc))

    def restore(self, resource_type: ResourceType, item_id: str) -> Optional[Dict[str, Any]]:
        return self.set_deleted_at(resource_type, item_id, None)

    def count_created_since(self, resource_type: ResourceType, user_id: str, since: datetime) -> int:
        response = (
            self._table(resource_type)
            .select("id", count="exact")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return response.count or 0
