from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict

from ..config.settings import LimitSettings
from ..data.backend import TaskBackend
from ..domain import CurrentUser, ResourceType
from ..domain.errors import TierLimitExceededError

logger = logging.getLogger(__name__)

UNLIMITED = -1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _label(resource_type: ResourceType) -> str:
    return resource_type.value.replace("_", " ") + "s"


@dataclass(slots=True)
class TierLimits:
    """Subscription limits, always checked against a freshly fetched user."""

    backend: TaskBackend
    settings: LimitSettings
    clock: Callable[[], datetime] = _utcnow

    def month_start(self) -> datetime:
        now = self.clock()
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    async def ensure_can_create(self, user: CurrentUser, resource_type: ResourceType) -> None:
        resource_type = ResourceType(resource_type)
        limit = self.settings.monthly_limit_for(user.subscription_tier)
        if limit == UNLIMITED:
            return
        used = await self.backend.count_created_since(resource_type, user.id, self.month_start())
        if used >= limit:
            logger.info("User %s hit the monthly %s limit (%d/%d)", user.id, resource_type.value, used, limit)
            raise TierLimitExceededError(
                f"Monthly {resource_type.value} limit {limit} reached.",
                user_message=f"You have reached your limit of {limit} {_label(resource_type)} this month.",
            )

    async def usage(self, user: CurrentUser) -> Dict[str, Dict[str, int]]:
        since = self.month_start()
        monthly = self.settings.monthly_limit_for(user.subscription_tier)
        summary: Dict[str, Dict[str, int]] = {}
        for resource_type in ResourceType:
            used = await self.backend.count_created_since(resource_type, user.id, since)
            summary[resource_type.value] = {"used": used, "limit": monthly}
        summary["courses"] = {
            "used": await self.backend.count_courses(user.id),
            "limit": self.settings.course_limit_for(user.subscription_tier),
        }
        return summary
