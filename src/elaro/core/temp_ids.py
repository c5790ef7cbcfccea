from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4

from ..data.storage import KeyValueStore, load_versioned, save_versioned
from ..domain.enums import ResourceType
from .config import ID_MAPPING_KEY, ID_MAPPING_SCHEMA_VERSION

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "tmp_"


def generate_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid4().hex}"


def is_temporary(identifier: Any) -> bool:
    """Backend ids are UUIDs, so the prefix alone marks a client placeholder."""

    return isinstance(identifier, str) and identifier.startswith(TEMP_ID_PREFIX)


@dataclass
class TemporaryIdResolver:
    """Write-once mapping from temporary ids to the ids the server assigned."""

    store: KeyValueStore
    key: str = ID_MAPPING_KEY
    _mapping: Dict[str, Dict[str, str]] = field(default_factory=dict)

    async def load(self) -> None:
        data = await load_versioned(self.store, self.key, ID_MAPPING_SCHEMA_VERSION)
        self._mapping = dict(data or {})
        logger.debug("Loaded %d temporary id mappings", len(self._mapping))

    def resolve(self, identifier: str, resource_type: Optional[ResourceType] = None) -> str:
        """Return the real id for ``identifier``, or ``identifier`` itself while still pending."""

        if not is_temporary(identifier):
            return identifier
        entry = self._mapping.get(identifier)
        if entry is None:
            return identifier
        if resource_type is not None and entry["resource_type"] != ResourceType(resource_type).value:
            return identifier
        return entry["real_id"]

    def is_pending(self, identifier: str, resource_type: Optional[ResourceType] = None) -> bool:
        return is_temporary(identifier) and self.resolve(identifier, resource_type) == identifier

    async def record(self, temp_id: str, real_id: str, resource_type: ResourceType) -> str:
        if not is_temporary(temp_id):
            raise ValueError(f"{temp_id!r} is not a temporary id.")
        existing = self._mapping.get(temp_id)
        if existing is not None:
            if existing["real_id"] != real_id:
                logger.warning(
                    "Ignoring remap of %s to %s; already resolved to %s",
                    temp_id,
                    real_id,
                    existing["real_id"],
                )
            return existing["real_id"]
        self._mapping[temp_id] = {"real_id": real_id, "resource_type": ResourceType(resource_type).value}
        await save_versioned(self.store, self.key, ID_MAPPING_SCHEMA_VERSION, self._mapping)
        logger.info("Resolved %s %s -> %s", ResourceType(resource_type).value, temp_id, real_id)
        return real_id

    def __len__(self) -> int:
        return len(self._mapping)
