from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ...core.config import VIEW_KEY_PREFIX, VIEW_SCHEMA_VERSION
from ..storage import KeyValueStore, load_versioned, save_versioned

logger = logging.getLogger(__name__)

ViewListener = Callable[[str, Any], None]


@dataclass
class ViewCache:
    """Server-shaped snapshots keyed by query identity.

    Reads hand out copies, so callers can never mutate a cached value in place.
    Writes are synchronous and visible to subscribers immediately; mirroring to
    ``store`` happens only through :meth:`persist`.
    """

    store: Optional[KeyValueStore] = None
    _values: Dict[str, Any] = field(default_factory=dict)
    _listeners: List[ViewListener] = field(default_factory=list)

    def read(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            return deepcopy(default)
        return deepcopy(self._values[key])

    def write(self, key: str, value: Any) -> None:
        self._values[key] = deepcopy(value)
        for listener in list(self._listeners):
            listener(key, self._values[key])

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def keys(self) -> list[str]:
        return list(self._values)

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def persist(self, key: str) -> None:
        if self.store is None or key not in self._values:
            return
        await save_versioned(self.store, VIEW_KEY_PREFIX + key, VIEW_SCHEMA_VERSION, self._values[key])

    async def hydrate(self, key: str) -> Any:
        """Load ``key`` from durable storage unless it is already in memory."""

        if key in self._values or self.store is None:
            return self.read(key)
        data = await load_versioned(self.store, VIEW_KEY_PREFIX + key, VIEW_SCHEMA_VERSION)
        if data is not None:
            self.write(key, data)
            logger.debug("Hydrated cached view %s", key)
        return self.read(key)

    async def invalidate(self, key: str) -> None:
        self._values.pop(key, None)
        if self.store is not None:
            await self.store.delete(VIEW_KEY_PREFIX + key)
        logger.info("Invalidated cached view %s", key)
