from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..config import AppSettings, get_settings
from ..core.config import DATA_DIR, ensure_data_dir
from ..core.temp_ids import TemporaryIdResolver
from ..data import (
    FileStore,
    KeyValueStore,
    SupabaseGateway,
    SupabaseTaskBackend,
    TaskBackend,
    ViewCache,
    translate_error,
)
from ..domain import ResourceType
from .limits import TierLimits
from .network import NetworkMonitor, NetworkStatus, replay_on_reconnect
from .optimistic import OptimisticCache
from .sync_queue import OfflineSyncQueue
from .tasks import TaskMutationFacade, view_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContext:
    """Owns every service instance; ``start``/``stop`` bracket the process lifetime."""

    settings: AppSettings = field(default_factory=get_settings)
    store: Optional[KeyValueStore] = None
    backend: Optional[TaskBackend] = None
    network: NetworkMonitor = field(default_factory=NetworkMonitor)
    user_id_provider: Optional[Callable[[], str]] = None
    clock: Optional[Callable[[], datetime]] = None
    gateway: SupabaseGateway = field(init=False)
    resolver: TemporaryIdResolver = field(init=False)
    queue: OfflineSyncQueue = field(init=False)
    views: ViewCache = field(init=False)
    optimistic: OptimisticCache = field(init=False)
    limits: TierLimits = field(init=False)
    tasks: TaskMutationFacade = field(init=False)
    _unbind_replay: Optional[Callable[[], None]] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.gateway = SupabaseGateway(self.settings.supabase)
        if self.store is None:
            self.store = FileStore(ensure_data_dir(DATA_DIR / "state"))
        if self.backend is None:
            self.backend = SupabaseTaskBackend(gateway=self.gateway, storage=self.settings.storage)
        if self.user_id_provider is None:
            self.user_id_provider = self.gateway.current_user_id

        self.resolver = TemporaryIdResolver(self.store)
        self.queue = OfflineSyncQueue(
            self.store,
            self.backend,
            self.resolver,
            max_queue_size=self.settings.sync.max_queue_size,
            max_retries=self.settings.sync.max_retries,
            retry_base_delay=self.settings.sync.retry_base_delay,
            retry_max_delay=self.settings.sync.retry_max_delay,
            clock=self.clock,
        )
        self.views = ViewCache(self.store)
        self.optimistic = OptimisticCache(self.views, self.queue, self.network)
        if self.clock is None:
            self.limits = TierLimits(backend=self.backend, settings=self.settings.limits)
        else:
            self.limits = TierLimits(backend=self.backend, settings=self.settings.limits, clock=self.clock)
        self.tasks = TaskMutationFacade(
            self.optimistic,
            self.queue,
            self.resolver,
            self.backend,
            self.network,
            self.limits,
            self.settings.reminders,
            user_id_provider=self.user_id_provider,
            clock=self.clock,
        )

    async def sign_in(self) -> bool:
        """Bind the Supabase session from the stored access and refresh tokens, when configured."""

        supabase = self.settings.supabase
        if not (supabase.is_configured and supabase.access_token and supabase.refresh_token):
            return False
        try:
            await asyncio.to_thread(self.gateway.restore_session, supabase.access_token, supabase.refresh_token)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not restore the Supabase session: %s", translate_error(exc))
            return False
        logger.info("Supabase session restored for %s", self.gateway.current_user_id())
        return True

    async def start(self) -> None:
        await self.sign_in()
        await self.resolver.load()
        await self.queue.load()
        for resource_type in ResourceType:
            await self.views.hydrate(view_key(resource_type))
        if self._unbind_replay is None:
            self._unbind_replay = replay_on_reconnect(
                self.network, self.queue, retry_attempts=self.settings.sync.max_retries + 1
            )
        logger.info("Services started with %d queued actions", len(self.queue))

    async def stop(self) -> None:
        if self._unbind_replay is not None:
            self._unbind_replay()
            self._unbind_replay = None
        logger.info("Services stopped")

    async def probe_network(self) -> NetworkStatus:
        if not self.settings.supabase.is_configured:
            return self.network.status
        url = f"{self.settings.supabase.url.rstrip('/')}/rest/v1/"
        return await self.network.probe(url, timeout=self.settings.sync.probe_timeout)
