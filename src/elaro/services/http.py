from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse
from hypercorn.asyncio import serve
from hypercorn.config import Config

from ..api.models import (
    CreateItemRequest,
    MutationPayload,
    NetworkStatusRequest,
    QueueActionPayload,
    QueueSnapshotPayload,
    ReminderRequest,
    ReminderTimePayload,
    ReplayPayload,
    UpdateItemRequest,
)
from ..core.scheduler import compute_reminder_times
from ..domain import ResourceType
from ..domain.errors import (
    PermanentBackendError,
    ResourceConflictError,
    RetryableBackendError,
    SyncError,
    TaskStateError,
    TierLimitExceededError,
    TransientBackendError,
)
from .context import ServiceContext
from .network import NetworkStatus

logger = logging.getLogger(__name__)

# most specific first; the first match decides the status code
_ERROR_STATUS = (
    (TierLimitExceededError, 403),
    (ResourceConflictError, 409),
    (TaskStateError, 409),
    (PermanentBackendError, 422),
    (TransientBackendError, 503),
    (RetryableBackendError, 502),
)


def _status_for(exc: SyncError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(context: Optional[ServiceContext] = None) -> FastAPI:
    services = context or ServiceContext()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await services.start()
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(title="Elaro Sync API", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(SyncError)
    async def handle_sync_error(_: Request, exc: SyncError) -> JSONResponse:
        status_code = _status_for(exc)
        logger.info("Request failed with %s: %s", type(exc).__name__, exc)
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "message": exc.user_message},
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "ValueError", "message": str(exc)})

    @app.post("/items")
    async def create_item(payload: CreateItemRequest) -> Dict[str, Any]:
        result = await services.tasks.create_schedulable_item(payload.to_domain())
        return MutationPayload.from_result(result).model_dump(mode="json")

    @app.patch("/items/{resource_type}/{item_id}")
    async def update_item(resource_type: ResourceType, item_id: str, request: UpdateItemRequest) -> Dict[str, Any]:
        result = await services.tasks.update_schedulable_item(item_id, resource_type, request.changes)
        return MutationPayload.from_result(result).model_dump(mode="json")

    @app.post("/items/{resource_type}/{item_id}/complete")
    async def complete_item(resource_type: ResourceType, item_id: str) -> Dict[str, Any]:
        result = await services.tasks.complete_task(item_id, resource_type)
        return MutationPayload.from_result(result).model_dump(mode="json")

    @app.delete("/items/{resource_type}/{item_id}")
    async def delete_item(resource_type: ResourceType, item_id: str) -> Dict[str, Any]:
        result = await services.tasks.delete_task(item_id, resource_type)
        return MutationPayload.from_result(result).model_dump(mode="json")

    @app.post("/items/{resource_type}/{item_id}/restore")
    async def restore_item(resource_type: ResourceType, item_id: str) -> Dict[str, Any]:
        result = await services.tasks.restore_task(item_id, resource_type)
        return MutationPayload.from_result(result).model_dump(mode="json")

    @app.get("/items/{resource_type}")
    def list_items(resource_type: ResourceType) -> Dict[str, Any]:
        return services.tasks.cached_view(resource_type)

    @app.post("/reminders/compute")
    def compute_reminders(request: ReminderRequest = Body(...)) -> Dict[str, Any]:
        times = compute_reminder_times(request.base_time, request.offsets, request.to_options())
        return {"reminders": [ReminderTimePayload.from_domain(slot).model_dump(mode="json") for slot in times]}

    @app.get("/limits")
    async def limits() -> Dict[str, Any]:
        user = await services.backend.get_current_user()
        usage = await services.limits.usage(user)
        return {"subscription_tier": user.subscription_tier.value, "usage": usage}

    @app.get("/sync/queue")
    def queue_snapshot() -> Dict[str, Any]:
        stats = services.queue.stats()
        actions: List[QueueActionPayload] = [
            QueueActionPayload.from_domain(action) for action in services.queue.actions()
        ]
        snapshot = QueueSnapshotPayload(
            total=stats.total,
            retrying=stats.retrying,
            oldest_created_at=stats.oldest_created_at,
            actions=actions,
        )
        return snapshot.model_dump(mode="json")

    @app.post("/sync/replay")
    async def replay() -> Dict[str, Any]:
        result = await services.queue.replay()
        return ReplayPayload.from_result(result).model_dump(mode="json")

    @app.put("/network")
    async def set_network(request: NetworkStatusRequest) -> Dict[str, Any]:
        await services.network.set_status(NetworkStatus(request.status))
        return {"status": services.network.status.value, "queued": len(services.queue)}

    return app


async def _serve(app: FastAPI, config: Config) -> None:
    await serve(app, config)


def run_local_server(host: str = "127.0.0.1", port: int = 8000, context: Optional[ServiceContext] = None) -> None:
    config = Config()
    config.bind = [f"{host}:{port}"]
    asyncio.run(_serve(create_app(context), config))
