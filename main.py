"""Main FastAPI application with batch REST routes and the live channel."""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from models.batch import BatchStatus, NewBatch
from models.connection import Connection
from core.broadcast import BroadcastCoordinator
from core.config import Settings
from core.exceptions import (
    BatchNotFoundError, DuplicateBatchError, InvalidWeightError, StoreError, UserNotFoundError
)
from core.storage import BatchStore, UserStore

logger = logging.getLogger(__name__)

class BatchIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_number: str = Field(alias="batchNumber", min_length=1)
    article_number: str = Field(alias="articleNumber", min_length=1)
    description: str
    total_weight: int = Field(alias="totalWeight", ge=0)
    location: Optional[str] = None

    def to_new_batch(self) -> NewBatch:
        return NewBatch(
            batch_number=self.batch_number,
            article_number=self.article_number,
            description=self.description,
            total_weight=self.total_weight,
            location=self.location
        )


class BatchUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: BatchStatus
    location: Optional[str] = None
    inventored_weight: Optional[int] = Field(default=None, alias="inventoredWeight", ge=0)


class InventoryCompleteIn(BaseModel):
    location: Optional[str] = None


class InventoryPartialIn(BaseModel):
    weight: int = Field(ge=0)
    location: Optional[str] = None


class UserSelectIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[int] = Field(default=None, alias="userId")


class ImportIn(BaseModel):
    rows: List[BatchIn]
    overwrite: bool = False


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level)


def create_app(settings: Optional[Settings] = None, store: Optional[BatchStore] = None,
               users: Optional[UserStore] = None) -> FastAPI:
    """
    Build the application with one store and one broadcast coordinator.

    Args:
        settings: Service configuration, read from the environment when omitted
        store: Prepared store to serve instead of a fresh one
        users: User directory; mutations are stamped with its selected user
    """
    settings = settings or Settings.from_env()
    if store is None:
        store = BatchStore()
    if users is None:
        users = UserStore()
    if settings.seed_sample_data:
        store.seed_sample_data()
    coordinator = BroadcastCoordinator(store, throttle_seconds=settings.throttle_seconds)
    store.add_commit_hook(coordinator.notify_mutation)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Live channel at {settings.live_path}, throttle {settings.throttle_seconds}s")
        yield
        await coordinator.close()

    app = FastAPI(title="Batch Inventory API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.users = users
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BatchNotFoundError)
    async def batch_not_found(request: Request, exc: BatchNotFoundError):
        return JSONResponse(status_code=404, content={"message": "Batch not found"})

    @app.exception_handler(UserNotFoundError)
    async def user_not_found(request: Request, exc: UserNotFoundError):
        return JSONResponse(status_code=404, content={"message": "User not found"})

    @app.exception_handler(DuplicateBatchError)
    async def duplicate_batch(request: Request, exc: DuplicateBatchError):
        return JSONResponse(status_code=409, content={"message": str(exc)})

    @app.exception_handler(InvalidWeightError)
    async def invalid_weight(request: Request, exc: InvalidWeightError):
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        logger.error(f"Store error on {request.url.path}: {str(exc)}")
        return JSONResponse(status_code=500, content={"message": "Batch store operation failed"})

    @app.get("/")
    async def root():
        """Root endpoint returning API information."""
        return {
            "message": "Batch Inventory API",
            "version": "1.0.0",
            "endpoints": {
                "live": settings.live_path,
                "batches": "/api/batches",
                "users": "/api/users"
            },
            "reconnect": {
                "interval": settings.reconnect_interval,
                "attempts": settings.reconnect_attempts
            }
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "connected_clients": coordinator.connection_count,
            "broadcast_pending": coordinator.is_broadcast_pending
        }

    @app.get("/api/user")
    async def current_user():
        user = await users.get_current_user()
        if user is None:
            return JSONResponse(status_code=404, content={"message": "User not found"})
        return user.to_dict()

    @app.get("/api/users")
    async def list_users():
        return [user.to_dict() for user in await users.get_all_users()]

    @app.post("/api/user/select")
    async def select_user(body: UserSelectIn):
        if not body.user_id:
            return JSONResponse(status_code=400, content={"message": "User ID is required"})
        return (await users.select_user(body.user_id)).to_dict()

    @app.get("/api/batches")
    async def list_batches():
        return [batch.to_dict() for batch in await store.get_all_snapshot()]

    @app.get("/api/batches/{batch_id}")
    async def get_batch(batch_id: int):
        return (await store.get_batch(batch_id)).to_dict()

    @app.post("/api/batches")
    async def create_batch(body: BatchIn):
        batch = await store.create_batch(body.to_new_batch(), user=await users.get_current_user())
        return batch.to_dict()

    @app.put("/api/batches/{batch_id}")
    async def update_batch(batch_id: int, body: BatchUpdateIn):
        batch = await store.update_batch(
            batch_id,
            location=body.location,
            inventored_weight=body.inventored_weight,
            status=body.status,
            user=await users.get_current_user()
        )
        return batch.to_dict()

    @app.delete("/api/batches")
    async def clear_batches():
        await store.clear_all()
        return {"message": "All batches have been cleared"}

    @app.post("/api/batches/{batch_id}/inventory-complete")
    async def inventory_complete(batch_id: int, body: Optional[InventoryCompleteIn] = None):
        location = body.location if body else None
        batch = await store.mark_inventoried(batch_id, location=location, user=await users.get_current_user())
        return batch.to_dict()

    @app.post("/api/batches/{batch_id}/inventory-partial")
    async def inventory_partial(batch_id: int, body: InventoryPartialIn):
        logger.info(f"Marking batch {batch_id} partially inventoried with weight {body.weight}")
        batch = await store.mark_partially_inventoried(
            batch_id, body.weight, location=body.location, user=await users.get_current_user()
        )
        return batch.to_dict()

    @app.post("/api/batches/{batch_id}/undo-inventory")
    async def undo_inventory(batch_id: int):
        batch = await store.undo_inventory(batch_id, user=await users.get_current_user())
        return batch.to_dict()

    @app.post("/api/import")
    async def import_batches(body: ImportIn):
        rows = [row.to_new_batch() for row in body.rows]
        await store.import_batches(rows, overwrite=body.overwrite)
        # Count is the rows submitted, including skipped existing batch numbers.
        return {"message": "Import successful", "count": len(rows)}

    @app.websocket(settings.live_path)
    async def live_channel(websocket: WebSocket):
        """
        Live channel endpoint pushing batch snapshots to the client.

        Frames sent by the client are not part of the protocol and are
        only logged.
        """
        await websocket.accept()
        connection = Connection(websocket)
        await coordinator.register(connection)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"Client {connection.id} disconnected")
                    break
                frame = message.get("text")
                if frame is None:
                    frame = message.get("bytes") or b""
                logger.debug(f"Ignoring frame from {connection.id}: {frame[:80]!r}")
        except WebSocketDisconnect:
            logger.info(f"Client {connection.id} disconnected")
        except Exception as e:
            logger.error(f"Live channel error for {connection.id}: {str(e)}")
        finally:
            coordinator.unregister(connection)

    return app


settings = Settings.from_env()
configure_logging(settings)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=app.state.settings.host,
        port=app.state.settings.port,
        log_level=app.state.settings.log_level.lower()
    )
