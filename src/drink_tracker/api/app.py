"""Ingress API: the FastAPI application.

Thin translation layer: each endpoint validates its body, calls exactly
one ``TrackerService`` operation, and maps ``TrackerError`` subclasses to
HTTP statuses:

  ValidationError / bad body   400
  unauthorized                 401
  LockedForWritesError         403
  NotFoundError                404
  DuplicateName / AlreadySet   409
  PersistenceError             500

``GET /events`` is the live Server-Sent Events stream.

Usage::

    from drink_tracker.api.app import create_app

    app = create_app(runtime)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from drink_tracker.core.errors import (
    AlreadySetError,
    ConflictError,
    DuplicateNameError,
    LockedForWritesError,
    NotFoundError,
    PersistenceError,
    TrackerError,
    ValidationError,
)
from drink_tracker.observability.logger import new_trace_id
from drink_tracker.runtime import Runtime

from .auth import Authorizer, PasscodeAuthorizer, hash_passcode
from .schemas import (
    ConsumptionCreate,
    ItemCreate,
    LockUpdate,
    MarkerCreate,
    ParticipantUpsert,
    PasscodeSet,
    PredictionUpsert,
    SelfEstimateUpdate,
)

logger = logging.getLogger(__name__)

# Most specific first.
_STATUS_BY_ERROR: tuple[tuple[type[TrackerError], int], ...] = (
    (LockedForWritesError, 403),
    (DuplicateNameError, 409),
    (AlreadySetError, 409),
    (ConflictError, 409),
    (NotFoundError, 404),
    (ValidationError, 400),
    (PersistenceError, 500),
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def status_for(exc: TrackerError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


def _error_body(message: str, kind: str) -> dict[str, str]:
    return {"error": message, "kind": kind}


def create_app(
    runtime: Runtime,
    authorizer: Authorizer | None = None,
) -> FastAPI:
    """Create the tracker FastAPI application.

    Parameters
    ----------
    runtime:
        A ``drink_tracker.runtime.Runtime``.  Its ``start()`` / ``stop()``
        run in the app lifespan.
    authorizer:
        Session-layer decision for protected routes.  Defaults to
        ``PasscodeAuthorizer`` over the runtime's store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="Drink Tracker", docs_url=None, redoc_url=None, lifespan=lifespan)

    service = runtime.service
    snapshots = runtime.snapshots
    hub = runtime.hub
    authorize: Authorizer = authorizer or PasscodeAuthorizer(runtime.store)

    app.state.runtime = runtime
    app.state.authorize = authorize

    # ------------------------------------------------------------------
    # Middleware & error mapping
    # ------------------------------------------------------------------

    @app.middleware("http")
    async def trace_requests(request: Request, call_next: Any) -> Response:
        new_trace_id()
        return await call_next(request)

    @app.exception_handler(TrackerError)
    async def tracker_error(request: Request, exc: TrackerError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status, content=_error_body(str(exc), type(exc).__name__),
        )

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400, content=_error_body(details or "invalid request", "ValidationError"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        kind = "Unauthorized" if exc.status_code == 401 else "HTTPError"
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), kind),
            headers=getattr(exc, "headers", None),
        )

    # Plain def: FastAPI runs it in the threadpool, off the event loop.
    def require_authorized(request: Request) -> None:
        if not authorize(request):
            raise HTTPException(status_code=401, detail="authorization required")

    protected = [Depends(require_authorized)]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", **runtime.health()}

    # ------------------------------------------------------------------
    # Catalog, consumptions, markers
    # ------------------------------------------------------------------

    @app.get("/drinks")
    async def list_items() -> list[dict[str, Any]]:
        return [i.model_dump(mode="json") for i in runtime.store.items()]

    @app.post("/drinks", status_code=201)
    async def create_item(body: ItemCreate) -> dict[str, Any]:
        item = service.add_item(
            body.name, emoji=body.emoji, image_ref=body.image_ref, color=body.color,
        )
        return item.model_dump(mode="json")

    @app.post("/consume", status_code=201)
    async def consume(body: ConsumptionCreate) -> dict[str, Any]:
        record = service.record_consumption(
            body.item_name,
            participant_id=body.participant_id,
            occurred_at=body.occurred_at,
        )
        return record.model_dump(mode="json")

    @app.post("/event", status_code=201)
    async def create_marker(body: MarkerCreate) -> dict[str, Any]:
        marker = service.add_marker(body.label, color=body.color, occurred_at=body.occurred_at)
        return marker.model_dump(mode="json")

    @app.get("/stats")
    async def stats() -> dict[str, Any]:
        return service.current_stats().model_dump(mode="json")

    @app.get("/stats/history")
    async def stats_history() -> dict[str, Any]:
        return service.history().model_dump(mode="json")

    # ------------------------------------------------------------------
    # Live stream
    # ------------------------------------------------------------------

    @app.get("/events")
    async def events(request: Request) -> StreamingResponse:
        authorized = await run_in_threadpool(authorize, request)
        subscriber = hub.subscribe(authorized=authorized)
        return StreamingResponse(
            hub.stream(subscriber),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    # ------------------------------------------------------------------
    # Participants & predictions
    # ------------------------------------------------------------------

    @app.get("/api/participants", dependencies=protected)
    async def list_participants() -> list[dict[str, Any]]:
        return [p.model_dump(mode="json") for p in runtime.store.participants()]

    @app.post("/api/participants", status_code=201)
    async def upsert_participant(body: ParticipantUpsert, response: Response) -> dict[str, Any]:
        participant, created = service.upsert_participant(
            body.name, avatar_ref=body.avatar_ref, self_estimate=body.self_estimate,
        )
        if not created:
            response.status_code = 200
        return participant.model_dump(mode="json")

    @app.put("/api/participants/{participant_id}/estimate")
    async def update_estimate(participant_id: str, body: SelfEstimateUpdate) -> dict[str, Any]:
        participant = service.update_self_estimate(participant_id, body.self_estimate)
        return participant.model_dump(mode="json")

    @app.get("/api/predictions", dependencies=protected)
    async def list_predictions() -> list[dict[str, Any]]:
        return [p.model_dump(mode="json") for p in runtime.store.predictions()]

    @app.post("/api/predictions", status_code=201)
    async def upsert_prediction(body: PredictionUpsert, response: Response) -> dict[str, Any]:
        prediction, created = service.upsert_prediction(
            body.predictor_id, body.target_id, body.predicted_drinks,
        )
        if not created:
            response.status_code = 200
        return prediction.model_dump(mode="json")

    @app.post("/api/predictions/lock", dependencies=protected)
    async def set_lock(body: LockUpdate) -> dict[str, bool]:
        settings = service.set_predictions_locked(body.locked)
        return {"locked": settings.predictions_locked}

    @app.get("/api/awards")
    async def awards() -> list[dict[str, Any]]:
        return [a.model_dump(mode="json") for a in service.awards()]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @app.post("/api/passcode", status_code=201)
    async def set_passcode(body: PasscodeSet) -> dict[str, str]:
        hashed = await run_in_threadpool(hash_passcode, body.passcode)
        service.set_passcode_hash(hashed)
        return {"message": "Passcode set"}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @app.post("/api/snapshot", dependencies=protected)
    async def force_snapshot() -> dict[str, str]:
        filename = await snapshots.save()
        return {"message": "Snapshot created", "filename": filename}

    @app.get("/api/snapshots", dependencies=protected)
    async def list_snapshots() -> list[dict[str, Any]]:
        return [a.model_dump(mode="json") for a in snapshots.list_artifacts()]

    @app.get("/api/snapshot/latest", dependencies=protected)
    async def latest_snapshot() -> FileResponse:
        path = snapshots.latest_path()
        return FileResponse(path, filename=path.name, media_type="application/json")

    @app.post("/api/snapshot/restore", dependencies=protected)
    async def restore_snapshot() -> dict[str, str]:
        if not await snapshots.restore():
            raise NotFoundError("snapshot", "no valid snapshot to restore")
        service.state_replaced()
        return {"message": "Snapshot restored successfully"}

    return app
