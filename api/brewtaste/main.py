"""FastAPI application entrypoint, lifecycle hooks, and health reporting.

Invariants:
- One ProfileUpdateScheduler lives on ``app.state`` for the life of the process.
- Store failures surface as 503 and malformed identifiers as 422.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from brewtaste.api.router import api_router
from brewtaste.core.config import settings
from brewtaste.core.errors import InvalidIdentifierError, ProfileStoreError
from brewtaste.core.logging import configure_logging
from brewtaste.db.session import async_session, init_models
from brewtaste.jobs.schedule_registry import ensure_schedules
from brewtaste.services.task_queue import task_queue
from brewtaste.services.update_scheduler import ProfileUpdateScheduler

logger = logging.getLogger("brewtaste.main")

app = FastAPI(title=settings.app_name)
app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def _startup() -> None:
    """Prepare logging, tables, the update scheduler, and periodic jobs."""
    configure_logging()
    await init_models()
    app.state.update_scheduler = ProfileUpdateScheduler(async_session)
    ensure_schedules()
    logger.info("%s started in %s mode", settings.app_name, settings.environment)


@app.on_event("shutdown")
async def _shutdown() -> None:
    scheduler: ProfileUpdateScheduler | None = getattr(app.state, "update_scheduler", None)
    if scheduler is not None:
        await scheduler.shutdown()


@app.exception_handler(InvalidIdentifierError)
async def _invalid_identifier(_: Request, exc: InvalidIdentifierError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(ProfileStoreError)
async def _store_failure(_: Request, exc: ProfileStoreError) -> JSONResponse:
    logger.error("Store failure during %s: %s", exc.operation, exc.cause)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": f"{exc.operation} failed; try again later"},
    )


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health(request: Request) -> dict[str, Any]:
    """Return service status with scheduler queue depth and task queue mode."""
    scheduler: ProfileUpdateScheduler | None = getattr(request.app.state, "update_scheduler", None)
    if scheduler is None:
        return {"status": "starting"}
    queue = scheduler.get_queue_status()
    return {
        "status": "ok",
        "scheduler": {"queued": queue.queue_size, "processing": queue.processing_count},
        "task_queue": "online" if task_queue.enabled else "inline",
    }
