from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .errors import EntityNotFoundError, InvalidTransitionError, PreconditionError
from .routes_events import router as events_router
from .routes_pipeline import router as pipeline_router
from .settings import get_settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("app")

app = FastAPI(title="viral-pipeline")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


@app.exception_handler(EntityNotFoundError)
async def not_found_handler(request: Request, exc: EntityNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(409, str(exc))


@app.exception_handler(PreconditionError)
async def precondition_handler(request: Request, exc: PreconditionError):
    return _error(400, str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return _error(500, "Internal Server Error")


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(pipeline_router)
app.include_router(events_router)

Path(settings.images_dir).mkdir(parents=True, exist_ok=True)
app.mount("/images", StaticFiles(directory=settings.images_dir), name="images")


@app.on_event("startup")
async def startup_event():
    """Pick the job backend once, bridge worker events, start the scrape scheduler."""
    from app.jobs.factory import get_job_queue
    from app.services.event_bus import get_event_bus, get_event_relay
    from app.services.scheduler import scheduler_service

    queue = get_job_queue()
    logger.info(f"Job queue backend: {queue.backend_name}")
    relay = get_event_relay()
    if relay is not None:
        relay.start(get_event_bus())
    scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    from app.services.event_bus import get_event_relay
    from app.services.scheduler import scheduler_service

    scheduler_service.stop()
    relay = get_event_relay()
    if relay is not None:
        await relay.stop()
    logger.info("Scheduler stopped on app shutdown")
