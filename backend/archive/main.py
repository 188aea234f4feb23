"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from archive.config import settings
from archive.database import async_session, engine, get_db
from archive.models import Base
from archive.schemas.common import ErrorResponse
from archive.services.cleanup_sweep import CleanupSweep, sweep_loop
from archive.services.errors import ArchiveError, RangeNotSatisfiableError
from archive.services.seed_defaults import seed_semesters
from archive.services.storage import connect_with_retry, create_storage_backend

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, seed semesters, connect storage, reconcile records."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        await seed_semesters(session)

    storage = create_storage_backend(settings, async_session)
    await connect_with_retry(storage, settings.STORAGE_CONNECT_ATTEMPTS, settings.STORAGE_CONNECT_DELAY)
    sweep = CleanupSweep(storage, async_session)
    app.state.storage = storage
    app.state.sweep = sweep

    # Drop records whose blob vanished while the process was down
    if storage.available and settings.CLEANUP_SWEEP_ON_STARTUP:
        try:
            await sweep.run()
        except Exception as e:
            logger.error(f"Startup cleanup sweep failed: {e}")

    sweep_task = None
    if settings.CLEANUP_SWEEP_INTERVAL > 0:
        sweep_task = asyncio.create_task(sweep_loop(sweep, settings.CLEANUP_SWEEP_INTERVAL))
    app.state.sweep_task = sweep_task

    yield

    # Cleanup: the sweep must stop before storage and engine go away
    if sweep_task:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    await storage.close()
    await engine.dispose()


app = FastAPI(
    title="University Archive API",
    version="1.0.0",
    description="Backend API for the semester/type/subject/year PDF archive.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length", "Content-Disposition"],
)


@app.exception_handler(ArchiveError)
async def archive_error_handler(request: Request, exc: ArchiveError):
    headers = {}
    if isinstance(exc, RangeNotSatisfiableError):
        headers = {"Content-Range": f"bytes */{exc.total_length}", "Accept-Ranges": "bytes"}
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.kind, message=exc.message).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content=ErrorResponse(error="internal_error", message=message).model_dump())


@app.get("/api/health")
async def health_check(request: Request):
    """Verify API, database and storage backend status."""
    storage = request.app.state.storage
    database = "connected"
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        database = "disconnected"
    ok = database == "connected" and storage.available
    return {
        "status": "ok" if ok else "degraded",
        "database": database,
        "storage": {
            "provider": storage.provider.value,
            "available": storage.available,
        },
    }


# Register routers
from archive.routes.upload import router as upload_router
from archive.routes.files import router as files_router
from archive.routes.hierarchy import router as hierarchy_router
from archive.routes.maintenance import router as maintenance_router
app.include_router(upload_router)
app.include_router(files_router)
app.include_router(hierarchy_router)
app.include_router(maintenance_router)
