"""FastAPI application entry point for the BrAPI importer."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from brapi_importer import __version__
from brapi_importer.config import settings
from brapi_importer.database import close_db, init_db
from brapi_importer.services.brapi import get_brapi_client

logger = logging.getLogger(__name__)

# Background cleanup task handle
_cleanup_task: asyncio.Task | None = None

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


async def _run_job_cleanup() -> None:
    """Background task that purges import jobs past their expiry time."""
    from brapi_importer.models import ImportJob

    while True:
        try:
            await asyncio.sleep(settings.cleanup_interval_seconds)
            removed = await ImportJob.cleanup_expired()
            if removed > 0:
                logger.info("Import job cleanup: removed %d expired jobs", removed)
        except asyncio.CancelledError:
            logger.debug("Job cleanup task cancelled")
            break
        except Exception as e:
            logger.error("Job cleanup task error: %s", str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global _cleanup_task

    await init_db()
    from brapi_importer.models import ImportJob

    orphaned = await ImportJob.fail_orphaned()
    if orphaned:
        logger.warning("Marked %d interrupted import jobs as failed", orphaned)
    app.state.brapi_client = get_brapi_client()
    logger.info("BrAPI backend: %s", settings.brapi_backend)

    _cleanup_task = asyncio.create_task(_run_job_cleanup())
    logger.info("Started import job cleanup background task")

    yield

    if _cleanup_task:
        _cleanup_task.cancel()
        try:
            await _cleanup_task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped import job cleanup background task")

    await app.state.brapi_client.close()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    description="Spreadsheet import reconciliation against a BrAPI store",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Only allow origins from the whitelist; empty list means same-origin only
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Authorization", "Content-Type"],
        max_age=600,
    )


@app.get("/health", tags=["Health"])
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "version": __version__,
            "app_name": settings.app_name,
            "brapi_backend": settings.brapi_backend,
        }
    )


from brapi_importer.routers import import_router

app.include_router(
    import_router.router,
    prefix="/api/programs/{program_id}/import",
    tags=["Import"],
)
