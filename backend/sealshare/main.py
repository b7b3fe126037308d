import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sealshare.core.config import settings
from sealshare.core.database import Base, SessionLocal, engine
from sealshare.core.errors import ShareError
from sealshare.monitoring.setup import setup_monitoring
from sealshare.routes import admin, download, files
from sealshare.services.container import ShareServices, build_services
from sealshare.tasks.cleanup import start_cleanup_task
from sealshare.utils.clock import utcnow

import sealshare.models  # noqa: F401  registers the tables on Base.metadata

logger = logging.getLogger("sealshare")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        # KeyConfigurationError here aborts startup
        app.state.services = build_services(settings)
    services: ShareServices = app.state.services

    try:
        async with engine.begin() as conn:
            if engine.url.get_backend_name() == "sqlite":
                await conn.execute(text("PRAGMA journal_mode=WAL;"))
            logger.info("Creating database tables: %s", ", ".join(Base.metadata.tables))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        await services.blobs.ensure_ready()
        logger.info("%s blob storage initialized", services.blobs.backend_name)
    except Exception as e:
        logger.error(f"Blob storage initialization failed: {e}")
        raise

    cleanup_task = None
    if settings.ORPHAN_SWEEP_ENABLED:
        cleanup_task = asyncio.create_task(start_cleanup_task(app.state.session_factory, services.blobs))
        logger.info("Background orphan sweeper started")

    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            logger.info("Orphan sweeper cancelled")
    await engine.dispose()
    logger.info("Application shutdown complete")


async def share_error_handler(request: Request, exc: ShareError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(
    services: Optional[ShareServices] = None,
    monitoring: bool = True,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
) -> FastAPI:
    app = FastAPI(
        title="SealShare",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.services = services
    # sessions opened outside a request, e.g. once a download stream finishes
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Content-Length"],
    )
    app.add_exception_handler(ShareError, share_error_handler)

    app.include_router(files)
    app.include_router(download)
    app.include_router(admin)

    if monitoring:
        setup_monitoring(app)

    @app.get("/health")
    async def health_check(request: Request):
        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
            db_status = "ok"
        except Exception as e:
            db_status = f"error: {str(e)}"

        svc = request.app.state.services
        if svc is None:
            storage_status = "not initialized"
        else:
            try:
                await svc.blobs.ensure_ready()
                storage_status = "ok"
            except Exception as e:
                storage_status = f"error: {str(e)}"

        return {
            "status": "running",
            "timestamp": utcnow().isoformat(),
            "database": db_status,
            "storage": storage_status
        }

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        timeout_keep_alive=60,
        limit_concurrency=100
    )
