import logging
import re
import time

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

uploads_total = Counter("sealshare_uploads_total", "Upload pipeline runs", ["outcome"])
downloads_total = Counter("sealshare_downloads_total", "Download pipeline runs", ["outcome"])
integrity_failures = Counter(
    "sealshare_integrity_failures_total", "Authentication tag failures while decrypting stored objects"
)
orphan_sweeps = Counter("sealshare_orphan_sweeps_total", "Orphan blob sweep runs")
orphan_blobs_deleted = Counter("sealshare_orphan_blobs_deleted_total", "Orphan blobs deleted by the sweeper")
orphan_sweep_duration = Histogram(
    "sealshare_orphan_sweep_duration_seconds", "Duration of an orphan sweep in seconds"
)


def report_upload(outcome: str) -> None:
    uploads_total.labels(outcome=outcome).inc()


def report_download(outcome: str) -> None:
    downloads_total.labels(outcome=outcome).inc()


def report_integrity_failure() -> None:
    integrity_failures.inc()


def report_sweep(blobs_deleted: int, duration: float) -> None:
    """Record orphan sweep metrics to Prometheus."""
    orphan_sweeps.inc()
    if blobs_deleted:
        orphan_blobs_deleted.inc(blobs_deleted)
    orphan_sweep_duration.observe(duration)

_TOKEN_SEGMENT = re.compile(r"/([0-9a-fA-F]{8})[0-9a-fA-F]{56}(?=/|$)")


def loggable_path(path: str) -> str:
    """Request path with capability tokens cut down to their prefix."""
    return _TOKEN_SEGMENT.sub(r"/\1...", path)

def setup_monitoring(app: ASGIApp):
    Instrumentator().instrument(app).expose(app, endpoint="/api/metrics", include_in_schema=False)

    @app.middleware("http")
    async def monitor_requests(request: Request, call_next):
        start_time = time.time()
        response = None
        try:
            response = await call_next(request)
        except HTTPException as e:
            logger.exception("HTTP exception: %s %s -> %s", request.method, loggable_path(request.url.path), e.detail)
            response = JSONResponse(status_code=e.status_code, content={"detail": e.detail})
        except Exception as e:
            logger.exception("Unhandled error: %s %s -> %s", request.method, loggable_path(request.url.path), e)
            response = JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
        finally:
            process_time = time.time() - start_time
            logger.info("method=%s path=%s status=%s duration=%.4fs",
                        request.method, loggable_path(request.url.path),
                        getattr(response, "status_code", "?"), process_time)
        return response
