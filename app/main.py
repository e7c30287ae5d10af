import logging
import uuid
from time import monotonic

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.publications import router as publications_router
from app.api.storage import router as storage_router
from app.config import settings
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.metrics import observe_request
from app.services.object_storage import ensure_storage_bucket

app = FastAPI(title="Library Publications API")
logger = logging.getLogger(__name__)

configure_logging()
register_error_handlers(app)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    start = monotonic()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        observe_request(request.method, path, status_code, monotonic() - start)
    response.headers["x-request-id"] = request.state.request_id
    return response


app.include_router(publications_router, prefix="/api")
app.include_router(storage_router, prefix="/api")

if settings.storage_backend == "local":
    app.mount(
        settings.local_storage_url_prefix,
        StaticFiles(directory=settings.local_storage_dir, check_dir=False),
        name="storage",
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _ensure_storage():
    try:
        ensure_storage_bucket()
    except Exception:
        logger.exception("Failed to ensure storage bucket during startup")
