import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from order_workflow.config import settings
from order_workflow.db import ConcurrentUpdateError, close_pool, get_pool, init_schema
from order_workflow.errors import WorkflowError
from order_workflow.metrics import get_metrics_bytes, get_metrics_content_type, workflow_rejections_total
from order_workflow.notifications import close_redis, get_redis
from order_workflow.routes import orders

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

# error kind -> HTTP status
ERROR_STATUS: dict[str, int] = {
    "unauthorized": 403,
    "invalid_transition": 409,
    "non_cancellable": 409,
    "payment_mismatch": 422,
    "allocation_conflict": 503,
    "sequence_exhausted": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool)
    await get_redis()
    logger.info("Order workflow API ready")
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Workflow", lifespan=lifespan)
app.include_router(orders.router)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    workflow_rejections_total.labels(kind=exc.kind).inc()
    logger.info("Rejected %s %s: %s (%s)", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(status_code=ERROR_STATUS.get(exc.kind, 400), content=exc.to_dict())


@app.exception_handler(ConcurrentUpdateError)
async def concurrent_update_handler(request: Request, exc: ConcurrentUpdateError) -> JSONResponse:
    workflow_rejections_total.labels(kind="concurrent_update").inc()
    return JSONResponse(status_code=409, content={"error": "concurrent_update", "message": str(exc)})


@app.exception_handler(ValidationError)
async def document_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    # request bodies are validated by FastAPI; this is a stored or built document that does not validate
    logger.error("Invalid order document on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "invalid_document", "message": "order data is invalid"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": "invalid_request", "message": str(exc)})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
