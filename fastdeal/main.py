import time
import uuid

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from fastdeal.core.config import get_settings
from fastdeal.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from fastdeal.core.logging import bind_request_id, configure_logging, get_logger
from fastdeal.gateways import build_gateways
from fastdeal.routers import payments, webhooks
from fastdeal.services.reconciliation import ReconciliationController
from fastdeal.storage.base import get_stores

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="FastDeal Payments API",
    version="2.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(webhooks.router, prefix="/v1/payments", tags=["webhooks"])
app.include_router(payments.router, prefix="/v1/payments", tags=["payments"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    stores = await get_stores(settings)
    http = httpx.AsyncClient(timeout=settings.gateway_timeout_seconds)
    app.state.stores = stores
    app.state.http = http
    app.state.controller = ReconciliationController(stores, build_gateways(settings, http), settings=settings)
    log.info("startup", msg="Stores ready", store_backend=settings.store_backend)


@app.on_event("shutdown")
async def shutdown():
    await app.state.http.aclose()
    await app.state.stores.close()


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
