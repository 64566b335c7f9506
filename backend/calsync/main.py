"""FastAPI application entrypoint.

Responsibilities kept minimal:
  * App / lifespan initialization (calendar sync service start/stop)
  * Router registration (calendar)
  * Cross-cutting concerns: metrics middleware & exception handlers
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional
from fastapi import FastAPI, Request, Response
try:  # Optional OpenTelemetry
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    _otel_available = True
except ImportError:  # pragma: no cover
    _otel_available = False
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import os

from .api.calendar import router as calendar_router
from .config import Settings
from .errors import BaseAppException, InternalServerError
from .logging_setup import setup_logging
from .services.calendar_sync_service import CalendarSyncService

logger = logging.getLogger(__name__)

# --- Metrics setup ---
REQUEST_COUNT = Counter(
    "calsync_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "calsync_request_latency_seconds", "Latency of HTTP requests", ["method", "path"]
)


def _init_tracer():
    if not (_otel_available and os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")):
        return None
    resource = Resource.create({"service.name": "calsync-backend"})  # pragma: no cover
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def create_app(settings: Optional[Settings] = None, sync_service: Optional[CalendarSyncService] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    tracer = _init_tracer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Acquire the sync service on startup; always stop it (timer + cache connection) on shutdown."""
        setup_logging(settings.log_level)
        service = sync_service or CalendarSyncService(settings)
        app.state.sync_service = service
        try:
            if settings.sync_autostart:
                service.start()
            yield
        finally:
            service.stop()

    app = FastAPI(title="Calendar Sync API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(calendar_router)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        path_label = request.url.path
        method = request.method
        with REQUEST_LATENCY.labels(method=method, path=path_label).time():
            if tracer:
                with tracer.start_as_current_span(f"HTTP {method} {path_label}"):
                    response: Response = await call_next(request)
            else:
                response: Response = await call_next(request)
        REQUEST_COUNT.labels(method=method, path=path_label, status=str(response.status_code)).inc()
        return response

    @app.get("/metrics")
    def metrics():  # pragma: no cover - external scrape
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(BaseAppException)
    async def app_exception_handler(request: Request, exc: BaseAppException):
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):  # pragma: no cover
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        err = InternalServerError("unexpected error")
        return JSONResponse(
            status_code=err.http_status,
            content={"detail": {"code": err.code, "message": err.message}},
        )

    @app.get("/healthz")
    def health(request: Request):
        health = {"status": "ok"}
        service: Optional[CalendarSyncService] = getattr(request.app.state, "sync_service", None)
        if service is not None:
            health.update(service.health())
        health['tracing'] = 'enabled' if tracer else 'disabled'
        return health

    return app


app = create_app()
