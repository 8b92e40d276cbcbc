# fleet_integrity/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from fleet_integrity.routers import alerts, drivers, health, integrity, records, sequences
from fleet_integrity.database import create_tables
from fleet_integrity.config import settings
from fleet_integrity.services.scan_service import start_periodic_scan
from fleet_integrity.utils.logger import get_logger
import time
import asyncio

logger = get_logger(__name__)

app = FastAPI(
    title="Fleet Integrity Engine API",
    description="Trip sequence integrity, anomaly alerts and driver insights for fleet operations.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (allow the fleet dashboard to call the API) ────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to dashboard origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    open_paths = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(alerts.router,    prefix="/api/v1", tags=["🔔 Alerts"])
app.include_router(sequences.router, prefix="/api/v1", tags=["🔢 Trip Sequences"])
app.include_router(drivers.router,   prefix="/api/v1", tags=["🧑‍✈️ Driver Insights"])
app.include_router(integrity.router, prefix="/api/v1", tags=["🧾 Trip Integrity"])
app.include_router(records.router,   prefix="/api/v1", tags=["✏️  Record Hooks"])
app.include_router(health.router,    prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Fleet Integrity Engine starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")

    if settings.SCAN_INTERVAL_MINUTES > 0:
        app.state.scan_task = asyncio.create_task(start_periodic_scan(settings.SCAN_INTERVAL_MINUTES))
    else:
        logger.info("⏱  Periodic alert scan disabled — use POST /api/v1/alerts/scan")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Fleet Integrity Engine shutting down...")
    scan_task = getattr(app.state, "scan_task", None)
    if scan_task is not None:
        scan_task.cancel()
