# event_backup/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from event_backup.routers import alarms, videos, summary, health
from event_backup.config import settings
from event_backup.utils import responses
from event_backup.utils.logger import get_logger
import time

logger = get_logger(__name__)

API_PREFIX = "/api/v1"

app = FastAPI(
    title="UniFi Protect Event Backup API",
    description="Receives Protect alarm webhooks, backs up event data and video clips to S3.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS ─────────────────────────────────────────────────────────────────────
# Registered first so it sits inside CORSMiddleware: browser preflights are
# answered there, any other OPTIONS request lands here.
@app.middleware("http")
async def answer_options(request: Request, call_next):
    if request.method == "OPTIONS":
        return responses.cors_preflight().to_fastapi()
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for the retrieval endpoints.
    The Protect webhook and health check are excluded — Protect cannot send keys.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {
            f"{API_PREFIX}/alarmevent", f"{API_PREFIX}/health",
            "/docs", "/redoc", "/openapi.json",
        }
        if request.method == "OPTIONS" or request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"msg": "Invalid or missing API key"},
                headers=responses.DEFAULT_HEADERS,
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


# ── Global Exception Handlers ────────────────────────────────────────────────
@app.exception_handler(404)
async def not_found_handler(request: Request, exc: Exception):
    return responses.route_not_found(f"{request.method} {request.url.path}").to_fastapi()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return responses.server_error(str(exc)).to_fastapi()


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(alarms.router,  prefix=API_PREFIX, tags=["📡 Alarm Webhook"])
app.include_router(videos.router,  prefix=API_PREFIX, tags=["🎬 Videos"])
app.include_router(summary.router, prefix=API_PREFIX, tags=["📊 Summary"])
app.include_router(health.router,  prefix=API_PREFIX, tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Protect Event Backup starting up...")
    logger.info(f"🪣 Storage bucket: {settings.STORAGE_BUCKET or 'NOT CONFIGURED'}")
    logger.info(f"📨 Processing queue: {settings.ALARM_PROCESSING_QUEUE_URL or 'NOT CONFIGURED'}")
    logger.info(f"⏱  Processing delay: {settings.max_queue_delay}s")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Protect Event Backup shutting down...")
