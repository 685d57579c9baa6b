"""FastAPI application."""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import ai, telegram

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="Kisan Mitra Bot",
    version="1.0.0",
    description="Telegram bot gateway, account linking and AI assistant for Kisan Mitra",
)

# Production safety checks (fail closed on insecure webhook / CORS config).
if settings.ENV.lower() == "production" and not settings.TELEGRAM_WEBHOOK_SECRET:
    raise RuntimeError("TELEGRAM_WEBHOOK_SECRET must be set in production.")
if settings.ENV.lower() == "production" and any(origin == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")

if not settings.TELEGRAM_BOT_TOKEN:
    logger.warning("⚠️ TELEGRAM_BOT_TOKEN not set: bot replies are disabled")
if not settings.GEMINI_API_KEY:
    logger.warning("⚠️ GEMINI_API_KEY not set: AI answers fall back to canned text")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Domain errors -> RFC 7807
app.add_exception_handler(DomainError, domain_error_handler)

# Include routers
app.include_router(telegram.router, prefix="/api/v1")
app.include_router(ai.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
        "telegram": "configured" if settings.TELEGRAM_BOT_TOKEN else "unconfigured",
        "ai": "configured" if settings.GEMINI_API_KEY else "unconfigured",
        "link_store": settings.LINK_STORE_BACKEND,
        "server_time": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Kisan Mitra Bot API",
        "version": "1.0.0",
        "docs": "/docs"
    }
