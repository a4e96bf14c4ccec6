"""
Vadiler - Backend API
Storefront and admin panel API for the Vadiler flower shop
"""
import logging
import time
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from vadiler.api import admin, auth, categories, coupons, cron, delivery_off_days, orders, payment, settings as settings_api
from vadiler.core.config import settings
from vadiler.core.database import get_db_connection_with_retry
from vadiler.core.middleware import NoIndexMiddleware
from vadiler.core.rate_limit import RateLimitMiddleware

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = settings.get_allowed_origins()

app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION
)

app.add_middleware(NoIndexMiddleware)
app.add_middleware(RateLimitMiddleware)

# Added last so it wraps everything, 429 responses included
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https://.*\.vercel\.app",  # Vercel preview/production deployments
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include API routers
app.include_router(payment.router)
app.include_router(payment.pages_router)
app.include_router(auth.router)
app.include_router(orders.router)
app.include_router(delivery_off_days.router)
app.include_router(categories.router)
app.include_router(coupons.router)
app.include_router(settings_api.router)
app.include_router(admin.router)
app.include_router(cron.router)


@app.get("/")
async def root():
    """Service banner"""
    return {
        "message": "Vadiler API",
        "status": "online",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health")
async def health():
    """Health check endpoint for monitoring - tests database connectivity"""
    start_time = time.time()

    db_status = "unknown"
    db_latency_ms = None
    db_error = None

    try:
        # Minimal retry, fast check
        conn = get_db_connection_with_retry(max_retries=1, retry_delay=0.5)
        cursor = conn.cursor()

        db_start = time.time()
        cursor.execute("SELECT 1")
        cursor.fetchone()
        db_latency_ms = round((time.time() - db_start) * 1000, 2)

        cursor.close()
        conn.close()
        db_status = "connected"
    except Exception as e:
        db_status = "disconnected"
        db_error = str(e)
        logger.warning(f"Health check database error: {e}")

    total_latency_ms = round((time.time() - start_time) * 1000, 2)

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": "vadiler-api",
        "version": settings.API_VERSION,
        "database": {
            "status": db_status,
            "latency_ms": db_latency_ms,
            "error": db_error,
        },
        "total_latency_ms": total_latency_ms
    }
