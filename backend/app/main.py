# backend/app/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.constants import ALLOWED_ORIGINS, API_DESCRIPTION, API_TITLE, API_VERSION
from .errors import register_error_handlers
from .routes import admin_bookings, admin_config, admin_payment_holds, prometheus

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        f"Starting {API_TITLE} v{API_VERSION} ({settings.environment}, "
        f"business timezone {settings.business_timezone})"
    )
    if not settings.stripe_configured:
        logger.warning("Stripe secret key is not set; payment holds will fail until configured")
    yield
    logger.info(f"Shutting down {API_TITLE}")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if settings.environment != "production" else [],
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

# Admin routes; authentication is enforced by the gateway in front of the service
app.include_router(admin_bookings.router)
app.include_router(admin_config.router)
app.include_router(admin_payment_holds.router)
app.include_router(prometheus.router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy", "service": "cleanops-backend"}
