"""
Main FastAPI application for the marketplace settlement service.
Serves payment webhooks, public download and invoice links, health and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import health, webhooks, downloads, invoices
from app.utils.metrics import router as metrics_router

configure_logging()

app = FastAPI(
    title="Marketplace Settlement API",
    description="Payment webhooks, settlement, downloads and invoices",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = [settings.platform_url]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(webhooks.router)
app.include_router(downloads.router)
app.include_router(invoices.router)
app.include_router(metrics_router)
