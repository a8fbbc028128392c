"""
Storefront Checkout Backend Application.

FastAPI application serving checkout pricing and
delivery validation for the storefront.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from loguru import logger

from app.api.v1 import router as api_v1_router
from app.core.config import settings
from app.modules.checkout.delivery import get_delivery_client
from app.modules.checkout.handoff import get_order_handoff
from app.modules.checkout.sessions import get_checkout_sessions


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting Storefront Checkout Backend...")

    sessions = await get_checkout_sessions()
    await sessions.start()
    logger.info(f"Delivery service: {settings.delivery_api_url}")

    logger.info("Storefront Checkout Backend started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Storefront Checkout Backend...")

    await sessions.stop()

    # Stop pending estimates before closing their transport
    sessions.close_all()

    delivery = await get_delivery_client()
    await delivery.disconnect()

    handoff = await get_order_handoff()
    await handoff.disconnect()

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Storefront Checkout Backend

    ## Features

    - **Live delivery estimates**: Debounced while the address is typed
    - **Delivery zone validation**: Authoritative check before payment
    - **Pricing**: Delivery cost, tax and totals
    - **Payment handoff**: Priced orders passed to the payment step

    ## Documentation

    - [API Docs](/docs) - Interactive Swagger UI
    - [ReDoc](/redoc) - Alternative documentation
    """,
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


@app.get("/health", tags=["System"])
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


@app.get("/", tags=["System"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "api": settings.api_v1_prefix,
    }
