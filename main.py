"""
PinPrompt API - Main Application Entry Point.

This module initializes and configures the FastAPI application for PinPrompt,
a social feed where people share AI outputs together with the prompts that
produced them. It sets up logging, the data gateway, middleware, and routes.

Key Responsibilities:
- Configure and launch the FastAPI application.
- Build the data gateway (SQL store, auth service, object storage, change
  feed) and the services on top of it.
- Set up middleware for correlation IDs, performance logging and CORS, and
  the handler that renders application errors as JSON.
- Mount the API routers (health, auth, content, messaging) and serve stored
  objects under `/storage`.
- Manage the application's lifecycle with the lifespan context.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from api.auth_endpoints import router as auth_router
from api.dependencies import init_services
from api.endpoints import router
from api.health_router import health_router, monitoring_router
from api.messaging_endpoints import router as messaging_router, websocket_router
from core.auth import AuthService
from core.config import settings
from core.database import async_session, create_db_and_tables, engine
from core.exceptions import PinPromptException
from core.logging_config import get_logger, setup_logging
from core.middleware import (
    CorrelationMiddleware,
    PerformanceMiddleware,
    pinprompt_exception_handler,
)
from providers.sql_gateway import SQLGateway
from providers.storage_provider import LocalStorageProvider


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger = get_logger("api.startup")

    await create_db_and_tables()
    logger.info("Database initialized successfully")

    gateway = SQLGateway(
        async_session,
        auth=AuthService(async_session),
        storage=LocalStorageProvider(settings.storage_dir, settings.public_base_url),
    )
    services = init_services(gateway)
    logger.info("Data gateway and services initialized")

    seeded = await services.model_catalog.seed_defaults()
    if seeded:
        logger.info(f"Generator model catalog seeded with {seeded} models")

    logger.info("Service startup completed")
    yield

    # Cleanup on shutdown
    logger.info("Shutting down PinPrompt API")
    await engine.dispose()
    logger.info("Cleanup completed")


app = FastAPI(
    title="PinPrompt API",
    description="Share AI outputs alongside the prompts that produced them",
    version="1.0.0",
    lifespan=lifespan,
)


# CORS middleware (required for frontend communication)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PerformanceMiddleware)
app.add_middleware(CorrelationMiddleware)

app.add_exception_handler(PinPromptException, pinprompt_exception_handler)

# Include routers - health endpoints first (no authentication required)
app.include_router(health_router)
app.include_router(monitoring_router)
app.include_router(auth_router)
app.include_router(router)
app.include_router(messaging_router)
app.include_router(websocket_router)

# Uploaded outputs and avatars
app.mount("/storage", StaticFiles(directory=settings.storage_dir, check_dir=False), name="storage")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8002, reload=settings.is_development)
