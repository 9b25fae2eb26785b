"""
FastAPI application entry point.
Initializes the FastAPI app, configures logging, and includes the webhook,
POS connection and settlement routes.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from barter_pos.config import settings
from barter_pos.dependencies import AppContext, build_context
from barter_pos.routers import oauth, transactions, webhooks
from barter_pos.utils.logger import configure_logging

SERVICE_NAME = "Barter POS Settlement Service"
SERVICE_VERSION = "1.0.0"

# Configure logging first
configure_logging(settings)
logger = structlog.get_logger()


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        context: Prepared application context; built from settings at startup when omitted
    """
    app = FastAPI(
        title=SERVICE_NAME,
        description="POS webhook ingestion, barter split settlement and outbound order sync",
        version=SERVICE_VERSION,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks.router)  # Inbound provider webhooks
    app.include_router(oauth.router)  # OAuth and integration management
    app.include_router(transactions.router)  # Outbound sync and checkout

    @app.on_event("startup")
    async def startup_event():
        """Application startup event."""
        if app.state.context is None:
            app.state.context = build_context(settings)
        logger.info(
            "Barter POS settlement service started",
            providers=app.state.context.registry.list_available(),
            environment=settings.app_environment,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown event."""
        logger.info("Barter POS settlement service shutting down")
        if app.state.context is not None:
            await app.state.context.aclose()

    @app.get("/")
    async def root(request: Request):
        """Root endpoint - also serves as a simple health check."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "providers": _providers(request),
        }

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        return {"status": "healthy", "providers": _providers(request)}

    @app.get("/healthz")
    async def healthz():
        """Alternative health check endpoint (Kubernetes-style)."""
        return {"status": "ok"}

    return app


def _providers(request: Request) -> list[str]:
    context = request.app.state.context
    return context.registry.list_available() if context else []


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("barter_pos.main:app", host="0.0.0.0", port=8000, reload=True)
