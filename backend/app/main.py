"""
Engagement lifecycle API application.

Wires logging, CORS, error rendering, the notification sink and the four
lifecycle routers (requests, proposals, amendments, stages).
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.exception_handlers import install_exception_handlers
from app.api import amendments, proposals, requests, stages
from app.services.notification_service import LoggingNotificationSink, NotificationSink


def create_app(notification_sink: Optional[NotificationSink] = None) -> FastAPI:
    """
    Build the application.

    Args:
        notification_sink: Channel for post-commit notifications; defaults
            to the logging sink. Tests pass a MockNotificationSink.

    Returns:
        Configured FastAPI application instance
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Client engagement lifecycle API: requests, proposals, signatures, stages and amendments",
        version=settings.VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    )

    install_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.notification_sink = notification_sink or LoggingNotificationSink()

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness probe; does not touch the database."""
        return {"status": "healthy", "version": settings.VERSION}

    @app.get("/", tags=["root"])
    async def root() -> dict:
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": f"{settings.API_V1_PREFIX}/docs",
        }

    for module in (requests, proposals, amendments, stages):
        app.include_router(module.router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
