"""FastAPI application factory."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from tradyfi.api.v1 import api_router
from tradyfi.config import settings
from tradyfi.services.dispatch import DispatchService
from tradyfi.utils.exceptions import register_exception_handlers


tags_metadata: List[dict[str, str]] = [
    {"name": "push", "description": "Register browser Web Push subscriptions."},
    {"name": "fcm", "description": "Manage Firebase Cloud Messaging tokens, topics and sends."},
    {"name": "visitors", "description": "Alert traders when users visit their portal."},
    {"name": "chat", "description": "Chat messages with push delivery to the other participant."},
]


def create_app(dispatch_service: Optional[DispatchService] = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Provider clients are built on startup unless a dispatcher is supplied.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = dispatch_service is None
        app.state.dispatch_service = dispatch_service or DispatchService.from_settings(settings)
        logger.info(
            "Notification dispatcher ready",
            fcm=settings.firebase_configured,
            webpush=settings.webpush_configured,
        )
        try:
            yield
        finally:
            if owned:
                await app.state.dispatch_service.aclose()
            app.state.dispatch_service = None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Push, FCM, visitor alert and chat notification delivery for Tradyfi traders.",
        version="0.1.0",
        openapi_tags=tags_metadata,
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors(), "message": "Validation failed"},
        )

    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
