"""ASGI application: ``uvicorn examcore.main:app``."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from examcore.api.v1.router import api_router
from examcore.common.request_id import RequestIDMiddleware
from examcore.core.config import settings
from examcore.core.errors import register_exception_handlers
from examcore.core.logging import get_logger, setup_logging
from examcore.db.base import Base
from examcore.db.engine import engine

VERSION = "0.1.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.ENV in ("dev", "test"):
        # Deployed environments get their schema from migrations
        Base.metadata.create_all(bind=engine)
    logger.info("service_started", extra={"version": VERSION, "env": settings.ENV})
    yield


def create_app() -> FastAPI:
    public_docs = settings.ENV != "prod"
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=VERSION,
        description="Study and timed test sessions over a question bank",
        openapi_url="/openapi.json" if public_docs else None,
        docs_url="/docs" if public_docs else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # Last added runs first: CORS wraps request-id
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": settings.PROJECT_NAME,
            "version": VERSION,
            "api_prefix": settings.API_PREFIX,
            "docs_url": app.docs_url,
        }

    return app


app = create_app()
