from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from onboardsign.api.routes import health, signatures, webhooks
from onboardsign.core.config import settings
from onboardsign.core.logging_setup import logger
from onboardsign.db.session import init_db


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
    init_db()
    if not settings.signature_webhook_secret:
        logger.warning("Signature webhook secret is not configured; every callback will be rejected")
    yield


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    origins: list[str] = []
    for item in [*settings.allowed_origins, settings.resolved_public_app_url()]:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)

    logger.info(f"CORS configured with origins: {origins}")

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health.router, prefix="/health")
    application.include_router(signatures.router, prefix=settings.api_v1_str)
    application.include_router(webhooks.router, prefix="")

    @application.get("/")
    def root():
        return {"service": settings.project_name}

    return application


app = create_app()
