"""Application entry point for the DISCOM dashboard service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from loguru import logger

from discom_dashboard.api.routes.dashboard import router as dashboard_router
from discom_dashboard.api.routes.health import router as health_router
from discom_dashboard.core.config import settings
from discom_dashboard.core.logging import setup_logging
from discom_dashboard.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from discom_dashboard.core.store import close_redis_client, get_redis_client
from discom_dashboard.services.api_client import DashboardApiClient
from discom_dashboard.services.session import SessionRegistry

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = DashboardApiClient()
    app.state.registry = SessionRegistry(client)
    await get_redis_client()
    logger.bind(upstream=settings.api_base_url).info("dashboard_service_started")
    try:
        yield
    finally:
        await app.state.registry.aclose()
        await client.aclose()
        await close_redis_client()


app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.include_router(health_router, prefix="/api")
app.include_router(dashboard_router, prefix="/api")
