import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bikawo.api.error_handlers import register_exception_handlers
from bikawo.api.middleware import MetricsMiddleware, RequestContextMiddleware
from bikawo.api.routes_admin_refunds import router as admin_refunds_router
from bikawo.api.routes_bookings import router as bookings_router
from bikawo.api.routes_health import router as health_router
from bikawo.api.routes_notifications import router as notifications_router
from bikawo.infra.db import dispose_engine, get_session_factory
from bikawo.infra.logging import configure_logging
from bikawo.infra.metrics import configure_metrics
from bikawo.services import build_app_services
from bikawo.settings import settings

logger = logging.getLogger(__name__)

DEV_CORS_ORIGINS = ["http://localhost:3000"]


def _cors_origins(app_settings) -> list[str]:
    if app_settings.cors_origins:
        return list(app_settings.cors_origins)
    return DEV_CORS_ORIGINS if app_settings.app_env == "dev" else []


def _install_state(app: FastAPI, services, app_settings) -> None:
    """Fill ``app.state`` without overwriting what tests installed beforehand."""
    state = app.state
    state.services = getattr(state, "services", None) or services
    state.app_settings = getattr(state, "app_settings", None) or app_settings
    state.metrics = getattr(state, "metrics", None) or state.services.metrics
    state.db_session_factory = getattr(state, "db_session_factory", None) or get_session_factory()
    state.email_adapter = getattr(state, "email_adapter", None) or state.services.email_adapter
    state.stripe_client = getattr(state, "stripe_client", None) or state.services.stripe_client
    state.refund_policy = getattr(state, "refund_policy", None) or state.services.refund_policy


def create_app(app_settings) -> FastAPI:
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)
    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _install_state(app, services, app_settings)
        logger.info(
            "app_started",
            extra={
                "extra": {
                    "app_env": app_settings.app_env,
                    "email_mode": app_settings.email_mode,
                    "service_timezone": app_settings.service_timezone,
                    "refund_policy": app.state.refund_policy.model_dump(),
                }
            },
        )
        try:
            yield
        finally:
            await dispose_engine()
            logger.info("app_stopped")

    app = FastAPI(title="Bikawo Bookings", version="1.0.0", lifespan=lifespan)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(app_settings),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(bookings_router)
    app.include_router(notifications_router)
    app.include_router(admin_refunds_router)
    if app_settings.metrics_enabled:
        from bikawo.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)
    return app


app = create_app(settings)
