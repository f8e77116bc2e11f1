import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, SessionLocal, engine
from .logging import RequestIdMiddleware, setup_logging
from .auth.router import router as auth_router
from .routes.calendar import router as calendar_router
from .routes.dashboard import router as dashboard_router
from .routes.functions import router as functions_router
from .routes.notifications import router as notifications_router
from .routes.sectors import router as sectors_router
from .routes.tasks import router as tasks_router
from .routes.users import router as users_router
from .services.scheduler import ReminderScheduler


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(functions_router)
    app.include_router(users_router)
    app.include_router(sectors_router)
    app.include_router(tasks_router)
    app.include_router(dashboard_router)
    app.include_router(calendar_router)
    app.include_router(notifications_router)

    # Metrics
    if settings.enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "app": settings.app_name}

    scheduler = ReminderScheduler(
        SessionLocal,
        initial_delay=settings.reminder_initial_delay_seconds,
        interval=settings.reminder_interval_seconds,
    )
    app.state.reminder_scheduler = scheduler

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("tables_verified", tables=len(Base.metadata.tables))
        if settings.reminder_enabled:
            scheduler.start()

    @app.on_event("shutdown")
    def _shutdown():
        scheduler.stop()

    return app


app = create_app()
