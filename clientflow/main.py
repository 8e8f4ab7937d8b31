import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware, structlog
from .services.pg_errors import BackendError, backend_error_handler, integrity_error_handler
from .services.catalog import seed_service_catalog
from .auth.router import router as auth_router
from .routes.rest import router as rest_router
from .routes.storage import router as storage_router
from .routes.profile import router as profile_router
from .routes.clients import router as clients_router
from .routes.assignments import router as assignments_router
from .routes.credentials import router as credentials_router
from .routes.reports import router as reports_router
from .routes.notifications import router as notifications_router


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "X-Request-ID"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Postgres-style error bodies
    app.add_exception_handler(BackendError, backend_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(rest_router)
    app.include_router(storage_router)
    app.include_router(profile_router)
    app.include_router(clients_router)
    app.include_router(assignments_router)
    app.include_router(credentials_router)
    app.include_router(reports_router)
    app.include_router(notifications_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger()
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if not settings.auto_create_db:
            return
        existing_tables = set(inspect(engine).get_table_names())
        missing = set(Base.metadata.tables.keys()) - existing_tables
        if missing:
            log.info("startup_create_tables", missing=len(missing))
            Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            created = seed_service_catalog(db)
            if created:
                log.info("startup_seeded_services", created=created)
        finally:
            db.close()

    return app


app = create_app()
