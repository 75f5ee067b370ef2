# raidplan/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from raidplan.config import get_settings
from raidplan.db.session import engine
from raidplan.errors import register_exception_handlers
from raidplan.locks import KeyedLockRegistry
from raidplan.models import Base
from raidplan.routers import availability as availability_router
from raidplan.routers import event_plans as event_plans_router
from raidplan.routers import events as events_router

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("%s started (env=%s)", settings.APP_NAME, settings.ENV)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.locks = KeyedLockRegistry()

    register_exception_handlers(app)

    # Routers
    app.include_router(availability_router.router, prefix="/availability", tags=["availability"])
    app.include_router(events_router.router, prefix="/events", tags=["events"])
    app.include_router(event_plans_router.router, prefix="/event-plans", tags=["event-plans"])

    @app.get("/health")
    def health_check():
        db_status = "ok"
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database health check failed")
            db_status = "error"

        return {
            "status": "ok" if db_status == "ok" else "degraded",
            "app": settings.APP_NAME,
            "env": settings.ENV,
            "database": db_status,
        }

    return app


app = create_app()
