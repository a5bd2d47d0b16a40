import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import Settings, get_settings
from .db.session import get_engine
from .feed_routes import router as feed_router
from .logging_config import configure_logging
from .services import FeedServices, build_services


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.scheduler_enabled:
        services: FeedServices = getattr(app.state, "feed_services", None) or build_services(settings)
        app.state.feed_services = services
        services.scheduler.start()
    else:
        logger.info("Feed scheduler disabled via FEEDCACHE_SCHEDULER_ENABLED")
    try:
        yield
    finally:
        services = getattr(app.state, "feed_services", None)
        if services is not None:
            services.close()
            app.state.feed_services = None


app = FastAPI(title="Feed Cache", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(feed_router)

settings_snapshot = get_settings()
logger.info("Feed cache starting with generator URL: %s", settings_snapshot.generator_url)
logger.info("Database configured: %s", bool(settings_snapshot.database_url))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {"status": "ok", "scheduler_enabled": settings.scheduler_enabled}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.error("Database health check failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"status": "ok", "dialect": engine.dialect.name, "pool": engine.pool.status()}
