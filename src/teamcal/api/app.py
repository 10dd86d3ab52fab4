"""HTTP API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that loads config and opens/closes the database pool
- Health endpoint at GET /api/health
- Feed, availability and record routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teamcal.api.deps import (
    init_config,
    init_store,
    shutdown_store,
    wire_store_dependencies,
)
from teamcal.api.middleware import register_error_handlers
from teamcal.api.routers.availability import router as availability_router
from teamcal.api.routers.feeds import router as feeds_router
from teamcal.api.routers.records import router as records_router
from teamcal.config import TeamcalConfig, load_config
from teamcal.store import PostgresRecordStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle for the database pool.

    On startup: open the pool and wire the record store into every router.
    On shutdown: close the pool.
    """
    config: TeamcalConfig = app.state.config
    db = config.database.build()
    try:
        await db.connect()
        init_store(PostgresRecordStore(db))
        wire_store_dependencies(app)
        logger.info("Record store initialized: db=%s", config.database.name)
    except Exception:
        logger.warning("Failed to connect to database; store endpoints will be unavailable")

    yield

    shutdown_store()
    await db.close()


def create_app(config: TeamcalConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Loaded configuration.  When omitted, ``load_config()`` resolves it from
        ``$TEAMCAL_CONFIG`` or ``./teamcal.toml``.
    """
    if config is None:
        config = load_config()
    init_config(config)

    app = FastAPI(
        title="Teamcal API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.router.redirect_slashes = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(feeds_router)
    app.include_router(availability_router)
    app.include_router(records_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
