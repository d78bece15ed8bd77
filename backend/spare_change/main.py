import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from spare_change.config import Settings, get_settings
from spare_change.core.container import Container, build_container
from spare_change.database import create_all
from spare_change.errors import SpareChangeError
from spare_change.routers import wallet, proposals, transactions, prices, batches

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Build the API. A prebuilt ``container`` is used as-is and not closed on shutdown."""
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.LOG_LEVEL.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        owned = getattr(app.state, "container", None) is None
        if owned:
            app.state.container = build_container(settings)
        if settings.DATABASE_URL.startswith("sqlite"):
            # No migrations for the local SQLite file
            await create_all(app.state.container.engine)

        scheduler = AsyncIOScheduler()
        if settings.SYNC_INTERVAL_MINUTES > 0:
            scheduler.add_job(
                app.state.container.tracker.sync_all,
                "interval",
                minutes=settings.SYNC_INTERVAL_MINUTES,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            logger.info("Scheduled wallet sync every %d minute(s)", settings.SYNC_INTERVAL_MINUTES)
        logger.info("Spare change API started on %s", settings.network_display_name)
        yield
        if scheduler.running:
            scheduler.shutdown()
        if owned:
            await app.state.container.close()
            app.state.container = None

    app = FastAPI(title="Spare Change API", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SpareChangeError)
    async def spare_change_error_handler(request: Request, exc: SpareChangeError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})

    app.include_router(wallet.router)
    app.include_router(proposals.router)
    app.include_router(transactions.router)
    app.include_router(prices.router)
    app.include_router(batches.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
