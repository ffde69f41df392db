import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from taskhub.cache.client import KeyValueCache
from taskhub.cache.layer import ReadThroughCache
from taskhub.core.config import Settings, get_settings
from taskhub.core.errors import NotFoundError
from taskhub.core.logging import configure_logging
from taskhub.database import build_engine, build_sessionmaker, create_db_and_tables
from taskhub.events.publisher import EventPublisher
from taskhub.routers import tasks
from taskhub.services.write_path import WriteInvalidationPath

logger = logging.getLogger(__name__)


def init_state(
    app: FastAPI,
    settings: Settings,
    kv: KeyValueCache,
    publisher: EventPublisher,
    sessionmaker,
) -> None:
    """Attach the process-wide resource handles to the app."""
    app.state.settings = settings
    app.state.kv = kv
    app.state.publisher = publisher
    app.state.sessionmaker = sessionmaker
    app.state.read_cache = ReadThroughCache.from_settings(kv, settings)
    app.state.write_path = WriteInvalidationPath(
        kv,
        publisher,
        collection_key=settings.tasks_cache_key,
        channel=settings.events_channel,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url)
    await create_db_and_tables(engine)

    kv = KeyValueCache.from_settings(settings)
    if await kv.ping():
        logger.info("Redis cache connection established")
    else:
        logger.warning("Redis cache unreachable, serving reads from the database")

    publisher = EventPublisher.from_settings(settings)
    init_state(app, settings, kv, publisher, build_sessionmaker(engine))
    logger.info("Task service started")

    yield

    await publisher.close()
    await kv.close()
    await engine.dispose()
    logger.info("Task service stopped")


async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)}
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Task Service",
        description="Task CRUD with a read-through Redis cache and change events",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.include_router(tasks.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Task Service",
            "docs": "/docs",
            "version": "1.0.0",
        }

    @app.get("/health")
    async def health_check(request: Request):
        return {"status": "healthy", "cache": await request.app.state.kv.ping()}

    return app


app = create_app()


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().task_service_port)
