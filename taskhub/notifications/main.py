import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

from taskhub.core.config import get_settings
from taskhub.core.logging import configure_logging
from taskhub.notifications.broadcaster import Broadcaster
from taskhub.notifications.subscriber import EventSubscriber

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    redis = Redis.from_url(
        settings.redis_dsn,
        encoding="utf-8",
        decode_responses=True,
        encoding_errors="replace",
        socket_connect_timeout=5,
        socket_keepalive=True,
    )
    broadcaster = Broadcaster()
    subscriber = EventSubscriber(
        redis,
        broadcaster,
        channel=settings.events_channel,
        event_name=settings.socket_event_name,
    )
    app.state.broadcaster = broadcaster
    app.state.subscriber = subscriber

    await subscriber.start()
    logger.info("Notification service started")

    yield

    await subscriber.stop()
    await redis.aclose()
    logger.info("Notification service stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Notification Service",
        description="Fans task change events out to WebSocket clients",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check(request: Request):
        state = request.app.state
        return {
            "status": "healthy",
            "connections": state.broadcaster.connection_count,
            "subscriber": state.subscriber.state.value,
        }

    @app.websocket("/ws")
    async def task_updates(websocket: WebSocket):
        broadcaster: Broadcaster = websocket.app.state.broadcaster
        connection = await broadcaster.connect(websocket)
        try:
            while True:
                # Clients only listen; reading detects the disconnect
                message = await websocket.receive_text()
                if message == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.disconnect(connection)

    return app


app = create_app()


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().notification_service_port)
