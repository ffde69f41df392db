from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.core.config import Settings, get_settings
from taskhub.database import get_db
from taskhub.services.task_service import TaskService


def get_task_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> TaskService:
    state = request.app.state
    return TaskService(
        db,
        cache=state.read_cache,
        write_path=state.write_path,
        collection_ttl=settings.tasks_cache_ttl_seconds,
    )
