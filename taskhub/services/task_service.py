from datetime import datetime, timezone

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.cache.layer import ReadThroughCache
from taskhub.core.errors import NotFoundError
from taskhub.events.schemas import ChangeEvent
from taskhub.models import Task, TaskCreate, TaskResponse, TaskStatus, TaskUpdate
from taskhub.services.write_path import WriteInvalidationPath


class TaskService:
    """
    Task operations against the database, with the collection listing served
    through the read-through cache and every mutation routed through the
    write-invalidation path.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: ReadThroughCache,
        write_path: WriteInvalidationPath,
        collection_ttl: int = 60,
    ):
        self.db = db
        self.cache = cache
        self.write_path = write_path
        self.collection_ttl = collection_ttl

    async def _load_all_tasks(self) -> list[dict]:
        result = await self.db.exec(select(Task).order_by(Task.created_at))
        return [
            TaskResponse.model_validate(task).model_dump(mode="json")
            for task in result.all()
        ]

    async def list_tasks(self) -> list[dict]:
        return await self.cache.fetch(
            self.write_path.collection_key, self._load_all_tasks, self.collection_ttl
        )

    async def get_task(self, task_id: str) -> Task:
        task = await self.db.get(Task, task_id)
        if not task:
            raise NotFoundError("task", task_id)
        return task

    async def create_task(self, task_data: TaskCreate) -> Task:
        async def insert():
            task = Task.model_validate(task_data)
            self.db.add(task)
            await self.db.commit()
            await self.db.refresh(task)
            return task

        outcome = await self.write_path.execute(insert, ChangeEvent.created)
        return outcome.value

    async def update_task(self, task_id: str, task_data: TaskUpdate) -> Task:
        update_data = task_data.model_dump(exclude_unset=True)
        if not update_data:
            raise ValueError("No fields to update")

        async def update():
            task = await self.get_task(task_id)
            task.sqlmodel_update(update_data)
            task.updated_at = datetime.now(timezone.utc)
            await self.db.commit()
            await self.db.refresh(task)
            return task

        outcome = await self.write_path.execute(update, ChangeEvent.updated)
        return outcome.value

    async def complete_task(self, task_id: str) -> Task:
        return await self.update_task(task_id, TaskUpdate(status=TaskStatus.COMPLETED))

    async def delete_task(self, task_id: str) -> None:
        async def delete():
            task = await self.get_task(task_id)
            await self.db.delete(task)
            await self.db.commit()
            return task_id

        await self.write_path.execute(delete, ChangeEvent.deleted)
