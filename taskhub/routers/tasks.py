from fastapi import APIRouter, Depends, HTTPException, status

from taskhub.dependencies import get_task_service
from taskhub.models import TaskCreate, TaskResponse, TaskUpdate
from taskhub.services.task_service import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate, service: TaskService = Depends(get_task_service)
):
    """Create a new task"""
    return await service.create_task(task_data)


@router.get("/", response_model=list[TaskResponse])
async def get_tasks(service: TaskService = Depends(get_task_service)):
    return await service.list_tasks()


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, service: TaskService = Depends(get_task_service)):
    """Get a specific task by ID"""
    return await service.get_task(task_id)


@router.put("/{task_id}", response_model=TaskResponse)
@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    task_data: TaskUpdate,
    service: TaskService = Depends(get_task_service),
):
    try:
        return await service.update_task(task_id, task_data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, service: TaskService = Depends(get_task_service)):
    """Delete a task"""
    await service.delete_task(task_id)


@router.post("/{task_id}/complete", response_model=TaskResponse)
async def mark_task_complete(
    task_id: str, service: TaskService = Depends(get_task_service)
):
    """Mark a task as completed"""
    return await service.complete_task(task_id)
