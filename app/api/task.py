#app/api/task.py
import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from app.schemas.task import TaskCreate, TaskUpdate
from app.schemas.time_log import HoursReport, LogHoursRequest, TimeLogRead
from app.schemas.response import ok
from app.crud.task import (
    create_task,
    get_task_detail,
    list_tasks,
    update_task,
    delete_task,
    get_subtasks,
    get_task_tree,
)
from app.crud.time_log import log_hours, hours_report
from app.core.cache import RedisCache
from app.dependencies import get_db, get_cache

logger = logging.getLogger("Karma.TasksAPI")

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])

# Ошибки домена (BaseAppException) превращаются в {success: false} в app/main.py

@router.get("")
def list_all_tasks(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    assignee: Optional[str] = Query(None, description="UUID, email или firebase_uid"),
    q: Optional[str] = Query(None, description="Поиск по названию и описанию"),
    created_by: Optional[str] = Query(None),
    parent_task_id: Optional[str] = Query(None),
    limit: Optional[str] = Query(None, description="1..500, по умолчанию 100"),
    offset: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Список задач с фильтрами, поиском и пагинацией.
    """
    filters = {
        "status": status,
        "priority": priority,
        "category": category,
        "assignee": assignee,
        "q": q,
        "created_by": created_by,
        "parent_task_id": parent_task_id,
    }
    return ok(list_tasks(db, filters=filters, limit=limit, offset=offset, cache=cache))

@router.get("/hours-report/{manager_id}")
def get_hours_report(
    manager_id: str,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Часы менеджера и всех его подчинённых.
    """
    report = hours_report(db, manager_id, cache=cache)
    return ok(HoursReport(**report).model_dump(mode="json"))

@router.get("/{task_id}")
def get_one_task(
    task_id: str,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Получить задачу по ID.
    """
    return ok(get_task_detail(db, task_id, cache=cache))

@router.get("/{task_id}/subtasks")
def list_subtasks(task_id: str, db: Session = Depends(get_db)):
    return ok(get_subtasks(db, task_id))

@router.get("/{task_id}/tree")
def get_tree(task_id: str, db: Session = Depends(get_db)):
    """
    Дерево сабтасков (до 10 уровней).
    """
    return ok(get_task_tree(db, task_id))

@router.post("")
def create_new_task(
    data: TaskCreate,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Создать новую задачу.
    """
    task = create_task(db, data.model_dump(), cache=cache)
    return ok(get_task_detail(db, task.id))

@router.patch("/{task_id}")
def update_one_task(
    task_id: str,
    data: TaskUpdate,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Обновить задачу (только переданные поля).
    """
    task = update_task(db, task_id, data.model_dump(exclude_unset=True), cache=cache)
    return ok(get_task_detail(db, task.id))

@router.delete("/{task_id}")
def delete_one_task(
    task_id: str,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Удалить задачу.
    """
    delete_task(db, task_id, cache=cache)
    return ok(message="Task deleted")

@router.post("/{task_id}/log-hours")
def log_task_hours(
    task_id: str,
    data: LogHoursRequest,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Отчитаться о фактических часах (повторный отчёт заменяет значение).
    """
    entry = log_hours(db, task_id, data.user_id, data.hours, cache=cache)
    return ok(TimeLogRead.model_validate(entry).model_dump(mode="json"))
