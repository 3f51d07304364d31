#app/schemas/task.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any
from datetime import datetime

class UserBrief(BaseModel):
    """
    UserBrief — денормализованная информация о пользователе для списков задач.
    """
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None

class TaskCreate(BaseModel):
    """
    TaskCreate — создание задачи. Значения статуса/приоритета/даты проверяются в CRUD.
    """
    title: str = Field(..., examples=["Fix bug"], description="Название задачи")
    description: Optional[str] = Field(None, description="Описание задачи")
    status: Optional[str] = Field("open", examples=["open"], description="open, in_progress, done, archived, stuck, testing")
    priority: Optional[str] = Field("medium", examples=["medium"], description="low, medium, high")
    category: Optional[str] = Field(None, description="Категория")
    due_date: Optional[str] = Field(None, examples=["2025-12-31T10:00:00Z"], description="Дедлайн (ISO-8601)")
    assignees: Optional[List[str]] = Field(None, description="UUID (или другие идентификаторы) исполнителей")
    assigneesEmails: Optional[List[str]] = Field(None, description="Email исполнителей (неизвестные игнорируются)")
    tags: Optional[List[str]] = Field(None, description="Теги")
    checklist: Optional[Any] = Field(None, description="Чек-лист (произвольный JSON)")
    created_by: Optional[str] = Field(None, description="UUID, email или firebase_uid автора")
    parent_task_id: Optional[str] = Field(None, description="ID родительской задачи")
    estimated_hours: Optional[float] = Field(None, description="Оценка в часах")

class TaskUpdate(BaseModel):
    """
    TaskUpdate — частичное обновление, применяются только переданные поля.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    due_date: Optional[str] = None
    assignees: Optional[List[str]] = None
    assigneesEmails: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    checklist: Optional[Any] = None
    parent_task_id: Optional[str] = None
    estimated_hours: Optional[float] = None
    updated_by: Optional[str] = Field(None, description="Кто меняет исполнителей (по умолчанию автор задачи)")

class TaskRead(BaseModel):
    """
    TaskRead — задача в ответе API.
    """
    id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    category: Optional[str] = None
    due_date: Optional[datetime] = None
    assignees: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    checklist: Optional[Any] = None
    created_by: Optional[str] = None
    parent_task_id: Optional[str] = None
    estimated_hours: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class TaskDetail(TaskRead):
    """
    TaskDetail — задача с автором, исполнителями, числом сабтасков и фактическими часами.
    """
    creator: Optional[UserBrief] = None
    assignees_info: List[UserBrief] = Field(default_factory=list)
    subtask_count: int = 0
    actual_hours: Optional[float] = None

class TaskTreeNode(TaskRead):
    """
    TaskTreeNode — узел дерева сабтасков: уровень (корень = 0) и путь id от корня.
    """
    level: int
    path: List[str]
