#app/models/task.py
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, String, Text, DateTime, ForeignKey, Numeric, Index, Uuid, func
)
from app.models.base import Base, JsonType

TASK_STATUSES = ("open", "in_progress", "done", "archived", "stuck", "testing")
TASK_PRIORITIES = ("low", "medium", "high")

class Task(Base):
    """
    Task — задача команды. Поддерживает сабтаски (parent_task_id), несколько исполнителей,
    чек-лист и оценку в часах. Удаляется физически (без soft-delete).
    """
    __tablename__ = "tasks"

    id: str = Column(Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: str = Column(String(255), nullable=False, doc="Название задачи")
    description: str = Column(Text, nullable=True, doc="Описание")
    status: str = Column(String(20), nullable=False, default="open", doc="Статус: open, in_progress, done, archived, stuck, testing")
    priority: str = Column(String(10), nullable=False, default="medium", doc="Приоритет: low, medium, high")
    category: str = Column(String(50), nullable=True, doc="Категория")
    due_date: datetime = Column(DateTime(timezone=True), nullable=True, doc="Дедлайн")
    assignees: list = Column(JsonType, nullable=False, default=lambda: [], doc="UUID исполнителей")
    tags: list = Column(JsonType, nullable=False, default=lambda: [], doc="Теги задачи")
    checklist = Column(JsonType, nullable=True, doc="Чек-лист (произвольный JSON)")
    created_by: str = Column(Uuid(as_uuid=False), nullable=False, doc="Автор задачи")
    parent_task_id: str = Column(
        Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True, doc="ID родительской задачи"
    )
    estimated_hours: Decimal = Column(Numeric(10, 2), nullable=True, doc="Оценка в часах")
    created_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, doc="Дата создания")
    updated_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False, doc="Дата изменения")

    __table_args__ = (
        Index("idx_tasks_status", "status"),
        Index("idx_tasks_priority", "priority"),
        Index("idx_tasks_category", "category"),
        Index("idx_tasks_due_date", "due_date"),
        Index("idx_tasks_created_at", "created_at"),
        Index("idx_tasks_parent_task_id", "parent_task_id"),
    )

    def __repr__(self):
        return (
            f"<Task(id={self.id}, title='{self.title}', status={self.status}, "
            f"priority={self.priority}, assignees={self.assignees})>"
        )
