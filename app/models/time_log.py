#app/models/time_log.py
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, DateTime, ForeignKey, Numeric, CheckConstraint, UniqueConstraint, Index, Uuid, func
)
from app.models.base import Base

class TaskTimeLog(Base):
    """
    TaskTimeLog — фактические часы пользователя по задаче.
    Одна запись на пару (task_id, user_id): повторный отчёт заменяет значение.
    """
    __tablename__ = "task_time_logs"

    id: str = Column(Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id: str = Column(Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id: str = Column(Uuid(as_uuid=False), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    actual_hours: Decimal = Column(Numeric(10, 2), nullable=False)
    logged_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_time_logs_task_user"),
        CheckConstraint("actual_hours > 0", name="ck_task_time_logs_positive_hours"),
        Index("idx_task_time_logs_task_id", "task_id"),
        Index("idx_task_time_logs_user_id", "user_id"),
        Index("idx_task_time_logs_logged_at", "logged_at"),
    )

    def __repr__(self):
        return f"<TaskTimeLog(task_id={self.task_id}, user_id={self.user_id}, actual_hours={self.actual_hours})>"
