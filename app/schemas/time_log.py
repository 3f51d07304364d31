#app/schemas/time_log.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

class LogHoursRequest(BaseModel):
    """
    LogHoursRequest — отчёт о фактических часах по задаче.
    """
    hours: float = Field(..., examples=[2.5], description="Фактические часы (> 0)")
    user_id: str = Field(..., description="UUID, email или firebase_uid пользователя")

class TimeLogRead(BaseModel):
    id: str
    task_id: str
    user_id: str
    actual_hours: float
    logged_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class HoursEntry(BaseModel):
    task_id: str
    title: Optional[str] = None
    hours: float
    logged_at: Optional[datetime] = None

class UserHours(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    total_hours: float = 0
    tasks_count: int = 0
    entries: List[HoursEntry] = Field(default_factory=list)

class HoursReport(BaseModel):
    """
    HoursReport — часы менеджера и всех его подчинённых.
    """
    manager_id: str
    time_logs_enabled: bool
    users: List[UserHours] = Field(default_factory=list)
    total_hours: float = 0
