#app/models/notification.py
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Index, func
from app.models.base import Base, JsonType

class Notification(Base):
    """
    Notification — запись в общем key/value хранилище уведомлений.
    Ключ (user_id, item_id), содержимое — в data (title, body, type, read, timestamp).
    """
    __tablename__ = "notifications"

    user_id: str = Column(String(128), primary_key=True, doc="Получатель")
    item_id: str = Column(String(64), primary_key=True, doc="ID уведомления")
    data: dict = Column(JsonType, nullable=False, doc="Содержимое уведомления")
    created_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Notification(user_id={self.user_id}, item_id={self.item_id})>"
