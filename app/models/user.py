#app/models/user.py
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Index, Uuid, func
)
from app.models.base import Base, JsonType

class UserProfile(Base):
    """
    UserProfile — профиль пользователя из общего каталога (синхронизируется из Firebase).
    Здесь используется только для резолва идентификаторов, иерархии менеджеров и отображения.
    """
    __tablename__ = "user_profiles"

    id: str = Column(Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: str = Column(String(255), unique=True, nullable=False, doc="Email")
    name: str = Column(String(255), nullable=False, default="", doc="Отображаемое имя")
    avatar_url: str = Column(String(1024), nullable=True, doc="URL аватара")
    firebase_uid: str = Column(String(128), nullable=True, unique=True, doc="UID во Firebase Auth")
    google_id: str = Column(String(128), nullable=True, doc="Google ID (не участвует в резолве)")
    parent_manager_id: str = Column(
        Uuid(as_uuid=False), ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True, doc="Непосредственный менеджер"
    )
    roles: list = Column(JsonType, nullable=False, default=lambda: ["user"], doc="Роли (['user', 'admin', 'super_admin'])")
    is_active: bool = Column(Boolean, default=True, nullable=False, doc="Аккаунт активен")
    created_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_user_profiles_parent_manager", "parent_manager_id"),
    )

    def __repr__(self):
        return f"<UserProfile(id={self.id}, email='{self.email}', parent_manager_id={self.parent_manager_id})>"
