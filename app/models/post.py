#app/models/post.py
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Integer, Index, Uuid, func
from app.models.base import Base, JsonType

POST_TYPES = ("task_assignment", "task_completion")

class Post(Base):
    """
    Post — запись в ленте. Здесь создаются только посты о назначении и завершении задач.
    При удалении задачи пост остаётся (task_id обнуляется).
    """
    __tablename__ = "posts"

    id: str = Column(Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4()))
    author_id: str = Column(Uuid(as_uuid=False), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    task_id: str = Column(Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    title: str = Column(String(255), nullable=False)
    description: str = Column(Text, nullable=True)
    post_type: str = Column(String(50), nullable=False, default="task_completion")
    likes: int = Column(Integer, nullable=False, default=0)
    comments: int = Column(Integer, nullable=False, default=0)
    # "metadata" зарезервировано в declarative, поэтому атрибут называется иначе
    post_metadata: dict = Column("metadata", JsonType, nullable=False, default=lambda: {})
    created_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: datetime = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_posts_author_id", "author_id"),
        Index("idx_posts_task_id", "task_id"),
        Index("idx_posts_post_type", "post_type"),
    )

    def __repr__(self):
        return f"<Post(id={self.id}, post_type={self.post_type}, task_id={self.task_id})>"
