# app/services/notification_service.py
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Literal, Optional, Union

from sqlalchemy.orm import Session

from app.models.notification import Notification
from app.models.post import Post
from app.models.task import Task

logger = logging.getLogger("Karma.Notifications")

EventKind = Literal["new_assignment", "task_completed"]

_TEMPLATES = {
    "new_assignment": {
        "post_type": "task_assignment",
        "notification_title": "משימה חדשה הוקצתה לך",
        "post_title": "קיבלתי משימה חדשה: {title}",
    },
    "task_completed": {
        "post_type": "task_completion",
        "notification_title": "משימה הושלמה",
        "post_title": "המשימה הושלמה: {title}",
    },
}


@dataclass(frozen=True)
class TaskSnapshot:
    id: str
    title: str
    description: Optional[str]
    status: str
    priority: str


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0


def _write_notification(db: Session, recipient_id: str, task: TaskSnapshot, kind: EventKind) -> None:
    template = _TEMPLATES[kind]
    now = datetime.now(timezone.utc)
    db.add(Notification(
        user_id=recipient_id,
        item_id=str(uuid.uuid4()),
        data={
            "type": kind,
            "title": template["notification_title"],
            "body": task.title,
            "task_id": task.id,
            "read": False,
            "timestamp": now.isoformat(),
        },
    ))
    db.commit()


def _write_post(db: Session, recipient_id: str, task: TaskSnapshot, kind: EventKind) -> None:
    template = _TEMPLATES[kind]
    db.add(Post(
        author_id=recipient_id,
        task_id=task.id,
        title=template["post_title"].format(title=task.title)[:255],
        description=task.description,
        post_type=template["post_type"],
        post_metadata={"task_status": task.status, "priority": task.priority},
    ))
    db.commit()


def dispatch_task_event(db: Session, task: Union[Task, TaskSnapshot], recipients: Iterable[str], kind: EventKind) -> DispatchResult:
    """
    Создаёт уведомление и пост для каждого получателя.

    Вызывается только после коммита основной записи. Каждая запись пишется
    отдельно; ошибка логируется и считается, но не пробрасывается и не повторяется.
    """
    # снимок до записей: rollback после ошибки экспайрит объекты сессии
    snapshot = TaskSnapshot(
        id=task.id, title=task.title, description=task.description,
        status=task.status, priority=task.priority,
    )
    result = DispatchResult()
    seen = set()
    for recipient_id in recipients:
        if not recipient_id or recipient_id in seen:
            continue
        seen.add(recipient_id)
        for label, writer in (("notification", _write_notification), ("post", _write_post)):
            try:
                writer(db, recipient_id, snapshot, kind)
                result.sent += 1
            except Exception as e:
                db.rollback()
                result.failed += 1
                logger.warning(
                    f"{label} failed for user {recipient_id}, task {snapshot.id} ({kind}): {e}"
                )
    logger.info(f"Dispatched '{kind}' for task {snapshot.id}: sent={result.sent}, failed={result.failed}")
    return result
