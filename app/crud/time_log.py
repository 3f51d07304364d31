# app/crud/time_log.py
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.core.cache import RedisCache, invalidate_task_caches
from app.core.exceptions import TaskNotFound, TimeLogValidationError
from app.core.permissions import get_subordinate_ids
from app.crud.user import is_valid_uuid, resolve_user_id
from app.database import table_exists
from app.models.task import Task
from app.models.time_log import TaskTimeLog
from app.models.user import UserProfile

logger = logging.getLogger("Karma.TimeLogs")


def time_logs_provisioned(db: Session) -> bool:
    """
    Есть ли таблица task_time_logs в этой инсталляции.
    """
    # соединение текущей транзакции: отдельное соединение из пула может сбросить её
    return table_exists(db.connection(), TaskTimeLog.__tablename__)


def has_time_logs(db: Session, task_id: str) -> bool:
    found = db.execute(
        select(TaskTimeLog.id).where(TaskTimeLog.task_id == task_id).limit(1)
    ).scalar_one_or_none()
    return found is not None


def _parse_hours(hours: Any) -> Decimal:
    try:
        value = Decimal(str(hours))
    except (InvalidOperation, ValueError, TypeError):
        raise TimeLogValidationError("hours must be a number")
    if not value.is_finite() or value <= 0:
        raise TimeLogValidationError("hours must be greater than 0")
    return value.quantize(Decimal("0.01"))


def _insert_for(db: Session):
    """
    INSERT с поддержкой ON CONFLICT для диалекта текущей БД (PostgreSQL или SQLite).
    """
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


def log_hours(
    db: Session,
    task_id: str,
    user_identifier: str,
    hours: Any,
    cache: Optional[RedisCache] = None,
) -> TaskTimeLog:
    """
    Записать фактические часы пользователя по задаче.
    Повторный отчёт того же пользователя заменяет значение (не суммирует).
    """
    actual_hours = _parse_hours(hours)
    if not time_logs_provisioned(db):
        raise TimeLogValidationError("Time logging is not enabled in this deployment")
    if not is_valid_uuid(task_id) or db.get(Task, task_id.lower()) is None:
        raise TaskNotFound()
    task_id = task_id.lower()
    user_id = resolve_user_id(db, user_identifier, cache=cache, throw_on_not_found=True)

    now = datetime.now(timezone.utc)
    upsert = _insert_for(db)(TaskTimeLog).values(
        id=str(uuid.uuid4()),
        task_id=task_id,
        user_id=user_id,
        actual_hours=actual_hours,
        logged_at=now,
    )
    upsert = upsert.on_conflict_do_update(
        index_elements=["task_id", "user_id"],
        set_={"actual_hours": upsert.excluded.actual_hours, "logged_at": upsert.excluded.logged_at},
    )

    try:
        db.execute(upsert)
        db.commit()
        entry = db.execute(
            select(TaskTimeLog)
            .where(TaskTimeLog.task_id == task_id, TaskTimeLog.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to log hours for task {task_id}, user {user_id}: {e}")
        raise

    logger.info(f"Logged {actual_hours}h for task {task_id} by user {user_id}")
    if cache is not None:
        invalidate_task_caches(cache, task_id)
    return entry


def hours_report(db: Session, manager_identifier: str, cache: Optional[RedisCache] = None) -> Dict[str, Any]:
    """
    Отчёт по часам: менеджер и все его подчинённые (по цепочке parent_manager_id).
    """
    manager_id = resolve_user_id(db, manager_identifier, cache=cache, throw_on_not_found=True)
    user_ids = [manager_id] + get_subordinate_ids(db, manager_id)

    users = {
        row.id: row
        for row in db.execute(
            select(UserProfile.id, UserProfile.name, UserProfile.email).where(UserProfile.id.in_(user_ids))
        ).all()
    }

    report = {
        "manager_id": manager_id,
        "time_logs_enabled": time_logs_provisioned(db),
        "users": [],
        "total_hours": 0.0,
    }
    if not report["time_logs_enabled"]:
        return report

    rows = db.execute(
        select(TaskTimeLog.user_id, TaskTimeLog.task_id, Task.title, TaskTimeLog.actual_hours, TaskTimeLog.logged_at)
        .join(Task, Task.id == TaskTimeLog.task_id)
        .where(TaskTimeLog.user_id.in_(user_ids))
        .order_by(TaskTimeLog.logged_at.desc())
    ).all()

    per_user: Dict[str, dict] = {}
    for uid in user_ids:
        profile = users.get(uid)
        per_user[uid] = {
            "user_id": uid,
            "name": profile.name if profile else None,
            "email": profile.email if profile else None,
            "total_hours": 0.0,
            "tasks_count": 0,
            "entries": [],
        }
    for row in rows:
        bucket = per_user[row.user_id]
        hours = float(row.actual_hours)
        bucket["entries"].append({
            "task_id": row.task_id,
            "title": row.title,
            "hours": hours,
            "logged_at": row.logged_at,
        })
        bucket["total_hours"] += hours
        bucket["tasks_count"] += 1

    report["users"] = sorted(per_user.values(), key=lambda u: (-u["total_hours"], u["email"] or ""))
    report["total_hours"] = round(sum(u["total_hours"] for u in report["users"]), 2)
    for u in report["users"]:
        u["total_hours"] = round(u["total_hours"], 2)
    return report

