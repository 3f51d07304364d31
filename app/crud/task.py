#app/crud/task.py
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import String as SQLString, case, cast, delete, func, literal, null, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from app.core.cache import RedisCache, invalidate_task_caches, task_key, task_list_key
from app.core.exceptions import HoursLogRequired, TaskNotFound, TaskValidationError, UserNotFound
from app.core.permissions import ensure_can_assign
from app.core.settings import settings
from app.crud.time_log import has_time_logs, time_logs_provisioned
from app.crud.user import (
    get_display_info,
    get_super_admin_id,
    is_valid_uuid,
    resolve_emails,
    resolve_user_id,
)
from app.models.post import Post
from app.models.task import TASK_PRIORITIES, TASK_STATUSES, Task
from app.models.time_log import TaskTimeLog
from app.schemas.task import TaskDetail, TaskTreeNode
from app.services.notification_service import dispatch_task_event

logger = logging.getLogger("Karma.Tasks")

MAX_TREE_DEPTH = 10
DEFAULT_LIMIT = 100
MAX_LIMIT = 500

UPDATABLE_FIELDS = (
    "title", "description", "status", "priority", "category", "due_date",
    "assignees", "assigneesEmails", "tags", "checklist", "parent_task_id", "estimated_hours",
)

# --- Валидация ---

def _validate_status(status: Any) -> str:
    if status not in TASK_STATUSES:
        raise TaskValidationError("Invalid status value")
    return status

def _validate_priority(priority: Any) -> str:
    if priority not in TASK_PRIORITIES:
        raise TaskValidationError("Invalid priority value")
    return priority

def _parse_due_date(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise TaskValidationError("Invalid due_date format")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def _parse_estimated_hours(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        hours = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise TaskValidationError("estimated_hours must be a number")
    if not hours.is_finite() or hours < 0:
        raise TaskValidationError("estimated_hours cannot be negative")
    return hours

def _validate_tags(tags: Any) -> List[str]:
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise TaskValidationError("Tags must be a list of strings.")
    return tags

def _validate_category(category: Any) -> Optional[str]:
    if category is None:
        return None
    category = str(category).strip()
    if len(category) > 50:
        raise TaskValidationError("category must be at most 50 characters")
    return category or None

def _validate_title(title: Any) -> str:
    title = title.strip() if isinstance(title, str) else ""
    if not title:
        raise TaskValidationError("title is required and cannot be empty")
    if len(title) > 255:
        raise TaskValidationError("title must be at most 255 characters")
    return title

# --- Исполнители ---

def _dedupe(ids: List[str]) -> List[str]:
    result = []
    for uid in ids:
        if uid and uid not in result:
            result.append(uid)
    return result

def _collect_assignees(db: Session, data: dict, cache: Optional[RedisCache]) -> Optional[List[str]]:
    """
    Исполнители из assigneesEmails (неизвестные email игнорируются) или из assignees.
    None — в payload нет ни одного из полей.
    """
    emails = data.get("assigneesEmails")
    if isinstance(emails, list) and any(isinstance(e, str) and e.strip() for e in emails):
        return resolve_emails(db, emails)

    if "assignees" in data:
        raw = data.get("assignees") or []
        resolved = []
        for identifier in raw:
            user_id = resolve_user_id(db, identifier, cache=cache, throw_on_not_found=False)
            if user_id is None:
                raise TaskValidationError(f"Unknown assignee: {identifier}")
            resolved.append(user_id)
        return _dedupe(resolved)

    if "assigneesEmails" in data:
        return []
    return None

def default_assignees(db: Session, creator_id: str) -> List[str]:
    """
    Исполнители по умолчанию: автор + супер-админ (без дублей).
    """
    return _dedupe([creator_id, get_super_admin_id(db)])

# --- Иерархия задач ---

def has_circular_subtask(db: Session, task_id: str, parent_task_id: str) -> bool:
    """
    True, если parent_task_id является самим task_id или его потомком.
    Идём вверх от нового родителя по цепочке parent_task_id.
    """
    if task_id == parent_task_id:
        return True
    visited = set()
    current = parent_task_id
    while current and current not in visited:
        if current == task_id:
            logger.info(f"Circular subtask detected: task {parent_task_id} is a descendant of task {task_id}")
            return True
        visited.add(current)
        current = db.execute(select(Task.parent_task_id).where(Task.id == current)).scalar_one_or_none()
    return False

def _validate_parent(db: Session, parent_task_id: Any, task_id: Optional[str] = None) -> Optional[str]:
    if parent_task_id is None or parent_task_id == "":
        return None
    if not is_valid_uuid(str(parent_task_id)):
        raise TaskValidationError("Invalid parent_task_id format")
    parent_task_id = str(parent_task_id).lower()
    if db.get(Task, parent_task_id) is None:
        raise TaskValidationError("Parent task not found")
    if task_id and has_circular_subtask(db, task_id, parent_task_id):
        raise TaskValidationError("A task cannot be a subtask of itself or of its own subtasks")
    return parent_task_id

# --- CRUD ---

def create_task(db: Session, data: dict, cache: Optional[RedisCache] = None) -> Task:
    """
    Создать задачу. Проверяет автора и права на назначение ДО вставки,
    так что отказ не оставляет частичных записей.
    """
    title = _validate_title(data.get("title"))
    status = _validate_status(data.get("status") or "open")
    priority = _validate_priority(data.get("priority") or "medium")
    due_date = _parse_due_date(data.get("due_date"))
    estimated_hours = _parse_estimated_hours(data.get("estimated_hours"))
    tags = _validate_tags(data.get("tags"))
    category = _validate_category(data.get("category"))

    created_by = data.get("created_by")
    if not created_by:
        raise TaskValidationError("created_by is required")
    try:
        creator_id = resolve_user_id(db, created_by, cache=cache, throw_on_not_found=True)
    except UserNotFound:
        logger.warning(f"Could not resolve created_by user: {created_by}")
        raise TaskValidationError("created_by is required")

    parent_task_id = _validate_parent(db, data.get("parent_task_id"))

    assignees = _collect_assignees(db, data, cache) or []
    if assignees:
        ensure_can_assign(db, creator_id, assignees)
    else:
        assignees = default_assignees(db, creator_id)

    task = Task(
        title=title,
        description=data.get("description"),
        status=status,
        priority=priority,
        category=category,
        due_date=due_date,
        assignees=assignees,
        tags=tags,
        checklist=data.get("checklist"),
        created_by=creator_id,
        parent_task_id=parent_task_id,
        estimated_hours=estimated_hours,
    )
    db.add(task)
    try:
        db.commit()
        db.refresh(task)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create task: {e}")
        raise
    logger.info(f"Created task {task.id} by {creator_id}, assignees={task.assignees}")

    recipients = [uid for uid in task.assignees if uid != creator_id]
    dispatch_task_event(db, task, recipients, "new_assignment")
    if cache is not None:
        invalidate_task_caches(cache, task.id, task.parent_task_id)
    return task

def get_task(db: Session, task_id: str) -> Task:
    """
    Получить задачу по ID.
    """
    if not is_valid_uuid(task_id):
        raise TaskValidationError("Invalid task ID format")
    task = db.get(Task, task_id.lower())
    if not task:
        raise TaskNotFound()
    return task

def update_task(db: Session, task_id: str, data: dict, cache: Optional[RedisCache] = None) -> Task:
    """
    Частичное обновление задачи: меняются только переданные поля + updated_at.
    """
    task = get_task(db, task_id)
    prior_assignees = list(task.assignees or [])
    prior_status = task.status
    prior_parent = task.parent_task_id

    if not any(field in data for field in UPDATABLE_FIELDS):
        raise TaskValidationError("No valid fields to update")

    changes: Dict[str, Any] = {}
    if "title" in data:
        changes["title"] = _validate_title(data["title"])
    if "description" in data:
        changes["description"] = data["description"]
    if "status" in data:
        changes["status"] = _validate_status(data["status"])
    if "priority" in data:
        changes["priority"] = _validate_priority(data["priority"])
    if "category" in data:
        changes["category"] = _validate_category(data["category"])
    if "due_date" in data:
        changes["due_date"] = _parse_due_date(data["due_date"])
    if "tags" in data:
        changes["tags"] = _validate_tags(data["tags"])
    if "checklist" in data:
        changes["checklist"] = data["checklist"]
    if "estimated_hours" in data:
        changes["estimated_hours"] = _parse_estimated_hours(data["estimated_hours"])
    if "parent_task_id" in data:
        changes["parent_task_id"] = _validate_parent(db, data["parent_task_id"], task_id=task.id)

    moving_to_done = changes.get("status") == "done" and prior_status != "done"
    if moving_to_done and time_logs_provisioned(db) and not has_time_logs(db, task.id):
        logger.info(f"Task {task.id} cannot be marked done without logged hours")
        raise HoursLogRequired()

    new_assignees = _collect_assignees(db, data, cache)
    if new_assignees is not None:
        if new_assignees:
            added = [uid for uid in new_assignees if uid not in prior_assignees]
            if added:
                actor_id = task.created_by
                if data.get("updated_by"):
                    actor_id = resolve_user_id(db, data["updated_by"], cache=cache, throw_on_not_found=True)
                ensure_can_assign(db, actor_id, added)
        else:
            new_assignees = default_assignees(db, task.created_by)
        changes["assignees"] = new_assignees

    for column, value in changes.items():
        setattr(task, column, value)
    task.updated_at = datetime.now(timezone.utc)

    try:
        db.commit()
        db.refresh(task)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update task {task_id}: {e}")
        raise
    logger.info(f"Updated task {task.id} fields: {sorted(changes)}")

    newly_added = [uid for uid in (task.assignees or []) if uid not in prior_assignees]
    if newly_added:
        dispatch_task_event(db, task, newly_added, "new_assignment")
    if moving_to_done:
        dispatch_task_event(db, task, _dedupe([task.created_by] + list(task.assignees or [])), "task_completed")

    if cache is not None:
        invalidate_task_caches(cache, task.id, prior_parent, task.parent_task_id)
    return task

def delete_task(db: Session, task_id: str, cache: Optional[RedisCache] = None) -> None:
    """
    Физически удалить задачу. Сабтаски и посты остаются без ссылки на неё.
    """
    task = get_task(db, task_id)
    parent_id = task.parent_task_id
    # дети теряют parent_task_id: их закэшированные карточки тоже устаревают
    child_ids = db.execute(select(Task.id).where(Task.parent_task_id == task.id)).scalars().all()
    provisioned = time_logs_provisioned(db)
    try:
        db.execute(update(Task).where(Task.parent_task_id == task.id).values(parent_task_id=None))
        db.execute(update(Post).where(Post.task_id == task.id).values(task_id=None))
        if provisioned:
            db.execute(delete(TaskTimeLog).where(TaskTimeLog.task_id == task.id))
        db.delete(task)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete task {task_id}: {e}")
        raise
    logger.info(f"Deleted task {task_id}")
    if cache is not None:
        invalidate_task_caches(cache, task_id.lower(), parent_id, *child_ids)

# --- Чтение ---

def _priority_rank():
    return case((Task.priority == "high", 0), (Task.priority == "medium", 1), else_=2)

def _ordered(stmt):
    return stmt.order_by(_priority_rank().asc(), Task.status.asc(), Task.created_at.desc(), Task.id.asc())

def _enriched_select(db: Session):
    """
    SELECT задачи + число сабтасков + сумма фактических часов (коррелированные подзапросы).
    """
    child = aliased(Task)
    subtask_count = (
        select(func.count(child.id))
        .where(child.parent_task_id == Task.id)
        .correlate(Task)
        .scalar_subquery()
        .label("subtask_count")
    )
    if time_logs_provisioned(db):
        actual_hours = (
            select(func.coalesce(func.sum(TaskTimeLog.actual_hours), 0))
            .where(TaskTimeLog.task_id == Task.id)
            .correlate(Task)
            .scalar_subquery()
            .label("actual_hours")
        )
    else:
        actual_hours = null().label("actual_hours")
    return select(Task, subtask_count, actual_hours)

def task_to_dict(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "category": task.category,
        "due_date": task.due_date,
        "assignees": list(task.assignees or []),
        "tags": list(task.tags or []),
        "checklist": task.checklist,
        "created_by": task.created_by,
        "parent_task_id": task.parent_task_id,
        "estimated_hours": float(task.estimated_hours) if task.estimated_hours is not None else None,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }

def _serialize_rows(db: Session, rows: List[Tuple[Task, int, Any]]) -> List[dict]:
    user_ids = set()
    for task, _, _ in rows:
        user_ids.add(task.created_by)
        user_ids.update(task.assignees or [])
    users = get_display_info(db, user_ids)

    result = []
    for task, subtask_count, actual_hours in rows:
        detail = TaskDetail(
            **task_to_dict(task),
            creator=users.get(task.created_by),
            assignees_info=[users[uid] for uid in (task.assignees or []) if uid in users],
            subtask_count=subtask_count or 0,
            actual_hours=float(actual_hours) if actual_hours is not None else None,
        )
        result.append(detail.model_dump(mode="json"))
    return result

def _clamp(value: Any, default: int, low: int, high: Optional[int] = None) -> int:
    try:
        number = int(str(value)) if value is not None and str(value).strip() != "" else default
    except ValueError:
        number = default
    number = max(number, low)
    return min(number, high) if high is not None else number

def clamp_pagination(limit: Any = None, offset: Any = None) -> Tuple[int, int]:
    """
    limit в [1, 500] (по умолчанию 100), offset >= 0 (по умолчанию 0).
    """
    return _clamp(limit, DEFAULT_LIMIT, 1, MAX_LIMIT), _clamp(offset, 0, 0)

def list_tasks(
    db: Session,
    filters: Optional[dict] = None,
    limit: Any = None,
    offset: Any = None,
    cache: Optional[RedisCache] = None,
) -> List[dict]:
    """
    Список задач с фильтрами, поиском и пагинацией.
    Порядок: приоритет (high → low), статус, новые сначала.
    """
    filters = {k: str(v).strip() for k, v in (filters or {}).items() if v is not None and str(v).strip()}
    limit, offset = clamp_pagination(limit, offset)

    cache_key = task_list_key(filters, limit, offset)
    if cache is not None:
        cached = cache.get_json(cache_key)
        if isinstance(cached, list):
            return cached

    stmt = _enriched_select(db)
    if "status" in filters:
        stmt = stmt.where(Task.status == filters["status"])
    if "priority" in filters:
        stmt = stmt.where(Task.priority == filters["priority"])
    if "category" in filters:
        stmt = stmt.where(Task.category == filters["category"])
    if "q" in filters:
        term = f"%{filters['q']}%"
        stmt = stmt.where(or_(Task.title.ilike(term), Task.description.ilike(term)))
    if "assignee" in filters:
        assignee_id = resolve_user_id(db, filters["assignee"], cache=cache, throw_on_not_found=False)
        if assignee_id is None:
            return []
        stmt = stmt.where(cast(Task.assignees, SQLString).like(f'%"{assignee_id}"%'))
    if "created_by" in filters:
        creator_id = resolve_user_id(db, filters["created_by"], cache=cache, throw_on_not_found=False)
        if creator_id is None:
            return []
        stmt = stmt.where(Task.created_by == creator_id)
    if "parent_task_id" in filters:
        if not is_valid_uuid(filters["parent_task_id"]):
            return []
        stmt = stmt.where(Task.parent_task_id == filters["parent_task_id"].lower())

    rows = db.execute(_ordered(stmt).limit(limit).offset(offset)).all()
    data = _serialize_rows(db, rows)

    if cache is not None:
        cache.set_json(cache_key, data, ttl=settings.TASK_LIST_CACHE_TTL)
    return data

def get_task_detail(db: Session, task_id: str, cache: Optional[RedisCache] = None) -> dict:
    """
    Одна задача с денормализованной информацией (кэш 15 минут).
    """
    if not is_valid_uuid(task_id):
        raise TaskValidationError("Invalid task ID format")
    task_id = task_id.lower()
    if cache is not None:
        cached = cache.get_json(task_key(task_id))
        if isinstance(cached, dict):
            return cached

    rows = db.execute(_enriched_select(db).where(Task.id == task_id)).all()
    if not rows:
        raise TaskNotFound()
    data = _serialize_rows(db, rows)[0]

    if cache is not None:
        cache.set_json(task_key(task_id), data, ttl=settings.TASK_CACHE_TTL)
    return data

def get_subtasks(db: Session, task_id: str) -> List[dict]:
    """
    Прямые сабтаски задачи.
    """
    task = get_task(db, task_id)
    rows = db.execute(_ordered(_enriched_select(db).where(Task.parent_task_id == task.id))).all()
    return _serialize_rows(db, rows)

def get_task_tree(db: Session, root_id: str) -> List[dict]:
    """
    Дерево сабтасков от root_id (рекурсивный CTE, глубина <= 10).
    Узлы в порядке обхода в глубину, у каждого level и path (id от корня).
    """
    root = get_task(db, root_id)

    base = (
        select(Task.id.label("id"), Task.parent_task_id.label("parent_id"), literal(0).label("level"))
        .where(Task.id == root.id)
        .cte("task_tree", recursive=True)
    )
    step = (
        select(Task.id, Task.parent_task_id, base.c.level + 1)
        .join(base, Task.parent_task_id == base.c.id)
        .where(base.c.level < MAX_TREE_DEPTH)
    )
    tree = base.union(step)
    nodes = db.execute(select(tree.c.id, tree.c.parent_id, tree.c.level)).all()

    ids = {node.id for node in nodes}
    tasks = {t.id: t for t in db.execute(select(Task).where(Task.id.in_(ids))).scalars()}
    children: Dict[str, List[Task]] = {}
    for node in nodes:
        if node.id != root.id and node.parent_id in ids and node.id in tasks:
            siblings = children.setdefault(node.parent_id, [])
            if tasks[node.id] not in siblings:
                siblings.append(tasks[node.id])

    result = []
    visited = set()
    stack = [(root, 0, [root.id])]
    while stack:
        task, level, path = stack.pop()
        if task.id in visited or level > MAX_TREE_DEPTH:
            continue
        visited.add(task.id)
        node = TaskTreeNode(**task_to_dict(task), level=level, path=path)
        result.append(node.model_dump(mode="json"))
        kids = sorted(children.get(task.id, []), key=lambda t: (t.created_at or datetime.min, t.id))
        for child in reversed(kids):
            stack.append((child, level + 1, path + [child.id]))
    return result
