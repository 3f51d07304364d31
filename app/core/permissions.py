"""
Hierarchy-based assignment permissions.

A manager may assign work to a user when:
1. it is a self-assignment
2. the manager is the designated super-admin
3. the user is in the manager's subordinate closure (parent_manager_id chain)

Any failure while evaluating denies the assignment.
"""

import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import literal, select
from sqlalchemy.orm import Session

from app.core.exceptions import AssignmentPermissionDenied
from app.crud.user import get_super_admin_id, is_valid_uuid
from app.models.user import UserProfile

logger = logging.getLogger("Karma.Permissions")

MAX_HIERARCHY_DEPTH = 100


def _subordinate_closure(manager_id: str):
    """
    Recursive CTE of everyone below manager_id, bounded at MAX_HIERARCHY_DEPTH
    so an accidental cycle in parent_manager_id still terminates.
    """
    base = (
        select(UserProfile.id.label("id"), literal(1).label("depth"))
        .where(UserProfile.parent_manager_id == manager_id)
        .cte("subordinates", recursive=True)
    )
    step = (
        select(UserProfile.id, base.c.depth + 1)
        .join(base, UserProfile.parent_manager_id == base.c.id)
        .where(base.c.depth < MAX_HIERARCHY_DEPTH)
    )
    return base.union(step)


def get_subordinate_ids(db: Session, manager_id: str) -> List[str]:
    """
    All users reachable downward from manager_id (the manager itself excluded).
    """
    if not is_valid_uuid(manager_id):
        return []
    closure = _subordinate_closure(manager_id)
    ids = db.execute(select(closure.c.id).distinct()).scalars().all()
    return [uid for uid in ids if uid != manager_id]


def is_subordinate(db: Session, manager_id: str, target_id: str) -> bool:
    closure = _subordinate_closure(manager_id)
    found = db.execute(
        select(closure.c.id).where(closure.c.id == target_id).limit(1)
    ).scalar_one_or_none()
    return found is not None


def can_assign(
    db: Session,
    manager_id: str,
    target_id: str,
    super_admin_id: Optional[str] = None,
) -> bool:
    """
    Может ли manager_id назначать задачи target_id. Ошибка при проверке = отказ.
    """
    if manager_id and manager_id == target_id:
        return True
    try:
        if not is_valid_uuid(manager_id) or not is_valid_uuid(target_id):
            return False
        if super_admin_id is None:
            super_admin_id = get_super_admin_id(db)
        if super_admin_id and manager_id == super_admin_id:
            return True
        return is_subordinate(db, manager_id, target_id)
    except Exception as e:
        logger.error(f"Permission check failed for {manager_id} -> {target_id}, denying: {e}")
        return False


def ensure_can_assign(db: Session, manager_id: str, target_ids: Iterable[str]) -> None:
    """
    Проверяет всех исполнителей; первый отказ прерывает операцию целиком.
    """
    checked: Set[str] = set()
    super_admin_id = None
    try:
        super_admin_id = get_super_admin_id(db)
    except Exception as e:
        logger.error(f"Could not load super-admin account: {e}")

    for target_id in target_ids:
        if target_id in checked or target_id == manager_id:
            continue
        checked.add(target_id)
        if not can_assign(db, manager_id, target_id, super_admin_id=super_admin_id):
            logger.info(f"User {manager_id} is not allowed to assign tasks to {target_id}")
            raise AssignmentPermissionDenied(target_id=target_id)
