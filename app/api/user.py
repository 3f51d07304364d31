#app/api/user.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.schemas.user import UserProfileRead, LinkExternalIdsRequest
from app.schemas.response import ok
from app.crud.user import resolve_user_id, link_external_ids, get_display_info
from app.core.permissions import can_assign, get_subordinate_ids
from app.core.cache import RedisCache
from app.dependencies import get_db, get_cache

router = APIRouter(prefix="/api/users", tags=["Users"])

@router.get("/resolve/{identifier}")
def resolve_identifier(
    identifier: str,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    UUID профиля по UUID, email или firebase_uid.
    """
    return ok({"id": resolve_user_id(db, identifier, cache=cache)})

@router.get("/{manager_id}/subordinates")
def list_subordinates(
    manager_id: str,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Все подчинённые менеджера (на любой глубине).
    """
    resolved = resolve_user_id(db, manager_id, cache=cache)
    ids = get_subordinate_ids(db, resolved)
    info = get_display_info(db, ids)
    return ok([info[uid] for uid in ids if uid in info])

@router.get("/{manager_id}/can-assign/{target_id}")
def check_can_assign(
    manager_id: str,
    target_id: str,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    manager = resolve_user_id(db, manager_id, cache=cache)
    target = resolve_user_id(db, target_id, cache=cache)
    return ok({"manager_id": manager, "target_id": target, "allowed": can_assign(db, manager, target)})

@router.post("/{user_id}/link-external")
def link_external(
    user_id: str,
    data: LinkExternalIdsRequest,
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
):
    """
    Привязать firebase_uid к профилю.
    """
    user = link_external_ids(db, user_id, firebase_uid=data.firebase_uid, cache=cache)
    return ok(UserProfileRead.model_validate(user).model_dump(mode="json"))
