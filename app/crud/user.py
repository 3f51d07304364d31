# app/crud/user.py
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.cache import RedisCache, user_profile_key, user_resolve_key
from app.core.exceptions import UserNotFound
from app.core.settings import settings
from app.models.user import UserProfile

logger = logging.getLogger("Karma.Users")

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_uuid(value: Optional[str]) -> bool:
    return bool(value) and isinstance(value, str) and bool(UUID_RE.match(value))


def normalize_identifier(identifier: str) -> str:
    identifier = identifier.strip()
    return identifier.lower() if "@" in identifier else identifier


def resolve_user_id(
    db: Session,
    identifier: Optional[str],
    cache: Optional[RedisCache] = None,
    throw_on_not_found: bool = True,
) -> Optional[str]:
    """
    Резолвит идентификатор пользователя (UUID, email, firebase_uid) в UUID профиля.

    google_id в резолве не участвует. Успешный результат кэшируется на 10 минут.
    throw_on_not_found=False — вернуть None вместо UserNotFound.
    """
    if not identifier or not str(identifier).strip():
        if throw_on_not_found:
            raise UserNotFound("User identifier is required")
        return None

    normalized = normalize_identifier(str(identifier))
    cache_key = user_resolve_key(normalized)

    if cache is not None:
        cached = cache.get_json(cache_key)
        if isinstance(cached, str) and is_valid_uuid(cached):
            return cached

    predicates = [
        func.lower(UserProfile.email) == normalized.lower(),
        UserProfile.firebase_uid == normalized,
    ]
    if is_valid_uuid(normalized):
        predicates.insert(0, UserProfile.id == normalized.lower())

    try:
        user_id = db.execute(
            select(UserProfile.id).where(or_(*predicates)).limit(1)
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Database error while resolving user identifier: {e}")
        if throw_on_not_found:
            raise UserNotFound(f"Failed to resolve user: {e}")
        return None

    if user_id is None:
        if throw_on_not_found:
            logger.warning(f"User not found for identifier: {normalized[:10]}...")
            raise UserNotFound(f"User not found: {normalized}")
        return None

    if cache is not None:
        cache.set_json(cache_key, user_id, ttl=settings.USER_RESOLVE_CACHE_TTL)
    return user_id


def resolve_user_ids(
    db: Session,
    identifiers: Iterable[str],
    cache: Optional[RedisCache] = None,
    throw_on_not_found: bool = True,
) -> List[Optional[str]]:
    """
    Резолвит список идентификаторов, порядок сохраняется.
    """
    return [
        resolve_user_id(db, identifier, cache=cache, throw_on_not_found=throw_on_not_found)
        for identifier in identifiers
    ]


def resolve_emails(db: Session, emails: Iterable[str]) -> List[str]:
    """
    Переводит список email в UUID. Неизвестные адреса молча пропускаются.
    """
    email_list = [e.strip().lower() for e in emails if isinstance(e, str) and e.strip()]
    if not email_list:
        return []
    rows = db.execute(
        select(UserProfile.id, func.lower(UserProfile.email)).where(
            func.lower(UserProfile.email).in_(email_list)
        )
    ).all()
    by_email = {email: user_id for user_id, email in rows}
    resolved = []
    for email in email_list:
        user_id = by_email.get(email)
        if user_id and user_id not in resolved:
            resolved.append(user_id)
    return resolved


def get_user(db: Session, user_id: str) -> Optional[UserProfile]:
    if not is_valid_uuid(user_id):
        return None
    return db.get(UserProfile, user_id.lower())


def get_super_admin_id(db: Session) -> Optional[str]:
    """
    UUID назначенного супер-админа (по SUPER_ADMIN_EMAIL) или None, если его нет в каталоге.
    """
    if not settings.SUPER_ADMIN_EMAIL:
        return None
    return db.execute(
        select(UserProfile.id).where(func.lower(UserProfile.email) == settings.SUPER_ADMIN_EMAIL).limit(1)
    ).scalar_one_or_none()


def get_display_info(db: Session, user_ids: Iterable[str]) -> Dict[str, dict]:
    """
    Имя/email/аватар для набора пользователей одним запросом.
    """
    ids = {uid for uid in user_ids if is_valid_uuid(uid)}
    if not ids:
        return {}
    rows = db.execute(
        select(UserProfile.id, UserProfile.name, UserProfile.email, UserProfile.avatar_url).where(
            UserProfile.id.in_(ids)
        )
    ).all()
    return {
        row.id: {"id": row.id, "name": row.name, "email": row.email, "avatar_url": row.avatar_url}
        for row in rows
    }


def link_external_ids(
    db: Session,
    user_id: str,
    firebase_uid: Optional[str] = None,
    cache: Optional[RedisCache] = None,
) -> UserProfile:
    """
    Привязывает firebase_uid к существующему профилю и сбрасывает связанные ключи кэша.
    """
    user = get_user(db, user_id)
    if user is None:
        raise UserNotFound(f"User not found: {user_id}")
    if not firebase_uid:
        return user

    previous_uid = user.firebase_uid
    user.firebase_uid = firebase_uid.strip()
    user.updated_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to link external IDs for user {user_id}: {e}")
        raise

    if cache is not None:
        cache.delete(user_profile_key(user.id))
        cache.delete(user_resolve_key(user.firebase_uid))
        if previous_uid and previous_uid != user.firebase_uid:
            cache.delete(user_resolve_key(previous_uid))
    logger.info(f"Linked firebase_uid to user {user.id}")
    return user
