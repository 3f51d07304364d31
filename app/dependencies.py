# app/dependencies.py

from typing import Generator
from sqlalchemy.orm import Session
from app.core.cache import RedisCache, get_cache as get_redis_cache
from app.database import SessionLocal

def get_db() -> Generator[Session, None, None]:
    """
    Создает и возвращает сессию базы данных, гарантирует закрытие после использования.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_cache() -> RedisCache:
    """
    Общий Redis-кэш. Если Redis недоступен, операции кэша просто промахиваются.
    """
    return get_redis_cache()
