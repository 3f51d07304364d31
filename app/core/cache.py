# app/core/cache.py
"""
Redis side-cache для задач и резолва пользователей.

Кэш не является источником истины: любая ошибка Redis логируется и
трактуется как промах, запрос продолжает работать напрямую с PostgreSQL.

Ключи:
    tasks_list_{sha256 от JSON фильтров и пагинации}
    task_{id}
    user_id_resolve_{identifier}
"""

import hashlib
import json
import logging
import time
from typing import Any, Optional

import redis

from app.core.settings import settings

logger = logging.getLogger("Karma.Cache")

TASK_LIST_PREFIX = "tasks_list_"


class RedisCache:
    """
    Обёртка над redis-py с JSON-сериализацией и circuit breaker.
    При недоступности Redis все операции ведут себя как промах.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "",
        default_ttl: int = 600,
        enabled: bool = True,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._enabled = enabled
        self._client = None
        self._available = False
        self._last_connect_attempt = 0.0

        # Circuit breaker
        self._failure_count = 0
        self._failure_threshold = 5
        self._failure_window = 30  # seconds
        self._first_failure_time = 0.0
        self._circuit_open = False

    def connect(self) -> bool:
        """Подключиться к Redis. False — работаем без кэша."""
        if not self._enabled:
            logger.info("Redis cache disabled by configuration")
            return False
        self._last_connect_attempt = time.time()
        try:
            self._client = redis.Redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
            self._client.ping()
            self._available = True
            self._circuit_open = False
            self._failure_count = 0
            logger.info(f"Redis connected: {self._redis_url}")
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed, running without cache: {e}")
            self._available = False
            return False

    def _check_circuit(self) -> bool:
        if self._circuit_open:
            if time.time() - self._first_failure_time > self._failure_window:
                self._circuit_open = False
                self._failure_count = 0
                return self.connect()
            return False
        if not self._available and self._last_connect_attempt:
            # Redis был недоступен при старте: повторяем подключение не чаще раза в окно
            if time.time() - self._last_connect_attempt > self._failure_window:
                return self.connect()
        return self._available

    def _record_failure(self) -> None:
        now = time.time()
        if self._failure_count == 0:
            self._first_failure_time = now

        self._failure_count += 1

        if self._failure_count >= self._failure_threshold:
            elapsed = now - self._first_failure_time
            if elapsed <= self._failure_window:
                self._circuit_open = True
                logger.error(f"Redis circuit breaker OPEN: {self._failure_count} failures in {elapsed:.1f}s")
            else:
                self._failure_count = 1
                self._first_failure_time = now

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get_json(self, key: str) -> Optional[Any]:
        """Прочитать JSON-значение. None — промах или ошибка."""
        if not self._check_circuit():
            return None
        try:
            raw = self._client.get(self._make_key(key))
        except Exception as e:
            self._record_failure()
            logger.warning(f"Redis GET {key} failed (non-fatal): {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Записать JSON-значение с TTL. False — не записано."""
        if not self._check_circuit():
            return False
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Value for {key} is not JSON-serializable: {e}")
            return False
        try:
            self._client.set(self._make_key(key), payload, ex=ttl or self._default_ttl)
            return True
        except Exception as e:
            self._record_failure()
            logger.warning(f"Redis SET {key} failed (non-fatal): {e}")
            return False

    def delete(self, key: str) -> bool:
        if not self._check_circuit():
            return False
        try:
            return bool(self._client.delete(self._make_key(key)))
        except Exception as e:
            self._record_failure()
            logger.warning(f"Redis DEL {key} failed (non-fatal): {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Удалить все ключи по шаблону (SCAN + DEL). Возвращает число удалённых."""
        if not self._check_circuit():
            return 0
        try:
            keys = list(self._client.scan_iter(match=self._make_key(pattern), count=1000))
            if keys:
                return self._client.delete(*keys)
            return 0
        except Exception as e:
            self._record_failure()
            logger.warning(f"Redis pattern delete {pattern} failed (non-fatal): {e}")
            return 0

    def ping(self) -> bool:
        if not self._client:
            return False
        try:
            return bool(self._client.ping())
        except Exception:
            return False

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.debug(f"Redis close failed: {e}")
            self._client = None
        self._available = False
        self._circuit_open = False
        self._failure_count = 0

    @property
    def is_available(self) -> bool:
        return self._available and not self._circuit_open


# ---------------------------------------------------------------------------
# Ключи и инвалидация для задач
# ---------------------------------------------------------------------------

def task_key(task_id: str) -> str:
    return f"task_{task_id}"


def user_resolve_key(identifier: str) -> str:
    return f"user_id_resolve_{identifier}"


def user_profile_key(user_id: str) -> str:
    return f"user_profile_{user_id}"


def task_list_key(filters: dict, limit: int, offset: int) -> str:
    """
    Детерминированный ключ по полному набору фильтров и пагинации.
    Значения фильтров не склеиваются в строку: хэшируется канонический JSON,
    поэтому q="all" или "_" внутри значения не дают чужой ключ.
    """
    payload = json.dumps(
        {
            "filters": {name: value for name, value in filters.items() if value},
            "limit": limit,
            "offset": offset,
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return TASK_LIST_PREFIX + hashlib.sha256(payload.encode("utf-8")).hexdigest()


def invalidate_task_caches(cache: RedisCache, *task_ids: Optional[str]) -> None:
    """
    Сбросить кэш конкретных задач и все варианты списков задач.
    Вызывается синхронно после каждой мутации.
    """
    for task_id in task_ids:
        if task_id:
            cache.delete(task_key(task_id))
    removed = cache.delete_pattern(f"{TASK_LIST_PREFIX}*")
    logger.debug(f"Invalidated task caches {task_ids}, list keys removed: {removed}")


_cache: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Ленивый singleton кэша для зависимостей FastAPI."""
    global _cache
    if _cache is None:
        _cache = RedisCache(
            redis_url=settings.REDIS_URL,
            prefix=settings.CACHE_PREFIX,
            default_ttl=settings.TASK_LIST_CACHE_TTL,
            enabled=settings.CACHE_ENABLED,
        )
        _cache.connect()
    return _cache
