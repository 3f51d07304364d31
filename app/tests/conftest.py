import fnmatch
import json
import os
from typing import Any, Callable, Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Переменные окружения должны быть выставлены ДО импорта settings и app.main
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CACHE_ENABLED"] = "false"
os.environ["SUPER_ADMIN_EMAIL"] = "superadmin@example.com"
os.environ["TIME_LOGS_ENABLED"] = "true"

import app.models  # noqa: F401  регистрирует все таблицы
from app.core.cache import RedisCache
from app.core.settings import settings as app_settings
from app.initial_data import init_db
from app.main import app
from app.dependencies import get_cache, get_db
from app.models.user import UserProfile


def _make_engine() -> Engine:
    return create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class FakeRedisClient:
    """
    Минимальный in-memory заменитель redis.Redis для тестов кэша (get/set/delete/scan_iter).
    """

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def scan_iter(self, match="*", count=None):
        return [key for key in list(self.store) if fnmatch.fnmatchcase(key, match)]

    def ping(self):
        return True

    def close(self):
        pass

    def loads(self, key) -> Any:
        return json.loads(self.store[key])


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """
    Свежая in-memory БД на каждый тест, схема разворачивается как при старте приложения.
    """
    engine = _make_engine()
    init_db(engine, time_logs_enabled=True)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine: Engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def db_without_time_logs() -> Generator[Session, None, None]:
    """
    Инсталляция без таблицы task_time_logs (деградированный режим).
    """
    engine = _make_engine()
    init_db(engine, time_logs_enabled=False)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture(scope="function")
def fake_redis() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture(scope="function")
def cache(fake_redis: FakeRedisClient) -> RedisCache:
    """
    RedisCache поверх FakeRedisClient: ведёт себя как доступный Redis.
    """
    cache = RedisCache(prefix="", default_ttl=60)
    cache._client = fake_redis
    cache._available = True
    return cache


@pytest.fixture(scope="function")
def client(db: Session, cache: RedisCache) -> Generator[TestClient, None, None]:
    """
    TestClient с подменой get_db и get_cache.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_user(db: Session) -> Callable[..., UserProfile]:
    def _make_user(email: str, name: str = "", parent_manager_id: Optional[str] = None, **kwargs) -> UserProfile:
        user = UserProfile(email=email, name=name or email.split("@")[0], parent_manager_id=parent_manager_id, **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture(scope="function")
def users(make_user) -> Dict[str, UserProfile]:
    """
    Иерархия:
        superadmin (без менеджера)
        manager
          └── lead
                └── worker
        outsider (без менеджера)
    """
    superadmin = make_user(app_settings.SUPER_ADMIN_EMAIL, name="Super Admin", roles=["super_admin"])
    manager = make_user("manager@example.com", name="Manager", firebase_uid="fb-manager")
    lead = make_user("lead@example.com", name="Lead", parent_manager_id=manager.id)
    worker = make_user("worker@example.com", name="Worker", parent_manager_id=lead.id)
    outsider = make_user("outsider@example.com", name="Outsider")
    return {
        "superadmin": superadmin,
        "manager": manager,
        "lead": lead,
        "worker": worker,
        "outsider": outsider,
    }
