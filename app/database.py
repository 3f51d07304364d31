# app/database.py

from sqlalchemy import create_engine, inspect
from typing import Union
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import sessionmaker, scoped_session
from app.core.settings import settings

# Таблицы создаются один раз при старте (app/initial_data.py), не в каждом запросе

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

# Создаем движок подключения к БД (пул соединений)
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
    future=True,
)

# Создаем фабрику сессий (scoped_session для потокобезопасности)
SessionLocal = scoped_session(
    sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )
)

def table_exists(bind: Union[Engine, Connection], table_name: str) -> bool:
    """
    Проверяет, что таблица развернута в текущей БД (для деградированных инсталляций).
    Внутри транзакции передавайте соединение сессии (db.connection()), а не engine.
    """
    return inspect(bind).has_table(table_name)
