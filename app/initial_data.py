# app/initial_data.py

import logging
from typing import List, Optional
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from app.core.settings import settings
from app.database import engine as default_engine
from app.models.base import Base
from app.models.time_log import TaskTimeLog
import app.models  # noqa: F401  регистрирует все таблицы в Base.metadata

logger = logging.getLogger("Karma.InitialData")

def init_db(engine: Optional[Engine] = None, time_logs_enabled: Optional[bool] = None) -> List[str]:
    """
    Создаёт недостающие таблицы, индексы и ограничения. Повторный запуск ничего не ломает.

    time_logs_enabled=False: task_time_logs не создаётся (деградированный режим).
    Возвращает список таблиц, которые было решено развернуть.
    """
    engine = engine or default_engine
    if time_logs_enabled is None:
        time_logs_enabled = settings.TIME_LOGS_ENABLED

    tables = [
        table for table in Base.metadata.sorted_tables
        if time_logs_enabled or table.name != TaskTimeLog.__tablename__
    ]
    try:
        Base.metadata.create_all(bind=engine, tables=tables, checkfirst=True)
    except SQLAlchemyError as e:
        logger.error(f"Schema bootstrap failed: {e}")
        raise
    names = [table.name for table in tables]
    logger.info(f"Schema ready: {', '.join(names)}")
    if not time_logs_enabled:
        logger.warning("Time logs disabled: task_time_logs not provisioned, hours gate is off")
    return names

if __name__ == "__main__":
    from dotenv import load_dotenv
    load_dotenv()

    logging.basicConfig(level=logging.INFO)
    init_db()
