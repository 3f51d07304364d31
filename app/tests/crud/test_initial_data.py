from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from app.initial_data import init_db

def _engine():
    return create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)

def test_init_db_creates_all_tables():
    engine = _engine()
    created = init_db(engine, time_logs_enabled=True)
    tables = set(inspect(engine).get_table_names())
    assert {"user_profiles", "tasks", "task_time_logs", "notifications", "posts"} <= tables
    assert "task_time_logs" in created

def test_init_db_is_idempotent():
    engine = _engine()
    init_db(engine)
    init_db(engine)
    indexes = {ix["name"] for ix in inspect(engine).get_indexes("tasks")}
    assert "idx_tasks_parent_task_id" in indexes

def test_init_db_without_time_logs():
    engine = _engine()
    created = init_db(engine, time_logs_enabled=False)
    assert "task_time_logs" not in created
    assert not inspect(engine).has_table("task_time_logs")
    assert inspect(engine).has_table("tasks")
