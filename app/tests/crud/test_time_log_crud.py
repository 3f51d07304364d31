import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from app.core.cache import task_key
from app.core.exceptions import TaskNotFound, TimeLogValidationError, UserNotFound
from app.crud import time_log as crud_time_log
from app.models.task import Task
from app.models.time_log import TaskTimeLog

MISSING_ID = "00000000-0000-4000-8000-000000000000"

@pytest.fixture
def task(db: Session, users) -> Task:
    task = Task(
        title="Sort donations",
        assignees=[users["worker"].id],
        tags=[],
        created_by=users["manager"].id,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task

def test_time_logs_provisioned(db: Session, db_without_time_logs: Session):
    assert crud_time_log.time_logs_provisioned(db) is True
    assert crud_time_log.time_logs_provisioned(db_without_time_logs) is False

def test_log_hours_creates_entry(db: Session, users, task):
    entry = crud_time_log.log_hours(db, task.id, "worker@example.com", 2.5)
    assert entry.task_id == task.id
    assert entry.user_id == users["worker"].id
    assert float(entry.actual_hours) == 2.5
    assert crud_time_log.has_time_logs(db, task.id) is True

def test_log_hours_replaces_previous_value(db: Session, users, task):
    crud_time_log.log_hours(db, task.id, users["worker"].id, 2)
    crud_time_log.log_hours(db, task.id, users["worker"].id, 3.25)
    entries = db.execute(select(TaskTimeLog).where(TaskTimeLog.task_id == task.id)).scalars().all()
    assert len(entries) == 1
    assert float(entries[0].actual_hours) == 3.25

def test_log_hours_after_concurrent_insert(db: Session, users, task):
    # другой запрос успел записать часы между нашими проверками и INSERT
    other = sessionmaker(bind=db.get_bind(), expire_on_commit=False)()
    other.add(TaskTimeLog(task_id=task.id, user_id=users["worker"].id, actual_hours=5))
    other.commit()
    other.close()

    entry = crud_time_log.log_hours(db, task.id, users["worker"].id, 1.5)

    assert float(entry.actual_hours) == 1.5
    entries = db.execute(select(TaskTimeLog).where(TaskTimeLog.task_id == task.id)).scalars().all()
    assert len(entries) == 1

def test_log_hours_returns_fresh_entry_when_row_changed_elsewhere(db: Session, users, task):
    first = crud_time_log.log_hours(db, task.id, users["worker"].id, 2)
    other = sessionmaker(bind=db.get_bind())()
    other.execute(update(TaskTimeLog).where(TaskTimeLog.id == first.id).values(actual_hours=7))
    other.commit()
    other.close()

    entry = crud_time_log.log_hours(db, task.id, users["worker"].id, 4)

    assert entry.id == first.id
    assert float(entry.actual_hours) == 4

@pytest.mark.parametrize("hours", [0, -1, "abc", None])
def test_log_hours_rejects_invalid_hours(db: Session, users, task, hours):
    with pytest.raises(TimeLogValidationError):
        crud_time_log.log_hours(db, task.id, users["worker"].id, hours)

def test_log_hours_unknown_task(db: Session, users):
    with pytest.raises(TaskNotFound):
        crud_time_log.log_hours(db, MISSING_ID, users["worker"].id, 1)

def test_log_hours_unknown_user(db: Session, users, task):
    with pytest.raises(UserNotFound):
        crud_time_log.log_hours(db, task.id, "nobody@example.com", 1)

def test_log_hours_not_provisioned(db_without_time_logs: Session):
    with pytest.raises(TimeLogValidationError, match="not enabled"):
        crud_time_log.log_hours(db_without_time_logs, MISSING_ID, "someone@example.com", 1)

def test_log_hours_invalidates_task_cache(db: Session, users, task, cache, fake_redis):
    cache.set_json(task_key(task.id), {"id": task.id})
    crud_time_log.log_hours(db, task.id, users["worker"].id, 1, cache=cache)
    assert task_key(task.id) not in fake_redis.store

def test_hours_report_covers_subordinate_closure(db: Session, users, task):
    crud_time_log.log_hours(db, task.id, users["worker"].id, 4)
    crud_time_log.log_hours(db, task.id, users["lead"].id, 1.5)
    crud_time_log.log_hours(db, task.id, users["outsider"].id, 9)

    report = crud_time_log.hours_report(db, "manager@example.com")

    assert report["manager_id"] == users["manager"].id
    assert report["time_logs_enabled"] is True
    assert report["total_hours"] == 5.5
    by_user = {u["user_id"]: u for u in report["users"]}
    assert set(by_user) == {users["manager"].id, users["lead"].id, users["worker"].id}
    assert by_user[users["worker"].id]["total_hours"] == 4.0
    assert by_user[users["worker"].id]["tasks_count"] == 1
    assert by_user[users["worker"].id]["entries"][0]["title"] == "Sort donations"
    assert by_user[users["manager"].id]["total_hours"] == 0.0
    assert report["users"][0]["user_id"] == users["worker"].id

def test_hours_report_unknown_manager(db: Session, users):
    with pytest.raises(UserNotFound):
        crud_time_log.hours_report(db, "nobody@example.com")

def test_hours_report_without_time_logs(db_without_time_logs: Session):
    from app.models.user import UserProfile
    manager = UserProfile(email="boss@example.com", name="Boss")
    db_without_time_logs.add(manager)
    db_without_time_logs.commit()
    report = crud_time_log.hours_report(db_without_time_logs, "boss@example.com")
    assert report["time_logs_enabled"] is False
    assert report["users"] == []
    assert report["total_hours"] == 0.0
