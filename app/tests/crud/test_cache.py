"""Tests for app.core.cache: RedisCache degradation, keys and invalidation."""

from unittest.mock import MagicMock

import redis

from app.core.cache import (
    RedisCache,
    invalidate_task_caches,
    task_key,
    task_list_key,
    user_resolve_key,
)


class TestRedisCacheUnavailable:

    def test_initial_state(self):
        cache = RedisCache()
        assert cache.is_available is False

    def test_get_json_returns_none(self):
        assert RedisCache().get_json("key") is None

    def test_set_json_returns_false(self):
        assert RedisCache().set_json("key", {"a": 1}) is False

    def test_delete_pattern_returns_zero(self):
        assert RedisCache().delete_pattern("tasks_list_*") == 0

    def test_disabled_does_not_connect(self):
        cache = RedisCache(enabled=False)
        assert cache.connect() is False
        assert cache.is_available is False

    def test_connect_failure_runs_without_cache(self, monkeypatch):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        monkeypatch.setattr(redis.Redis, "from_url", MagicMock(return_value=client))
        cache = RedisCache(redis_url="redis://nowhere:6379/0")
        assert cache.connect() is False
        assert cache.get_json("key") is None

    def test_reconnects_after_failed_startup(self, monkeypatch):
        client = MagicMock()
        client.ping.side_effect = [redis.ConnectionError("refused"), True]
        client.get.return_value = '{"a": 1}'
        from_url = MagicMock(return_value=client)
        monkeypatch.setattr(redis.Redis, "from_url", from_url)
        cache = RedisCache(redis_url="redis://later:6379/0")
        assert cache.connect() is False

        # в пределах окна повторного подключения нет
        assert cache.get_json("key") is None
        assert from_url.call_count == 1

        cache._last_connect_attempt -= 60
        assert cache.get_json("key") == {"a": 1}
        assert cache.is_available is True
        assert from_url.call_count == 2

    def test_never_connected_cache_does_not_reconnect(self, monkeypatch):
        from_url = MagicMock()
        monkeypatch.setattr(redis.Redis, "from_url", from_url)
        assert RedisCache().get_json("key") is None
        from_url.assert_not_called()


class TestRedisCacheWithMock:

    def setup_method(self):
        self.cache = RedisCache(prefix="test:", default_ttl=60)
        self.cache._client = MagicMock()
        self.cache._available = True

    def test_get_json(self):
        self.cache._client.get.return_value = '{"a": 1}'
        assert self.cache.get_json("key") == {"a": 1}
        self.cache._client.get.assert_called_once_with("test:key")

    def test_get_json_invalid_payload_is_miss(self):
        self.cache._client.get.return_value = "not json"
        assert self.cache.get_json("key") is None

    def test_set_json_uses_default_ttl(self):
        self.cache.set_json("key", [1, 2])
        self.cache._client.set.assert_called_once_with("test:key", "[1, 2]", ex=60)

    def test_set_json_explicit_ttl(self):
        self.cache.set_json("key", {"a": 1}, ttl=900)
        self.cache._client.set.assert_called_once_with("test:key", '{"a": 1}', ex=900)

    def test_get_failure_is_miss_and_recorded(self):
        self.cache._client.get.side_effect = redis.ConnectionError("lost")
        assert self.cache.get_json("key") is None
        assert self.cache._failure_count == 1

    def test_circuit_opens_after_repeated_failures(self):
        self.cache._client.get.side_effect = redis.ConnectionError("lost")
        for _ in range(5):
            self.cache.get_json("key")
        assert self.cache.is_available is False
        self.cache._client.get.reset_mock()
        assert self.cache.get_json("key") is None
        self.cache._client.get.assert_not_called()

    def test_delete_pattern(self):
        self.cache._client.scan_iter.return_value = iter(["test:tasks_list_a", "test:tasks_list_b"])
        self.cache._client.delete.return_value = 2
        assert self.cache.delete_pattern("tasks_list_*") == 2
        self.cache._client.scan_iter.assert_called_once_with(match="test:tasks_list_*", count=1000)
        self.cache._client.delete.assert_called_once_with("test:tasks_list_a", "test:tasks_list_b")

    def test_delete_pattern_failure(self):
        self.cache._client.scan_iter.side_effect = redis.TimeoutError("slow")
        assert self.cache.delete_pattern("tasks_list_*") == 0


class TestKeys:

    def test_task_list_key_prefix_and_stability(self):
        key = task_list_key({"status": "open", "q": "fix"}, 20, 40)
        assert key.startswith("tasks_list_")
        assert key == task_list_key({"q": "fix", "status": "open"}, 20, 40)

    def test_task_list_key_ignores_empty_filters(self):
        assert task_list_key({}, 100, 0) == task_list_key({"status": None, "q": ""}, 100, 0)

    def test_task_list_key_distinguishes_filters(self):
        assert task_list_key({"status": "open"}, 100, 0) != task_list_key({"priority": "open"}, 100, 0)

    def test_task_list_key_literal_all_is_not_unfiltered(self):
        assert task_list_key({"q": "all"}, 100, 0) != task_list_key({}, 100, 0)
        assert task_list_key({"status": "all"}, 100, 0) != task_list_key({}, 100, 0)

    def test_task_list_key_underscores_in_values(self):
        joined = task_list_key({"status": "a_b"}, 100, 0)
        split = task_list_key({"status": "a", "priority": "b"}, 100, 0)
        assert joined != split

    def test_task_list_key_pagination(self):
        assert task_list_key({}, 100, 0) != task_list_key({}, 100, 100)
        assert task_list_key({}, 10, 0) != task_list_key({}, 100, 0)

    def test_single_keys(self):
        assert task_key("abc") == "task_abc"
        assert user_resolve_key("x@y.z") == "user_id_resolve_x@y.z"


def test_invalidate_task_caches(cache, fake_redis):
    cache.set_json(task_key("t1"), {"id": "t1"})
    cache.set_json(task_key("t2"), {"id": "t2"})
    cache.set_json(task_list_key({}, 100, 0), [])
    cache.set_json(task_list_key({"status": "done"}, 10, 0), [])
    cache.set_json(user_resolve_key("a@b.c"), "id")

    invalidate_task_caches(cache, "t1", None)

    assert set(fake_redis.store) == {task_key("t2"), user_resolve_key("a@b.c")}
