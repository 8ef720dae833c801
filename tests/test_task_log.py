"""
任务日志与日志存储的单元测试

测试内容：
- TaskLogger 环形缓冲、观察者、去抖持久化
- RedisTaskLogStore 内存降级模式
- RedisTaskLogStore Redis 模式（mock 客户端）
"""
import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest


# ============================================================
# TaskLogger 测试
# ============================================================

class TestTaskLogger:
    """测试任务日志缓冲"""

    def test_ring_buffer_evicts_oldest(self):
        from task_engine.task_log import TaskLogger
        task_logger = TaskLogger(max_logs=3)
        for i in range(5):
            task_logger.log(f"日志{i}")

        messages = [entry.message for entry in task_logger.entries]
        assert messages == ["日志2", "日志3", "日志4"]

    def test_entry_fields(self):
        from task_engine.task_log import TaskLogger
        entry = TaskLogger().log("⚠️ 重试", "warn")
        assert entry.type == "warn"
        assert entry.level == 2
        assert entry.timestamp > 0
        assert len(entry.time) == 8

    def test_listeners(self):
        from task_engine.task_log import TaskLogger
        task_logger = TaskLogger()
        received = []
        remove = task_logger.add_listener(received.append)
        task_logger.add_listener(MagicMock(side_effect=RuntimeError("broken")))

        task_logger.log("第一条")
        remove()
        task_logger.log("第二条")

        assert [entry.message for entry in received] == ["第一条"]
        assert len(task_logger.entries) == 2

    @pytest.mark.asyncio
    async def test_saves_are_debounced(self):
        from task_engine.task_log import TaskLogger
        store = MagicMock()
        task_logger = TaskLogger(store=store, save_delay=0.02)

        task_logger.log("a")
        task_logger.log("b")
        task_logger.log("c")
        store.save.assert_not_called()

        await asyncio.sleep(0.1)
        store.save.assert_called_once()
        batch = store.save.call_args.args[0]
        assert [item["message"] for item in batch] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_flush_writes_immediately(self):
        from task_engine.task_log import TaskLogger
        store = MagicMock()
        task_logger = TaskLogger(store=store, save_delay=0.02)

        task_logger.log("a")
        await task_logger.flush()
        store.save.assert_called_once()

        await asyncio.sleep(0.05)
        store.save.assert_called_once()

    def test_saves_without_event_loop(self):
        from task_engine.task_log import TaskLogger
        store = MagicMock()
        task_logger = TaskLogger(store=store)
        task_logger.log("a")
        task_logger.log("b")
        assert store.save.call_count == 2

    def test_store_errors_do_not_raise(self):
        from task_engine.task_log import TaskLogger
        store = MagicMock()
        store.save.side_effect = RuntimeError("redis down")
        task_logger = TaskLogger(store=store)
        task_logger.log("a")
        assert len(task_logger.entries) == 1

    def test_restore(self):
        from task_engine.models import LogEntry
        from task_engine.task_log import TaskLogger
        store = MagicMock()
        store.load.return_value = [
            LogEntry.create("旧日志1").to_dict(),
            {"unexpected": True},
            LogEntry.create("旧日志2", "error").to_dict(),
        ]
        task_logger = TaskLogger(store=store)

        assert task_logger.restore() == 2
        assert [entry.message for entry in task_logger.entries] == ["旧日志1", "旧日志2"]

    def test_clear(self):
        from task_engine.task_log import TaskLogger
        store = MagicMock()
        task_logger = TaskLogger(store=store)
        task_logger.log("a")
        task_logger.clear()
        assert task_logger.entries == []
        store.clear.assert_called_once()


# ============================================================
# RedisTaskLogStore 测试
# ============================================================

class TestTaskLogStoreFallback:
    """测试内存降级模式"""

    @pytest.fixture
    def store(self):
        from src.services.task_log_store import RedisTaskLogStore
        return RedisTaskLogStore(redis_url=None, max_logs=5)

    def test_fallback_mode(self, store):
        assert store.is_redis is False

    def test_save_and_load(self, store):
        store.save([{"message": "a"}, {"message": "b"}])
        store.save([{"message": "c"}])
        assert [item["message"] for item in store.load()] == ["a", "b", "c"]

    def test_trim_to_max(self, store):
        store.save([{"message": str(i)} for i in range(8)])
        assert [item["message"] for item in store.load()] == ["3", "4", "5", "6", "7"]

    def test_empty_batch_ignored(self, store):
        store.save([])
        assert store.load() == []

    def test_clear(self, store):
        store.save([{"message": "a"}])
        store.clear()
        assert store.load() == []

    def test_last_result(self, store):
        assert store.get_last_result() is None
        store.save_last_result("查询成本", "总成本 42")
        assert store.get_last_result() == {"task": "查询成本", "result": "总成本 42"}


class TestTaskLogStoreRedis:
    """测试 Redis 模式"""

    def _store(self, client):
        from src.services.task_log_store import RedisTaskLogStore
        with patch("redis.from_url", return_value=client):
            return RedisTaskLogStore(redis_url="redis://localhost:6379/0", key="logs", max_logs=1000)

    def test_save_uses_rpush_and_ltrim(self):
        client = MagicMock()
        store = self._store(client)
        assert store.is_redis is True

        store.save([{"message": "你好"}])

        client.rpush.assert_called_once_with("logs", json.dumps({"message": "你好"}, ensure_ascii=False))
        client.ltrim.assert_called_once_with("logs", -1000, -1)

    def test_load(self):
        client = MagicMock()
        client.lrange.return_value = ['{"message": "a"}', '{"message": "b"}']
        store = self._store(client)
        assert store.load() == [{"message": "a"}, {"message": "b"}]
        client.lrange.assert_called_once_with("logs", 0, -1)

    def test_last_result(self):
        client = MagicMock()
        client.get.return_value = json.dumps({"task": "t", "result": "r"})
        store = self._store(client)

        store.save_last_result("t", "r")
        assert client.set.call_args.args[0] == "logs:last_result"
        assert store.get_last_result() == {"task": "t", "result": "r"}

    def test_clear_deletes_key(self):
        client = MagicMock()
        store = self._store(client)
        store.clear()
        client.delete.assert_called_once_with("logs")

    def test_ping_failure_falls_back(self):
        client = MagicMock()
        client.ping.side_effect = ConnectionError("refused")
        store = self._store(client)
        assert store.is_redis is False

    def test_write_failure_falls_back_to_memory(self):
        client = MagicMock()
        client.rpush.side_effect = ConnectionError("lost")
        client.lrange.side_effect = ConnectionError("lost")
        store = self._store(client)

        store.save([{"message": "a"}])
        assert store.load() == [{"message": "a"}]
