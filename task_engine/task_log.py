"""
任务日志

- 有上限的 LogEntry 环形缓冲，超出时淘汰最旧的条目
- 每条日志同步写入 loguru，并推送给观察者
- 持久化去抖：一段时间内的新日志合并成一批写入存储
"""
import asyncio
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger

from .models import LogEntry


_LOGURU_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "action": "INFO",
    "result": "INFO",
    "success": "SUCCESS",
    "warn": "WARNING",
    "error": "ERROR",
}

LogListener = Callable[[LogEntry], Any]


class TaskLogger:
    """
    任务日志缓冲

    Args:
        store: 持久化存储（load / save / clear），为 None 时只保存在内存
        max_logs: 缓冲上限
        save_delay: 持久化去抖延迟（秒）
    """

    def __init__(self, store: Any = None, max_logs: int = 1000, save_delay: float = 0.4):
        self._store = store
        self.max_logs = max_logs
        self.save_delay = save_delay
        self._entries: Deque[LogEntry] = deque(maxlen=max_logs)
        self._pending: List[LogEntry] = []
        self._listeners: List[LogListener] = []
        self._flush_handle: Optional[asyncio.TimerHandle] = None

    def log(self, message: str, log_type: str = "info") -> LogEntry:
        """追加一条日志"""
        entry = LogEntry.create(message, log_type)
        self._entries.append(entry)
        logger.log(_LOGURU_LEVELS.get(log_type, "INFO"), message)

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.warning(f"⚠️ [TaskLogger] 日志监听器异常: {e}")

        if self._store is not None:
            self._pending.append(entry)
            self._schedule_save()
        return entry

    def add_listener(self, listener: LogListener) -> Callable[[], None]:
        """订阅新日志，返回取消订阅函数"""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def restore(self) -> int:
        """从存储中恢复历史日志，返回恢复条数"""
        if self._store is None:
            return 0
        restored = 0
        for item in self._store.load()[-self.max_logs:]:
            try:
                self._entries.append(LogEntry(**item))
                restored += 1
            except TypeError:
                logger.warning(f"⚠️ [TaskLogger] 跳过无法识别的日志: {item}")
        return restored

    def clear(self) -> None:
        """清空内存和存储中的日志"""
        self._entries.clear()
        self._pending = []
        self._cancel_timer()
        if self._store is not None:
            self._store.clear()

    async def flush(self) -> None:
        """立即写入尚未持久化的日志"""
        self._cancel_timer()
        self._write_pending()

    def _schedule_save(self) -> None:
        if self._flush_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_pending()
            return
        self._flush_handle = loop.call_later(self.save_delay, self._on_timer)

    def _on_timer(self) -> None:
        self._flush_handle = None
        self._write_pending()

    def _cancel_timer(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _write_pending(self) -> None:
        if not self._pending or self._store is None:
            return
        batch = [entry.to_dict() for entry in self._pending]
        self._pending = []
        try:
            self._store.save(batch)
        except Exception as e:
            logger.error(f"❌ [TaskLogger] 日志保存失败: {e}")
