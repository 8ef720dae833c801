"""
Redis 任务日志存储

任务日志按批追加到 Redis List，超过上限的旧日志被裁掉。
支持 Redis 不可用时降级到内存存储。
"""
import json
from typing import Any, Dict, List, Optional

import redis
from loguru import logger
from redis import Redis


class RedisTaskLogStore:
    """
    基于 Redis 的任务日志存储

    特点：
    - rpush + ltrim 保持最多 max_logs 条
    - 最近一次任务结果单独存为 JSON
    - Redis 不可用时降级到内存列表，语义一致
    """

    DEFAULT_KEY = "task_engine:logs"
    MAX_LOGS = 1000

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key: str = DEFAULT_KEY,
        max_logs: int = MAX_LOGS,
    ):
        self._redis: Optional[Redis] = None
        self._key = key
        self._result_key = f"{key}:last_result"
        self._max_logs = max_logs
        self._fallback: List[Dict[str, Any]] = []
        self._fallback_result: Optional[Dict[str, Any]] = None
        self._init_redis(redis_url)

    def _init_redis(self, redis_url: Optional[str]):
        """初始化 Redis 连接"""
        if redis_url:
            try:
                self._redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
                self._redis.ping()
                logger.info("RedisTaskLogStore: Redis connected successfully")
            except Exception as e:
                logger.warning(
                    f"RedisTaskLogStore: Redis connection failed: {e}, "
                    f"using fallback mode"
                )
                self._redis = None
        else:
            logger.warning(
                "RedisTaskLogStore: redis_url not configured, "
                "using fallback mode"
            )

    @property
    def is_redis(self) -> bool:
        return self._redis is not None

    def save(self, batch: List[Dict[str, Any]]) -> None:
        """
        追加一批日志

        Args:
            batch: LogEntry.to_dict() 列表
        """
        if not batch:
            return

        if self._redis:
            try:
                self._redis.rpush(self._key, *[json.dumps(entry, ensure_ascii=False) for entry in batch])
                self._redis.ltrim(self._key, -self._max_logs, -1)
                return
            except Exception as e:
                logger.warning(
                    f"RedisTaskLogStore: Redis write failed: {e}, "
                    f"falling back to memory"
                )

        self._fallback.extend(batch)
        if len(self._fallback) > self._max_logs:
            self._fallback = self._fallback[-self._max_logs:]

    def load(self) -> List[Dict[str, Any]]:
        """读取全部已保存的日志"""
        if self._redis:
            try:
                return [json.loads(item) for item in self._redis.lrange(self._key, 0, -1)]
            except Exception as e:
                logger.warning(
                    f"RedisTaskLogStore: Redis read failed: {e}, "
                    f"falling back to memory"
                )

        return list(self._fallback)

    def clear(self) -> None:
        """清空日志"""
        if self._redis:
            try:
                self._redis.delete(self._key)
                return
            except Exception as e:
                logger.warning(f"RedisTaskLogStore: Redis delete failed: {e}")

        self._fallback = []

    def save_last_result(self, task: str, result: Any) -> None:
        """保存最近一次完成任务的结果"""
        record = {"task": task, "result": result}
        if self._redis:
            try:
                self._redis.set(self._result_key, json.dumps(record, ensure_ascii=False))
                return
            except Exception as e:
                logger.warning(
                    f"RedisTaskLogStore: Redis write failed: {e}, "
                    f"falling back to memory"
                )

        self._fallback_result = record

    def get_last_result(self) -> Optional[Dict[str, Any]]:
        if self._redis:
            try:
                raw = self._redis.get(self._result_key)
                return json.loads(raw) if raw else None
            except Exception as e:
                logger.warning(
                    f"RedisTaskLogStore: Redis read failed: {e}, "
                    f"falling back to memory"
                )

        return self._fallback_result
