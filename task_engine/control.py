"""
控制面 - 暂停 / 继续 / 取消

任务循环只在步骤之间读取暂停状态；取消会：
- 唤醒处于暂停等待中的循环，使其抛出 TaskCanceled
- 触发所有进行中调用的 CancelToken，立即中止模型请求
"""
import asyncio
from contextlib import contextmanager
from typing import Iterator, Set

from loguru import logger

from src.llm_gateway.cancellation import CancelToken

from .errors import TaskCanceled


class TaskControl:
    """单个任务的控制状态，任务开始时创建，结束时丢弃"""

    def __init__(self):
        self._paused = False
        self._canceled = False
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._tokens: Set[CancelToken] = set()

    def pause(self) -> None:
        if self._canceled:
            return
        self._paused = True
        self._resumed.clear()
        logger.info("⏸ [TaskControl] 已暂停")

    def resume(self) -> None:
        self._paused = False
        self._resumed.set()
        logger.info("▶️ [TaskControl] 已继续")

    def cancel(self) -> None:
        self._canceled = True
        self._paused = False
        for token in list(self._tokens):
            token.cancel()
        self._resumed.set()
        logger.info("⛔ [TaskControl] 已取消")

    def is_paused(self) -> bool:
        return self._paused

    def is_canceled(self) -> bool:
        return self._canceled

    def raise_if_canceled(self) -> None:
        if self._canceled:
            raise TaskCanceled()

    async def wait_if_paused(self) -> None:
        """暂停时阻塞，直到继续或取消；取消时抛出 TaskCanceled"""
        while self._paused and not self._canceled:
            await self._resumed.wait()
        self.raise_if_canceled()

    @contextmanager
    def cancel_scope(self) -> Iterator[CancelToken]:
        """为一次进行中的调用提供取消令牌"""
        token = CancelToken()
        if self._canceled:
            token.cancel()
        self._tokens.add(token)
        try:
            yield token
        finally:
            self._tokens.discard(token)
