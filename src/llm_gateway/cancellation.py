"""
协作式取消令牌

由控制面持有并在 cancel() 时触发，Model Client 在等待网络响应时
同时监听它，触发后立即放弃进行中的请求。
"""
import asyncio


class CancelToken:
    """一次性取消信号"""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
