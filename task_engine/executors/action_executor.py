"""
Action Executor - 操作分发

把已校验的 Action 分发到对应的处理者并规范化结果：
- wait / finish：本地处理
- confluence_*：文档服务，异常转成 success=False
- 其余操作：交给环境适配器
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from src.services.confluence_service import ConfluenceClient, ConfluenceError

from task_engine.actions import BaseAction
from task_engine.models import ActionResult

from .base import EnvironmentAdapter


MIN_WAIT_SECONDS = 0.1
MAX_WAIT_SECONDS = 10.0
DEFAULT_WAIT_SECONDS = 1.0

Handler = Callable[[BaseAction], Awaitable[Any]]


def _format_search_results(results: List[Dict[str, Any]]) -> str:
    lines = [
        f"{i + 1}. {page.get('title', '')} (ID: {page.get('id')}) {page.get('url', '')}"
        for i, page in enumerate(results)
    ]
    return "\n".join(lines)


class ActionExecutor:
    """
    操作执行门面

    Attributes:
        adapter: 环境适配器
        confluence: 文档服务客户端，未配置时 confluence_* 操作返回失败
        last_page_info: 最近一次成功的 get_page_info 结果
    """

    def __init__(
        self,
        adapter: EnvironmentAdapter,
        confluence: Optional[ConfluenceClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.confluence = confluence
        self.last_page_info: Optional[Dict[str, Any]] = None
        self._sleep = sleep
        self._handlers: Dict[str, Handler] = {
            "wait": self._wait,
            "navigate": self._navigate,
            "input_sql": self._input_sql,
            "confluence_search": self._confluence_search,
            "confluence_get_content": self._confluence_get_content,
            "finish": self._finish,
        }

    async def execute(self, action: BaseAction) -> ActionResult:
        """
        执行一个操作

        环境适配器抛出的异常不在这里捕获，由任务循环统一处理。

        Args:
            action: 已校验的操作

        Returns:
            ActionResult
        """
        handler = self._handlers.get(action.name, self._forward)
        raw = await handler(action)
        result = ActionResult.from_raw(raw)

        if action.name == "get_page_info" and result.success:
            self.last_page_info = result.data

        if result.success:
            logger.debug(f"✅ [ActionExecutor] {action.name} 成功")
        else:
            logger.debug(f"⚠️ [ActionExecutor] {action.name} 失败: {result.error}")
        return result

    async def get_current_url(self) -> str:
        return await self.adapter.get_current_url()

    async def dismiss_blocking_dialogs(self) -> ActionResult:
        return ActionResult.from_raw(await self.adapter.dismiss_blocking_dialogs())

    def reset(self) -> None:
        self.last_page_info = None

    async def _forward(self, action: BaseAction) -> Any:
        return await self.adapter.execute(action.to_dict())

    async def _wait(self, action: BaseAction) -> Dict[str, Any]:
        seconds = action.value_of("seconds")
        if seconds is None:
            seconds = DEFAULT_WAIT_SECONDS
        seconds = min(max(float(seconds), MIN_WAIT_SECONDS), MAX_WAIT_SECONDS)
        await self._sleep(seconds)
        return {"success": True, "waited": seconds}

    async def _navigate(self, action: BaseAction) -> Any:
        if not action.value_of("url"):
            return {"success": False, "error": "URL 不能为空"}
        return await self._forward(action)

    async def _input_sql(self, action: BaseAction) -> Any:
        if not action.value_of("sql"):
            return {"success": False, "error": "SQL 不能为空"}
        return await self._forward(action)

    async def _confluence_search(self, action: BaseAction) -> Dict[str, Any]:
        query = action.value_of("query")
        if not query:
            return {"success": False, "error": "搜索关键词不能为空"}
        if self.confluence is None:
            return {"success": False, "error": "Confluence 未配置"}
        try:
            results = await self.confluence.search(str(query))
        except ConfluenceError as e:
            return {"success": False, "error": str(e)}
        return {
            "success": True,
            "count": len(results),
            "data": results,
            "formatted": _format_search_results(results),
        }

    async def _confluence_get_content(self, action: BaseAction) -> Dict[str, Any]:
        page_id = action.value_of("page_id")
        if not page_id:
            return {"success": False, "error": "page_id 不能为空"}
        if self.confluence is None:
            return {"success": False, "error": "Confluence 未配置"}
        try:
            page = await self.confluence.get_content(str(page_id))
        except ConfluenceError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "data": page}

    async def _finish(self, action: BaseAction) -> Dict[str, Any]:
        result = action.value_of("result")
        if result is None:
            text = ""
        elif isinstance(result, str):
            text = result
        else:
            text = json.dumps(result, ensure_ascii=False)
        return {"success": True, "finished": True, "result": text}
