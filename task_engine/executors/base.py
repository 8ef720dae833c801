"""
环境适配器抽象基类
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class EnvironmentAdapter(ABC):
    """
    页面自动化环境

    普通失败（元素不存在、导航超时等）通过 success=False 返回，不抛异常。
    """

    @abstractmethod
    async def execute(self, action: Dict[str, Any]) -> Dict[str, Any]:
        """执行一个操作，返回 {success, error?, ...payload}"""
        ...

    async def get_current_url(self) -> str:
        """当前页面地址，未知时返回空字符串"""
        return ""

    async def dismiss_blocking_dialogs(self) -> Dict[str, Any]:
        """关闭遮挡页面的弹窗，返回 {dismissed, ...}"""
        return {"success": True, "dismissed": False}
