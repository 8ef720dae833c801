"""
浏览器环境适配器 - 通过 browser control server 操作页面

所有页面操作通过 HTTP API 调用 browser control server 完成：
POST {server_url}/browser  body = 操作 JSON

除业务操作外还使用两个内部操作：
- current_url: 返回 {url}
- dismiss_dialogs: 关闭遮挡页面的弹窗，返回 {dismissed, picked?, dialogText?}
"""
import asyncio
import json
import re
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from .base import EnvironmentAdapter


# ============================================================
# 错误转义层 - 将页面自动化原始错误转为模型可理解的提示
# ============================================================

def to_ai_friendly_error(error_msg: str, index: Optional[int] = None, action: str = "") -> str:
    """
    将 browser server 原始错误转为模型可理解的提示。

    覆盖以下典型场景：
    1. strict mode violation - 选择器匹配到多个元素
    2. timeout / not visible - 元素不可见或不存在
    3. intercepts pointer events - 元素被遮挡
    4. Operation timeout - 操作超时
    5. detached from DOM - 元素已从 DOM 移除

    Args:
        error_msg: browser server 返回的原始错误字符串
        index: 当前操作引用的元素序号
        action: 当前执行的操作名

    Returns:
        str: 包含建议下一步操作的错误提示
    """
    target_hint = f" (index={index})" if index is not None else ""
    action_hint = f" {action}" if action else ""

    if "strict mode violation" in error_msg:
        count_match = re.search(r"resolved to (\d+) elements", error_msg)
        count = count_match.group(1) if count_match else "多个"
        return (
            f"元素{target_hint}匹配到了 {count} 个元素，无法确定操作目标。"
            f"【建议】请执行 get_page_info 获取元素列表，改用 index 精确定位。"
        )

    if ("Timeout" in error_msg or "waiting for" in error_msg) and \
       ("to be visible" in error_msg or "not visible" in error_msg):
        return (
            f"元素{target_hint}未找到或不可见（可能页面尚未加载完成，或元素被隐藏）。"
            f"【建议】先执行 wait 等待页面加载，然后重新 get_page_info。"
        )

    if "intercepts pointer events" in error_msg or \
       "not receive pointer events" in error_msg:
        return (
            f"元素{target_hint}被其他元素遮挡，无法点击。"
            f"【建议】先 scroll_to_text 将目标滚动到视口中，或关闭弹窗后重试；"
            f"也可以用 click_at 坐标方式点击。"
        )

    if "Operation timeout" in error_msg or "timeout" in error_msg.lower():
        return (
            f"操作{action_hint}{target_hint}超时。元素可能不可交互或页面状态已变化。"
            f"【建议】执行 get_page_info 查看当前页面状态，确认目标元素是否仍然存在。"
        )

    if "detached" in error_msg.lower() or "no longer attached" in error_msg.lower():
        return (
            f"元素{target_hint}已从页面中移除（页面发生了导航或动态更新）。"
            f"【建议】执行 get_page_info 获取最新元素列表后重试。"
        )

    if "not visible" in error_msg:
        return (
            f"元素{target_hint}当前不可见。"
            f"【建议】尝试滚动页面使其可见，或执行 get_page_info 确认元素状态。"
        )

    return (
        f"操作失败{target_hint}: {error_msg[:300]}。"
        f"【建议】执行 get_page_info 查看当前页面状态后重试。"
    )


class HttpBrowserAdapter(EnvironmentAdapter):
    """通过 HTTP 调用 browser control server 的环境适配器"""

    def __init__(self, server_url: str = "http://localhost:9222", timeout: float = 120.0):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        action = str(payload.get("action", ""))
        index = payload.get("index")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.server_url}/browser",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        friendly_error = to_ai_friendly_error(error_text, index=index, action=action)
                        logger.error(f"❌ [BrowserAdapter] action={action} {friendly_error}")
                        return {"success": False, "error": friendly_error}

                    result = await resp.json()
                    if not isinstance(result, dict):
                        return {"success": False, "error": f"browser server 返回格式错误: {str(result)[:100]}"}

                    if not result.get("success", True) and result.get("error"):
                        result["error"] = to_ai_friendly_error(str(result["error"]), index=index, action=action)

                    result.setdefault("success", True)
                    logger.debug(
                        f"✅ [BrowserAdapter] action={action} 完成: "
                        f"{json.dumps(result, ensure_ascii=False)[:300]}"
                    )
                    return result

        except aiohttp.ClientConnectorError:
            error_msg = (
                f"无法连接到 browser control server ({self.server_url})。"
                f"请确保 browser control server 已启动。"
            )
            logger.error(f"❌ [BrowserAdapter] action={action} {error_msg}")
            return {"success": False, "error": error_msg}
        except asyncio.TimeoutError:
            friendly_error = to_ai_friendly_error("Operation timeout", index=index, action=action)
            logger.error(f"❌ [BrowserAdapter] action={action} {friendly_error}")
            return {"success": False, "error": friendly_error}
        except (aiohttp.ClientError, ValueError) as e:
            friendly_error = to_ai_friendly_error(str(e), index=index, action=action)
            logger.error(f"❌ [BrowserAdapter] action={action} {friendly_error}")
            return {"success": False, "error": friendly_error}

    async def execute(self, action: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post(action)

    async def get_current_url(self) -> str:
        result = await self._post({"action": "current_url"})
        if not result.get("success"):
            logger.warning(f"⚠️ [BrowserAdapter] 无法获取当前页面 URL: {result.get('error')}")
            return ""
        return str(result.get("url") or "")

    async def dismiss_blocking_dialogs(self) -> Dict[str, Any]:
        return await self._post({"action": "dismiss_dialogs"})
