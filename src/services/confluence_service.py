"""
Confluence Service - 文档检索服务

提供以下功能：
1. CQL 全文搜索页面
2. 获取页面正文（HTML 转纯文本并截断）
3. 获取子页面列表
4. 在周报根目录下按标题查找
"""
import asyncio
import html
import re
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger


class ConfluenceError(Exception):
    """Confluence 调用失败"""


def html_to_text(content: str) -> str:
    """
    HTML 转纯文本

    Args:
        content: storage 格式的 HTML

    Returns:
        str: 清理后的纯文本
    """
    if not content:
        return ""

    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", content, flags=re.IGNORECASE)
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", text, flags=re.IGNORECASE)

    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</(div|li|tr)>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</h[1-6]>", "\n\n", text, flags=re.IGNORECASE)

    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")

    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ConfluenceClient:
    """
    Confluence REST API 客户端

    所有失败都以 ConfluenceError 抛出，由调用它的操作负责捕获并上报。
    """

    DEFAULT_WEEKLY_REPORT_ROOT = "529775023"

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 10.0,
        weekly_report_root: Optional[str] = DEFAULT_WEEKLY_REPORT_ROOT,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self.weekly_report_root = weekly_report_root

    def _headers(self) -> Dict[str, str]:
        if not self.base_url:
            raise ConfluenceError("Confluence 地址未配置")
        if not self.token:
            raise ConfluenceError("Confluence Token 未配置")
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _page_url(self, page: Dict[str, Any]) -> str:
        webui = (page.get("_links") or {}).get("webui")
        if not webui:
            webui = f"/pages/viewpage.action?pageId={page.get('id')}"
        return f"{self.base_url}{webui}"

    def _summarize_page(self, page: Dict[str, Any]) -> Dict[str, Any]:
        space = page.get("space") or {}
        version = page.get("version") or {}
        return {
            "id": page.get("id"),
            "title": page.get("title", ""),
            "space": space.get("name") or space.get("key") or "",
            "url": self._page_url(page),
            "last_modified": version.get("when", ""),
            "last_modified_by": (version.get("by") or {}).get("displayName", ""),
        }

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None, action: str = "请求") -> Dict[str, Any]:
        headers = self._headers()
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ConfluenceError(f"Confluence {action}失败 ({response.status}): {error_text[:100]}")
                    return await response.json()
        except asyncio.TimeoutError as e:
            raise ConfluenceError(f"Confluence {action}超时") from e
        except aiohttp.ClientError as e:
            raise ConfluenceError(f"Confluence {action}失败: {e}") from e

    async def search(self, query: str, limit: int = 10, space_key: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        搜索页面

        Args:
            query: 搜索关键词
            limit: 最大结果数
            space_key: 限定空间

        Returns:
            List[Dict]: {id, title, space, url, last_modified, last_modified_by}
        """
        logger.info(f"🔍 [Confluence] 搜索: {query}")
        escaped = query.replace('"', '\\"')
        cql = f'text ~ "{escaped}" AND type = page'
        if space_key:
            cql += f' AND space = "{space_key}"'

        data = await self._get_json(
            "/rest/api/content/search",
            params={"cql": cql, "limit": limit, "expand": "space,version"},
            action="搜索",
        )
        results = [self._summarize_page(page) for page in data.get("results") or []]
        logger.info(f"✅ [Confluence] 找到 {len(results)} 个结果")
        return results

    async def get_content(self, page_id: str, max_length: int = 8000) -> Dict[str, Any]:
        """
        获取页面正文

        Args:
            page_id: 页面 ID
            max_length: 正文最大长度

        Returns:
            Dict: {id, title, space, url, content, version, last_modified, last_modified_by}
        """
        logger.info(f"📄 [Confluence] 获取页面: {page_id}")
        data = await self._get_json(
            f"/rest/api/content/{page_id}",
            params={"expand": "body.storage,space,version"},
            action="获取页面",
        )

        storage = ((data.get("body") or {}).get("storage") or {}).get("value", "")
        page = self._summarize_page(data)
        page["id"] = page["id"] or page_id
        page["content"] = truncate_text(html_to_text(storage), max_length)
        page["version"] = (data.get("version") or {}).get("number")
        logger.info(f"✅ [Confluence] 获取页面成功: {page['title']}")
        return page

    async def get_child_pages(self, page_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """获取子页面列表"""
        data = await self._get_json(
            f"/rest/api/content/{page_id}/child/page",
            params={"expand": "version,space", "limit": limit},
            action="获取子页面",
        )
        return [self._summarize_page(page) for page in data.get("results") or []]

    async def search_weekly_reports(self, keyword: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        在周报根目录下按标题查找，找不到时退回全文搜索

        Args:
            keyword: 标题关键词
            limit: 最大结果数
        """
        if self.weekly_report_root:
            try:
                children = await self.get_child_pages(self.weekly_report_root)
            except ConfluenceError as e:
                logger.warning(f"⚠️ [Confluence] 周报目录读取失败: {e}")
                children = []
            keyword_lower = keyword.lower()
            matched = [page for page in children if keyword_lower in (page.get("title") or "").lower()]
            if matched:
                return matched[:limit]

        return await self.search(keyword, limit=limit)
