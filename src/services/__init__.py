"""
Services package
"""
# 文档检索
from .confluence_service import ConfluenceClient, ConfluenceError

# 任务日志存储
from .task_log_store import RedisTaskLogStore

__all__ = [
    "ConfluenceClient",
    "ConfluenceError",
    "RedisTaskLogStore",
]
