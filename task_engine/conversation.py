"""
对话窗口截断

第一条消息始终是 system prompt；超过窗口时保留第一条 + 最近 N 条，顺序不变。
"""
from typing import Dict, List


Message = Dict[str, str]


def truncate_conversation(messages: List[Message], keep_last: int = 8) -> List[Message]:
    """
    截断对话

    Args:
        messages: 完整对话，第一条为 system
        keep_last: 保留的最近消息数

    Returns:
        截断后的新列表（不修改原列表）
    """
    if len(messages) <= keep_last + 1:
        return list(messages)
    if keep_last <= 0:
        return [messages[0]]
    return [messages[0]] + messages[-keep_last:]
