"""
Action Parser - 从模型输出中提取一个操作

按顺序尝试，第一个成功的结果生效：
1. 整段文本直接作为 JSON 解析
2. 第一个 ``` 代码块（可带 json 标记）的内容
3. 第一个包含 "action" 键的 {...} 片段

任何一步解析失败都只是进入下一步，不抛异常。
"""
import json
import re
from typing import Any, Dict, Optional

from loguru import logger

from .actions import BaseAction, to_action


_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_ACTION_KEY_RE = re.compile(r'"action"\s*:')

_decoder = json.JSONDecoder()


def _as_action_object(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict) and isinstance(value.get("action"), str) and value["action"]:
        return value
    return None


def _loads(text: str) -> Optional[Dict[str, Any]]:
    try:
        return _as_action_object(json.loads(text))
    except ValueError:
        return None


def _scan_braces(text: str) -> Optional[Dict[str, Any]]:
    """从每个 { 开始尝试解码一个完整 JSON 值，返回第一个带 action 的对象"""
    if not _ACTION_KEY_RE.search(text):
        return None

    start = text.find("{")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except ValueError:
            value = None
        obj = _as_action_object(value)
        if obj is not None:
            return obj
        start = text.find("{", start + 1)
    return None


def extract_action_object(raw_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    提取操作对象（未做词汇表校验）

    Args:
        raw_text: 模型原始输出

    Returns:
        带 action 字段的 dict，找不到时返回 None
    """
    if not raw_text or not isinstance(raw_text, str):
        return None

    text = raw_text.strip()

    obj = _loads(text)
    if obj is not None:
        return obj

    fence = _FENCE_RE.search(text)
    if fence:
        obj = _loads(fence.group(1).strip())
        if obj is not None:
            return obj

    return _scan_braces(text)


def parse_action(raw_text: Optional[str]) -> Optional[BaseAction]:
    """
    解析模型输出为 Action

    Returns:
        Action，无法解析或 action 不在词汇表中时返回 None
    """
    obj = extract_action_object(raw_text)
    if obj is None:
        return None

    action = to_action(obj)
    if action is None:
        logger.warning(f"⚠️ [ActionParser] 无效操作: {obj.get('action')}")
    return action
