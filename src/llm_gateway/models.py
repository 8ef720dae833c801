"""
模型配置表

- 每个模型的最大输出 token 数（精确匹配 + 前缀回退）
- 快速失败模型族 / 推理模型族的判定
- API 地址规范化
"""
from typing import Dict, Iterable, Optional


DEFAULT_MAX_TOKENS = 2000

MODEL_MAX_TOKENS: Dict[str, int] = {
    "gpt-5.2": 32768,
    "gpt-5.2-chat": 32768,
    "glm-4.7": 128000,
    "gpt-4o": 16384,
    "gpt-4o-mini": 16384,
    "deepseek-reasoner": 32768,
    "deepseek-v3.2": 32768,
    "minimax-m2.1": 65536,
}

# 未在上表中出现的模型按前缀回退，最长前缀优先
MODEL_PREFIX_MAX_TOKENS: Dict[str, int] = {
    "gpt-5": 32768,
    "gpt-4o": 16384,
    "deepseek": 32768,
    "glm": 128000,
}

FAST_FAIL_MARKERS = ("gemini",)
REASONING_PREFIXES = ("gpt-5", "o1")


def get_model_max_tokens(model: Optional[str], default: int = DEFAULT_MAX_TOKENS) -> int:
    """
    获取模型的最大输出 token 数

    Args:
        model: 模型名称
        default: 未知模型的保守默认值

    Returns:
        int: 最大 token 数
    """
    if not model:
        return default

    name = model.strip().lower()
    if name in MODEL_MAX_TOKENS:
        return MODEL_MAX_TOKENS[name]

    matches = [prefix for prefix in MODEL_PREFIX_MAX_TOKENS if name.startswith(prefix)]
    if matches:
        return MODEL_PREFIX_MAX_TOKENS[max(matches, key=len)]

    return default


def is_fast_fail_model(model: Optional[str], markers: Iterable[str] = FAST_FAIL_MARKERS) -> bool:
    """快速失败模型族：过载时倾向于长时间挂起，使用短超时"""
    name = (model or "").lower()
    return any(marker.lower() in name for marker in markers)


def uses_completion_tokens_param(model: Optional[str], prefixes: Iterable[str] = REASONING_PREFIXES) -> bool:
    """推理模型族使用 max_completion_tokens，其余模型使用 max_tokens"""
    name = (model or "").lower()
    return any(name.startswith(prefix.lower()) for prefix in prefixes)


def token_limit_param(model: Optional[str], prefixes: Iterable[str] = REASONING_PREFIXES) -> str:
    return "max_completion_tokens" if uses_completion_tokens_param(model, prefixes) else "max_tokens"


def normalize_api_url(url: Optional[str], default_base: str = "https://api.openai.com/v1") -> str:
    """
    规范化 chat completions 地址

    - 空值使用默认地址
    - 已经以 /chat/completions 结尾的保持不变
    - 其余（通常以 /v1 结尾）追加 /chat/completions
    """
    base = (url or "").strip() or default_base
    base = base.rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"
