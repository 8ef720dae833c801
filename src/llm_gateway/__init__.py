"""
LLM Gateway - 模型调用层

提供：
- 按模型族区分的超时和 token 参数
- 失败重试与备用模型切换
- 可取消的流式输出
"""

from .cancellation import CancelToken
from .client import ChatResult, ModelClient, parse_sse_line
from .errors import (
    EmptyChoices,
    HttpError,
    ModelCallCanceled,
    ModelError,
    ModelTimeout,
    NoContent,
    ParseError,
)
from .models import (
    MODEL_MAX_TOKENS,
    get_model_max_tokens,
    is_fast_fail_model,
    normalize_api_url,
    token_limit_param,
    uses_completion_tokens_param,
)

__all__ = [
    'CancelToken',
    'ChatResult',
    'ModelClient',
    'parse_sse_line',
    'ModelError',
    'ModelTimeout',
    'HttpError',
    'ParseError',
    'EmptyChoices',
    'NoContent',
    'ModelCallCanceled',
    'MODEL_MAX_TOKENS',
    'get_model_max_tokens',
    'is_fast_fail_model',
    'normalize_api_url',
    'token_limit_param',
    'uses_completion_tokens_param',
]
