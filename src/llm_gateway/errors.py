"""
Model Client 错误类型

调用方可以根据异常类型决定是否重试、是否切换模型。
"""
from typing import Optional


class ModelError(Exception):
    """模型调用失败的基类"""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class ModelTimeout(ModelError):
    """请求超过了模型对应的超时时间"""

    def __init__(self, timeout: float, model: Optional[str] = None):
        super().__init__(f"AI 调用超时（{timeout:g}秒）", model)
        self.timeout = timeout


class HttpError(ModelError):
    """服务端返回非 2xx 状态码"""

    def __init__(self, status: int, body: str, model: Optional[str] = None):
        super().__init__(f"API 错误 {status}: {body}", model)
        self.status = status
        self.body = body

    @property
    def is_unknown_model(self) -> bool:
        return "unknown_model" in self.body.lower()


class ParseError(ModelError):
    """响应体不是合法 JSON"""


class EmptyChoices(ModelError):
    """响应中没有 choices"""


class NoContent(ModelError):
    """choices 存在但没有任何文本内容"""

    def __init__(self, finish_reason: Optional[str], model: Optional[str] = None):
        super().__init__(f"AI 返回内容为空 (finish_reason: {finish_reason or 'unknown'})", model)
        self.finish_reason = finish_reason


class ModelCallCanceled(ModelError):
    """进行中的调用被 CancelToken 中止"""

    def __init__(self, model: Optional[str] = None):
        super().__init__("AI 调用已取消", model)
