"""
任务循环错误类型

- ActionParseFailure：可恢复，循环向模型追加纠正提示后继续
- SafetyBlocked / StepBudgetExceeded / StallDetected / ExecutionFailure：终止任务
- TaskCanceled：终止任务，单独上报为 canceled
"""
from typing import List, Optional


class TaskEngineError(Exception):
    """任务循环错误基类"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ActionParseFailure(TaskEngineError):
    """模型输出中没有可用的操作"""

    def __init__(self, reason: str, raw: str = "", action_name: str = "", field_errors: Optional[List[str]] = None):
        super().__init__(reason)
        self.raw = raw
        self.action_name = action_name
        self.field_errors = field_errors or []


class SafetyBlocked(TaskEngineError):
    """操作被安全策略拦截，不重试"""


class StepBudgetExceeded(TaskEngineError):
    """超过步数上限"""


class StallDetected(TaskEngineError):
    """连续 wait 次数达到上限"""


class ExecutionFailure(TaskEngineError):
    """环境适配器要求终止任务"""


class TaskCanceled(TaskEngineError):
    """任务被取消"""

    def __init__(self, reason: str = "任务已取消"):
        super().__init__(reason)


class TaskAlreadyRunning(RuntimeError):
    """已有任务在运行"""
