"""
任务引擎模块 - AI 自主操控数仓平台

用户给出自然语言任务，模型每步返回一个 JSON 操作，
引擎校验、安全检查后交给环境适配器执行，并把结果回填给模型，
直到 finish 或出现终止条件。

核心流程：
模型决策 → 解析校验 → 安全拦截 → 执行 → 回填结果 → 下一步
"""
from .actions import ACTION_NAMES, BaseAction, to_action
from .bootstrap import build_task_engine
from .control import TaskControl
from .engine import TaskEngine
from .errors import (
    ActionParseFailure,
    ExecutionFailure,
    SafetyBlocked,
    StallDetected,
    StepBudgetExceeded,
    TaskAlreadyRunning,
    TaskCanceled,
    TaskEngineError,
)
from .guard import KeywordTable, SafetyContext, SafetyPolicy
from .models import ActionResult, LogEntry, Task, TaskEvent, TaskOutcome, TaskStatus
from .reporter import format_outcome
from .skills import Skill, load_skills
from .task_log import TaskLogger

__all__ = [
    "ACTION_NAMES",
    "BaseAction",
    "to_action",
    "build_task_engine",
    "TaskControl",
    "TaskEngine",
    "TaskEngineError",
    "ActionParseFailure",
    "SafetyBlocked",
    "StepBudgetExceeded",
    "StallDetected",
    "ExecutionFailure",
    "TaskCanceled",
    "TaskAlreadyRunning",
    "KeywordTable",
    "SafetyContext",
    "SafetyPolicy",
    "ActionResult",
    "LogEntry",
    "Task",
    "TaskEvent",
    "TaskOutcome",
    "TaskStatus",
    "format_outcome",
    "Skill",
    "load_skills",
    "TaskLogger",
]
