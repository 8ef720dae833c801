"""
Task / ActionResult / LogEntry 数据模型

定义任务引擎的核心数据结构，包括：
- Task：一次任务运行
- TaskStatus：任务状态枚举
- ActionResult：环境适配器返回的操作结果
- LogEntry：任务日志条目
- TaskOutcome：任务终态
- TaskEvent：推送给观察者的事件
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class TaskStatus(str, Enum):
    """任务状态"""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELED)


@dataclass
class Task:
    """
    一次任务运行

    Attributes:
        description: 用户的自然语言任务
        model: 使用的模型
        max_steps: 步数上限
        id: 任务 ID
        started_at: 开始时间
    """
    description: str
    model: str
    max_steps: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=datetime.now)


@dataclass
class ActionResult:
    """
    操作执行结果

    Attributes:
        success: 是否成功
        error: 失败原因
        data: 操作相关的数据（formatted / data / dismissed 等）
        stop_execution: 适配器要求终止整个任务
    """
    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    stop_execution: bool = False

    _RESERVED = ("success", "error", "stopExecution", "stop_execution")

    @classmethod
    def from_raw(cls, raw: Any) -> "ActionResult":
        """把适配器返回的 dict 规范化为 ActionResult"""
        if isinstance(raw, ActionResult):
            return raw
        if not isinstance(raw, dict):
            return cls(success=False, error=f"无效的执行结果: {str(raw)[:100]}")
        payload = {k: v for k, v in raw.items() if k not in cls._RESERVED}
        return cls(
            success=bool(raw.get("success")),
            error=raw.get("error") or None,
            data=payload,
            stop_execution=bool(raw.get("stopExecution") or raw.get("stop_execution")),
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error:
            result["error"] = self.error
        result.update(self.data)
        if self.stop_execution:
            result["stop_execution"] = True
        return result


LOG_LEVELS = {
    "debug": 0,
    "info": 1,
    "action": 1,
    "success": 1,
    "result": 1,
    "warn": 2,
    "error": 3,
}


@dataclass(frozen=True)
class LogEntry:
    """任务日志条目，创建后不再修改"""
    time: str
    timestamp: int
    level: int
    type: str
    message: str

    @classmethod
    def create(cls, message: str, log_type: str = "info") -> "LogEntry":
        now = time.time()
        return cls(
            time=datetime.fromtimestamp(now).strftime("%H:%M:%S"),
            timestamp=int(now * 1000),
            level=LOG_LEVELS.get(log_type, 1),
            type=log_type,
            message=message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "timestamp": self.timestamp,
            "level": self.level,
            "type": self.type,
            "message": self.message,
        }


@dataclass
class TaskOutcome:
    """
    任务终态

    Attributes:
        task_id: 任务 ID
        description: 任务描述
        status: COMPLETED / FAILED / CANCELED
        result: finish 返回的结果文本
        error: 失败原因
        error_type: 失败异常类型名
        steps: 已执行的步数
    """
    task_id: str
    description: str
    status: TaskStatus
    result: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    steps: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "description": self.description,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "error_type": self.error_type,
            "steps": self.steps,
        }


@dataclass
class TaskEvent:
    """推送给观察者的事件（progress / paused / resumed / completed / failed / canceled）"""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
