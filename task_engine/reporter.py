"""
报告生成器 - 用户友好回复

将任务终态转换为自然语言回复。
"""
from .models import TaskOutcome, TaskStatus


def format_outcome(outcome: TaskOutcome) -> str:
    """
    生成用户友好的任务执行报告

    Args:
        outcome: 任务终态

    Returns:
        str: 自然语言回复
    """
    if outcome.status == TaskStatus.COMPLETED:
        msg = outcome.result or "任务已完成"
        return f"✅ {msg}\n\n（共 {outcome.steps} 步）"

    if outcome.status == TaskStatus.CANCELED:
        return f"⛔ {outcome.error or '任务已取消'}"

    if outcome.status == TaskStatus.FAILED:
        msg = outcome.error or "任务执行失败"
        if outcome.error_type == "SafetyBlocked":
            return f"🛡️ {msg}"
        return f"❌ {msg}"

    return "⏳ 任务仍在处理中..."
