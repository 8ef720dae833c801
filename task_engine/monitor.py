"""
循环检测

- StepHistory：最近 N 个操作名的滑动窗口；窗口填满后若某个操作出现
  次数达到阈值，返回一个提示（非致命）
- StallDetector：连续 wait 计数，达到上限即判定为停滞（致命）

两个阈值相互独立，分别配置。
"""
from collections import Counter, deque
from typing import Deque, Optional, Tuple


class StepHistory:
    """操作名滑动窗口"""

    def __init__(self, window: int = 10, threshold: int = 5):
        self.window = window
        self.threshold = threshold
        self._names: Deque[str] = deque(maxlen=window)

    def record(self, action_name: str) -> None:
        self._names.append(action_name)

    def repeated_action(self) -> Optional[Tuple[str, int]]:
        """
        检测重复操作

        Returns:
            (操作名, 出现次数)，窗口未满或没有达到阈值时返回 None
        """
        if len(self._names) < self.window:
            return None
        name, count = Counter(self._names).most_common(1)[0]
        if count >= self.threshold:
            return name, count
        return None

    def names(self) -> Tuple[str, ...]:
        return tuple(self._names)

    def clear(self) -> None:
        self._names.clear()


class StallDetector:
    """连续 wait 计数"""

    def __init__(self, threshold: int = 5, stall_actions: Tuple[str, ...] = ("wait",)):
        self.threshold = threshold
        self.stall_actions = stall_actions
        self.count = 0

    def record(self, action_name: str) -> bool:
        """记录一个操作，返回是否已停滞"""
        if action_name in self.stall_actions:
            self.count += 1
        else:
            self.count = 0
        return self.count >= self.threshold

    def reset(self) -> None:
        self.count = 0
