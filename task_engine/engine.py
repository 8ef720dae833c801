"""
任务引擎 - 单任务的操作执行循环

每一步：
    取消检查 → 暂停等待 → 步数检查 → 截断对话 → 调用模型 → 解析操作
    → 证据检查 → 安全检查 → 循环/停滞检测 → 执行 → 回填结果

终态只有三种：completed / failed / canceled，每个任务恰好通知一次，
通知前会把日志全部落盘。
"""
import time
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from loguru import logger

from src.llm_gateway.client import ModelClient
from src.llm_gateway.errors import ModelCallCanceled

from .actions import ACTION_NAMES, BaseAction, NavigateAction, validation_errors
from .control import TaskControl
from .conversation import Message, truncate_conversation
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
from .executors.action_executor import ActionExecutor
from .guard import SafetyContext, SafetyPolicy, collect_candidates
from .models import ActionResult, Task, TaskEvent, TaskOutcome, TaskStatus
from .monitor import StallDetector, StepHistory
from .parser import extract_action_object, parse_action
from .prompts import (
    EVIDENCE_ACTIONS,
    EVIDENCE_REQUIRED_HINT,
    LOOP_HINT,
    UNPARSEABLE_HINT,
    build_followup,
    build_invalid_params_hint,
    build_system_prompt,
    build_unknown_action_hint,
    classify_task,
)
from .skills import MAX_SKILLS, Skill, build_custom_skills_block, extract_skill_mentions, missing_skill_mentions
from .task_log import TaskLogger


EventListener = Callable[[TaskEvent], Any]

# 点击这些文字时目标就是弹窗本身，不能先自动关闭
_DIALOG_TARGET_WORDS = ("恢复", "放弃")


class TaskEngine:
    """
    任务引擎

    使用方式：
        engine = TaskEngine(model_client, executor)
        outcome = await engine.start_task("查询 2026-01-01 到 2026-01-31 的总成本")

    同一时间只运行一个任务；pause / resume / cancel 可在任务运行期间从其他协程调用。
    """

    def __init__(
        self,
        model_client: ModelClient,
        executor: ActionExecutor,
        task_logger: Optional[TaskLogger] = None,
        safety_policy: Optional[SafetyPolicy] = None,
        prompt_builder: Callable[[str, str, str], str] = build_system_prompt,
        categorizer: Callable[[str], Optional[str]] = classify_task,
        evidence_actions: Mapping[str, FrozenSet[str]] = EVIDENCE_ACTIONS,
        start_url_resolver: Optional[Callable[[str, str], Optional[str]]] = None,
        result_store: Any = None,
        skills_provider: Optional[Callable[[], List[Skill]]] = None,
        max_skills: int = MAX_SKILLS,
        default_max_steps: int = 15,
        max_steps_limit: int = 200,
        conversation_window: int = 8,
        repeat_window: int = 10,
        repeat_threshold: int = 5,
        stall_threshold: int = 5,
        max_tokens: int = 1600,
        temperature: float = 0.1,
        auto_dismiss_dialogs: bool = True,
    ):
        self.model_client = model_client
        self.executor = executor
        self.task_logger = task_logger or TaskLogger()
        self.safety_policy = safety_policy or SafetyPolicy()
        self._prompt_builder = prompt_builder
        self._categorizer = categorizer
        self._evidence_actions = dict(evidence_actions)
        self._start_url_resolver = start_url_resolver
        self._result_store = result_store
        self._skills_provider = skills_provider
        self.max_skills = max_skills

        self.default_max_steps = default_max_steps
        self.max_steps_limit = max_steps_limit
        self.conversation_window = conversation_window
        self.repeat_window = repeat_window
        self.repeat_threshold = repeat_threshold
        self.stall_threshold = stall_threshold
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.auto_dismiss_dialogs = auto_dismiss_dialogs

        self._task: Optional[Task] = None
        self._control: Optional[TaskControl] = None
        self._steps = 0
        self._listeners: List[EventListener] = []
        self.last_outcome: Optional[TaskOutcome] = None
        self.last_result: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------
    # 公共接口
    # ------------------------------------------------------------

    @property
    def state(self) -> TaskStatus:
        if self._task is None or self._control is None:
            return TaskStatus.IDLE
        if self._control.is_paused():
            return TaskStatus.PAUSED
        return TaskStatus.RUNNING

    async def start_task(
        self,
        description: str,
        model: Optional[str] = None,
        max_steps: Optional[int] = None,
        context_text: str = "",
        skill_mentions: Optional[List[str]] = None,
    ) -> TaskOutcome:
        """
        运行一个任务直到终态

        Args:
            description: 自然语言任务
            model: 使用的模型，默认为 Model Client 的默认模型
            max_steps: 步数上限，限制在 1..max_steps_limit
            context_text: 传给提示词构建器的上下文
            skill_mentions: 指定注入的技能，默认从任务描述中的 @提及 提取

        Returns:
            TaskOutcome

        Raises:
            TaskAlreadyRunning: 已有任务在运行
        """
        if self._task is not None:
            raise TaskAlreadyRunning("已有任务在运行")
        if not description or not description.strip():
            raise ValueError("任务描述不能为空")

        task = Task(
            description=description.strip(),
            model=model or self.model_client.model,
            max_steps=self._clamp_steps(max_steps),
        )
        control = TaskControl()
        self._task = task
        self._control = control
        self._steps = 0
        self.executor.reset()

        logger.debug(f"🚀 [TaskEngine] ===== 开始任务 ===== id={task.id}")
        try:
            outcome = await self._run(task, control, context_text, skill_mentions)
        finally:
            await self.task_logger.flush()
            self._task = None
            self._control = None

        self.last_outcome = outcome
        logger.debug(f"🏁 [TaskEngine] ===== 任务结束 ===== status={outcome.status.value}, steps={outcome.steps}")
        self._emit(TaskEvent(outcome.status.value, outcome.to_dict()))
        return outcome

    def pause(self) -> bool:
        """暂停当前任务，下一步开始前生效"""
        if self.state != TaskStatus.RUNNING or self._control.is_canceled():
            return False
        self._control.pause()
        self.task_logger.log("⏸ 已暂停任务", "warn")
        self._emit(TaskEvent("paused"))
        return True

    def resume(self) -> bool:
        if self.state != TaskStatus.PAUSED:
            return False
        self._control.resume()
        self.task_logger.log("▶️ 已继续任务", "info")
        self._emit(TaskEvent("resumed"))
        return True

    def cancel(self) -> bool:
        """取消当前任务，并中止进行中的模型调用"""
        if self._control is None:
            return False
        self._control.cancel()
        self.task_logger.log("⛔ 已停止任务", "error")
        return True

    def is_paused(self) -> bool:
        return self._control is not None and self._control.is_paused()

    def is_canceled(self) -> bool:
        return self._control is not None and self._control.is_canceled()

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "paused": self.is_paused(),
            "task": self._task.description if self._task else None,
            "step": self._steps,
            "logs": self.task_logger.to_dicts(),
            "last_result": self.last_result,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
        }

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """订阅任务事件，返回取消订阅函数"""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------
    # 主循环
    # ------------------------------------------------------------

    async def _run(
        self,
        task: Task,
        control: TaskControl,
        context_text: str,
        skill_mentions: Optional[List[str]] = None,
    ) -> TaskOutcome:
        log = self.task_logger.log
        history = StepHistory(self.repeat_window, self.repeat_threshold)
        stall = StallDetector(self.stall_threshold)
        category = self._categorizer(task.description)
        evidence_set = self._evidence_actions.get(category) if category else None
        evidence = 0

        try:
            log(f"开始任务: {task.description}", "info")
            log(f"使用模型: {task.model}", "info")
            await self._auto_navigate(task, control)
            skills_block = self._skills_block(task, skill_mentions)

            messages: List[Message] = [
                {"role": "system", "content": self._prompt_builder(task.description, context_text, skills_block)}
            ]
            log(f"🚀 开始执行任务步骤（最多{task.max_steps}步）...", "action")

            while True:
                control.raise_if_canceled()
                await control.wait_if_paused()

                if self._steps >= task.max_steps:
                    raise StepBudgetExceeded(f"任务执行步骤过多（{task.max_steps}步），已停止")
                self._steps += 1
                log(f"步骤 {self._steps}/{task.max_steps}: 等待 AI 指令...", "action")

                messages = truncate_conversation(messages, self.conversation_window)
                with control.cancel_scope() as token:
                    response = await self.model_client.chat_with_retry(
                        messages,
                        model=task.model,
                        max_tokens=self.max_tokens,
                        temperature=self.temperature,
                        cancel_token=token,
                        on_log=log,
                    )
                content = response.content

                try:
                    action = self._parse(content)
                except ActionParseFailure as e:
                    log(f"⚠️ {e.reason}", "warn")
                    if e.field_errors:
                        hint = build_invalid_params_hint(e.action_name, e.field_errors)
                    elif e.action_name:
                        hint = build_unknown_action_hint(e.action_name)
                    else:
                        hint = UNPARSEABLE_HINT
                    messages.append({"role": "assistant", "content": content})
                    messages.append({"role": "user", "content": hint})
                    continue

                if action.name == "finish" and evidence_set is not None and evidence == 0:
                    log("⚠️ 尚未获取页面信息，拒绝直接 finish", "warn")
                    messages.append({"role": "assistant", "content": content})
                    messages.append({"role": "user", "content": EVIDENCE_REQUIRED_HINT})
                    continue

                await self._check_safety(action)

                thinking = action.thinking or action.value_of("思路") or action.value_of("说明") or ""
                log(f"🤖 AI 操作: {action.name}" + (f"（{thinking}）" if thinking else ""), "action")

                history.record(action.name)
                repeated = history.repeated_action()
                if repeated:
                    log(f"⚠️ 检测到可能的循环: {repeated[0]} 在最近 {self.repeat_window} 步中出现 {repeated[1]} 次", "warn")

                if stall.record(action.name):
                    raise StallDetected(f"检测到无限循环（连续 wait {stall.count}次）")

                self._emit(TaskEvent("progress", {"step": self._steps, "action": action.name, "thinking": thinking}))
                await self._dismiss_dialogs(action)

                await control.wait_if_paused()
                result = await self.executor.execute(action)

                if result.success:
                    log(f"✅ {action.name} 执行成功", "success")
                else:
                    log(f"⚠️ {action.name} 执行失败: {result.error}", "warn")

                if evidence_set is not None and self._is_evidence(action, result, evidence_set):
                    evidence += 1

                if result.stop_execution:
                    raise ExecutionFailure(result.error or f"{action.name} 要求终止任务")

                if action.name == "finish":
                    return self._complete(task, result)

                messages.append({"role": "assistant", "content": content})
                messages.append({"role": "user", "content": build_followup(action, result)})
                if repeated:
                    messages.append({"role": "user", "content": LOOP_HINT})

        except TaskCanceled as e:
            log(f"⛔ {e.reason}", "error")
            return self._outcome(task, TaskStatus.CANCELED, error=e.reason, error_type=type(e).__name__)
        except Exception as e:
            if control.is_canceled() or isinstance(e, ModelCallCanceled):
                log("⛔ 任务已取消", "error")
                return self._outcome(task, TaskStatus.CANCELED, error="任务已取消", error_type=TaskCanceled.__name__)
            log(f"❌ 任务失败: {e}", "error")
            if not isinstance(e, TaskEngineError):
                logger.exception(f"❌ [TaskEngine] 任务异常: {e}")
            return self._outcome(task, TaskStatus.FAILED, error=str(e), error_type=type(e).__name__)

    # ------------------------------------------------------------
    # 步骤细节
    # ------------------------------------------------------------

    def _parse(self, content: str) -> BaseAction:
        action = parse_action(content)
        if action is not None:
            return action

        obj = extract_action_object(content)
        if obj is not None:
            name = str(obj.get("action"))
            if name in ACTION_NAMES:
                errors = validation_errors(obj)
                raise ActionParseFailure(f"操作参数无效: {name}", raw=content, action_name=name, field_errors=errors)
            raise ActionParseFailure(f"无效操作: {name}", raw=content, action_name=name)
        raise ActionParseFailure(f"无法解析 AI 响应: {content[:100]}", raw=content)

    async def _check_safety(self, action: BaseAction) -> None:
        last_page_info = self.executor.last_page_info
        if not collect_candidates(action, last_page_info):
            return
        url = await self.executor.get_current_url()
        reason = self.safety_policy.classify(action, SafetyContext(url=url, last_page_info=last_page_info))
        if reason:
            raise SafetyBlocked(f"检测到删除操作，已拦截：{reason}")

    async def _dismiss_dialogs(self, action: BaseAction) -> None:
        if not self.auto_dismiss_dialogs or action.name == "finish":
            return
        if action.name == "click":
            target = action.value_of("selector") or action.value_of("target") or ""
            if isinstance(target, str) and any(word in target for word in _DIALOG_TARGET_WORDS):
                return
        dismissed = await self.executor.dismiss_blocking_dialogs()
        if dismissed.get("dismissed"):
            self.task_logger.log("🧹 已自动关闭弹窗", "action")

    async def _auto_navigate(self, task: Task, control: TaskControl) -> None:
        if self._start_url_resolver is None:
            return
        current_url = await self.executor.get_current_url()
        target = self._start_url_resolver(task.description, current_url)
        if not target:
            self.task_logger.log("✅ 当前页面可用，交给 AI 决定是否导航", "success")
            return

        control.raise_if_canceled()
        self.task_logger.log(f"🌐 自动打开页面: {target}", "action")
        result = await self.executor.execute(NavigateAction(action="navigate", url=target))
        if not result.success:
            self.task_logger.log(f"⚠️ 自动导航失败: {result.error}", "warn")

    def _skills_block(self, task: Task, skill_mentions: Optional[List[str]]) -> str:
        if self._skills_provider is None:
            return ""
        skills = self._skills_provider()
        mentions = skill_mentions or extract_skill_mentions(task.description)
        missing = missing_skill_mentions(mentions, skills)
        if missing:
            self.task_logger.log(f"⚠️ 未找到技能: {', '.join('@' + m for m in missing)}", "warn")
        block = build_custom_skills_block(skills, mentions, self.max_skills)
        if block:
            self.task_logger.log("📚 已注入自定义技能", "info")
        return block

    @staticmethod
    def _is_evidence(action: BaseAction, result: ActionResult, evidence_set: FrozenSet[str]) -> bool:
        if not result.success:
            return False
        return action.name in evidence_set or result.get("data") is not None or result.get("result") is not None

    def _complete(self, task: Task, result: ActionResult) -> TaskOutcome:
        text = result.get("result") or ""
        self.last_result = {"task": task.description, "result": text, "ts": int(time.time() * 1000)}
        if self._result_store is not None:
            self._result_store.save_last_result(task.description, text)
        self.task_logger.log(f"✅ 任务完成: {text}", "result")
        return self._outcome(task, TaskStatus.COMPLETED, result=text)

    def _outcome(
        self,
        task: Task,
        status: TaskStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> TaskOutcome:
        return TaskOutcome(
            task_id=task.id,
            description=task.description,
            status=status,
            result=result,
            error=error,
            error_type=error_type,
            steps=self._steps,
        )

    def _clamp_steps(self, max_steps: Optional[int]) -> int:
        value = int(max_steps or self.default_max_steps)
        return min(max(value, 1), self.max_steps_limit)

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"⚠️ [TaskEngine] 事件监听器异常: {e}")
