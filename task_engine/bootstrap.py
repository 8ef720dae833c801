"""
按配置组装任务引擎

ModelClient / HttpBrowserAdapter / ConfluenceClient / RedisTaskLogStore
都从 config.settings 读取参数。
"""
from functools import partial
from typing import Optional

from loguru import logger

from config.settings import Settings, settings as default_settings
from src.llm_gateway.client import ModelClient
from src.services.confluence_service import ConfluenceClient
from src.services.task_log_store import RedisTaskLogStore

from .engine import TaskEngine
from .executors.action_executor import ActionExecutor
from .executors.base import EnvironmentAdapter
from .executors.browser_adapter import HttpBrowserAdapter
from .prompts import build_system_prompt, resolve_start_url
from .skills import load_skills
from .task_log import TaskLogger


def build_model_client(config: Settings) -> ModelClient:
    return ModelClient(
        api_url=config.llm_api_url,
        api_token=config.llm_api_token,
        model=config.llm_model,
        fallback_model=config.llm_fallback_model,
        timeout=config.llm_timeout,
        fast_fail_timeout=config.llm_fast_fail_timeout,
        fast_fail_markers=config.llm_fast_fail_markers,
        reasoning_prefixes=config.llm_reasoning_prefixes,
        max_retries=config.llm_max_retries,
        retry_delay=config.llm_retry_delay,
        default_max_tokens=config.llm_default_max_tokens,
        client_name=config.llm_client_name,
    )


def build_confluence_client(config: Settings) -> Optional[ConfluenceClient]:
    if not config.confluence_base_url or not config.confluence_token:
        logger.info("ℹ️ [Bootstrap] Confluence 未配置，confluence_* 操作将返回失败")
        return None
    return ConfluenceClient(
        base_url=config.confluence_base_url,
        token=config.confluence_token,
        timeout=config.confluence_timeout,
        weekly_report_root=config.confluence_weekly_report_root,
    )


def build_task_engine(
    config: Optional[Settings] = None,
    adapter: Optional[EnvironmentAdapter] = None,
    restore_logs: bool = True,
) -> TaskEngine:
    """
    创建任务引擎

    Args:
        config: 配置，默认使用全局 settings
        adapter: 环境适配器，默认连接浏览器控制服务
        restore_logs: 是否从存储恢复历史日志

    Returns:
        TaskEngine
    """
    config = config or default_settings

    store = RedisTaskLogStore(
        redis_url=config.redis_url,
        key=config.task_log_key,
        max_logs=config.max_task_logs,
    )
    task_logger = TaskLogger(store=store, max_logs=config.max_task_logs, save_delay=config.task_log_save_delay)
    if restore_logs:
        restored = task_logger.restore()
        if restored:
            logger.info(f"📜 [Bootstrap] 恢复了 {restored} 条历史日志")

    executor = ActionExecutor(
        adapter or HttpBrowserAdapter(config.browser_server_url, config.browser_timeout),
        confluence=build_confluence_client(config),
    )

    start_url_resolver = None
    if config.auto_navigate:
        start_url_resolver = partial(resolve_start_url, base_url=config.platform_base_url)

    skills_provider = None
    if config.custom_skills_path:
        skills_provider = partial(load_skills, config.custom_skills_path)

    engine = TaskEngine(
        model_client=build_model_client(config),
        executor=executor,
        task_logger=task_logger,
        prompt_builder=partial(build_system_prompt, base_url=config.platform_base_url),
        start_url_resolver=start_url_resolver,
        result_store=store,
        skills_provider=skills_provider,
        max_skills=config.max_skills,
        default_max_steps=config.max_steps,
        max_steps_limit=config.max_steps_limit,
        conversation_window=config.conversation_window,
        repeat_window=config.repeat_window,
        repeat_threshold=config.repeat_threshold,
        stall_threshold=config.stall_threshold,
        max_tokens=config.task_max_tokens,
        temperature=config.task_temperature,
    )
    engine.last_result = store.get_last_result()
    logger.info(f"✅ [Bootstrap] 任务引擎已就绪 model={config.llm_model}")
    return engine
