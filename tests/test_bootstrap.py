"""
Tests for settings and engine assembly
测试配置项和任务引擎组装
"""
import pytest
from unittest.mock import patch


class TestSettings:
    """测试 Settings 默认值和环境变量覆盖"""

    def test_default_values(self):
        from config.settings import Settings
        config = Settings()
        assert config.llm_model == "gpt-5.2"
        assert config.llm_fallback_model == "gpt-5.2-chat"
        assert config.max_steps == 15
        assert config.max_steps_limit == 200
        assert config.conversation_window == 8
        assert config.repeat_window == 10
        assert config.repeat_threshold == 5
        assert config.stall_threshold == 5
        assert config.max_task_logs == 1000
        assert config.task_log_save_delay == 0.4

    def test_env_override(self, monkeypatch):
        from config.settings import Settings
        monkeypatch.setenv("MAX_STEPS", "30")
        monkeypatch.setenv("LLM_FAST_FAIL_MARKERS", '["gemini", "qwen"]')
        config = Settings()
        assert config.max_steps == 30
        assert config.llm_fast_fail_markers == ["gemini", "qwen"]


class TestBuildTaskEngine:
    """测试 build_task_engine"""

    def test_components_from_settings(self, test_config):
        from task_engine.bootstrap import build_task_engine
        from task_engine.executors.browser_adapter import HttpBrowserAdapter

        engine = build_task_engine(test_config, restore_logs=False)

        assert engine.model_client.api_url == "https://llm.example.com/v1/chat/completions"
        assert engine.model_client.retry_delay == 0
        assert isinstance(engine.executor.adapter, HttpBrowserAdapter)
        assert engine.executor.confluence is None
        assert engine.default_max_steps == 15
        assert engine.conversation_window == 8
        assert engine.task_logger.max_logs == 1000

    def test_custom_adapter_and_confluence(self, test_config):
        from task_engine.bootstrap import build_task_engine
        from task_engine.executors.base import EnvironmentAdapter

        class StaticAdapter(EnvironmentAdapter):
            async def execute(self, action):
                return {"success": True}

        config = test_config.model_copy(update={
            "confluence_base_url": "https://wiki.example.com",
            "confluence_token": "t",
        })
        adapter = StaticAdapter()
        engine = build_task_engine(config, adapter=adapter, restore_logs=False)

        assert engine.executor.adapter is adapter
        assert engine.executor.confluence.base_url == "https://wiki.example.com"

    def test_auto_navigate_uses_platform_base(self, test_config):
        from task_engine.bootstrap import build_task_engine

        config = test_config.model_copy(update={"platform_base_url": "https://dw.internal"})
        engine = build_task_engine(config, restore_logs=False)
        assert engine._start_url_resolver("查询成本", "") == "https://dw.internal/data-develop/query"

        config = test_config.model_copy(update={"auto_navigate": False})
        assert build_task_engine(config, restore_logs=False)._start_url_resolver is None

    def test_restores_logs(self, test_config):
        from task_engine.bootstrap import build_task_engine
        from task_engine.models import LogEntry

        with patch(
            "src.services.task_log_store.RedisTaskLogStore.load",
            return_value=[LogEntry.create("上次的日志").to_dict()],
        ):
            engine = build_task_engine(test_config)
        assert [entry.message for entry in engine.task_logger.entries] == ["上次的日志"]

    def test_skills_file_wired(self, test_config, tmp_path):
        import json
        from task_engine.bootstrap import build_task_engine

        path = tmp_path / "skills.json"
        path.write_text(json.dumps([{"name": "成本周报", "handle": "weekly"}], ensure_ascii=False), encoding="utf-8")
        config = test_config.model_copy(update={"custom_skills_path": str(path), "max_skills": 3})
        engine = build_task_engine(config, restore_logs=False)

        assert [skill.key for skill in engine._skills_provider()] == ["weekly"]
        assert engine.max_skills == 3
        assert build_task_engine(test_config, restore_logs=False)._skills_provider is None
