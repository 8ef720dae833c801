"""
Configuration settings for the task engine
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Model Client Configuration
    llm_api_url: str = "https://api.openai.com/v1"
    llm_api_token: Optional[str] = None
    llm_client_name: str = "task-engine"
    llm_model: str = "gpt-5.2"
    llm_fallback_model: str = "gpt-5.2-chat"
    llm_timeout: float = 60.0
    llm_fast_fail_timeout: float = 20.0  # 快速失败模型族（长时间挂起而不是报错）
    llm_fast_fail_markers: List[str] = ["gemini"]
    llm_reasoning_prefixes: List[str] = ["gpt-5", "o1"]  # 使用 max_completion_tokens 的模型
    llm_max_retries: int = 2
    llm_retry_delay: float = 0.5
    llm_default_max_tokens: int = 2000

    # Task Loop Configuration
    task_max_tokens: int = 1600
    task_temperature: float = 0.1
    max_steps: int = 15
    max_steps_limit: int = 200
    conversation_window: int = 8  # 截断时保留的最近消息数（不含 system）
    repeat_window: int = 10
    repeat_threshold: int = 5
    stall_threshold: int = 5  # 连续 wait 次数上限
    auto_navigate: bool = True

    # Custom Skills
    custom_skills_path: Optional[str] = None  # JSON 数组文件，每次开始任务时重新读取
    max_skills: int = 6

    # Task Log Configuration
    max_task_logs: int = 1000
    task_log_save_delay: float = 0.4
    redis_url: Optional[str] = None
    task_log_key: str = "task_engine:logs"

    # Browser Control Server
    browser_server_url: str = "http://localhost:9222"
    browser_timeout: float = 120.0

    # Confluence Configuration
    confluence_base_url: Optional[str] = None
    confluence_token: Optional[str] = None
    confluence_timeout: float = 10.0
    confluence_weekly_report_root: str = "529775023"

    # Target Platform
    platform_base_url: str = "https://shenzhou.tatstm.com"

    # Application Configuration
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
