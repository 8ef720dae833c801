"""
Test configuration
"""
import pytest
import sys
import os
from pathlib import Path

# Add project root to path
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

# Set minimal environment variables for testing
os.environ.setdefault("LLM_API_TOKEN", "test_token")
os.environ.setdefault("REDIS_URL", "")


@pytest.fixture
def test_config():
    """Test configuration"""
    from config.settings import Settings
    return Settings(
        llm_api_url="https://llm.example.com/v1",
        llm_api_token="test_token",
        llm_retry_delay=0,
        redis_url=None,
        confluence_base_url=None,
        confluence_token=None,
        task_log_save_delay=0.01,
    )
