"""
Pytest configuration and fixtures.
"""

import pytest
import os
from unittest.mock import patch


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PUBLIC_HOST": "signup.test",
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "DEFAULT_LANGUAGE": "en",
        "AGENT_NAME": "Wakti",
        "OPENAI_API_KEY": "sk-test",
        "OPENAI_REALTIME_MODEL": "gpt-4o-realtime-preview",
        "SUPABASE_URL": "https://project.supabase.test",
        "SUPABASE_ANON_KEY": "anon-test-key",
        "MIN_HOLD_MS": "500",
        "MAX_RECORD_SECONDS": "10",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.signup.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@pytest.fixture
def silence_pcm():
    """20ms of PCM16 silence at 24kHz."""
    return b"\x00\x00" * 480


@pytest.fixture
def loud_pcm():
    """20ms of full-scale PCM16 square wave at 24kHz."""
    import numpy as np
    samples = np.tile(np.array([32767, -32767], dtype=np.int16), 240)
    return samples.tobytes()
