import pathlib
import sys

import pytest
from pydantic import AnyHttpUrl, SecretStr

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from voice_relay.config import Settings  # noqa: E402


def make_settings(**overrides) -> Settings:
    values = {
        "openai_api_key": SecretStr("test-llm-key"),
        "openai_api_base": AnyHttpUrl("https://llm.example.com/v1"),
        "openai_api_model": "test-model",
        "dashscope_api_key": SecretStr("test-tts-key"),
        "dashscope_tts_url": AnyHttpUrl("https://tts.example.com/generation"),
        "system_prompt": None,
        "preset_session_ids": ["sess1", "sess2"],
        "session_idle_ttl_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings
