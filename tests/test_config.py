"""
Unit tests for environment-driven settings
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from backend.config import PROVIDER_LOCAL, Settings, load_settings

ENV_VARS = (
    "FRA_AI_ENABLED", "FRA_LLM_PROVIDER", "ANTHROPIC_API_KEY", "FRA_DATA_DIR",
    "FRA_LLM_TIMEOUT_S", "LOG_LEVEL", "FLASK_SECRET_KEY", "FRA_LOCAL_DEVICE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = load_settings()

    assert not settings.ai_enabled
    assert settings.anthropic_api_key is None
    assert not settings.enrichment_configured


def test_environment_overrides(clean_env):
    clean_env.setenv("FRA_AI_ENABLED", "true")
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-test")
    clean_env.setenv("FRA_DATA_DIR", "/tmp/members")
    clean_env.setenv("FRA_LLM_TIMEOUT_S", "30")
    clean_env.setenv("LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.ai_enabled
    assert settings.enrichment_configured
    assert settings.data_dir == "/tmp/members"
    assert settings.llm_timeout_s == 30.0
    assert settings.log_level == "DEBUG"


def test_unknown_provider(clean_env):
    clean_env.setenv("FRA_LLM_PROVIDER", "openai")

    with pytest.raises(ValueError):
        load_settings()


def test_local_device(clean_env):
    assert load_settings().local_device == "cuda"

    clean_env.setenv("FRA_LOCAL_DEVICE", "CPU")
    assert load_settings().local_device == "cpu"

    clean_env.setenv("FRA_LOCAL_DEVICE", "tpu")
    with pytest.raises(ValueError):
        load_settings()


def test_enrichment_configured():
    assert not Settings(ai_enabled=True).enrichment_configured
    assert not Settings(ai_enabled=False, anthropic_api_key="sk").enrichment_configured
    assert Settings(ai_enabled=True, anthropic_api_key="sk").enrichment_configured
    # Local models need no key
    assert Settings(ai_enabled=True, llm_provider=PROVIDER_LOCAL).enrichment_configured


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING CONFIG")
    print("="*60 + "\n")

    sys.exit(pytest.main([__file__, "-v"]))
