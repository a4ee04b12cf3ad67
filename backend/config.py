"""
Environment-driven configuration.

Values come from the process environment after load_dotenv(), so a
local .env file works in development. Module constants hold the raw
defaults; Settings is the frozen snapshot handed to the app factory.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv(override=False)

PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_LOCAL = "local"
LLM_PROVIDERS = (PROVIDER_ANTHROPIC, PROVIDER_LOCAL)
LOCAL_DEVICES = ("cuda", "cpu")

DATA_DIR = os.getenv("FRA_DATA_DIR", "outputs/members")
CATALOG_PATH = os.getenv("FRA_CATALOG_PATH", "data/question_catalog.json")
KNOWLEDGE_BASE_PATH = os.getenv("FRA_KNOWLEDGE_BASE_PATH", "data/knowledge_base.json")

LLM_MODEL = os.getenv("FRA_LLM_MODEL", "claude-sonnet-4-20250514")
LLM_TIMEOUT_S = float(os.getenv("FRA_LLM_TIMEOUT_S", "120"))
VERIFY_TIMEOUT_S = float(os.getenv("FRA_VERIFY_TIMEOUT_S", "60"))
LLM_MAX_TOKENS = int(os.getenv("FRA_LLM_MAX_TOKENS", "4096"))
LOCAL_MODEL = os.getenv("FRA_LOCAL_MODEL", "mistralai/Mistral-7B-Instruct-v0.2")
LOCAL_DEVICE = os.getenv("FRA_LOCAL_DEVICE", "cuda")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def _flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """
    Snapshot of configuration at startup.

    Attributes:
        data_dir: Member data directory (profiles, flows, documents, messages)
        catalog_path: Question catalog JSON
        knowledge_base_path: Knowledge base JSON
        ai_enabled: Global AI switch
        llm_provider: 'anthropic' or 'local'
        anthropic_api_key: Remote API key (None when unset)
        llm_model: Remote model id
        llm_timeout_s: Guide generation timeout
        verify_timeout_s: Document verification timeout
        llm_max_tokens: Response token limit
        local_model: HuggingFace model id for the local provider
        local_device: 'cuda' or 'cpu' for the local provider (4-bit only on cuda)
        log_level: Root logging level name
        secret_key: Flask secret key
    """
    data_dir: str = DATA_DIR
    catalog_path: str = CATALOG_PATH
    knowledge_base_path: str = KNOWLEDGE_BASE_PATH
    ai_enabled: bool = False
    llm_provider: str = PROVIDER_ANTHROPIC
    anthropic_api_key: Optional[str] = None
    llm_model: str = LLM_MODEL
    llm_timeout_s: float = LLM_TIMEOUT_S
    verify_timeout_s: float = VERIFY_TIMEOUT_S
    llm_max_tokens: int = LLM_MAX_TOKENS
    local_model: str = LOCAL_MODEL
    local_device: str = LOCAL_DEVICE
    log_level: str = LOG_LEVEL
    secret_key: str = "dev"

    @property
    def enrichment_configured(self) -> bool:
        """AI on and, for the remote provider, an API key present."""
        if not self.ai_enabled:
            return False
        if self.llm_provider == PROVIDER_ANTHROPIC:
            return bool(self.anthropic_api_key)
        return True


def load_settings() -> Settings:
    """
    Read Settings from the environment.

    Raises:
        ValueError: If FRA_LLM_PROVIDER or FRA_LOCAL_DEVICE has an unknown value
    """
    provider = os.getenv("FRA_LLM_PROVIDER", PROVIDER_ANTHROPIC).strip().lower()
    if provider not in LLM_PROVIDERS:
        raise ValueError(f"FRA_LLM_PROVIDER must be one of {LLM_PROVIDERS}, got: {provider}")

    device = os.getenv("FRA_LOCAL_DEVICE", LOCAL_DEVICE).strip().lower()
    if device not in LOCAL_DEVICES:
        raise ValueError(f"FRA_LOCAL_DEVICE must be one of {LOCAL_DEVICES}, got: {device}")

    return Settings(
        data_dir=os.getenv("FRA_DATA_DIR", DATA_DIR),
        catalog_path=os.getenv("FRA_CATALOG_PATH", CATALOG_PATH),
        knowledge_base_path=os.getenv("FRA_KNOWLEDGE_BASE_PATH", KNOWLEDGE_BASE_PATH),
        ai_enabled=_flag("FRA_AI_ENABLED"),
        llm_provider=provider,
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        llm_model=os.getenv("FRA_LLM_MODEL", LLM_MODEL),
        llm_timeout_s=float(os.getenv("FRA_LLM_TIMEOUT_S", str(LLM_TIMEOUT_S))),
        verify_timeout_s=float(os.getenv("FRA_VERIFY_TIMEOUT_S", str(VERIFY_TIMEOUT_S))),
        llm_max_tokens=int(os.getenv("FRA_LLM_MAX_TOKENS", str(LLM_MAX_TOKENS))),
        local_model=os.getenv("FRA_LOCAL_MODEL", LOCAL_MODEL),
        local_device=device,
        log_level=os.getenv("LOG_LEVEL", LOG_LEVEL).upper(),
        secret_key=os.getenv("FLASK_SECRET_KEY", "dev"),
    )
