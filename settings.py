"""
Provider Configuration
Immutable API settings threaded into the analysis entry point, plus
one-time logging setup
"""

import os
import logging
from dataclasses import dataclass, replace
from typing import Optional

PROVIDERS = ("openai", "anthropic")

DEFAULT_PROVIDER = "openai"
DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
}
DEFAULT_MAX_TOKENS = 1500
DEFAULT_TEMPERATURE = 0.2

# Credential variable per provider
API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

LOG_LEVEL_ENV = "PROPERTY_ANALYSIS_LOG_LEVEL"

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "urllib3")


@dataclass(frozen=True)
class ApiConfig:
    """
    Completion provider settings

    Instances never change; every update returns a new config, so one
    analysis call always sees a single consistent configuration.
    """

    api_key: Optional[str] = None
    provider: str = DEFAULT_PROVIDER
    model: Optional[str] = None
    use_real_api: bool = False
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE

    def __post_init__(self):
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown provider '{self.provider}', expected one of {', '.join(PROVIDERS)}")

    @classmethod
    def from_env(cls) -> "ApiConfig":
        """Build a config from environment variables"""
        provider = os.getenv("PROPERTY_ANALYSIS_PROVIDER", DEFAULT_PROVIDER).lower()
        api_key = os.getenv(API_KEY_ENV.get(provider, "OPENAI_API_KEY")) or None
        return cls(
            api_key=api_key,
            provider=provider,
            model=os.getenv("PROPERTY_ANALYSIS_MODEL") or None,
            use_real_api=bool(api_key),
            max_tokens=int(os.getenv("PROPERTY_ANALYSIS_MAX_TOKENS", str(DEFAULT_MAX_TOKENS))),
        )

    def with_api_key(self, api_key: Optional[str]) -> "ApiConfig":
        """New config using this key; clearing the key switches to mock mode"""
        api_key = (api_key or "").strip() or None
        return replace(self, api_key=api_key, use_real_api=api_key is not None)

    def with_updates(self, **changes) -> "ApiConfig":
        return replace(self, **changes)

    def get_active_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    def has_credential(self) -> bool:
        return bool(self.api_key)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger once and quieten HTTP / SDK loggers

    Args:
        level: Level name; defaults to PROPERTY_ANALYSIS_LOG_LEVEL, then INFO
    """
    level_name = (level or os.getenv(LOG_LEVEL_ENV, "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
