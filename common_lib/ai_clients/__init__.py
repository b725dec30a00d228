"""AI 클라이언트 패키지 초기화(AI clients package init)."""
from .base import IAIClient
from .openai_compatible import (
    OPENROUTER_ALLOWED_MODELS,
    PROVIDERS,
    OpenAICompatibleClient,
    ProviderConfig,
    get_provider,
    parse_json_object,
)

__all__ = [
    "IAIClient",
    "OPENROUTER_ALLOWED_MODELS",
    "PROVIDERS",
    "OpenAICompatibleClient",
    "ProviderConfig",
    "get_provider",
    "parse_json_object",
]
