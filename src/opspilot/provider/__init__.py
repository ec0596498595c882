"""OpsPilot Provider -- LLM 调用抽象层

provider 包的公开接口导出。
"""

from .client import LiteLLMClient
from .config import ProviderConfig, load_provider_config
from .echo_adapter import EchoScoreAdapter
from .exceptions import ProviderError, ProxyUnreachableError
from .models import ModelCallResult, TokenUsage


def create_llm_client(config: ProviderConfig) -> LiteLLMClient | EchoScoreAdapter:
    """按 llm_mode 创建 LLM 客户端"""
    if config.llm_mode == "echo":
        return EchoScoreAdapter(confidence=config.echo_confidence)
    return LiteLLMClient(
        proxy_base_url=config.proxy_base_url,
        proxy_api_key=config.proxy_api_key.get_secret_value(),
        timeout_s=config.timeout_s,
    )


__all__ = [
    "ModelCallResult",
    "TokenUsage",
    "LiteLLMClient",
    "EchoScoreAdapter",
    "ProviderConfig",
    "load_provider_config",
    "create_llm_client",
    "ProviderError",
    "ProxyUnreachableError",
]
