"""LiteLLMClient -- 经 LiteLLM Proxy 请求打分

Scorer 只需要一次 chat completion（通常要求 JSON 对象输出），
本模块把 litellm.acompletion 的响应与异常收敛为 ModelCallResult / ProviderError。
"""

import time
from typing import Any

import httpx
import structlog
from litellm import acompletion

from .exceptions import ProviderError, ProxyUnreachableError
from .models import ModelCallResult, TokenUsage

log = structlog.get_logger()

HEALTH_CHECK_TIMEOUT_S = 5
HEALTH_PATH = "/health/liveliness"

# litellm 把连接失败包装为自己的异常类型，按类名识别
_LITELLM_CONNECTION_ERRORS = frozenset({"APIConnectionError", "APITimeoutError", "Timeout"})


def is_unreachable(exc: Exception) -> bool:
    """是否属于 Proxy 不可达类错误"""
    if isinstance(exc, httpx.TransportError | ConnectionError | TimeoutError):
        return True
    return type(exc).__name__ in _LITELLM_CONNECTION_ERRORS


def _provider_of(model_name: str) -> str:
    """openai/gpt-4o-mini -> openai"""
    prefix, sep, _ = model_name.partition("/")
    return prefix if sep else ""


class LiteLLMClient:
    """LiteLLM Proxy 客户端

    proxy_api_key 是 Proxy 自身的访问密钥，真实的模型厂商密钥只存在于 Proxy 配置中。
    """

    def __init__(
        self,
        proxy_base_url: str = "http://localhost:4000",
        proxy_api_key: str = "",
        timeout_s: int = 30,
    ) -> None:
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._proxy_api_key = proxy_api_key
        self._timeout_s = timeout_s

    @property
    def proxy_base_url(self) -> str:
        return self._proxy_base_url

    def _request(
        self,
        messages: list[dict[str, str]],
        model_alias: str,
        temperature: float,
        max_tokens: int | None,
        json_mode: bool,
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model_alias,
            "messages": messages,
            "api_base": self._proxy_base_url,
            "api_key": self._proxy_api_key or "no-key",
            "temperature": temperature,
            "timeout": self._timeout_s,
            **extra,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        return request

    async def complete(
        self,
        messages: list[dict[str, str]],
        model_alias: str = "main",
        temperature: float = 0.0,
        max_tokens: int | None = None,
        json_mode: bool = False,
        **kwargs,
    ) -> ModelCallResult:
        """发送一次 chat completion

        Raises:
            ProxyUnreachableError: Proxy 连接失败或超时
            ProviderError: Proxy 返回错误（模型不存在、额度耗尽等）
        """
        request = self._request(messages, model_alias, temperature, max_tokens, json_mode, kwargs)
        started = time.monotonic()
        try:
            response = await acompletion(**request)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            await log.awarning(
                "scorer_llm_call_failed",
                model_alias=model_alias,
                error_type=type(e).__name__,
                error=str(e),
                duration_ms=duration_ms,
            )
            if is_unreachable(e):
                raise ProxyUnreachableError(self._proxy_base_url, e) from e
            raise ProviderError(f"LLM call via {model_alias} failed: {e}") from e

        model_name = getattr(response, "model", "") or ""
        result = ModelCallResult(
            content=response.choices[0].message.content or "",
            model_alias=model_alias,
            model_name=model_name,
            provider=_provider_of(model_name),
            duration_ms=int((time.monotonic() - started) * 1000),
            token_usage=TokenUsage.from_response(response),
        )
        await log.ainfo(
            "scorer_llm_call_completed",
            model_alias=model_alias,
            model_name=model_name,
            duration_ms=result.duration_ms,
            total_tokens=result.token_usage.total_tokens,
        )
        return result

    async def health_check(self) -> bool:
        """探测 Proxy liveliness 端点，任何失败都返回 False"""
        url = f"{self._proxy_base_url}{HEALTH_PATH}"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
        except httpx.HTTPError as e:
            log.debug("litellm_health_check_failed", url=url, error=str(e))
            return False
        return resp.status_code == 200
