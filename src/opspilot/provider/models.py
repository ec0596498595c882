"""Provider 返回值 -- 打分调用的原始模型输出与用量"""

from typing import Any

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """单次调用的 token 用量（字段名与 OpenAI usage 一致）"""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @classmethod
    def from_response(cls, response: Any) -> "TokenUsage":
        """从 litellm 响应对象读取 usage，缺失时为 0"""
        usage = getattr(response, "usage", None)
        if usage is None:
            return cls()
        prompt = getattr(usage, "prompt_tokens", 0) or 0
        completion = getattr(usage, "completion_tokens", 0) or 0
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=getattr(usage, "total_tokens", 0) or prompt + completion,
        )

    @classmethod
    def estimate(cls, prompt: str, completion: str) -> "TokenUsage":
        """按空白分词粗略估算（离线模式使用）"""
        prompt_tokens = len(prompt.split())
        completion_tokens = len(completion.split())
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class ModelCallResult(BaseModel):
    """一次模型调用的结果，content 交给 Scorer 严格解析"""

    content: str = Field(description="模型输出文本")
    model_alias: str = Field(description="请求使用的模型 alias")
    model_name: str = Field(default="", description="Proxy 实际路由到的模型")
    provider: str = Field(default="", description="模型所属 provider，echo 模式为 echo")
    duration_ms: int = Field(ge=0, description="调用耗时（毫秒）")
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
