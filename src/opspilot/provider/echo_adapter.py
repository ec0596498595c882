"""EchoScoreAdapter -- 无模型环境下的打分替身

OPSPILOT_LLM_MODE=echo 时使用：不发起网络调用，
把最后一条 user 消息截断后放进 reasoning，并给出固定置信度。
"""

import json
import time

from .models import ModelCallResult, TokenUsage

ECHO_REASONING_LIMIT = 200


def last_user_content(messages: list[dict[str, str]]) -> str:
    """最后一条 user 消息；没有时取最后一条消息，空列表为 "(empty)" """
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content", "")
    return messages[-1].get("content", "(empty)") if messages else "(empty)"


class EchoScoreAdapter:
    """与 LiteLLMClient.complete 同签名的离线实现"""

    def __init__(self, confidence: float = 50.0) -> None:
        self._confidence = confidence

    async def complete(
        self,
        messages: list[dict[str, str]],
        model_alias: str = "echo",
        **kwargs,
    ) -> ModelCallResult:
        started = time.monotonic()
        prompt = last_user_content(messages)
        content = json.dumps(
            {
                "reasoning": f"Echo: {prompt[:ECHO_REASONING_LIMIT]}",
                "confidence": self._confidence,
            },
            ensure_ascii=False,
        )
        return ModelCallResult(
            content=content,
            model_alias=model_alias,
            model_name="echo",
            provider="echo",
            duration_ms=int((time.monotonic() - started) * 1000),
            token_usage=TokenUsage.estimate(prompt, content),
        )
