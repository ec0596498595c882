"""Confidence Scorer -- 为提案生成推理说明与置信度

通过 provider 层（LiteLLMClient 或 EchoScoreAdapter）以 JSON 模式调用模型，
严格解析输出为 ConfidenceScore。调用超时、provider 异常或输出不合法
一律抛出 RuleEvaluationError，调用方据此放弃该提案（没有合法打分就没有任务）。
"""

import asyncio
import json
from decimal import Decimal
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from opspilot.core.exceptions import RuleEvaluationError
from opspilot.core.models import Rule, TaskType
from opspilot.provider import ModelCallResult, ProviderError

log = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are the operations assistant of an ERP system. A monitoring rule fired and "
    "proposes a business action. Assess whether the action is appropriate given the "
    "triggering records. Respond with a JSON object only: "
    '{"reasoning": "<one or two sentences>", "confidence": <number 0-100>, '
    '"suggested_parameters": {<optional adjustments, e.g. quantity, subject, body, priority>}}'
)


class ConfidenceScore(BaseModel):
    """Scorer 输出"""

    reasoning: str = Field(min_length=1, description="推理说明")
    confidence: float = Field(
        ge=0,
        le=100,
        strict=True,
        description="置信度 0-100，不接受布尔与字符串",
    )
    suggested_parameters: dict[str, Any] | None = Field(
        default=None,
        description="建议的参数调整",
    )


class ScoringContext(BaseModel):
    """打分输入：规则、命中记录、拟执行动作与基础 payload"""

    rule: Rule
    records: list[dict[str, Any]] = Field(default_factory=list)
    action: TaskType
    payload: dict[str, Any] = Field(default_factory=dict)


class ConfidenceScorer(Protocol):
    """打分接口"""

    async def score(self, context: ScoringContext) -> ConfidenceScore: ...


class LLMClient(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        model_alias: str = ...,
        **kwargs,
    ) -> ModelCallResult: ...


def build_messages(context: ScoringContext) -> list[dict[str, str]]:
    """构造打分请求 messages"""
    rule = context.rule
    user_content = json.dumps(
        {
            "rule": {
                "name": rule.name,
                "rule_type": rule.rule_type.value,
                "condition": rule.trigger_condition.model_dump(mode="json"),
            },
            "action": context.action.value,
            "records": context.records,
            "proposed_payload": context.payload,
        },
        ensure_ascii=False,
        default=lambda v: str(v) if isinstance(v, Decimal) else repr(v),
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_score(content: str, rule_id: str | None = None) -> ConfidenceScore:
    """严格解析模型输出

    Raises:
        RuleEvaluationError: 输出不是合法 JSON 或不满足 ConfidenceScore
    """
    try:
        data = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise RuleEvaluationError(f"malformed scorer output: {e}", rule_id=rule_id) from e
    if not isinstance(data, dict):
        raise RuleEvaluationError("malformed scorer output: expected a JSON object", rule_id=rule_id)
    try:
        return ConfidenceScore.model_validate(data)
    except PydanticValidationError as e:
        raise RuleEvaluationError(
            f"malformed scorer output: {e.errors()[0]['msg']}",
            rule_id=rule_id,
        ) from e


class LLMConfidenceScorer:
    """基于 provider 层的 Confidence Scorer"""

    def __init__(
        self,
        llm_client: LLMClient,
        model_alias: str = "main",
        timeout_s: float = 20.0,
    ) -> None:
        self._client = llm_client
        self._model_alias = model_alias
        self._timeout_s = timeout_s

    async def score(self, context: ScoringContext) -> ConfidenceScore:
        """请求一次打分

        Raises:
            RuleEvaluationError: 超时、provider 不可用或输出不合法
        """
        rule_id = context.rule.rule_id
        messages = build_messages(context)
        try:
            result = await asyncio.wait_for(
                self._client.complete(
                    messages,
                    model_alias=self._model_alias,
                    json_mode=True,
                ),
                timeout=self._timeout_s,
            )
        except TimeoutError as e:
            raise RuleEvaluationError(
                f"confidence scorer timed out after {self._timeout_s:g}s",
                rule_id=rule_id,
            ) from e
        except ProviderError as e:
            raise RuleEvaluationError(
                f"confidence scorer unavailable: {e}",
                rule_id=rule_id,
            ) from e

        score = parse_score(result.content, rule_id=rule_id)
        await log.adebug(
            "confidence_scored",
            rule_id=rule_id,
            action=context.action.value,
            confidence=score.confidence,
            duration_ms=result.duration_ms,
        )
        return score
