"""Confidence Scorer 测试 -- 严格解析、超时与 provider 异常"""

import asyncio
import json
from datetime import UTC, datetime

import pytest
from opspilot.core.exceptions import RuleEvaluationError
from opspilot.core.models import ConditionOperator, Rule, RuleType, TaskType, TriggerCondition
from opspilot.engine.scorer import (
    LLMConfidenceScorer,
    ScoringContext,
    build_messages,
    parse_score,
)
from opspilot.provider import EchoScoreAdapter, ModelCallResult, ProxyUnreachableError


def _context() -> ScoringContext:
    now = datetime.now(UTC)
    rule = Rule(
        rule_id="01JRULE0000000000000000001",
        name="Low stock PO",
        rule_type=RuleType.PO_AUTO_GENERATE,
        trigger_condition=TriggerCondition(
            field="current_stock", operator=ConditionOperator.LT, ref="reorder_point"
        ),
        action_type=TaskType.GENERATE_PO,
        created_at=now,
        updated_at=now,
    )
    return ScoringContext(
        rule=rule,
        records=[{"id": 1, "current_stock": 40, "reorder_point": 100}],
        action=TaskType.GENERATE_PO,
        payload={"vendor_id": 2, "raw_material_id": 1, "quantity": "200"},
    )


class _FixedClient:
    def __init__(self, content: str = "", delay: float = 0.0, error: Exception | None = None):
        self.content = content
        self.delay = delay
        self.error = error
        self.kwargs: dict = {}

    async def complete(self, messages, model_alias="main", **kwargs) -> ModelCallResult:
        self.kwargs = {"model_alias": model_alias, **kwargs}
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return ModelCallResult(content=self.content, model_alias=model_alias, duration_ms=1)


class TestParseScore:
    def test_valid(self):
        score = parse_score('{"reasoning": "low stock", "confidence": 92}')
        assert score.confidence == 92
        assert score.suggested_parameters is None

    def test_code_fence(self):
        content = '```json\n{"reasoning": "ok", "confidence": 60}\n```'
        assert parse_score(content).confidence == 60

    def test_malformed_json(self):
        with pytest.raises(RuleEvaluationError, match="malformed"):
            parse_score("definitely approve this")

    def test_out_of_range_confidence(self):
        with pytest.raises(RuleEvaluationError):
            parse_score('{"reasoning": "x", "confidence": 140}')

    @pytest.mark.parametrize("raw", ["true", "false", '"85"', "null"])
    def test_non_numeric_confidence_rejected(self, raw):
        with pytest.raises(RuleEvaluationError, match="malformed"):
            parse_score(f'{{"reasoning": "ok", "confidence": {raw}}}')

    def test_float_confidence(self):
        assert parse_score('{"reasoning": "ok", "confidence": 72.5}').confidence == 72.5

    def test_missing_reasoning(self):
        with pytest.raises(RuleEvaluationError):
            parse_score('{"confidence": 50}')

    def test_non_object(self):
        with pytest.raises(RuleEvaluationError, match="JSON object"):
            parse_score("[1, 2]")


class TestBuildMessages:
    def test_contains_rule_and_payload(self):
        messages = build_messages(_context())
        assert messages[0]["role"] == "system"
        body = json.loads(messages[1]["content"])
        assert body["action"] == "generate_po"
        assert body["rule"]["name"] == "Low stock PO"
        assert body["proposed_payload"]["quantity"] == "200"


class TestLLMConfidenceScorer:
    async def test_scores_with_json_mode(self):
        client = _FixedClient('{"reasoning": "stock low", "confidence": 88}')
        scorer = LLMConfidenceScorer(client, model_alias="cheap")
        score = await scorer.score(_context())
        assert score.confidence == 88
        assert client.kwargs["model_alias"] == "cheap"
        assert client.kwargs["json_mode"] is True

    async def test_timeout(self):
        client = _FixedClient('{"reasoning": "x", "confidence": 1}', delay=1.0)
        scorer = LLMConfidenceScorer(client, timeout_s=0.05)
        with pytest.raises(RuleEvaluationError, match="timed out"):
            await scorer.score(_context())

    async def test_provider_unavailable(self):
        client = _FixedClient(error=ProxyUnreachableError("http://proxy", OSError("down")))
        scorer = LLMConfidenceScorer(client)
        with pytest.raises(RuleEvaluationError, match="unavailable") as exc_info:
            await scorer.score(_context())
        assert exc_info.value.rule_id == "01JRULE0000000000000000001"

    async def test_echo_adapter_round_trip(self):
        scorer = LLMConfidenceScorer(EchoScoreAdapter(confidence=65))
        score = await scorer.score(_context())
        assert score.confidence == 65
        assert score.reasoning.startswith("Echo:")
