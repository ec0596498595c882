"""EchoScoreAdapter 测试 -- 离线打分输出可被严格解析"""

import json

from opspilot.provider import EchoScoreAdapter, ModelCallResult


class TestEchoScoreAdapter:
    async def test_returns_score_json(self):
        adapter = EchoScoreAdapter(confidence=72.5)
        result = await adapter.complete(
            [
                {"role": "system", "content": "score this"},
                {"role": "user", "content": "material 1 below reorder point"},
            ],
            json_mode=True,
        )
        assert isinstance(result, ModelCallResult)
        data = json.loads(result.content)
        assert data["confidence"] == 72.5
        assert data["reasoning"] == "Echo: material 1 below reorder point"
        assert result.provider == "echo"

    async def test_truncates_long_content(self):
        adapter = EchoScoreAdapter()
        result = await adapter.complete([{"role": "user", "content": "x" * 1000}])
        data = json.loads(result.content)
        assert len(data["reasoning"]) == len("Echo: ") + 200

    async def test_empty_messages(self):
        result = await EchoScoreAdapter().complete([])
        assert json.loads(result.content)["reasoning"] == "Echo: (empty)"
