"""Gateway 测试 fixture"""

import pytest


@pytest.fixture
def po_request() -> dict:
    """人工提交的 generate_po 请求体（camelCase payload）"""
    return {
        "task_type": "generate_po",
        "payload": {
            "vendorId": 2,
            "rawMaterialId": 1,
            "quantity": 500,
            "totalAmount": "5000.00",
        },
        "priority": "high",
        "reasoning": "stock below reorder point",
        "confidence": 85,
    }
