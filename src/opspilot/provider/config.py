"""ProviderConfig -- 打分模型的调用配置

全部来自环境变量；单个变量非法时告警并保留默认值，不阻塞启动。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError

log = structlog.get_logger()


class ProviderConfig(BaseModel):
    """Provider 配置"""

    proxy_base_url: str = Field(default="http://localhost:4000", description="LiteLLM Proxy 地址")
    proxy_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Proxy 访问密钥（不是模型厂商的 API key）",
    )
    llm_mode: Literal["litellm", "echo"] = Field(
        default="litellm",
        description="litellm 走 Proxy；echo 离线回显",
    )
    timeout_s: int = Field(default=30, ge=1, description="单次模型调用超时（秒）")
    scorer_model: str = Field(default="main", min_length=1, description="打分使用的模型 alias")
    echo_confidence: float = Field(
        default=50.0,
        ge=0,
        le=100,
        description="echo 模式给出的固定置信度",
    )


# 环境变量 -> 配置字段
ENV_FIELDS: dict[str, str] = {
    "LITELLM_PROXY_URL": "proxy_base_url",
    "LITELLM_PROXY_KEY": "proxy_api_key",
    "OPSPILOT_LLM_MODE": "llm_mode",
    "OPSPILOT_LLM_TIMEOUT_S": "timeout_s",
    "OPSPILOT_SCORER_MODEL": "scorer_model",
    "OPSPILOT_ECHO_CONFIDENCE": "echo_confidence",
}


def load_provider_config() -> ProviderConfig:
    """读取环境变量构造 ProviderConfig，逐个字段校验"""
    values: dict[str, object] = {}
    for env_var, field_name in ENV_FIELDS.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            ProviderConfig.model_validate({field_name: raw})
        except PydanticValidationError as e:
            log.warning(
                "invalid_provider_config",
                env_var=env_var,
                value="***" if field_name == "proxy_api_key" else raw,
                error=e.errors()[0]["msg"],
                fallback=ProviderConfig.model_fields[field_name].default,
            )
            continue
        values[field_name] = raw
    return ProviderConfig.model_validate(values)
