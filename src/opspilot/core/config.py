"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、协作方调用超时、调度器间隔、并发执行上限、待审批 TTL 等可配置项。
"""

import os
from pathlib import Path

import structlog

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("OPSPILOT_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "OPSPILOT_DB_PATH",
        str(_get_base_dir() / "sqlite" / "opspilot.db"),
    )


def _env_float(name: str, default: float) -> float:
    """读取浮点型环境变量，非法值记录告警并回退默认值"""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("invalid_numeric_config", env_var=name, value=raw, fallback=default)
        return default


def _env_int(name: str, default: int) -> int:
    """读取整型环境变量，非法值记录告警并回退默认值"""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("invalid_numeric_config", env_var=name, value=raw, fallback=default)
        return default


def get_scorer_timeout_s() -> float:
    """Confidence Scorer 调用超时（秒）"""
    return _env_float("OPSPILOT_SCORER_TIMEOUT_S", 20.0)


def get_domain_timeout_s() -> float:
    """单次领域服务调用超时（秒）"""
    return _env_float("OPSPILOT_DOMAIN_TIMEOUT_S", 15.0)


def get_scheduler_interval_s() -> float:
    """调度器 tick 间隔（秒），默认每分钟一次"""
    return _env_float("OPSPILOT_SCHEDULER_INTERVAL_S", 60.0)


def get_max_concurrent_executions() -> int:
    """单次批量执行的最大并发数"""
    return max(1, _env_int("OPSPILOT_MAX_CONCURRENT_EXECUTIONS", 5))


def get_pending_ttl_hours() -> float | None:
    """pending_approval 任务的过期时长（小时）

    未设置或 <= 0 时返回 None，表示不过期。
    """
    ttl = _env_float("OPSPILOT_PENDING_TTL_HOURS", 0.0)
    return ttl if ttl > 0 else None


def get_erp_base_url() -> str | None:
    """ERP 领域服务基础 URL，未设置时使用内存实现"""
    return os.environ.get("OPSPILOT_ERP_BASE_URL") or None


def is_scheduler_enabled() -> bool:
    """是否随 gateway 启动后台调度器"""
    return os.environ.get("OPSPILOT_SCHEDULER_ENABLED", "false").lower() == "true"


# 日志 message 最大长度（超出截断，details 保留结构化内容）
LOG_MESSAGE_MAX_LENGTH: int = 1000

# 列表查询默认条数
DEFAULT_LIST_LIMIT: int = 100

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = 15
