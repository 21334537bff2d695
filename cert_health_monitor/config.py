"""
运行配置
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"环境变量 {name} 不是有效的数字: {value}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"环境变量 {name} 不是有效的整数: {value}")


@dataclass
class MonitorConfig:
    """证书监控配置"""
    sweep_interval_hours: float = 12.0
    max_concurrent_probes: int = 10
    probe_timeout_seconds: float = 10.0
    probe_port: int = 443
    probe_pacing_seconds: float = 0.1
    host_pacing_seconds: float = 1.0
    sweep_timeout_seconds: Optional[float] = None
    warning_days: int = 30
    critical_days: int = 7
    expiring_lookahead_days: int = 30
    result_table_name: Optional[str] = None
    aws_region: str = "us-east-1"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """
        从环境变量加载配置

        Returns:
            MonitorConfig: 配置对象

        Raises:
            ValueError: 数值格式无效
        """
        return cls(
            sweep_interval_hours=_env_float('SWEEP_INTERVAL_HOURS', 12.0),
            max_concurrent_probes=_env_int('MAX_CONCURRENT_PROBES', 10),
            probe_timeout_seconds=_env_float('PROBE_TIMEOUT_SECONDS', 10.0),
            probe_port=_env_int('PROBE_PORT', 443),
            probe_pacing_seconds=_env_float('PROBE_PACING_SECONDS', 0.1),
            host_pacing_seconds=_env_float('HOST_PACING_SECONDS', 1.0),
            sweep_timeout_seconds=_env_float('SWEEP_TIMEOUT_SECONDS', None),
            warning_days=_env_int('WARNING_DAYS', 30),
            critical_days=_env_int('CRITICAL_DAYS', 7),
            expiring_lookahead_days=_env_int('EXPIRING_LOOKAHEAD_DAYS', 30),
            result_table_name=os.getenv('RESULT_TABLE_NAME') or None,
            aws_region=os.getenv('AWS_REGION', 'us-east-1'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
        )

    def to_dict(self) -> dict:
        """转换为字典（用于日志记录）"""
        return dict(self.__dict__)
