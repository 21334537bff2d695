"""
数据模型定义
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict


class Tier(str, Enum):
    """证书风险等级（按需计算，不持久化）"""
    VALID = "valid"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"
    INVALID = "invalid"
    NO_CERT = "no-cert"


class ProbeErrorType(str, Enum):
    """探测失败类型"""
    DNS_RESOLUTION_FAILED = "DnsResolutionFailed"
    CONNECTION_REFUSED = "ConnectionRefused"
    CONNECTION_TIMEOUT = "ConnectionTimeout"
    CONNECTION_FAILED = "ConnectionFailed"
    TLS_HANDSHAKE_FAILED = "TlsHandshakeFailed"
    NO_CERTIFICATE_PRESENTED = "NoCertificatePresented"
    UNEXPECTED_ERROR = "UnexpectedError"


class ScanState(str, Enum):
    """单个域名扫描状态"""
    PENDING = "pending"
    PROBING = "probing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RECORDED = "recorded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Domain:
    """被监控的域名（由域名注册表拥有，引擎只读）"""
    id: str
    hostname: str
    owner_id: str
    active: bool = True


@dataclass(frozen=True)
class ProbeResult:
    """一次成功握手得到的证书信息"""
    hostname: str
    port: int
    issuer: str
    subject: str
    valid_from: datetime
    valid_to: datetime
    is_valid: bool


@dataclass(frozen=True)
class ProbeError:
    """探测失败"""
    hostname: str
    port: int
    error_type: ProbeErrorType
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class CertificateRecord:
    """一次探测的不可变结果记录"""
    domain_id: str
    issuer: Optional[str]
    subject: Optional[str]
    valid_from: Optional[datetime]
    valid_to: Optional[datetime]
    is_valid: bool
    checked_at: datetime
    error: Optional[str] = None
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ScanAttempt:
    """进行中的扫描（调度器内部使用，不持久化）"""
    domain_id: str
    started_at: datetime
    state: ScanState = ScanState.PENDING


@dataclass
class SweepResult:
    """一次全量扫描的统计结果"""
    total_domains: int
    recorded: int
    successful_checks: int
    failed_checks: int
    skipped: int
    cancelled: int
    errors: List[str]
    execution_time: float
    tier_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """成功率（按已记录结果计算）"""
        if self.recorded == 0:
            return 0.0
        return self.successful_checks / self.recorded
