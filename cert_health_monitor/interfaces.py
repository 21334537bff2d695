"""
服务接口定义
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from .models import Domain, CertificateRecord, ProbeResult, ProbeError, SweepResult


class DomainRegistryInterface(ABC):
    """域名注册表接口（外部协作方）"""

    @abstractmethod
    def list_active_domains(self, tenant_id: str) -> List[Domain]:
        """获取单个租户的活跃域名"""
        pass

    @abstractmethod
    def list_all_active_domains(self) -> List[Domain]:
        """获取所有租户的活跃域名（定时全量扫描使用）"""
        pass

    @abstractmethod
    def get_domain(self, domain_id: str) -> Optional[Domain]:
        """按ID获取域名"""
        pass


class CertificateProberInterface(ABC):
    """证书探测器接口"""

    @abstractmethod
    def probe(self, hostname: str, port: Optional[int] = None,
              timeout: Optional[float] = None) -> Union[ProbeResult, ProbeError]:
        """探测单个主机的证书，失败时返回ProbeError而不是抛出异常"""
        pass


class ResultStoreInterface(ABC):
    """结果存储接口（只追加）"""

    @abstractmethod
    def append(self, record: CertificateRecord) -> None:
        """追加一条记录"""
        pass

    @abstractmethod
    def latest(self, domain_id: str) -> Optional[CertificateRecord]:
        """获取域名最新的记录"""
        pass

    @abstractmethod
    def history(self, domain_id: str) -> List[CertificateRecord]:
        """获取域名的全部记录（按检查时间倒序）"""
        pass


class LoggerServiceInterface(ABC):
    """日志服务接口"""

    @abstractmethod
    def log_sweep_start(self, domain_count: int):
        """记录扫描开始"""
        pass

    @abstractmethod
    def log_probe_outcome(self, domain: Domain, record: CertificateRecord, tier):
        """记录单个域名的探测结果"""
        pass

    @abstractmethod
    def log_error(self, domain: str, error: Exception):
        """记录错误信息"""
        pass

    @abstractmethod
    def log_sweep_end(self, result: SweepResult):
        """记录扫描结束"""
        pass
