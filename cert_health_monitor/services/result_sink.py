"""
结果写入与查询服务
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union

from ..interfaces import DomainRegistryInterface, ResultStoreInterface
from ..models import CertificateRecord, Domain, ProbeError, ProbeResult, Tier
from .clock import SystemClock
from .expiry_classifier import ExpiryClassifier


ERROR_PREFIX = "SSL Error"


class ResultSink:
    """结果写入与查询

    把探测结果转换成不可变记录写入存储，并提供仪表盘和告警需要的查询。
    """

    def __init__(self, store: ResultStoreInterface, registry: DomainRegistryInterface,
                 classifier: Optional[ExpiryClassifier] = None, clock: Optional[SystemClock] = None):
        """
        初始化结果服务

        Args:
            store: 结果存储
            registry: 域名注册表（查询时用来关联域名信息）
            classifier: 过期分级器
            clock: 时钟
        """
        self.store = store
        self.registry = registry
        self.classifier = classifier or ExpiryClassifier()
        self.clock = clock or SystemClock()
        self.logger = logging.getLogger(__name__)

    def build_record(self, domain_id: str, outcome: Union[ProbeResult, ProbeError],
                     checked_at: datetime) -> CertificateRecord:
        """
        把探测结果转换为证书记录

        Args:
            domain_id: 域名ID
            outcome: 探测结果或探测错误
            checked_at: 检查时间

        Returns:
            CertificateRecord: 证书记录
        """
        if isinstance(outcome, ProbeError):
            return CertificateRecord(
                domain_id=domain_id,
                issuer=None,
                subject=None,
                valid_from=None,
                valid_to=None,
                is_valid=False,
                checked_at=checked_at,
                error=f"{ERROR_PREFIX}: {outcome.message}"
            )

        error = None
        if not outcome.is_valid:
            error = self._validity_window_error(outcome, checked_at)

        return CertificateRecord(
            domain_id=domain_id,
            issuer=outcome.issuer,
            subject=outcome.subject,
            valid_from=outcome.valid_from,
            valid_to=outcome.valid_to,
            is_valid=outcome.is_valid,
            checked_at=checked_at,
            error=error
        )

    def record_certificate_check(self, domain_id: str, record: CertificateRecord) -> None:
        """
        追加一条证书记录

        Args:
            domain_id: 域名ID
            record: 证书记录

        Raises:
            ValueError: 记录的域名ID与参数不一致
        """
        if record.domain_id != domain_id:
            raise ValueError(f"记录的域名ID {record.domain_id} 与目标域名 {domain_id} 不一致")
        self.store.append(record)

    def record_outcome(self, domain: Domain, outcome: Union[ProbeResult, ProbeError],
                       checked_at: Optional[datetime] = None) -> CertificateRecord:
        """
        构造记录并写入存储

        Args:
            domain: 域名
            outcome: 探测结果或探测错误
            checked_at: 检查时间，为None时取当前时间

        Returns:
            CertificateRecord: 已写入的记录
        """
        record = self.build_record(domain.id, outcome, checked_at or self.clock.now())
        self.record_certificate_check(domain.id, record)
        return record

    def get_latest_certificate(self, domain_id: str) -> Optional[CertificateRecord]:
        return self.store.latest(domain_id)

    def get_certificate_history(self, domain_id: str) -> List[CertificateRecord]:
        """获取域名的全部记录（最新在前）"""
        return self.store.history(domain_id)

    def get_tier(self, domain_id: str, now: Optional[datetime] = None) -> Tier:
        """
        计算域名当前的风险等级

        Args:
            domain_id: 域名ID
            now: 当前时间，为None时取时钟时间

        Returns:
            Tier: 风险等级
        """
        return self.classifier.classify(self.store.latest(domain_id), now or self.clock.now())

    def query_expiring_certificates(self, lookahead_days: int,
                                    now: Optional[datetime] = None) -> List[Tuple[Domain, CertificateRecord]]:
        """
        查询即将过期的证书

        只看每个活跃域名的最新记录：记录有效且过期时间落在 [now, now + lookahead_days] 内。

        Args:
            lookahead_days: 向前查看的天数
            now: 当前时间

        Returns:
            List[Tuple[Domain, CertificateRecord]]: 按过期时间升序排列
        """
        if lookahead_days < 0:
            raise ValueError(f"lookahead_days不能为负数: {lookahead_days}")

        now = now or self.clock.now()
        threshold = now + timedelta(days=lookahead_days)

        expiring = []
        for domain in self.registry.list_all_active_domains():
            record = self.store.latest(domain.id)
            if record is None or not record.is_valid or record.valid_to is None:
                continue
            if now <= record.valid_to <= threshold:
                expiring.append((domain, record))

        expiring.sort(key=lambda pair: pair[1].valid_to)
        return expiring

    def get_domains_with_certificates(self, tenant_id: str) -> List[Tuple[Domain, List[CertificateRecord]]]:
        """
        获取租户的活跃域名及各自的证书记录（仪表盘使用）

        Args:
            tenant_id: 租户ID

        Returns:
            List[Tuple[Domain, List[CertificateRecord]]]: 每个域名的记录按检查时间倒序
        """
        return [
            (domain, self.store.history(domain.id))
            for domain in self.registry.list_active_domains(tenant_id)
        ]

    def summarize_tiers(self, now: Optional[datetime] = None,
                        tenant_id: Optional[str] = None) -> Dict[str, int]:
        """
        统计活跃域名的风险等级分布

        Args:
            now: 当前时间
            tenant_id: 租户ID，为None时统计所有租户

        Returns:
            Dict[str, int]: 等级到域名数量的映射
        """
        now = now or self.clock.now()
        if tenant_id is None:
            domains = self.registry.list_all_active_domains()
        else:
            domains = self.registry.list_active_domains(tenant_id)
        records = {domain.id: self.store.latest(domain.id) for domain in domains}
        categorized = self.classifier.categorize(records, now)
        return {tier.value: len(domain_ids) for tier, domain_ids in categorized.items()}

    def _validity_window_error(self, outcome: ProbeResult, checked_at: datetime) -> str:
        if checked_at < outcome.valid_from:
            return f"{ERROR_PREFIX}: certificate not valid until {outcome.valid_from.isoformat()}"
        return f"{ERROR_PREFIX}: certificate expired on {outcome.valid_to.isoformat()}"
