"""
证书过期分级服务
"""
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from ..models import CertificateRecord, Tier


ONE_DAY = timedelta(days=1)


class ExpiryClassifier:
    """证书过期分级器（纯函数，无副作用）"""

    def __init__(self, critical_days: int = 7, warning_days: int = 30):
        """
        初始化分级器

        Args:
            critical_days: 严重等级的天数上限，默认7天
            warning_days: 警告等级的天数上限，默认30天
        """
        if critical_days < 0 or critical_days >= warning_days:
            raise ValueError(
                f"分级阈值无效: critical_days={critical_days}, warning_days={warning_days}"
            )
        self.critical_days = critical_days
        self.warning_days = warning_days

    def days_remaining(self, valid_to: datetime, now: datetime) -> int:
        """
        计算剩余天数（向上取整，6小时后过期算作1天）

        Args:
            valid_to: 过期时间
            now: 当前时间

        Returns:
            int: 剩余天数（0或负数表示已过期）
        """
        # ceil(delta / 1天) == -floor(-delta / 1天)
        return -((now - valid_to) // ONE_DAY)

    def classify(self, record: Optional[CertificateRecord], now: datetime) -> Tier:
        """
        根据最新记录计算风险等级

        Args:
            record: 域名最新的证书记录，没有记录时为None
            now: 当前时间

        Returns:
            Tier: 风险等级
        """
        if record is None:
            return Tier.NO_CERT
        if not record.is_valid or record.valid_to is None:
            return Tier.INVALID

        days = self.days_remaining(record.valid_to, now)
        if days <= 0:
            return Tier.EXPIRED
        if days <= self.critical_days:
            return Tier.CRITICAL
        if days <= self.warning_days:
            return Tier.WARNING
        return Tier.VALID

    def categorize(self, records: Mapping[str, Optional[CertificateRecord]],
                   now: datetime) -> Dict[Tier, List[str]]:
        """
        按风险等级对域名分组

        Args:
            records: 域名ID到最新记录的映射
            now: 当前时间

        Returns:
            Dict[Tier, List[str]]: 每个等级下的域名ID列表
        """
        categorized = {tier: [] for tier in Tier}
        for domain_id, record in records.items():
            categorized[self.classify(record, now)].append(domain_id)
        return categorized

    def get_tier_summary(self, records: Mapping[str, Optional[CertificateRecord]],
                         now: datetime) -> str:
        """
        获取分级状态摘要

        Args:
            records: 域名ID到最新记录的映射
            now: 当前时间

        Returns:
            str: 摘要信息
        """
        categorized = self.categorize(records, now)

        summary_parts = [f"总计: {len(records)} 个域名"]
        labels = [
            (Tier.EXPIRED, "已过期"),
            (Tier.CRITICAL, f"严重({self.critical_days}天内)"),
            (Tier.WARNING, f"警告({self.warning_days}天内)"),
            (Tier.INVALID, "无效"),
            (Tier.NO_CERT, "无证书"),
            (Tier.VALID, "健康"),
        ]
        for tier, label in labels:
            if categorized[tier]:
                summary_parts.append(f"{label}: {len(categorized[tier])} 个")

        return ", ".join(summary_parts)


_default_classifier = ExpiryClassifier()


def classify(record: Optional[CertificateRecord], now: datetime) -> Tier:
    """使用默认阈值（7天/30天）计算风险等级"""
    return _default_classifier.classify(record, now)
