"""
日志服务
"""
import os
import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from ..interfaces import LoggerServiceInterface
from ..models import CertificateRecord, Domain, SweepResult, Tier


class LoggerService(LoggerServiceInterface):
    """日志服务实现"""

    def __init__(self, logger_name: str = "cert_health_monitor", log_level: Optional[str] = None):
        """
        初始化日志服务

        Args:
            logger_name: 日志器名称
            log_level: 日志级别，如果为None则从环境变量读取
        """
        self.logger_name = logger_name
        self.log_level = log_level or os.getenv('LOG_LEVEL', 'INFO')

        # 配置日志器
        self.logger = logging.getLogger(logger_name)
        self._configure_logger()

        self.sweep_started_at: Optional[datetime] = None

    def _configure_logger(self):
        """配置日志器"""
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        self.logger.setLevel(level)

        # 避免重复添加处理器
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(level)

            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)

            self.logger.addHandler(handler)

        # 防止日志传播到根日志器
        self.logger.propagate = False

    def log_sweep_start(self, domain_count: int):
        """
        记录扫描开始

        Args:
            domain_count: 本次快照中的域名数量
        """
        self.sweep_started_at = datetime.now(timezone.utc)

        self.logger.info(f"开始证书健康扫描，共 {domain_count} 个域名")
        self.logger.info(f"扫描开始时间: {self.sweep_started_at.isoformat()}")

    def log_probe_outcome(self, domain: Domain, record: CertificateRecord, tier: Tier):
        """
        记录单个域名的探测结果

        Args:
            domain: 域名
            record: 证书记录
            tier: 风险等级
        """
        if tier == Tier.INVALID:
            self.logger.error(
                f"证书检查失败 - 域名: {domain.hostname}, 错误: {record.error}"
            )
        elif tier in (Tier.EXPIRED, Tier.CRITICAL, Tier.WARNING):
            self.logger.warning(
                f"证书需要关注 - 域名: {domain.hostname}, "
                f"等级: {tier.value}, "
                f"过期时间: {record.valid_to.isoformat()}, "
                f"颁发者: {record.issuer}"
            )
        else:
            self.logger.info(
                f"证书正常 - 域名: {domain.hostname}, "
                f"过期时间: {record.valid_to.isoformat() if record.valid_to else '未知'}, "
                f"颁发者: {record.issuer}"
            )

    def log_error(self, domain: str, error: Exception):
        """
        记录运行错误（存储写入失败等）

        Args:
            domain: 域名
            error: 异常对象
        """
        self.logger.error(
            f"域名 {domain} 处理时发生错误: {type(error).__name__}: {str(error)}"
        )

        # 详细的堆栈跟踪（调试级别）
        stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        self.logger.debug(f"域名 {domain} 错误堆栈跟踪:\n{stack}")

    def log_sweep_end(self, result: SweepResult):
        """
        记录扫描结束

        Args:
            result: 扫描结果
        """
        end_time = datetime.now(timezone.utc)

        self.logger.info("证书健康扫描完成")
        self.logger.info(f"扫描结束时间: {end_time.isoformat()}")
        self.logger.info(f"总执行时间: {result.execution_time:.2f} 秒")
        self.logger.info(
            f"扫描统计: 总计 {result.total_domains} 个域名, "
            f"已记录 {result.recorded} 个, "
            f"成功 {result.successful_checks} 个, "
            f"失败 {result.failed_checks} 个, "
            f"跳过 {result.skipped} 个, "
            f"取消 {result.cancelled} 个"
        )

    def log_configuration_info(self, config: Dict[str, Any]):
        """
        记录配置信息

        Args:
            config: 配置信息字典
        """
        safe_config = self._sanitize_config(config)

        self.logger.info("系统配置信息:")
        for key, value in safe_config.items():
            self.logger.info(f"  {key}: {value}")

    def _sanitize_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        清理配置信息中的敏感数据

        Args:
            config: 原始配置

        Returns:
            Dict[str, Any]: 清理后的配置
        """
        safe_config = {}
        for key, value in config.items():
            key_lower = key.lower()

            is_sensitive = (
                key_lower in {'password', 'secret', 'token', 'key', 'credential'} or
                key_lower.endswith('_key') or
                key_lower.endswith('_secret') or
                key_lower.endswith('_password') or
                key_lower.endswith('_token') or
                key_lower.endswith('_arn')
            )

            if is_sensitive and isinstance(value, str) and value:
                if value.startswith('arn:'):
                    # ARN类型，只显示前缀和资源名
                    parts = value.split(':')
                    if len(parts) >= 6:
                        safe_value = f"{':'.join(parts[:3])}:***:{parts[-1]}"
                    else:
                        safe_value = "***"
                else:
                    safe_value = value[:3] + "***" if len(value) > 3 else "***"
                safe_config[key] = safe_value
            else:
                safe_config[key] = value

        return safe_config

    def get_execution_summary(self, result: SweepResult) -> Dict[str, Any]:
        """
        获取执行摘要

        Args:
            result: 扫描结果

        Returns:
            Dict[str, Any]: 执行摘要信息
        """
        return {
            'start_time': self.sweep_started_at.isoformat() if self.sweep_started_at else None,
            'duration_seconds': result.execution_time,
            'total_domains': result.total_domains,
            'recorded': result.recorded,
            'successful_checks': result.successful_checks,
            'failed_checks': result.failed_checks,
            'skipped': result.skipped,
            'cancelled': result.cancelled,
            'success_rate': result.success_rate,
            'error_count': len(result.errors),
            'errors': list(result.errors),
            'tier_counts': dict(result.tier_counts)
        }

    def log_execution_summary(self, result: SweepResult):
        """记录执行摘要"""
        summary = self.get_execution_summary(result)

        self.logger.info("=" * 50)
        self.logger.info("执行摘要")
        self.logger.info("=" * 50)

        if summary['start_time']:
            self.logger.info(f"开始时间: {summary['start_time']}")

        self.logger.info(f"执行时长: {summary['duration_seconds']:.2f} 秒")
        self.logger.info(f"总域名数: {summary['total_domains']}")
        self.logger.info(f"成功检查: {summary['successful_checks']}")
        self.logger.info(f"失败检查: {summary['failed_checks']}")
        self.logger.info(f"成功率: {summary['success_rate']:.1%}")

        if summary['tier_counts']:
            tiers = ", ".join(f"{tier}: {count}" for tier, count in summary['tier_counts'].items())
            self.logger.info(f"等级分布: {tiers}")

        if summary['errors']:
            self.logger.info(f"错误数量: {summary['error_count']}")
            for i, error in enumerate(summary['errors'][:5], 1):  # 只显示前5个错误
                self.logger.info(f"  错误 {i}: {error}")

            if len(summary['errors']) > 5:
                self.logger.info(f"  ... 还有 {len(summary['errors']) - 5} 个错误")

        self.logger.info("=" * 50)
