"""
AWS Lambda函数入口点
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .config import MonitorConfig
from .interfaces import ResultStoreInterface
from .models import SweepResult
from .services.cert_prober import CertificateProber
from .services.clock import SystemClock
from .services.config_validator import ConfigValidator
from .services.domain_registry import InMemoryDomainRegistry
from .services.expiry_classifier import ExpiryClassifier
from .services.logger import LoggerService
from .services.rate_limiter import RateLimiter
from .services.result_sink import ResultSink
from .services.result_store import DynamoDBResultStore, InMemoryResultStore
from .services.scan_scheduler import ScanScheduler


DOMAIN_CREATED = "DomainCreated"
SCHEDULED_EVENT = "Scheduled Event"
DASHBOARD_REQUESTED = "DashboardRequested"


class CertificateHealthMonitor:
    """证书健康监控主类"""

    def __init__(self, config: Optional[MonitorConfig] = None):
        """
        初始化监控器

        Args:
            config: 监控配置，为None时从环境变量加载
        """
        self.config = config or MonitorConfig.from_env()

        # 初始化服务组件
        self.logger_service = LoggerService(log_level=self.config.log_level)
        self.clock = SystemClock()
        self.registry = InMemoryDomainRegistry.from_env()
        self.store = self._create_store()
        self.classifier = ExpiryClassifier(
            critical_days=self.config.critical_days,
            warning_days=self.config.warning_days
        )
        self.sink = ResultSink(self.store, self.registry, classifier=self.classifier, clock=self.clock)
        self.prober = CertificateProber(
            timeout=self.config.probe_timeout_seconds,
            port=self.config.probe_port,
            clock=self.clock
        )
        self.scheduler = ScanScheduler(
            registry=self.registry,
            prober=self.prober,
            sink=self.sink,
            clock=self.clock,
            interval=timedelta(hours=self.config.sweep_interval_hours),
            max_workers=self.config.max_concurrent_probes,
            port=self.config.probe_port,
            probe_timeout=self.config.probe_timeout_seconds,
            rate_limiter=RateLimiter(
                min_interval=self.config.probe_pacing_seconds,
                per_host_interval=self.config.host_pacing_seconds,
                clock=self.clock
            ),
            sweep_timeout=self.config.sweep_timeout_seconds,
            logger_service=self.logger_service
        )

        # 记录配置信息
        self._log_configuration()

    def _create_store(self) -> ResultStoreInterface:
        if self.config.result_table_name:
            return DynamoDBResultStore(self.config.result_table_name, region_name=self.config.aws_region)
        self.logger_service.logger.warning("未配置RESULT_TABLE_NAME，使用内存存储")
        return InMemoryResultStore()

    def _log_configuration(self):
        """记录系统配置信息"""
        config = self.config.to_dict()
        config['domains_env_var'] = os.getenv('DOMAINS', '')
        config['lambda_function_name'] = os.getenv('AWS_LAMBDA_FUNCTION_NAME', 'unknown')
        self.logger_service.log_configuration_info(config)

    def execute(self) -> SweepResult:
        """
        执行一次全量扫描

        Returns:
            SweepResult: 扫描结果
        """
        return self.scheduler.run_sweep()

    def handle_domain_created(self, detail: Dict[str, Any]) -> Dict[str, Any]:
        """
        处理新域名注册事件：注册域名并立即扫描

        Args:
            detail: 事件内容 {id?, hostname, ownerId}

        Returns:
            Dict[str, Any]: 扫描结果

        Raises:
            ValueError: 事件内容无效
        """
        hostname = detail.get('hostname')
        owner_id = detail.get('ownerId')
        if not hostname or not owner_id:
            raise ValueError("DomainCreated事件缺少hostname或ownerId")

        domain_id = detail.get('id')
        domain = self.registry.get_domain(domain_id) if domain_id else None
        if domain is None:
            domain = self.registry.register_domain(hostname, owner_id, domain_id=domain_id)

        future = self.scheduler.on_domain_created(domain)
        record = future.result() if future is not None else None
        latest = record or self.sink.get_latest_certificate(domain.id)

        return {
            'domain_id': domain.id,
            'hostname': domain.hostname,
            'tier': self.sink.get_tier(domain.id).value,
            'is_valid': latest.is_valid if latest else False,
            'valid_to': latest.valid_to.isoformat() if latest and latest.valid_to else None,
            'error': latest.error if latest else None,
            'scanned': record is not None
        }

    def get_tenant_dashboard(self, tenant_id: str) -> Dict[str, Any]:
        """
        租户仪表盘：每个活跃域名的当前等级、最新记录和检查次数

        Args:
            tenant_id: 租户ID

        Returns:
            Dict[str, Any]: 仪表盘数据

        Raises:
            ValueError: 租户ID为空
        """
        now = self.clock.now()
        domains = []
        for domain, records in self.sink.get_domains_with_certificates(tenant_id):
            latest = records[0] if records else None
            domains.append({
                'domain_id': domain.id,
                'hostname': domain.hostname,
                'tier': self.classifier.classify(latest, now).value,
                'issuer': latest.issuer if latest else None,
                'valid_to': latest.valid_to.isoformat() if latest and latest.valid_to else None,
                'checked_at': latest.checked_at.isoformat() if latest else None,
                'error': latest.error if latest else None,
                'check_count': len(records)
            })

        return {
            'tenant_id': tenant_id,
            'domains': domains,
            'tier_counts': self.sink.summarize_tiers(now, tenant_id=tenant_id)
        }

    def get_expiring_domains(self) -> list:
        """即将过期的域名（主机名列表）"""
        expiring = self.sink.query_expiring_certificates(self.config.expiring_lookahead_days)
        return [domain.hostname for domain, _ in expiring]

    def validate_system_health(self) -> dict:
        """
        验证系统健康状态

        Returns:
            dict: 系统健康状态信息
        """
        health_status = {
            'overall_healthy': True,
            'components': {},
            'issues': []
        }

        try:
            domain_count = len(self.registry.list_all_active_domains())
            health_status['components']['domain_registry'] = {
                'healthy': domain_count > 0,
                'details': {'total_domains': domain_count}
            }
            if domain_count == 0:
                health_status['issues'].append("没有配置要监控的域名")
                health_status['overall_healthy'] = False

            validation = ConfigValidator().validate_all_configurations()
            health_status['components']['configuration'] = {
                'healthy': validation['is_valid'],
                'details': {'errors': validation['errors'], 'warnings': validation['warnings']}
            }
            if not validation['is_valid']:
                health_status['issues'].append("配置验证失败")
                health_status['overall_healthy'] = False

            if isinstance(self.store, DynamoDBResultStore):
                connected = self.store.test_connection()
                health_status['components']['result_store'] = {
                    'healthy': connected,
                    'details': {'table_name': self.store.table_name}
                }
                if not connected:
                    health_status['issues'].append("结果表连接测试失败")
                    health_status['overall_healthy'] = False

        except Exception as e:
            health_status['overall_healthy'] = False
            health_status['issues'].append(f"健康检查时发生错误: {str(e)}")

        return health_status

    def close(self):
        """释放工作线程"""
        self.scheduler.stop(timeout=self.config.probe_timeout_seconds)


def _sweep_response(monitor: CertificateHealthMonitor) -> Dict[str, Any]:
    result = monitor.execute()

    response = {
        'statusCode': 200,
        'body': {
            'message': 'Certificate health sweep executed successfully',
            'summary': {
                'total_domains': result.total_domains,
                'recorded': result.recorded,
                'successful_checks': result.successful_checks,
                'failed_checks': result.failed_checks,
                'skipped': result.skipped,
                'cancelled': result.cancelled,
                'execution_time_seconds': result.execution_time,
                'success_rate': result.success_rate
            },
            'tier_counts': result.tier_counts,
            'expiring_domains': monitor.get_expiring_domains(),
            'errors': result.errors[:5],  # 只返回前5个错误
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
    }

    # 获取域名列表失败时返回错误状态码
    if result.total_domains == 0 and result.errors:
        response['statusCode'] = 500
        response['body']['message'] = 'Certificate health sweep failed to execute'

    return response


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda函数入口点

    Args:
        event: EventBridge定时事件、detail-type 为 DomainCreated 的域名注册事件，
            或 detail-type 为 DashboardRequested 的租户仪表盘查询
        context: Lambda运行时上下文

    Returns:
        dict: 执行结果
    """
    event = event or {}
    detail_type = event.get('detail-type')
    monitor = None

    try:
        monitor = CertificateHealthMonitor()

        if detail_type == DOMAIN_CREATED:
            try:
                scan = monitor.handle_domain_created(event.get('detail') or {})
            except ValueError as e:
                return {
                    'statusCode': 400,
                    'body': {'message': str(e), 'timestamp': datetime.now(timezone.utc).isoformat()}
                }
            return {
                'statusCode': 200,
                'body': {
                    'message': 'Domain scanned',
                    'scan': scan,
                    'timestamp': datetime.now(timezone.utc).isoformat()
                }
            }

        if detail_type == DASHBOARD_REQUESTED:
            try:
                dashboard = monitor.get_tenant_dashboard((event.get('detail') or {}).get('ownerId'))
            except ValueError as e:
                return {
                    'statusCode': 400,
                    'body': {'message': str(e), 'timestamp': datetime.now(timezone.utc).isoformat()}
                }
            return {
                'statusCode': 200,
                'body': {
                    'message': 'Tenant dashboard',
                    'dashboard': dashboard,
                    'timestamp': datetime.now(timezone.utc).isoformat()
                }
            }

        if detail_type in (None, SCHEDULED_EVENT):
            return _sweep_response(monitor)

        return {
            'statusCode': 400,
            'body': {
                'message': f'Unsupported event type: {detail_type}',
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
        }

    except Exception as e:
        LoggerService().logger.error(f"Lambda函数执行时发生严重错误: {type(e).__name__}: {str(e)}")
        return {
            'statusCode': 500,
            'body': {
                'message': 'Certificate health monitor encountered a critical error',
                'error': str(e),
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
        }

    finally:
        if monitor is not None:
            monitor.close()
