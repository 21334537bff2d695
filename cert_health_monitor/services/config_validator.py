"""
配置验证服务
"""
import os
import re
import logging
from typing import Dict, Any, Optional

from ..config import MonitorConfig
from .domain_registry import InMemoryDomainRegistry


class ConfigValidator:
    """配置验证器"""

    TABLE_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_.-]{3,255}$')

    def __init__(self):
        """初始化配置验证器"""
        self.logger = logging.getLogger(__name__)

        # 必需的环境变量
        self.required_env_vars = {
            'DOMAINS': '域名列表（逗号分隔）'
        }

        # 可选的环境变量
        self.optional_env_vars = {
            'RESULT_TABLE_NAME': 'DynamoDB结果表名',
            'SWEEP_INTERVAL_HOURS': '定时扫描间隔（小时）',
            'MAX_CONCURRENT_PROBES': '并发探测数量上限',
            'PROBE_TIMEOUT_SECONDS': '单次探测超时时间（秒）',
            'LOG_LEVEL': '日志级别',
            'AWS_LAMBDA_FUNCTION_NAME': 'Lambda函数名称',
            'AWS_LAMBDA_FUNCTION_TIMEOUT': 'Lambda超时时间'
        }

    def validate_all_configurations(self) -> Dict[str, Any]:
        """
        验证所有配置

        Returns:
            Dict[str, Any]: 验证结果
        """
        validation_result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'configurations': {}
        }

        sections = [
            ('environment', self.validate_environment_variables, True),
            ('domains', self.validate_domains_configuration, True),
            ('scan', self.validate_scan_configuration, True),
            ('storage', self.validate_storage_configuration, True),
            ('lambda', self.validate_lambda_configuration, False),
        ]

        for name, validator, errors_are_fatal in sections:
            try:
                section = validator()
            except Exception as e:
                validation_result['is_valid'] = False
                validation_result['errors'].append(f"验证 {name} 配置时发生错误: {str(e)}")
                continue

            validation_result['configurations'][name] = section
            if not section['is_valid']:
                if errors_are_fatal:
                    validation_result['is_valid'] = False
                    validation_result['errors'].extend(section['errors'])
                else:
                    validation_result['warnings'].extend(section['errors'])
            validation_result['warnings'].extend(section['warnings'])

        return validation_result

    def validate_environment_variables(self) -> Dict[str, Any]:
        """
        验证环境变量

        Returns:
            Dict[str, Any]: 环境变量验证结果
        """
        result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'missing_required': [],
            'missing_optional': [],
            'present_vars': {}
        }

        for var_name, description in self.required_env_vars.items():
            value = os.getenv(var_name)
            if not value:
                result['missing_required'].append({'name': var_name, 'description': description})
                result['errors'].append(f"缺少必需的环境变量: {var_name} ({description})")
                result['is_valid'] = False
            else:
                result['present_vars'][var_name] = value

        for var_name, description in self.optional_env_vars.items():
            value = os.getenv(var_name)
            if not value:
                result['missing_optional'].append({'name': var_name, 'description': description})
            else:
                result['present_vars'][var_name] = value

        return result

    def validate_domains_configuration(self) -> Dict[str, Any]:
        """
        验证域名配置

        Returns:
            Dict[str, Any]: 域名配置验证结果
        """
        result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'total_domains': 0,
            'valid_domains': [],
            'invalid_domains': []
        }

        domains_str = os.getenv('DOMAINS', '')
        if not domains_str.strip():
            result['is_valid'] = False
            result['errors'].append("DOMAINS环境变量为空")
            return result

        registry = InMemoryDomainRegistry()
        raw_domains = [domain.strip() for domain in domains_str.split(',') if domain.strip()]
        result['total_domains'] = len(raw_domains)

        for domain in raw_domains:
            if registry.validate_hostname(registry.clean_hostname(domain)):
                result['valid_domains'].append(domain)
            else:
                result['invalid_domains'].append(domain)
                result['warnings'].append(f"域名格式无效: {domain}")

        if not result['valid_domains']:
            result['is_valid'] = False
            result['errors'].append("没有找到有效的域名")

        return result

    def validate_scan_configuration(self) -> Dict[str, Any]:
        """
        验证扫描配置（并发、超时、节流、分级阈值）

        Returns:
            Dict[str, Any]: 扫描配置验证结果
        """
        result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'config': None
        }

        try:
            config = MonitorConfig.from_env()
        except ValueError as e:
            result['is_valid'] = False
            result['errors'].append(str(e))
            return result

        result['config'] = config.to_dict()
        errors = result['errors']
        warnings = result['warnings']

        if config.sweep_interval_hours <= 0:
            errors.append(f"扫描间隔必须为正数: {config.sweep_interval_hours}")
        elif config.sweep_interval_hours > 24:
            warnings.append(f"扫描间隔较长: {config.sweep_interval_hours} 小时，可能延迟发现即将过期的证书")

        if config.max_concurrent_probes < 1:
            errors.append(f"并发探测数量必须大于0: {config.max_concurrent_probes}")
        elif config.max_concurrent_probes > 50:
            warnings.append(f"并发探测数量过大: {config.max_concurrent_probes}，建议5-20")

        if config.probe_timeout_seconds <= 0:
            errors.append(f"探测超时时间必须为正数: {config.probe_timeout_seconds}")
        elif config.probe_timeout_seconds > 60:
            warnings.append(f"探测超时时间过长: {config.probe_timeout_seconds} 秒")

        if not 1 <= config.probe_port <= 65535:
            errors.append(f"探测端口无效: {config.probe_port}")

        if config.probe_pacing_seconds < 0 or config.host_pacing_seconds < 0:
            errors.append("节流间隔不能为负数")

        if config.critical_days < 0 or config.critical_days >= config.warning_days:
            errors.append(
                f"分级阈值无效: CRITICAL_DAYS={config.critical_days}, WARNING_DAYS={config.warning_days}"
            )

        if config.expiring_lookahead_days < 0:
            errors.append(f"即将过期查询天数不能为负数: {config.expiring_lookahead_days}")

        if config.sweep_timeout_seconds is not None:
            if config.sweep_timeout_seconds <= 0:
                errors.append(f"全量扫描超时时间必须为正数: {config.sweep_timeout_seconds}")
            elif config.sweep_timeout_seconds < config.probe_timeout_seconds:
                warnings.append("全量扫描超时时间小于单次探测超时时间")

        result['is_valid'] = not errors
        return result

    def validate_storage_configuration(self) -> Dict[str, Any]:
        """
        验证结果存储配置

        Returns:
            Dict[str, Any]: 存储配置验证结果
        """
        result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'table_name': None,
            'backend': 'memory'
        }

        table_name = os.getenv('RESULT_TABLE_NAME')
        if not table_name:
            result['warnings'].append("RESULT_TABLE_NAME未设置，使用内存存储，结果不会持久化")
            return result

        result['table_name'] = table_name
        result['backend'] = 'dynamodb'
        if not self.TABLE_NAME_PATTERN.match(table_name):
            result['is_valid'] = False
            result['errors'].append(f"DynamoDB表名格式无效: {table_name}")

        return result

    def validate_lambda_configuration(self) -> Dict[str, Any]:
        """
        验证Lambda配置

        Returns:
            Dict[str, Any]: Lambda配置验证结果
        """
        result = {
            'is_valid': True,
            'errors': [],
            'warnings': [],
            'function_name': None,
            'timeout': None
        }

        function_name = os.getenv('AWS_LAMBDA_FUNCTION_NAME')
        if function_name:
            result['function_name'] = function_name
        else:
            result['warnings'].append("AWS_LAMBDA_FUNCTION_NAME未设置，可能不在Lambda环境中运行")

        timeout = os.getenv('AWS_LAMBDA_FUNCTION_TIMEOUT')
        if timeout:
            try:
                timeout_seconds = int(timeout)
            except ValueError:
                result['warnings'].append(f"Lambda超时时间格式无效: {timeout}")
                return result

            result['timeout'] = timeout_seconds
            if timeout_seconds < 30:
                result['warnings'].append(f"Lambda超时时间过短: {timeout_seconds}秒，建议至少30秒")

            sweep_timeout = self._optional_float('SWEEP_TIMEOUT_SECONDS')
            if sweep_timeout is not None and sweep_timeout >= timeout_seconds:
                result['warnings'].append(
                    f"全量扫描超时时间({sweep_timeout}秒)不小于Lambda超时时间({timeout_seconds}秒)"
                )

        return result

    def _optional_float(self, var_name: str) -> Optional[float]:
        value = os.getenv(var_name)
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def get_configuration_summary(self) -> str:
        """
        获取配置摘要

        Returns:
            str: 配置摘要文本
        """
        validation_result = self.validate_all_configurations()

        lines = [
            "配置验证摘要",
            "=" * 30
        ]

        if validation_result['is_valid']:
            lines.append("✅ 配置验证通过")
        else:
            lines.append("❌ 配置验证失败")

        if validation_result['errors']:
            lines.append("\n错误:")
            for error in validation_result['errors']:
                lines.append(f"  • {error}")

        if validation_result['warnings']:
            lines.append("\n警告:")
            for warning in validation_result['warnings']:
                lines.append(f"  • {warning}")

        lines.append("\n配置详情:")

        domains_config = validation_result['configurations'].get('domains', {})
        if domains_config.get('valid_domains'):
            lines.append(f"  有效域名数量: {len(domains_config['valid_domains'])}")

        storage_config = validation_result['configurations'].get('storage', {})
        if storage_config:
            lines.append(f"  结果存储: {storage_config.get('backend')}")

        scan_config = validation_result['configurations'].get('scan', {}).get('config')
        if scan_config:
            lines.append(f"  并发探测: {scan_config['max_concurrent_probes']}")
            lines.append(f"  扫描间隔: {scan_config['sweep_interval_hours']} 小时")

        return "\n".join(lines)
