"""
日志服务测试
"""
import os
import logging
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from cert_health_monitor.models import CertificateRecord, Domain, SweepResult, Tier
from cert_health_monitor.services.logger import LoggerService

from conftest import FIXED_NOW


def make_record(valid_to=FIXED_NOW + timedelta(days=60), is_valid=True, error=None):
    return CertificateRecord(
        domain_id="d1",
        issuer="Test CA" if is_valid else None,
        subject="example.com" if is_valid else None,
        valid_from=FIXED_NOW - timedelta(days=30) if is_valid else None,
        valid_to=valid_to if is_valid else None,
        is_valid=is_valid,
        checked_at=FIXED_NOW,
        error=error
    )


def make_sweep_result(errors=None, tier_counts=None):
    return SweepResult(
        total_domains=4,
        recorded=4,
        successful_checks=3,
        failed_checks=1,
        skipped=0,
        cancelled=0,
        errors=errors or [],
        execution_time=1.5,
        tier_counts=tier_counts or {}
    )


class TestLoggerService:
    """日志服务测试类"""

    def setup_method(self):
        """测试前准备"""
        self.logger_service = LoggerService(logger_name="test_logger")
        self.domain = Domain(id="d1", hostname="example.com", owner_id="tenant-1")

        # 用字符串流捕获日志输出
        self.log_stream = StringIO()
        handler = logging.StreamHandler(self.log_stream)
        handler.setFormatter(logging.Formatter('%(levelname)s - %(message)s'))

        self.logger_service.logger.handlers.clear()
        self.logger_service.logger.addHandler(handler)
        self.logger_service.logger.setLevel(logging.DEBUG)

    def get_log_output(self) -> str:
        """获取日志输出"""
        return self.log_stream.getvalue()

    @patch.dict(os.environ, {}, clear=True)
    def test_init_default_config(self):
        """测试默认配置初始化"""
        service = LoggerService()

        assert service.logger_name == "cert_health_monitor"
        assert service.log_level == "INFO"
        assert service.logger.propagate is False

    @patch.dict(os.environ, {'LOG_LEVEL': 'DEBUG'})
    def test_init_with_env_log_level(self):
        """测试从环境变量读取日志级别"""
        service = LoggerService(logger_name="env_logger")

        assert service.log_level == "DEBUG"
        assert service.logger.level == logging.DEBUG

    def test_handler_not_duplicated(self):
        """测试重复初始化不会重复添加处理器"""
        LoggerService(logger_name="dup_logger")
        service = LoggerService(logger_name="dup_logger")

        assert len(service.logger.handlers) == 1

    def test_log_sweep_start(self):
        """测试记录扫描开始"""
        self.logger_service.log_sweep_start(5)

        output = self.get_log_output()
        assert "开始证书健康扫描，共 5 个域名" in output
        assert self.logger_service.sweep_started_at is not None

    def test_log_probe_outcome_valid(self):
        """测试记录正常证书"""
        self.logger_service.log_probe_outcome(self.domain, make_record(), Tier.VALID)

        output = self.get_log_output()
        assert "INFO - 证书正常 - 域名: example.com" in output
        assert "颁发者: Test CA" in output

    def test_log_probe_outcome_needs_attention(self):
        """测试记录需要关注的证书"""
        record = make_record(valid_to=FIXED_NOW + timedelta(days=3))
        self.logger_service.log_probe_outcome(self.domain, record, Tier.CRITICAL)

        output = self.get_log_output()
        assert "WARNING - 证书需要关注 - 域名: example.com" in output
        assert "等级: critical" in output

    def test_log_probe_outcome_invalid(self):
        """测试记录检查失败"""
        record = make_record(is_valid=False, error="SSL Error: connection refused")
        self.logger_service.log_probe_outcome(self.domain, record, Tier.INVALID)

        output = self.get_log_output()
        assert "ERROR - 证书检查失败 - 域名: example.com, 错误: SSL Error: connection refused" in output

    def test_log_error(self):
        """测试记录错误和堆栈"""
        try:
            raise RuntimeError("storage unavailable")
        except RuntimeError as e:
            self.logger_service.log_error("example.com", e)

        output = self.get_log_output()
        assert "ERROR - 域名 example.com 处理时发生错误: RuntimeError: storage unavailable" in output
        assert "错误堆栈跟踪" in output
        assert "Traceback" in output

    def test_log_sweep_end(self):
        """测试记录扫描结束"""
        self.logger_service.log_sweep_end(make_sweep_result())

        output = self.get_log_output()
        assert "证书健康扫描完成" in output
        assert "总执行时间: 1.50 秒" in output
        assert "已记录 4 个" in output

    def test_log_configuration_info_masks_sensitive_values(self):
        """测试敏感配置被遮盖"""
        self.logger_service.log_configuration_info({
            'result_table_name': 'cert-results',
            'api_key': 'abcdef123',
            'role_arn': 'arn:aws:iam::123456789012:role/monitor'
        })

        output = self.get_log_output()
        assert "result_table_name: cert-results" in output
        assert "abcdef123" not in output
        assert "api_key: abc***" in output
        assert "123456789012" not in output

    def test_get_execution_summary(self):
        """测试执行摘要"""
        self.logger_service.log_sweep_start(4)
        result = make_sweep_result(errors=["a.com: SSL Error: connection refused"],
                                   tier_counts={'valid': 3, 'invalid': 1})

        summary = self.logger_service.get_execution_summary(result)

        assert summary['total_domains'] == 4
        assert summary['recorded'] == 4
        assert summary['success_rate'] == 0.75
        assert summary['error_count'] == 1
        assert summary['tier_counts'] == {'valid': 3, 'invalid': 1}
        assert summary['start_time'] is not None

    def test_log_execution_summary_truncates_errors(self):
        """测试摘要只显示前5个错误"""
        errors = [f"host{i}.com: SSL Error: connection refused" for i in range(7)]
        self.logger_service.log_execution_summary(make_sweep_result(errors=errors, tier_counts={'invalid': 1}))

        output = self.get_log_output()
        assert "错误 5: host4.com" in output
        assert "host5.com" not in output
        assert "还有 2 个错误" in output
        assert "等级分布: invalid: 1" in output
