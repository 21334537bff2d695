"""
错误处理服务
"""
import socket
import ssl
import logging
from typing import Any, Dict, List

from ..models import ProbeError, ProbeErrorType


STAGE_CONNECT = "connect"
STAGE_HANDSHAKE = "handshake"
STAGE_CERTIFICATE = "certificate"


class ProbeErrorHandler:
    """探测错误处理器：把网络/TLS异常归类为ProbeError"""

    # 面向仪表盘显示的错误描述
    ERROR_MESSAGES = {
        ProbeErrorType.DNS_RESOLUTION_FAILED: "dns resolution failed",
        ProbeErrorType.CONNECTION_REFUSED: "connection refused",
        ProbeErrorType.CONNECTION_TIMEOUT: "connection timeout",
        ProbeErrorType.CONNECTION_FAILED: "connection failed",
        ProbeErrorType.TLS_HANDSHAKE_FAILED: "tls handshake failed",
        ProbeErrorType.NO_CERTIFICATE_PRESENTED: "no certificate presented",
        ProbeErrorType.UNEXPECTED_ERROR: "unexpected error",
    }

    def __init__(self):
        """初始化探测错误处理器"""
        self.logger = logging.getLogger(__name__)

    def classify_exception(self, error: Exception, stage: str = STAGE_CONNECT) -> ProbeErrorType:
        """
        判断异常对应的错误类型

        Args:
            error: 异常对象
            stage: 发生异常的阶段（connect / handshake / certificate）

        Returns:
            ProbeErrorType: 错误类型
        """
        if isinstance(error, socket.gaierror):
            return ProbeErrorType.DNS_RESOLUTION_FAILED
        if isinstance(error, (socket.timeout, TimeoutError)):
            return ProbeErrorType.CONNECTION_TIMEOUT
        if isinstance(error, ConnectionRefusedError):
            return ProbeErrorType.CONNECTION_REFUSED
        if isinstance(error, ssl.SSLError):
            return ProbeErrorType.TLS_HANDSHAKE_FAILED

        if stage == STAGE_CERTIFICATE and isinstance(error, ValueError):
            # 证书字节无法解析，视为没有可用证书
            return ProbeErrorType.NO_CERTIFICATE_PRESENTED

        if isinstance(error, OSError):
            if stage == STAGE_HANDSHAKE:
                # 握手过程中连接被重置/关闭
                return ProbeErrorType.TLS_HANDSHAKE_FAILED
            return ProbeErrorType.CONNECTION_FAILED

        return ProbeErrorType.UNEXPECTED_ERROR

    def handle_probe_error(self, hostname: str, port: int, error: Exception,
                           stage: str = STAGE_CONNECT) -> ProbeError:
        """
        处理探测异常

        Args:
            hostname: 主机名
            port: 端口
            error: 异常对象
            stage: 发生异常的阶段

        Returns:
            ProbeError: 分类后的探测错误
        """
        error_type = self.classify_exception(error, stage)
        message = self.format_message(error_type, error)

        if error_type == ProbeErrorType.UNEXPECTED_ERROR:
            self.logger.error(f"探测 {hostname}:{port} 时发生未预期的错误: {type(error).__name__}: {error}")
        else:
            self.logger.warning(f"探测 {hostname}:{port} 失败（{error_type.value}）: {error}")

        return ProbeError(hostname=hostname, port=port, error_type=error_type, message=message)

    def no_certificate(self, hostname: str, port: int) -> ProbeError:
        """握手成功但对端没有提供证书"""
        self.logger.warning(f"{hostname}:{port} 握手成功但没有提供证书")
        return ProbeError(
            hostname=hostname,
            port=port,
            error_type=ProbeErrorType.NO_CERTIFICATE_PRESENTED,
            message=self.ERROR_MESSAGES[ProbeErrorType.NO_CERTIFICATE_PRESENTED]
        )

    def format_message(self, error_type: ProbeErrorType, error: Exception) -> str:
        """
        生成可读的错误描述

        Args:
            error_type: 错误类型
            error: 异常对象

        Returns:
            str: 错误描述
        """
        base = self.ERROR_MESSAGES[error_type]
        if error_type in (ProbeErrorType.CONNECTION_REFUSED, ProbeErrorType.CONNECTION_TIMEOUT):
            return base

        detail = getattr(error, 'reason', None) or getattr(error, 'strerror', None) or str(error)
        if detail:
            return f"{base} ({detail})"
        return base

    def get_suggested_action(self, error_type: ProbeErrorType) -> str:
        """
        获取错误的建议处理方案

        Args:
            error_type: 错误类型

        Returns:
            str: 建议的处理方案
        """
        if error_type == ProbeErrorType.DNS_RESOLUTION_FAILED:
            return "检查域名是否正确，DNS服务器是否可用"
        elif error_type == ProbeErrorType.CONNECTION_REFUSED:
            return "检查目标服务器是否运行，端口是否正确"
        elif error_type == ProbeErrorType.CONNECTION_TIMEOUT:
            return "检查网络连接，考虑增加超时时间"
        elif error_type == ProbeErrorType.CONNECTION_FAILED:
            return "检查网络连接、路由和防火墙配置"
        elif error_type == ProbeErrorType.TLS_HANDSHAKE_FAILED:
            return "SSL握手失败，检查服务器SSL/TLS配置和版本兼容性"
        elif error_type == ProbeErrorType.NO_CERTIFICATE_PRESENTED:
            return "服务器没有提供证书，检查HTTPS是否已正确部署"
        else:
            return "检查服务器状态和监控日志"

    def get_error_statistics(self, errors: List[ProbeError]) -> Dict[str, Any]:
        """
        获取错误统计信息

        Args:
            errors: 探测错误列表

        Returns:
            Dict[str, Any]: 错误统计
        """
        if not errors:
            return {
                'total_errors': 0,
                'error_types': {},
                'most_common_error': None,
                'most_common_error_count': 0
            }

        error_types = {}
        for error in errors:
            key = error.error_type.value
            error_types[key] = error_types.get(key, 0) + 1

        most_common_error = max(error_types.items(), key=lambda x: x[1])

        return {
            'total_errors': len(errors),
            'error_types': error_types,
            'most_common_error': most_common_error[0],
            'most_common_error_count': most_common_error[1]
        }
