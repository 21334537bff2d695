"""
证书探测服务
"""
import ssl
import socket
import logging
from datetime import timezone
from typing import Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID

from ..interfaces import CertificateProberInterface
from ..models import ProbeResult, ProbeError
from .clock import SystemClock
from .domain_registry import clean_hostname
from .error_handler import ProbeErrorHandler, STAGE_CONNECT, STAGE_HANDSHAKE, STAGE_CERTIFICATE


class CertificateProber(CertificateProberInterface):
    """证书探测器实现

    只做一次TLS握手来读取叶子证书，不校验证书链、不吊销检查、不做证书固定。
    """

    def __init__(self, timeout: float = 10.0, port: int = 443, clock: Optional[SystemClock] = None):
        """
        初始化证书探测器

        Args:
            timeout: 连接和握手超时时间（秒），必须为有限正数
            port: TLS端口，默认443
            clock: 时钟，用于判断证书是否处于有效期内
        """
        self._check_timeout(timeout)
        self.timeout = timeout
        self.port = port
        self.clock = clock or SystemClock()
        self.logger = logging.getLogger(__name__)
        self.error_handler = ProbeErrorHandler()

    def probe(self, hostname: str, port: Optional[int] = None,
              timeout: Optional[float] = None) -> Union[ProbeResult, ProbeError]:
        """
        探测单个主机的证书

        Args:
            hostname: 主机名
            port: 端口，为None时使用默认端口
            timeout: 超时时间，为None时使用默认超时

        Returns:
            Union[ProbeResult, ProbeError]: 成功时返回证书信息，失败时返回分类后的错误
        """
        port = port or self.port
        if timeout is None:
            timeout = self.timeout
        else:
            self._check_timeout(timeout)

        host = clean_hostname(hostname)
        self.logger.debug(f"开始探测 {host}:{port}，超时 {timeout} 秒")

        # timeout只约束连接和握手；域名解析由系统解析器的超时设置约束，整体耗时由全量扫描超时兜底
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except Exception as e:
            return self.error_handler.handle_probe_error(host, port, e, STAGE_CONNECT)

        try:
            with sock:
                context = self._create_context()
                with context.wrap_socket(sock, server_hostname=host) as ssock:
                    der_cert = ssock.getpeercert(binary_form=True)
        except Exception as e:
            return self.error_handler.handle_probe_error(host, port, e, STAGE_HANDSHAKE)

        if not der_cert:
            return self.error_handler.no_certificate(host, port)

        try:
            return self._build_result(host, port, der_cert)
        except Exception as e:
            return self.error_handler.handle_probe_error(host, port, e, STAGE_CERTIFICATE)

    def _create_context(self) -> ssl.SSLContext:
        """
        创建只用于读取证书的客户端上下文

        Returns:
            ssl.SSLContext: 不做证书校验的上下文
        """
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def _build_result(self, host: str, port: int, der_cert: bytes) -> ProbeResult:
        cert = x509.load_der_x509_certificate(der_cert)
        valid_from, valid_to = self._parse_validity(cert)
        now = self.clock.now()

        return ProbeResult(
            hostname=host,
            port=port,
            issuer=self._parse_name(cert.issuer),
            subject=self._parse_name(cert.subject),
            valid_from=valid_from,
            valid_to=valid_to,
            is_valid=valid_from <= now <= valid_to
        )

    def _parse_validity(self, cert: x509.Certificate):
        """
        解析证书有效期

        Args:
            cert: 已解析的证书

        Returns:
            tuple: (生效时间, 过期时间)，均为UTC时间
        """
        if hasattr(cert, 'not_valid_before_utc'):
            return cert.not_valid_before_utc, cert.not_valid_after_utc
        return (
            cert.not_valid_before.replace(tzinfo=timezone.utc),
            cert.not_valid_after.replace(tzinfo=timezone.utc)
        )

    def _parse_name(self, name: x509.Name) -> str:
        """
        解析证书名称：优先通用名称，其次组织名称

        Args:
            name: 证书颁发者或主题

        Returns:
            str: 名称
        """
        for oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATION_NAME):
            attrs = name.get_attributes_for_oid(oid)
            if attrs:
                return str(attrs[0].value)
        return "Unknown"

    @staticmethod
    def _check_timeout(timeout: Optional[float]):
        if timeout is None or timeout <= 0:
            raise ValueError(f"超时时间必须为正数: {timeout}")
