"""
证书探测器测试
"""
import socket
import ssl
import threading
from datetime import timedelta

import pytest
from unittest.mock import patch, MagicMock
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from cert_health_monitor.models import ProbeError, ProbeErrorType, ProbeResult
from cert_health_monitor.services.cert_prober import CertificateProber

from conftest import FIXED_NOW, FakeClock, make_der_certificate


def _mock_handshake(mock_connection, mock_context, der_cert):
    """设置socket和ssl的模拟对象，握手返回给定的证书"""
    mock_sock = MagicMock()
    mock_connection.return_value = mock_sock
    mock_sock.__enter__.return_value = mock_sock

    mock_ssl_sock = MagicMock()
    mock_ssl_sock.getpeercert.return_value = der_cert
    mock_context.return_value.wrap_socket.return_value.__enter__.return_value = mock_ssl_sock
    return mock_sock, mock_ssl_sock


class TestCertificateProber:
    """证书探测器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.clock = FakeClock()
        self.prober = CertificateProber(timeout=5, clock=self.clock)

    def test_invalid_timeout(self):
        """测试超时时间必须为有限正数"""
        with pytest.raises(ValueError):
            CertificateProber(timeout=0)
        with pytest.raises(ValueError):
            CertificateProber(timeout=None)
        with pytest.raises(ValueError):
            self.prober.probe("example.com", timeout=-1)

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_cleans_mixed_case_url(self, mock_context, mock_connection):
        """测试大写协议前缀的地址按主机名探测"""
        _mock_handshake(mock_connection, mock_context, make_der_certificate())

        result = self.prober.probe("HTTPS://Example.COM:443/path")

        assert result.hostname == "example.com"
        mock_connection.assert_called_once_with(("example.com", 443), timeout=5)

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_success(self, mock_context, mock_connection):
        """测试成功探测"""
        der = make_der_certificate(subject_cn="example.com", issuer_cn="R3", issuer_org="Let's Encrypt")
        _mock_handshake(mock_connection, mock_context, der)

        result = self.prober.probe("https://example.com")

        assert isinstance(result, ProbeResult)
        assert result.hostname == "example.com"
        assert result.port == 443
        assert result.issuer == "R3"
        assert result.subject == "example.com"
        assert result.valid_to == FIXED_NOW + timedelta(days=60)
        assert result.is_valid is True
        mock_connection.assert_called_once_with(("example.com", 443), timeout=5)

        context = mock_context.return_value
        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE
        context.wrap_socket.assert_called_once_with(mock_connection.return_value, server_hostname="example.com")

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_uses_custom_port_and_timeout(self, mock_context, mock_connection):
        """测试自定义端口和超时"""
        _mock_handshake(mock_connection, mock_context, make_der_certificate())

        result = self.prober.probe("example.com", port=8443, timeout=2.5)

        assert result.port == 8443
        mock_connection.assert_called_once_with(("example.com", 8443), timeout=2.5)

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_organization_fallback(self, mock_context, mock_connection):
        """测试没有通用名称时使用组织名称"""
        der = make_der_certificate(subject_cn=None, subject_org="Example Inc",
                                   issuer_cn=None, issuer_org="Test Org")
        _mock_handshake(mock_connection, mock_context, der)

        result = self.prober.probe("example.com")

        assert result.issuer == "Test Org"
        assert result.subject == "Example Inc"

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_unknown_names(self, mock_context, mock_connection):
        """测试名称缺失"""
        der = make_der_certificate(subject_cn=None, issuer_cn=None, issuer_org=None)
        _mock_handshake(mock_connection, mock_context, der)

        result = self.prober.probe("example.com")

        assert result.issuer == "Unknown"
        assert result.subject == "Unknown"

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_expired_certificate(self, mock_context, mock_connection):
        """测试过期证书：握手成功但不在有效期内"""
        der = make_der_certificate(not_before=FIXED_NOW - timedelta(days=400),
                                   not_after=FIXED_NOW - timedelta(days=10))
        _mock_handshake(mock_connection, mock_context, der)

        result = self.prober.probe("example.com")

        assert isinstance(result, ProbeResult)
        assert result.is_valid is False

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_not_yet_valid_certificate(self, mock_context, mock_connection):
        """测试尚未生效的证书"""
        der = make_der_certificate(not_before=FIXED_NOW + timedelta(days=1),
                                   not_after=FIXED_NOW + timedelta(days=90))
        _mock_handshake(mock_connection, mock_context, der)

        assert self.prober.probe("example.com").is_valid is False

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_validity_window_is_inclusive(self, mock_context, mock_connection):
        """测试有效期边界包含两端"""
        der = make_der_certificate(not_before=FIXED_NOW - timedelta(days=1), not_after=FIXED_NOW)
        _mock_handshake(mock_connection, mock_context, der)

        assert self.prober.probe("example.com").is_valid is True

    @pytest.mark.parametrize("error,expected", [
        (socket.gaierror(-2, "Name or service not known"), ProbeErrorType.DNS_RESOLUTION_FAILED),
        (ConnectionRefusedError(111, "Connection refused"), ProbeErrorType.CONNECTION_REFUSED),
        (socket.timeout("timed out"), ProbeErrorType.CONNECTION_TIMEOUT),
        (OSError(101, "Network is unreachable"), ProbeErrorType.CONNECTION_FAILED),
    ])
    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    def test_probe_connect_errors(self, mock_connection, error, expected):
        """测试连接阶段错误不会抛出"""
        mock_connection.side_effect = error

        result = self.prober.probe("example.com")

        assert isinstance(result, ProbeError)
        assert result.error_type == expected
        assert result.message

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_handshake_failure(self, mock_context, mock_connection):
        """测试握手失败"""
        mock_connection.return_value = MagicMock()
        mock_context.return_value.wrap_socket.side_effect = ssl.SSLError(1, "[SSL: WRONG_VERSION_NUMBER]")

        result = self.prober.probe("example.com")

        assert isinstance(result, ProbeError)
        assert result.error_type == ProbeErrorType.TLS_HANDSHAKE_FAILED

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_handshake_timeout(self, mock_context, mock_connection):
        """测试握手超时"""
        mock_connection.return_value = MagicMock()
        mock_context.return_value.wrap_socket.side_effect = socket.timeout("timed out")

        result = self.prober.probe("example.com")

        assert result.error_type == ProbeErrorType.CONNECTION_TIMEOUT
        assert result.message == "connection timeout"

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_no_certificate(self, mock_context, mock_connection):
        """测试握手成功但没有证书"""
        _mock_handshake(mock_connection, mock_context, None)

        result = self.prober.probe("example.com")

        assert isinstance(result, ProbeError)
        assert result.error_type == ProbeErrorType.NO_CERTIFICATE_PRESENTED

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    @patch('cert_health_monitor.services.cert_prober.ssl.create_default_context')
    def test_probe_unparsable_certificate(self, mock_context, mock_connection):
        """测试证书无法解析"""
        _mock_handshake(mock_connection, mock_context, b"not a certificate")

        result = self.prober.probe("example.com")

        assert isinstance(result, ProbeError)
        assert result.error_type == ProbeErrorType.NO_CERTIFICATE_PRESENTED

    @patch('cert_health_monitor.services.cert_prober.socket.create_connection')
    def test_probe_unexpected_error(self, mock_connection):
        """测试未预期的异常也不会抛出"""
        mock_connection.side_effect = RuntimeError("boom")

        result = self.prober.probe("example.com")

        assert result.error_type == ProbeErrorType.UNEXPECTED_ERROR
        assert "boom" in result.message

    def test_probe_connection_refused_on_closed_port(self):
        """测试探测本地关闭的端口"""
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        port = server.getsockname()[1]
        server.close()

        result = self.prober.probe("127.0.0.1", port=port, timeout=2)

        assert isinstance(result, ProbeError)
        assert result.error_type == ProbeErrorType.CONNECTION_REFUSED
        assert result.message


class TestCertificateProberLocalServer:
    """使用本地TLS服务器的探测测试"""

    def _start_tls_server(self, tmp_path, not_before, not_after):
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
        issuer = x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Local Test Org"),
            x509.NameAttribute(NameOID.COMMON_NAME, "Local Test CA"),
        ])
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(issuer)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .sign(key, hashes.SHA256())
        )

        cert_path = tmp_path / "cert.pem"
        key_path = tmp_path / "key.pem"
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        key_path.write_bytes(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption()
        ))

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(str(cert_path), str(key_path))

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        listener.settimeout(5)
        port = listener.getsockname()[1]

        def serve():
            try:
                conn, _ = listener.accept()
                with context.wrap_socket(conn, server_side=True) as tls:
                    tls.recv(1)
            except OSError:
                pass
            finally:
                listener.close()

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        return port, thread

    def test_probe_self_signed_certificate(self, tmp_path):
        """测试不做证书链校验：自签名证书也能读取"""
        clock = FakeClock()
        port, thread = self._start_tls_server(
            tmp_path, FIXED_NOW - timedelta(days=1), FIXED_NOW + timedelta(days=5)
        )

        result = CertificateProber(timeout=5, clock=clock).probe("127.0.0.1", port=port)
        thread.join(5)

        assert isinstance(result, ProbeResult)
        assert result.subject == "localhost"
        assert result.issuer == "Local Test CA"
        assert result.is_valid is True
