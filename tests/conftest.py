"""
测试公共工具
"""
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from cert_health_monitor.interfaces import CertificateProberInterface
from cert_health_monitor.models import ProbeError, ProbeErrorType, ProbeResult


FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """可控时钟：sleep只推进单调时间，wait不真正等待"""

    def __init__(self, now: datetime = FIXED_NOW):
        self._now = now
        self._monotonic = 0.0
        self._lock = threading.Lock()
        self.sleeps: List[float] = []
        self.waits: List[float] = []

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs):
        delta = timedelta(**kwargs)
        with self._lock:
            self._now += delta
            self._monotonic += delta.total_seconds()

    def monotonic(self) -> float:
        with self._lock:
            return self._monotonic

    def sleep(self, seconds: float):
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._monotonic += seconds

    def wait(self, event: threading.Event, seconds: float) -> bool:
        with self._lock:
            self.waits.append(seconds)
        return event.wait(0.01)


class StubProber(CertificateProberInterface):
    """按主机名返回预设结果的探测器"""

    def __init__(self, outcomes: Optional[Dict[str, object]] = None, default=None,
                 gate: Optional[threading.Event] = None):
        self.outcomes = outcomes or {}
        self.default = default
        self.gate = gate
        self.calls: List[str] = []
        self.started = threading.Event()
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def probe(self, hostname, port=None, timeout=None):
        with self._lock:
            self.calls.append(hostname)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(5)
            outcome = self.outcomes.get(hostname, self.default)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is None:
                return make_probe_result(hostname)
            return outcome
        finally:
            with self._lock:
                self.active -= 1


def make_probe_result(hostname: str, days_left: int = 90, now: datetime = FIXED_NOW,
                      issuer: str = "Test CA") -> ProbeResult:
    valid_from = now - timedelta(days=30)
    valid_to = now + timedelta(days=days_left)
    return ProbeResult(
        hostname=hostname,
        port=443,
        issuer=issuer,
        subject=hostname,
        valid_from=valid_from,
        valid_to=valid_to,
        is_valid=valid_from <= now <= valid_to
    )


def make_probe_error(hostname: str, error_type: ProbeErrorType = ProbeErrorType.CONNECTION_REFUSED,
                     message: str = "connection refused") -> ProbeError:
    return ProbeError(hostname=hostname, port=443, error_type=error_type, message=message)


def make_der_certificate(subject_cn: Optional[str] = "example.com",
                         issuer_cn: Optional[str] = "Test Issuing CA",
                         issuer_org: Optional[str] = "Test Org",
                         subject_org: Optional[str] = None,
                         not_before: datetime = FIXED_NOW - timedelta(days=30),
                         not_after: datetime = FIXED_NOW + timedelta(days=60)) -> bytes:
    """生成DER格式的测试证书"""
    key = ec.generate_private_key(ec.SECP256R1())

    def _name(cn, org):
        attrs = [x509.NameAttribute(NameOID.COUNTRY_NAME, "US")]
        if org:
            attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
        if cn:
            attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, cn))
        return x509.Name(attrs)

    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn, subject_org))
        .issuer_name(_name(issuer_cn, issuer_org))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


@pytest.fixture
def fake_clock():
    return FakeClock()
