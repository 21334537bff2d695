"""
域名注册表服务
"""
import os
import re
import uuid
import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from ..interfaces import DomainRegistryInterface
from ..models import Domain


DomainListener = Callable[[Domain], None]


def clean_hostname(hostname: str) -> str:
    """
    清理域名格式（去掉协议、路径和端口，转为小写）

    Args:
        hostname: 原始域名

    Returns:
        str: 清理后的域名
    """
    if not hostname:
        return ""

    hostname = hostname.strip().lower()

    # 移除协议前缀
    if hostname.startswith('https://'):
        hostname = hostname[8:]
    elif hostname.startswith('http://'):
        hostname = hostname[7:]

    # 移除路径部分
    if '/' in hostname:
        hostname = hostname.split('/')[0]

    # 移除端口号
    if ':' in hostname:
        hostname = hostname.split(':')[0]

    return hostname


class InMemoryDomainRegistry(DomainRegistryInterface):
    """内存域名注册表实现"""

    # 域名格式验证正则表达式
    DOMAIN_PATTERN = re.compile(
        r'^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$'
    )

    def __init__(self):
        """初始化域名注册表"""
        self.logger = logging.getLogger(__name__)
        self._domains: Dict[str, Domain] = {}
        self._listeners: List[DomainListener] = []
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, env_var_name: str = "DOMAINS", owner_id: str = "default") -> "InMemoryDomainRegistry":
        """
        从环境变量加载域名列表（逗号分隔）

        域名ID直接使用主机名，保证多次运行之间ID稳定。

        Args:
            env_var_name: 环境变量名称，默认为"DOMAINS"
            owner_id: 这些域名的所属租户

        Returns:
            InMemoryDomainRegistry: 注册表
        """
        registry = cls()
        domains_str = os.getenv(env_var_name, "")

        if not domains_str.strip():
            registry.logger.warning(f"环境变量 {env_var_name} 为空，没有可监控的域名")
            return registry

        for raw in domains_str.split(','):
            raw = raw.strip()
            if not raw:
                continue
            hostname = registry.clean_hostname(raw)
            if not registry.validate_hostname(hostname):
                registry.logger.warning(f"跳过无效域名: {raw}")
                continue
            if registry.get_domain(hostname) is not None:
                continue
            registry.register_domain(hostname, owner_id, domain_id=hostname)

        registry.logger.info(f"成功加载 {len(registry.list_all_active_domains())} 个域名")
        return registry

    def subscribe(self, listener: DomainListener) -> None:
        """
        订阅域名创建事件

        Args:
            listener: 回调函数，参数为新创建的域名
        """
        with self._lock:
            self._listeners.append(listener)

    def register_domain(self, hostname: str, owner_id: str, domain_id: Optional[str] = None) -> Domain:
        """
        注册新域名并通知订阅者

        Args:
            hostname: 主机名
            owner_id: 所属租户
            domain_id: 域名ID，为None时自动生成

        Returns:
            Domain: 新注册的域名

        Raises:
            ValueError: 域名格式无效或ID重复
        """
        cleaned = self.clean_hostname(hostname)
        if not self.validate_hostname(cleaned):
            raise ValueError(f"域名格式无效: {hostname}")
        if not owner_id:
            raise ValueError("owner_id不能为空")

        domain = Domain(id=domain_id or uuid.uuid4().hex, hostname=cleaned, owner_id=owner_id)

        with self._lock:
            if domain.id in self._domains:
                raise ValueError(f"域名ID已存在: {domain.id}")
            self._domains[domain.id] = domain
            listeners = list(self._listeners)

        self.logger.info(f"注册域名 {cleaned}（ID: {domain.id}，租户: {owner_id}）")

        for listener in listeners:
            try:
                listener(domain)
            except Exception as e:
                self.logger.error(f"域名 {cleaned} 创建事件处理失败: {type(e).__name__}: {str(e)}")

        return domain

    def deactivate_domain(self, domain_id: str) -> Optional[Domain]:
        """
        停用域名

        Args:
            domain_id: 域名ID

        Returns:
            Optional[Domain]: 停用后的域名，不存在时为None
        """
        with self._lock:
            domain = self._domains.get(domain_id)
            if domain is None:
                return None
            domain = replace(domain, active=False)
            self._domains[domain_id] = domain
        self.logger.info(f"停用域名 {domain.hostname}（ID: {domain_id}）")
        return domain

    def get_domain(self, domain_id: str) -> Optional[Domain]:
        with self._lock:
            return self._domains.get(domain_id)

    def list_active_domains(self, tenant_id: str) -> List[Domain]:
        """
        获取单个租户的活跃域名

        Args:
            tenant_id: 租户ID，不能为空

        Returns:
            List[Domain]: 活跃域名列表

        Raises:
            ValueError: 租户ID为空（全量查询请使用list_all_active_domains）
        """
        if not tenant_id:
            raise ValueError("tenant_id不能为空，查询所有租户请使用 list_all_active_domains()")
        with self._lock:
            return [d for d in self._domains.values() if d.active and d.owner_id == tenant_id]

    def list_all_active_domains(self) -> List[Domain]:
        with self._lock:
            return [d for d in self._domains.values() if d.active]

    def validate_hostname(self, hostname: str) -> bool:
        """
        验证域名格式

        Args:
            hostname: 要验证的域名

        Returns:
            bool: 域名是否有效
        """
        if not hostname or not isinstance(hostname, str):
            return False

        # 检查长度
        if len(hostname) > 253:
            return False

        if hostname.startswith('.') or hostname.endswith('.'):
            return False

        return bool(self.DOMAIN_PATTERN.match(hostname))

    def clean_hostname(self, hostname: str) -> str:
        return clean_hostname(hostname)
