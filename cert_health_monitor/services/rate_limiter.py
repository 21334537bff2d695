"""
探测节流
"""
import threading
from typing import Dict, Optional

from .clock import SystemClock


class RateLimiter:
    """探测节流器

    两层限制：所有探测之间的最小间隔（保护本地网络栈），
    以及同一主机两次探测之间的最小间隔（避免触发对方的滥用检测）。
    """

    def __init__(self, min_interval: float = 0.1, per_host_interval: float = 1.0,
                 clock: Optional[SystemClock] = None):
        """
        初始化节流器

        Args:
            min_interval: 任意两次探测开始之间的最小间隔（秒）
            per_host_interval: 同一主机两次探测之间的最小间隔（秒）
            clock: 时钟
        """
        self.min_interval = min_interval
        self.per_host_interval = per_host_interval
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._last_start: Optional[float] = None
        self._host_next: Dict[str, float] = {}
        self._last_prune: Optional[float] = None

    def acquire(self, hostname: str) -> float:
        """
        预约下一次探测的时间并等待到该时间

        Args:
            hostname: 将要探测的主机名

        Returns:
            float: 实际等待的秒数
        """
        with self._lock:
            now = self.clock.monotonic()
            self._prune(now)
            start = now
            if self._last_start is not None:
                start = max(start, self._last_start + self.min_interval)
            start = max(start, self._host_next.get(hostname, now))

            self._last_start = start
            self._host_next[hostname] = start + self.per_host_interval

        delay = start - now
        self.clock.sleep(delay)
        return delay

    def _prune(self, now: float):
        # 已经过期的主机间隔不再影响预约，最多每个主机间隔清理一次
        if self._last_prune is not None and now - self._last_prune < self.per_host_interval:
            return
        self._last_prune = now
        self._host_next = {host: t for host, t in self._host_next.items() if t > now}
