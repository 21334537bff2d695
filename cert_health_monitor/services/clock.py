"""
时钟服务
"""
import threading
import time
from datetime import datetime, timezone


class SystemClock:
    """系统时钟，调度器和探测器通过它获取时间和等待"""

    def now(self) -> datetime:
        """当前UTC时间"""
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def wait(self, event: threading.Event, seconds: float) -> bool:
        """
        等待事件或超时

        Args:
            event: 停止事件
            seconds: 最长等待时间（秒）

        Returns:
            bool: 事件是否已被设置
        """
        return event.wait(seconds)
