"""时钟抽象 -- 过期判定统一使用注入的时钟，便于测试中确定性推进时间"""

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """时钟接口"""

    def now(self) -> datetime:
        """返回带时区的当前时间"""
        ...


class SystemClock:
    """墙上时钟（UTC）"""

    def now(self) -> datetime:
        return datetime.now(UTC)
