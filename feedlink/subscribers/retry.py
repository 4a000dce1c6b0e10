"""有界重试策略工具。"""

from __future__ import annotations

from dataclasses import dataclass
import asyncio

from feedlink.errors import RetryExhaustedError


@dataclass(frozen=True)
class RetryPolicy:
    """固定间隔、有限次数的重试策略。"""

    delay: float = 1.0
    max_attempts: int = 3
    max_reconnect_delay: float = 120.0

    def next_delay(self, attempt: int) -> float:
        """根据尝试次数返回等待秒数，超过最大次数抛出异常。"""

        if attempt < 1:
            raise ValueError("attempt 必须大于等于 1")
        if attempt >= self.max_attempts:
            raise RetryExhaustedError(f"超过最大重试次数: {self.max_attempts}")
        return self.delay

    async def wait_with_retry(self, attempt: int) -> None:
        """按照策略等待对应秒数。"""

        delay = self.next_delay(attempt)
        await asyncio.sleep(delay)

    def reconnect_window(self) -> tuple[int, int]:
        """paho 自动重连的 (min_delay, max_delay)，单位秒。"""

        low = max(1, int(self.delay))
        return low, max(low, int(self.max_reconnect_delay))
