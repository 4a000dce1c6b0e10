"""流适配器统一错误类型"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class FeedlinkError(Exception):
    """所有 feedlink 错误的基类"""


class StreamConfigError(FeedlinkError, ValueError):
    """Raised when stream options cannot be resolved into a StreamConfig."""


@dataclass(slots=True)
class BrokerConnectionError(FeedlinkError):
    """连接被拒绝或网络层连接失败，经 error 通知下发，不直接抛出"""

    message: str
    code: Optional[int] = None

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"{self.message}; code={self.code}"


@dataclass(slots=True)
class PublishError(FeedlinkError):
    """发布返回非成功码，经 error 通知下发"""

    topic: str
    code: int

    def __str__(self) -> str:
        return f"MQTT publish failed: topic={self.topic} code={self.code}"


class ConsumerBusyError(FeedlinkError):
    """Raised by a consumer that cannot accept a chunk right now."""


class CommandTimeoutError(FeedlinkError, TimeoutError):
    """No response line arrived within the caller's timeout."""


class RetryExhaustedError(FeedlinkError, RuntimeError):
    """超过最大重试次数"""


__all__ = [
    "BrokerConnectionError",
    "CommandTimeoutError",
    "ConsumerBusyError",
    "FeedlinkError",
    "PublishError",
    "RetryExhaustedError",
    "StreamConfigError",
]
