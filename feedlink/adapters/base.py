"""定义流适配器协议，供双工适配器与命令通道复用。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional, Union


class StreamAdapter(ABC):
    """字节流适配器抽象基类。"""

    @abstractmethod
    def connect(self, stream_id: Optional[str] = None) -> None:
        """开始建立连接，不等待完成。"""

    @abstractmethod
    async def read(self) -> bytes:
        """读取下一段数据，无数据时挂起。"""

    @abstractmethod
    async def write(self, data: Union[bytes, str]) -> None:
        """写入一段数据，连接不可用时挂起。"""

    @abstractmethod
    def close(self) -> None:
        """断开连接并清理资源。"""

    async def listen(self) -> AsyncIterator[bytes]:
        """监听消息流。"""

        while True:
            yield await self.read()
