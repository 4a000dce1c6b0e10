"""命令通道：写入一条命令，读回一条响应。

供上层编排（意图路由、插件）使用，超时由本层在适配器外部叠加。
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from feedlink.adapters.base import StreamAdapter
from feedlink.errors import CommandTimeoutError
from feedlink.subscribers.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class CommandChannel:
    """基于字节流适配器的请求/响应封装。"""

    def __init__(
        self,
        adapter: StreamAdapter,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        encoding: str = "utf-8",
    ) -> None:
        self._adapter = adapter
        self._policy = retry_policy or RetryPolicy()
        self._encoding = encoding
        self._lock = asyncio.Lock()

    async def request(self, command: str, *, timeout: float = DEFAULT_TIMEOUT) -> str:
        """发送命令并返回下一条响应文本，超时抛出 CommandTimeoutError。"""

        async with self._lock:
            try:
                raw = await asyncio.wait_for(self._exchange(command), timeout)
            except asyncio.TimeoutError as exc:
                raise CommandTimeoutError(f"no response to {command!r} within {timeout}s") from exc
        return raw.decode(self._encoding, errors="replace").strip()

    async def request_lines(self, command: str, *, timeout: float = DEFAULT_TIMEOUT) -> List[str]:
        """同 request，按行拆分并去掉空行。"""

        response = await self.request(command, timeout=timeout)
        return [line.strip() for line in response.splitlines() if line.strip()]

    async def request_with_retry(self, command: str, *, timeout: float = DEFAULT_TIMEOUT) -> str:
        """超时后按固定间隔重试，超过最大次数抛出 RetryExhaustedError。"""

        attempt = 1
        while True:
            try:
                return await self.request(command, timeout=timeout)
            except CommandTimeoutError as exc:
                logger.warning(f"命令超时: {command!r}; attempt: {attempt}")
                try:
                    await self._policy.wait_with_retry(attempt)
                except RuntimeError as exhausted:
                    logger.error(f"命令多次超时，停止重试: {command!r}")
                    raise exhausted from exc
                attempt += 1

    async def _exchange(self, command: str) -> bytes:
        await self._adapter.write(command)
        return await self._adapter.read()


__all__ = ["CommandChannel", "DEFAULT_TIMEOUT"]
