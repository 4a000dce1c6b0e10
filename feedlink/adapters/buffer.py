"""入站缓冲区：按到达顺序保存原始消息，严格 FIFO 消费。"""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional


class InboundBuffer:
    """Unbounded FIFO of raw payloads.

    Only the connection manager pushes and only the duplex adapter pops. There
    is no capacity bound: a consumer slower than the broker makes the buffer
    grow without limit. Bounding it would mean choosing between dropping
    messages and blocking the broker callback, so depth is exported as the
    ``stream_buffer_depth`` gauge instead.
    """

    def __init__(self) -> None:
        self._items: Deque[bytes] = deque()

    def push(self, message: bytes) -> None:
        self._items.append(message)

    def push_front(self, message: bytes) -> None:
        """重新放回队首，用于消费方拒收的消息。"""

        self._items.appendleft(message)

    def pop_or_none(self) -> Optional[bytes]:
        if not self._items:
            return None
        return self._items.popleft()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
