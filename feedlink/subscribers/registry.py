"""流注册表，管理已连接状态与指标上报。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from feedlink.telemetry.metrics import (
    INGRESS_COUNTER,
    PUBLISH_COUNTER,
    REQUEUE_COUNTER,
    mark_error,
    mark_reconnect,
    set_active_streams,
    set_buffer_depth,
)

logger = logging.getLogger(__name__)


@dataclass
class StreamRecord:
    """记录单个流的连接状态。"""

    stream_id: str
    subscribe_topic: str
    connected_at: float
    last_message_at: Optional[float] = None
    buffer_depth: int = 0


class StreamRegistry:
    """维护当前已连接的流集合，负责指标同步。

    所有方法都在事件循环线程中调用，无需加锁。
    """

    def __init__(self) -> None:
        self._records: Dict[str, StreamRecord] = {}

    def activate(self, stream_id: str, subscribe_topic: str) -> None:
        """流进入已连接状态。"""

        record = self._records.get(stream_id)
        if record is None:
            self._records[stream_id] = StreamRecord(
                stream_id=stream_id,
                subscribe_topic=subscribe_topic,
                connected_at=time.time(),
            )
        else:
            record.connected_at = time.time()
        set_active_streams(len(self._records))
        logger.info(f"流已激活: {stream_id} -> {subscribe_topic}")

    def deactivate(self, stream_id: str) -> None:
        """流离线或关闭。"""

        if self._records.pop(stream_id, None) is None:
            return
        set_active_streams(len(self._records))
        logger.info(f"流已停用: {stream_id}")

    def record_ingress(self, stream_id: str) -> None:
        """记录入站消息。"""

        INGRESS_COUNTER.labels(stream=stream_id).inc()
        record = self._records.get(stream_id)
        if record is not None:
            record.last_message_at = time.time()

    def record_publish(self, stream_id: str) -> None:
        """记录出站消息。"""

        PUBLISH_COUNTER.labels(stream=stream_id).inc()

    def record_requeue(self, stream_id: str) -> None:
        """记录消费方拒收后的重新入队。"""

        REQUEUE_COUNTER.labels(stream=stream_id).inc()

    def record_reconnect(self, stream_id: str) -> None:
        """记录重连事件。"""

        mark_reconnect(stream_id)

    def record_error(self, stream_id: str, reason: str) -> None:
        """记录错误通知。"""

        mark_error(stream_id, reason)

    def record_buffer_depth(self, stream_id: str, depth: int) -> None:
        """记录缓冲区积压。"""

        set_buffer_depth(stream_id, depth)
        record = self._records.get(stream_id)
        if record is not None:
            record.buffer_depth = depth

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """返回当前流状态摘要。"""

        return {
            stream_id: {
                "subscribe_topic": record.subscribe_topic,
                "connected_at": record.connected_at,
                "last_message_at": record.last_message_at,
                "buffer_depth": record.buffer_depth,
            }
            for stream_id, record in self._records.items()
        }


registry = StreamRegistry()
