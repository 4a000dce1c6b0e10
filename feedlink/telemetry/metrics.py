"""Prometheus 指标注册中心"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

# 入站侧指标
INGRESS_COUNTER = Counter(
    "stream_ingress_total",
    "订阅 topic 收到的消息量",
    labelnames=("stream",),
)
REQUEUE_COUNTER = Counter(
    "stream_requeued_total",
    "消费方拒收后重新入队的消息量",
    labelnames=("stream",),
)
BUFFER_DEPTH = Gauge(
    "stream_buffer_depth",
    "入站缓冲区积压的消息数（无上限）",
    labelnames=("stream",),
)

# 出站侧指标
PUBLISH_COUNTER = Counter(
    "stream_publish_total",
    "发布到 publish topic 的消息量",
    labelnames=("stream",),
)

# 连接相关
RECONNECT_COUNTER = Counter(
    "stream_reconnects_total",
    "连接重新建立的次数",
    labelnames=("stream",),
)
ERROR_COUNTER = Counter(
    "stream_errors_total",
    "经 error 通知下发的错误数量",
    labelnames=("stream", "reason"),
)

# 运行态指标
ACTIVE_STREAMS = Gauge(
    "stream_active_total",
    "当前处于已连接状态的流数量",
)


def set_active_streams(count: int) -> None:
    """设置活跃流数量"""

    ACTIVE_STREAMS.set(count)


def mark_reconnect(stream: str) -> None:
    """记录重连"""

    RECONNECT_COUNTER.labels(stream=stream).inc()


def mark_error(stream: str, reason: str) -> None:
    """记录错误通知"""

    ERROR_COUNTER.labels(stream=stream, reason=reason).inc()


def set_buffer_depth(stream: str, depth: int) -> None:
    """设置缓冲区积压"""

    BUFFER_DEPTH.labels(stream=stream).set(depth)


def export_prometheus() -> tuple[bytes, str]:
    """导出 Prometheus 文本及 Content-Type"""

    data = generate_latest()
    return data, CONTENT_TYPE_LATEST
