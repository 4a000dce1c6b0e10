"""Topic naming for one stream: ``{identity}/{channel_type}/{stream_id}``."""

from __future__ import annotations

from feedlink.services.stream_config import StreamConfig


def publish_topic(config: StreamConfig) -> str:
    return f"{config.identity}/{config.channel_type}/{config.stream_id}"


def subscribe_topic(config: StreamConfig) -> str:
    # 订阅 json 视图，发布到原始 topic
    return f"{publish_topic(config)}/json"


__all__ = ["publish_topic", "subscribe_topic"]
