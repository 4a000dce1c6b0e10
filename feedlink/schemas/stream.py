from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

DEFAULT_HOST = "io.adafruit.com"
SECURE_PORT = 8883
DEFAULT_CHANNEL_TYPE = "feeds"

ENV_PREFIX = "FEEDLINK_"


class StreamOptions(BaseModel):
    """流连接的原始选项，构造 StreamConfig 前统一校验。"""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    host: constr(min_length=1) = DEFAULT_HOST  # type: ignore[valid-type]
    port: int = Field(default=SECURE_PORT, ge=1, le=65535)
    channel_type: constr(min_length=1) = DEFAULT_CHANNEL_TYPE  # type: ignore[valid-type]
    identity: constr(min_length=1, pattern=r"^[^/#+]+$")  # type: ignore[valid-type]
    credential_name: Optional[str] = None
    credential_secret: str = ""
    stream_id: str = ""

    @field_validator("channel_type")
    @classmethod
    def _normalize_channel_type(cls, value: str) -> str:
        # "data" 是 feeds 的别名
        return DEFAULT_CHANNEL_TYPE if value == "data" else value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StreamOptions":
        """从 FEEDLINK_* 环境变量读取选项，未设置的字段使用默认值。"""

        env = os.environ if environ is None else environ
        fields = {
            "host": "HOST",
            "port": "PORT",
            "channel_type": "CHANNEL_TYPE",
            "identity": "IDENTITY",
            "credential_name": "USERNAME",
            "credential_secret": "KEY",
            "stream_id": "STREAM_ID",
        }
        raw = {}
        for field, suffix in fields.items():
            value = env.get(f"{ENV_PREFIX}{suffix}")
            if value:
                raw[field] = value
        # 未单独配置 identity 时沿用用户名
        if "identity" not in raw and "credential_name" in raw:
            raw["identity"] = raw["credential_name"]
        return cls(**raw)
