"""统一日志获取入口，附带上下文字段。"""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class ContextLogger(logging.LoggerAdapter):
    """简单的 LoggerAdapter，确保 extra 字段被合并。"""

    def process(self, msg: str, kwargs: Dict[str, Any]):
        extra = kwargs.pop("extra", {})
        merged = {**self.extra, **extra}
        if merged:
            kwargs["extra"] = merged
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextLogger:
    """返回绑定给定上下文的 LoggerAdapter。"""

    logger = logging.getLogger(name)
    return ContextLogger(logger, context or {})


def configure_logging(level: str = "INFO") -> None:
    """为命令行入口安装 stderr 输出；stdout 留给数据流。"""

    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(handler, "_feedlink", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    handler._feedlink = True  # type: ignore[attr-defined]
    root.addHandler(handler)


__all__ = ["configure_logging", "get_logger"]
