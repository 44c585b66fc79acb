from __future__ import annotations

import logging
from typing import Any

from ..state_store import RuntimeStateStore


class RuntimeLog:
    """统一的运行时日志出口：写 Python logger，同时写入状态快照的日志环。

    debug 只进 logger；info/warn 额外进入 store，供外部面板展示。
    """

    def __init__(self, store: RuntimeStateStore | None = None, logger: Any | None = None) -> None:
        self.store = store
        self.logger = logger or logging.getLogger("qfarm_autopilot")

    def log(self, tag: str, message: str, *, level: str = "info", **meta: Any) -> None:
        line = f"[{tag}] {message}"
        if level == "debug":
            self.logger.debug(line)
            return
        if level == "warn":
            self.logger.warning(line)
        else:
            self.logger.info(line)
        if self.store is not None:
            self.store.add_log(tag, message, level=level, meta=meta)

    def info(self, tag: str, message: str, **meta: Any) -> None:
        self.log(tag, message, level="info", **meta)

    def warn(self, tag: str, message: str, **meta: Any) -> None:
        self.log(tag, message, level="warn", **meta)

    def debug(self, tag: str, message: str, **meta: Any) -> None:
        self.log(tag, message, level="debug", **meta)

    def child(self, tag: str) -> TaggedLogger:
        return TaggedLogger(self, tag)


class TaggedLogger:
    """带固定 tag 的 logger 适配器，注入到会话、心跳和领域服务里。"""

    def __init__(self, sink: RuntimeLog, tag: str) -> None:
        self.sink = sink
        self.tag = tag

    def debug(self, message: str, **meta: Any) -> None:
        self.sink.debug(self.tag, message, **meta)

    def info(self, message: str, **meta: Any) -> None:
        self.sink.info(self.tag, message, **meta)

    def warning(self, message: str, **meta: Any) -> None:
        self.sink.warn(self.tag, message, **meta)
