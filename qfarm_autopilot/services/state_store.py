from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from typing import Any

LOG_MAX_ENTRIES = 1000
LOG_DUPLICATE_WINDOW_MS = 2000
SNAPSHOT_LOG_LIMIT = 100


class RuntimeStateStore:
    """运行时状态快照：用户、土地、背包、操作限制、连接状态、日志。

    只存内存，由外部 sink 负责持久化与展示。``revision`` 在每次变更后递增，
    发布循环据此判断是否需要推送。
    """

    def __init__(self, *, clock_ms: Callable[[], int] | None = None) -> None:
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.user: dict[str, Any] | None = None
        self.lands: list[dict[str, Any]] = []
        self.friends: list[dict[str, Any]] = []
        self.backpack: list[dict[str, Any]] = []
        self.operation_limits: dict[str, Any] = {}
        self.settings: dict[str, Any] = {}
        self.is_connected = False
        self.server_time = 0
        self.logs: deque[dict[str, Any]] = deque(maxlen=LOG_MAX_ENTRIES)
        self.revision = 0

    def set_user(self, user: dict[str, Any]) -> None:
        self.user = dict(user)
        self._touch()

    def set_lands(self, lands: list[dict[str, Any]]) -> None:
        self.lands = list(lands)
        self._touch()

    def set_friends(self, friends: list[dict[str, Any]]) -> None:
        self.friends = list(friends)
        self._touch()

    def set_backpack(self, backpack: list[dict[str, Any]]) -> None:
        self.backpack = list(backpack)
        self._touch()

    def set_operation_limits(self, limits: dict[str, Any]) -> None:
        self.operation_limits = dict(limits)
        self._touch()

    def set_settings(self, settings: dict[str, Any]) -> None:
        self.settings = dict(settings)
        self._touch()

    def set_connected(self, connected: bool) -> None:
        self.is_connected = bool(connected)
        self._touch()

    def set_server_time(self, server_ms: int) -> None:
        self.server_time = int(server_ms)

    def add_log(self, tag: str, message: str, *, level: str = "info", meta: dict[str, Any] | None = None) -> bool:
        ts = self._clock_ms()
        for recent in self.logs:
            if ts - recent["timestamp"] >= LOG_DUPLICATE_WINDOW_MS:
                break
            if recent["tag"] == tag and recent["message"] == message:
                return False
        self.logs.appendleft(
            {
                "timestamp": ts,
                "time": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts / 1000)),
                "tag": str(tag or ""),
                "message": str(message or ""),
                "level": level,
                "isWarn": level == "warn",
                "meta": dict(meta or {}),
            }
        )
        self._touch()
        return True

    def clear_logs(self) -> None:
        self.logs.clear()
        self._touch()

    def get_state(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "lands": self.lands,
            "friends": self.friends,
            "logs": [dict(row) for _, row in zip(range(SNAPSHOT_LOG_LIMIT), self.logs)],
            "operationLimits": self.operation_limits,
            "backpack": self.backpack,
            "isConnected": self.is_connected,
            "serverTime": self.server_time,
            "settings": self.settings,
        }

    def _touch(self) -> None:
        self.revision += 1
