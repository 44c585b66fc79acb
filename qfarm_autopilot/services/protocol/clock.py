from __future__ import annotations

import time
from collections.abc import Callable


def to_time_sec(raw: object) -> int:
    """服务端时间戳归一化为秒，大于 1e12 视为毫秒。"""
    try:
        n = int(raw)  # type: ignore[arg-type]
    except Exception:
        return 0
    if n <= 0:
        return 0
    if n > 1_000_000_000_000:
        return n // 1000
    return n


class ServerClock:
    """服务器时间的本地估算。

    同步时记下 ``offset = 远端时间 - 本地时间``，读取时加上此后经过的本地时长。
    经过时长用单调时钟计算，宿主机调表不会让估算值倒退。
    首次同步之前直接使用本地墙钟。
    """

    def __init__(
        self,
        *,
        wall: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._wall = wall
        self._monotonic = monotonic
        self._remote_ms = 0
        self._captured_at = 0.0
        self._local_ms_at_capture = 0.0
        self._synced = False

    @property
    def synced(self) -> bool:
        return self._synced

    @property
    def offset_ms(self) -> int:
        if not self._synced:
            return 0
        return int(self._remote_ms - self._local_ms_at_capture)

    def sync(self, remote_ms: int) -> None:
        remote = int(remote_ms or 0)
        if remote <= 0:
            return
        self._remote_ms = remote
        self._captured_at = self._monotonic()
        self._local_ms_at_capture = self._wall() * 1000
        self._synced = True

    def now_ms(self) -> int:
        if not self._synced:
            return int(self._wall() * 1000)
        elapsed = max(0.0, self._monotonic() - self._captured_at)
        return int(self._remote_ms + elapsed * 1000)

    def now_sec(self) -> int:
        return self.now_ms() // 1000
