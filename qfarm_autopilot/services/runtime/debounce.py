from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any


class Debouncer:
    """窗口内最多触发一次，触发本身再延迟 ``delay_sec`` 执行。

    状态只有两项：上次触发时间与一个待执行的 TimerHandle。
    ``busy`` 返回 True 时（例如农场巡查正在进行）本次触发直接丢弃。
    """

    def __init__(
        self,
        window_sec: float = 0.5,
        delay_sec: float = 0.1,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_sec = float(window_sec)
        self.delay_sec = float(delay_sec)
        self._clock = clock
        self.last_fired: float | None = None
        self._pending: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def trigger(self, callback: Callable[[], Any], *, busy: Callable[[], bool] | None = None) -> bool:
        if busy is not None and busy():
            return False
        if self._pending is not None:
            return False
        now = self._clock()
        if self.last_fired is not None and now - self.last_fired < self.window_sec:
            return False
        self.last_fired = now
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.delay_sec, self._fire, callback)
        return True

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _fire(self, callback: Callable[[], Any]) -> None:
        self._pending = None
        ret = callback()
        if asyncio.iscoroutine(ret):
            asyncio.ensure_future(ret)
