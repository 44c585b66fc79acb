from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .errors import RequestTimeoutError


class HeartbeatMonitor:
    """定时心跳与丢失计数。

    距上次回包超过 ``interval * MISS_FACTOR`` 时每个节拍记一次丢失。
    连续 ``MISS_LIMIT`` 次后，会话上的挂起请求全部以 :class:`RequestTimeoutError`
    拒绝，会话本身保持打开。
    """

    MISS_FACTOR = 2.4
    MISS_LIMIT = 2

    def __init__(
        self,
        session: Any,
        send: Callable[[], Awaitable[dict[str, Any]]],
        *,
        interval_sec: float = 25,
        on_reply: Callable[[dict[str, Any]], None] | None = None,
        logger: Any | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.send = send
        self.interval_sec = max(1.0, float(interval_sec))
        self.on_reply = on_reply
        self.logger = logger
        self._monotonic = monotonic
        self.misses = 0
        self.last_reply_at = monotonic()
        self._inflight: set[asyncio.Task] = set()

    @property
    def miss_threshold_sec(self) -> float:
        return self.interval_sec * self.MISS_FACTOR

    def reset(self) -> None:
        self.misses = 0
        self.last_reply_at = self._monotonic()

    def check(self) -> int:
        """评估静默时长；返回本次被强制拒绝的挂起请求数。"""
        silence = self._monotonic() - self.last_reply_at
        if silence <= self.miss_threshold_sec:
            return 0
        self.misses += 1
        if self.logger:
            self.logger.warning(f"连接可能已断开 ({int(silence)}s 无响应, miss={self.misses})")
        if self.misses < self.MISS_LIMIT:
            return 0
        flushed = self.session.fail_all_pending(
            lambda: RequestTimeoutError("heartbeat lost: pending request dropped"),
        )
        if flushed and self.logger:
            self.logger.warning(f"已清理 {flushed} 个挂起请求")
        return flushed

    async def beat(self) -> None:
        self.check()
        try:
            reply = await self.send()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.logger:
                self.logger.debug(f"心跳失败: {e}")
            return
        self.reset()
        if self.on_reply is not None:
            self.on_reply(reply or {})

    async def run(self) -> None:
        # 按固定节拍发送，不等上一次回包
        self.reset()
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        try:
            while True:
                deadline += self.interval_sec
                await asyncio.sleep(max(0.0, deadline - loop.time()))
                if not self.session.connected:
                    continue
                task = asyncio.create_task(self.beat())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
        finally:
            for task in list(self._inflight):
                task.cancel()
