from __future__ import annotations

import asyncio
import enum
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ProtocolError
from .gate_codec import decode_event_message


class NotifyKind(enum.Enum):
    LANDS = "LandsNotify"
    ITEM = "ItemNotify"
    BASIC = "BasicNotify"
    KICKOUT = "KickoutNotify"
    FRIEND_APPLICATION = "FriendApplicationReceivedNotify"
    FRIEND_ADDED = "FriendAddedNotify"
    GOODS_UNLOCK = "GoodsUnlockNotify"
    TASK_INFO = "TaskInfoNotify"
    UNKNOWN = ""


_KIND_BY_TAG = {kind.value: kind for kind in NotifyKind if kind is not NotifyKind.UNKNOWN}


def classify_notify(message_type: str) -> NotifyKind:
    """按事件类型全名的最后一段精确匹配。"""
    tag = str(message_type or "").strip().rsplit(".", 1)[-1]
    return _KIND_BY_TAG.get(tag, NotifyKind.UNKNOWN)


@dataclass(slots=True)
class NotifyEvent:
    kind: NotifyKind
    message_type: str
    body: bytes
    payload: dict[str, Any] = field(default_factory=dict)


NotifyHandler = Callable[[NotifyEvent], Awaitable[None] | None]
EventDecoder = Callable[[str, bytes], dict[str, Any]]


class NotifyDispatcher:
    def __init__(self, *, logger: Any | None = None, decoder: EventDecoder | None = None) -> None:
        self.logger = logger
        self.decoder = decoder
        self._handlers: dict[NotifyKind, list[NotifyHandler]] = defaultdict(list)
        self._unknown_seen: set[str] = set()
        self._lock = asyncio.Lock()

    async def on(self, kind: NotifyKind, handler: NotifyHandler) -> None:
        async with self._lock:
            self._handlers[kind].append(handler)

    async def off(self, kind: NotifyKind, handler: NotifyHandler) -> None:
        async with self._lock:
            handlers = self._handlers.get(kind, [])
            self._handlers[kind] = [h for h in handlers if h is not handler]

    async def clear(self) -> None:
        async with self._lock:
            self._handlers.clear()

    async def dispatch_raw(self, data: bytes) -> None:
        try:
            message_type, body = decode_event_message(data)
        except ProtocolError as e:
            self._log("warning", f"notify 外壳解码失败: {e}")
            return
        await self.emit(message_type, body)

    async def emit(self, message_type: str, body: bytes) -> None:
        kind = classify_notify(message_type)
        if kind is NotifyKind.UNKNOWN:
            if message_type not in self._unknown_seen:
                self._unknown_seen.add(message_type)
                self._log("info", f"未识别的推送类型: {message_type}")
        async with self._lock:
            handlers = list(self._handlers.get(kind, []))
        if not handlers:
            return

        payload: dict[str, Any] = {}
        if self.decoder is not None and kind is not NotifyKind.UNKNOWN:
            try:
                payload = self.decoder(message_type, body)
            except Exception as e:
                self._log("warning", f"推送解码失败 {message_type}: {e}")
                return

        event = NotifyEvent(kind=kind, message_type=message_type, body=body, payload=payload)
        for handler in handlers:
            try:
                ret = handler(event)
                if asyncio.iscoroutine(ret):
                    await ret
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log("debug", f"推送处理失败 {kind.name}: {e}")

    def _log(self, level: str, message: str) -> None:
        if self.logger:
            getattr(self.logger, level)(message)
