from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .schema import SchemaRegistry
from .session import GatewaySession


class GameRpc:
    """dict in, dict out。服务层统一通过这里调用网关。"""

    def __init__(self, session: GatewaySession, registry: SchemaRegistry, *, rpc_timeout_sec: int = 10) -> None:
        self.session = session
        self.registry = registry
        self.rpc_timeout_sec = max(1, int(rpc_timeout_sec))

    async def call(
        self,
        service: str,
        method: str,
        payload: Mapping[str, Any] | None = None,
        *,
        timeout_sec: float | None = None,
    ) -> dict[str, Any]:
        body = self.registry.encode_request(service, method, payload or {})
        reply = await self.session.call(service, method, body, timeout_sec=timeout_sec or self.rpc_timeout_sec)
        return self.registry.decode_reply(service, method, reply)

    def decode_event(self, message_type: str, body: bytes) -> dict[str, Any]:
        return self.registry.decode_event(message_type, body)
