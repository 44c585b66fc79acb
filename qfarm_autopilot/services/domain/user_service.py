from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..protocol.rpc import GameRpc

USER_SERVICE = "gamepb.userpb.UserService"


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


@dataclass(slots=True)
class DeviceInfo:
    client_version: str = "1.6.0.14_20251224"
    sys_software: str = "iOS 26.2.1"
    network: str = "wifi"
    memory: str = "7672"
    device_id: str = "iPhone X<iPhone18,3>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_version": self.client_version,
            "sys_software": self.sys_software,
            "network": self.network,
            "memory": self.memory,
            "device_id": self.device_id,
        }


@dataclass(slots=True)
class LoginResult:
    gid: int
    name: str
    level: int
    gold: int
    exp: int
    server_time_ms: int = 0
    raw: dict[str, Any] = field(default_factory=dict)


class UserService:
    def __init__(self, rpc: GameRpc) -> None:
        self.rpc = rpc

    async def login(self, device_info: DeviceInfo | None = None) -> LoginResult:
        device = device_info or DeviceInfo()
        reply = await self.rpc.call(
            USER_SERVICE,
            "Login",
            {
                "sharer_id": 0,
                "sharer_open_id": "",
                "device_info": device.to_dict(),
                "share_cfg_id": 0,
                "scene_id": "1256",
                "report_data": {
                    "callback": "",
                    "cd_extend_info": "",
                    "click_id": "",
                    "clue_token": "",
                    "minigame_channel": "other",
                    "minigame_platid": 2,
                    "req_id": "",
                    "trackid": "",
                },
            },
        )
        basic = reply.get("basic") or {}
        return LoginResult(
            gid=_to_int(basic.get("gid"), 0),
            name=str(basic.get("name") or "未知"),
            level=_to_int(basic.get("level"), 0),
            gold=_to_int(basic.get("gold"), 0),
            exp=_to_int(basic.get("exp"), 0),
            server_time_ms=_to_int(reply.get("time_now_millis"), 0),
            raw=reply,
        )

    async def heartbeat(self, gid: int, client_version: str) -> dict[str, Any]:
        return await self.rpc.call(
            USER_SERVICE,
            "Heartbeat",
            {"gid": _to_int(gid, 0), "client_version": str(client_version or "")},
        )
