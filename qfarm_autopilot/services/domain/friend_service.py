from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..protocol.rpc import GameRpc
from .config_data import GameConfigData
from .farm_service import PHASE_DEAD, PHASE_MATURE, PLANT_SERVICE, current_phase
from .quota_tracker import QuotaTracker

FRIEND_SERVICE = "gamepb.friendpb.FriendService"
VISIT_SERVICE = "gamepb.visitpb.VisitService"

ENTER_REASON_FRIEND = 2


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


@dataclass(slots=True)
class FriendPreview:
    gid: int
    name: str
    level: int = 0
    steal_num: int = 0
    dry_num: int = 0
    weed_num: int = 0
    insect_num: int = 0

    @property
    def has_steal(self) -> bool:
        return self.steal_num > 0

    @property
    def has_help(self) -> bool:
        return self.dry_num > 0 or self.weed_num > 0 or self.insect_num > 0


@dataclass(slots=True)
class FriendLandStatus:
    stealable: list[int] = field(default_factory=list)
    stealable_info: list[dict[str, Any]] = field(default_factory=list)
    need_water: list[int] = field(default_factory=list)
    need_weed: list[int] = field(default_factory=list)
    need_bug: list[int] = field(default_factory=list)
    can_put_weed: list[int] = field(default_factory=list)
    can_put_bug: list[int] = field(default_factory=list)


class FriendService:
    """好友相关 RPC；所有带 operation_limits 的回包都会同步到 QuotaTracker。"""

    def __init__(self, rpc: GameRpc, config_data: GameConfigData, quota: QuotaTracker) -> None:
        self.rpc = rpc
        self.config_data = config_data
        self.quota = quota

    async def get_all_friends(self) -> dict[str, Any]:
        return await self.rpc.call(FRIEND_SERVICE, "GetAll", {})

    async def get_applications(self) -> list[dict[str, Any]]:
        reply = await self.rpc.call(FRIEND_SERVICE, "GetApplications", {})
        return list(reply.get("applications") or [])

    async def accept_friends(self, gids: Sequence[int]) -> list[dict[str, Any]]:
        ids = [_to_int(g, 0) for g in gids if _to_int(g, 0) > 0]
        if not ids:
            return []
        reply = await self.rpc.call(FRIEND_SERVICE, "AcceptFriends", {"friend_gids": ids})
        return list(reply.get("friends") or [])

    async def enter_friend_farm(self, friend_gid: int) -> dict[str, Any]:
        return await self.rpc.call(
            VISIT_SERVICE,
            "Enter",
            {"host_gid": _to_int(friend_gid, 0), "reason": ENTER_REASON_FRIEND},
        )

    async def leave_friend_farm(self, friend_gid: int) -> None:
        await self.rpc.call(VISIT_SERVICE, "Leave", {"host_gid": _to_int(friend_gid, 0)})

    async def help_water(self, friend_gid: int, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self._plant_op("WaterLand", friend_gid, land_ids)

    async def help_weed(self, friend_gid: int, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self._plant_op("WeedOut", friend_gid, land_ids)

    async def help_bug(self, friend_gid: int, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self._plant_op("Insecticide", friend_gid, land_ids)

    async def steal_harvest(self, friend_gid: int, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self._plant_op("Harvest", friend_gid, land_ids, is_all=True)

    async def put_insects(self, friend_gid: int, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self._plant_op("PutInsects", friend_gid, land_ids)

    async def put_weeds(self, friend_gid: int, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self._plant_op("PutWeeds", friend_gid, land_ids)

    async def _plant_op(self, method: str, friend_gid: int, land_ids: Sequence[int], **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "land_ids": [_to_int(v, 0) for v in land_ids if _to_int(v, 0) > 0],
            "host_gid": _to_int(friend_gid, 0),
            **extra,
        }
        reply = await self.rpc.call(PLANT_SERVICE, method, payload)
        self.quota.update(reply.get("operation_limits"))
        return reply

    def build_previews(self, reply: dict[str, Any], my_gid: int) -> list[FriendPreview]:
        rows: list[FriendPreview] = []
        for friend in reply.get("game_friends") or []:
            gid = _to_int(friend.get("gid"), 0)
            if gid <= 0:
                continue
            plant = friend.get("plant") or {}
            rows.append(
                FriendPreview(
                    gid=gid,
                    name=str(friend.get("remark") or friend.get("name") or f"GID:{gid}"),
                    level=_to_int(friend.get("level"), 0),
                    steal_num=_to_int(plant.get("steal_plant_num"), 0),
                    dry_num=_to_int(plant.get("dry_num"), 0),
                    weed_num=_to_int(plant.get("weed_num"), 0),
                    insect_num=_to_int(plant.get("insect_num"), 0),
                )
            )
        return rows

    def analyze_friend_lands(
        self,
        lands: Sequence[dict[str, Any]],
        my_gid: int,
        *,
        now_sec: int,
        steal_min_grow_sec: int = 43200,
        steal_override_plant_id: int = 1021542,
    ) -> FriendLandStatus:
        result = FriendLandStatus()
        me = _to_int(my_gid, 0)
        for land in lands:
            land_id = _to_int(land.get("id"), 0)
            plant = land.get("plant") or {}
            phase = current_phase(plant.get("phases") or [], now_sec)
            if phase is None:
                continue
            phase_val = _to_int(phase.get("phase"), 0)

            if phase_val == PHASE_MATURE:
                if not plant.get("stealable"):
                    continue
                plant_id = _to_int(plant.get("id"), 0)
                # 只偷生长 >= 12 小时的高价值作物，或特殊作物
                if self.config_data.get_plant_grow_time_sec(plant_id) >= steal_min_grow_sec or plant_id == steal_override_plant_id:
                    result.stealable.append(land_id)
                    name = self.config_data.get_plant_name(plant_id) if plant_id in self.config_data.plant_by_id else str(plant.get("name") or "未知")
                    result.stealable_info.append({"landId": land_id, "plantId": plant_id, "name": name})
                continue

            if phase_val == PHASE_DEAD:
                continue

            if _to_int(plant.get("dry_num"), 0) > 0:
                result.need_water.append(land_id)
            weed_owners = [_to_int(v, 0) for v in plant.get("weed_owners") or []]
            bug_owners = [_to_int(v, 0) for v in plant.get("insect_owners") or []]
            if weed_owners:
                result.need_weed.append(land_id)
            if bug_owners:
                result.need_bug.append(land_id)

            # 每块地最多 2 份草/虫，且自己没放过
            if len(weed_owners) < 2 and me not in weed_owners:
                result.can_put_weed.append(land_id)
            if len(bug_owners) < 2 and me not in bug_owners:
                result.can_put_bug.append(land_id)
        return result
