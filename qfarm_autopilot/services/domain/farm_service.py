from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..protocol.clock import to_time_sec
from ..protocol.rpc import GameRpc
from .analytics_service import AnalyticsService
from .config_data import GameConfigData

PLANT_SERVICE = "gamepb.plantpb.PlantService"
SHOP_SERVICE = "gamepb.shoppb.ShopService"

PHASE_MATURE = 6
PHASE_DEAD = 7

PHASE_NAMES = {
    0: "未知",
    1: "种子",
    2: "发芽",
    3: "小叶",
    4: "大叶",
    5: "开花",
    6: "成熟",
    7: "枯死",
}

SHOP_COND_MIN_LEVEL = 1


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


def _id_list(land_ids: Sequence[int]) -> list[int]:
    return [int(v) for v in land_ids]


def current_phase(phases: Sequence[dict[str, Any]], now_sec: int) -> dict[str, Any] | None:
    """最后一个 0 < begin_time <= now 的阶段；全部在未来时取第一个。"""
    if not phases:
        return None
    for phase in reversed(phases):
        begin = to_time_sec(phase.get("begin_time"))
        if 0 < begin <= now_sec:
            return phase
    return phases[0]


@dataclass(slots=True)
class LandAnalyzeResult:
    harvestable: list[int] = field(default_factory=list)
    growing: list[int] = field(default_factory=list)
    empty: list[int] = field(default_factory=list)
    dead: list[int] = field(default_factory=list)
    need_water: list[int] = field(default_factory=list)
    need_weed: list[int] = field(default_factory=list)
    need_bug: list[int] = field(default_factory=list)
    unlockable: list[int] = field(default_factory=list)
    upgradable: list[int] = field(default_factory=list)
    harvestable_info: list[dict[str, Any]] = field(default_factory=list)
    lands_detail: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_work(self) -> bool:
        return bool(
            self.harvestable
            or self.need_weed
            or self.need_bug
            or self.need_water
            or self.dead
            or self.empty
            or self.upgradable
            or self.unlockable
        )

    def summary_parts(self) -> list[str]:
        parts: list[str] = []
        for label, ids in (
            ("收", self.harvestable),
            ("草", self.need_weed),
            ("虫", self.need_bug),
            ("水", self.need_water),
            ("枯", self.dead),
            ("空", self.empty),
            ("升", self.upgradable),
            ("解", self.unlockable),
        ):
            if ids:
                parts.append(f"{label}:{len(ids)}")
        parts.append(f"长:{len(self.growing)}")
        return parts


@dataclass(slots=True)
class SeedOffer:
    goods_id: int
    seed_id: int
    price: int
    required_level: int


class FarmService:
    def __init__(
        self,
        rpc: GameRpc,
        config_data: GameConfigData,
        analytics: AnalyticsService,
        *,
        logger: Any | None = None,
    ) -> None:
        self.rpc = rpc
        self.config_data = config_data
        self.analytics = analytics
        self.logger = logger

    async def get_all_lands(self, host_gid: int = 0, land_ids: Sequence[int] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"host_gid": int(host_gid)}
        if land_ids:
            payload["land_ids"] = _id_list(land_ids)
        reply = await self.rpc.call(PLANT_SERVICE, "AllLands", payload)
        if land_ids:
            # 服务端可能忽略 land_ids，这里再按 id 过滤一次
            wanted = {int(v) for v in land_ids}
            reply["lands"] = [land for land in reply.get("lands") or [] if _to_int(land.get("id"), 0) in wanted]
        return reply

    async def harvest(self, land_ids: Sequence[int], host_gid: int) -> dict[str, Any]:
        return await self.rpc.call(
            PLANT_SERVICE,
            "Harvest",
            {"land_ids": _id_list(land_ids), "host_gid": int(host_gid), "is_all": True},
        )

    async def water(self, land_ids: Sequence[int], host_gid: int) -> dict[str, Any]:
        return await self.rpc.call(PLANT_SERVICE, "WaterLand", {"land_ids": _id_list(land_ids), "host_gid": int(host_gid)})

    async def weed(self, land_ids: Sequence[int], host_gid: int) -> dict[str, Any]:
        return await self.rpc.call(PLANT_SERVICE, "WeedOut", {"land_ids": _id_list(land_ids), "host_gid": int(host_gid)})

    async def bug(self, land_ids: Sequence[int], host_gid: int) -> dict[str, Any]:
        return await self.rpc.call(PLANT_SERVICE, "Insecticide", {"land_ids": _id_list(land_ids), "host_gid": int(host_gid)})

    async def remove_plant(self, land_ids: Sequence[int]) -> dict[str, Any]:
        return await self.rpc.call(PLANT_SERVICE, "RemovePlant", {"land_ids": _id_list(land_ids)})

    async def upgrade_land(self, land_id: int) -> dict[str, Any]:
        return await self.rpc.call(PLANT_SERVICE, "UpgradeLand", {"land_id": int(land_id)})

    async def unlock_land(self, land_id: int, do_shared: bool = False) -> dict[str, Any]:
        return await self.rpc.call(PLANT_SERVICE, "UnlockLand", {"land_id": int(land_id), "do_shared": bool(do_shared)})

    async def plant(self, seed_id: int, land_ids: Sequence[int], *, delay_sec: float = 0.05) -> list[int]:
        # 一次一块地，服务端不接受批量种植
        planted: list[int] = []
        for land_id in land_ids:
            try:
                await self.rpc.call(
                    PLANT_SERVICE,
                    "Plant",
                    {"items": [{"seed_id": int(seed_id), "land_ids": [int(land_id)]}]},
                )
                planted.append(int(land_id))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._warn(f"种植 土地#{land_id} 失败: {e}")
            if len(land_ids) > 1:
                await asyncio.sleep(delay_sec)
        return planted

    async def fertilize(self, land_ids: Sequence[int], fertilizer_id: int, *, delay_sec: float = 0.05) -> int:
        ok = 0
        for land_id in land_ids:
            try:
                await self.rpc.call(
                    PLANT_SERVICE,
                    "Fertilize",
                    {"land_ids": [int(land_id)], "fertilizer_id": int(fertilizer_id)},
                )
                ok += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 多半是肥料不足，后面的地也不会成功
                self._debug(f"施肥 土地#{land_id} 失败，停止: {e}")
                break
            if len(land_ids) > 1:
                await asyncio.sleep(delay_sec)
        return ok

    async def get_shop_info(self, shop_id: int = 2) -> dict[str, Any]:
        return await self.rpc.call(SHOP_SERVICE, "ShopInfo", {"shop_id": int(shop_id)})

    async def buy_goods(self, goods_id: int, num: int, price: int) -> dict[str, Any]:
        return await self.rpc.call(
            SHOP_SERVICE,
            "BuyGoods",
            {"goods_id": int(goods_id), "num": int(num), "price": int(price)},
        )

    def available_seeds(self, shop_reply: dict[str, Any], level: int) -> list[SeedOffer]:
        rows: list[SeedOffer] = []
        for goods in shop_reply.get("goods_list") or []:
            if not goods.get("unlocked"):
                continue
            required_level = 0
            meets = True
            for cond in goods.get("conds") or []:
                if _to_int(cond.get("type"), 0) == SHOP_COND_MIN_LEVEL:
                    required_level = _to_int(cond.get("param"), 0)
                    if level < required_level:
                        meets = False
                        break
            if not meets:
                continue
            limit_count = _to_int(goods.get("limit_count"), 0)
            bought_num = _to_int(goods.get("bought_num"), 0)
            if limit_count > 0 and bought_num >= limit_count:
                continue
            rows.append(
                SeedOffer(
                    goods_id=_to_int(goods.get("id"), 0),
                    seed_id=_to_int(goods.get("item_id"), 0),
                    price=_to_int(goods.get("price"), 0),
                    required_level=required_level,
                )
            )
        return rows

    async def find_best_seed(
        self,
        *,
        level: int,
        land_count: int,
        shop_id: int = 2,
        force_lowest: bool = False,
        fallback_level_threshold: int = 28,
    ) -> SeedOffer | None:
        shop = await self.get_shop_info(shop_id)
        if not shop.get("goods_list"):
            self._warn("种子商店无商品")
            return None
        available = self.available_seeds(shop, level)
        if not available:
            self._warn("没有可购买的种子")
            return None
        return self.choose_seed(
            available,
            level=level,
            land_count=land_count,
            force_lowest=force_lowest,
            fallback_level_threshold=fallback_level_threshold,
        )

    def choose_seed(
        self,
        available: list[SeedOffer],
        *,
        level: int,
        land_count: int,
        force_lowest: bool = False,
        fallback_level_threshold: int = 28,
    ) -> SeedOffer | None:
        if not available:
            return None
        if force_lowest:
            return sorted(available, key=lambda x: (x.required_level, x.price))[0]

        try:
            by_seed = {row.seed_id: row for row in available}
            for seed_id in self.analytics.recommend(level, land_count or 18):
                hit = by_seed.get(int(seed_id))
                if hit is not None:
                    return hit
        except Exception as e:
            self._warn(f"经验效率推荐失败，使用兜底策略: {e}")

        # 低等级时白萝卜之类的低级作物更划算，之后选等级最高的
        if level and level <= fallback_level_threshold:
            return sorted(available, key=lambda x: x.required_level)[0]
        return sorted(available, key=lambda x: x.required_level, reverse=True)[0]

    def analyze_lands(self, lands: Sequence[dict[str, Any]], *, now_sec: int) -> LandAnalyzeResult:
        now = int(now_sec)
        result = LandAnalyzeResult()

        for land in lands:
            land_id = _to_int(land.get("id"), 0)
            level = _to_int(land.get("level"), 0)
            if not land.get("unlocked"):
                if land.get("could_unlock"):
                    result.unlockable.append(land_id)
                result.lands_detail.append(self._detail(land_id, level, status="locked", phase_name="未解锁", unlocked=False))
                continue

            plant = land.get("plant") or {}
            phases = plant.get("phases") or []
            phase = current_phase(phases, now)
            if phase is None:
                result.empty.append(land_id)
                result.lands_detail.append(self._detail(land_id, level, status="empty", phase_name="空地"))
                continue

            plant_id = _to_int(plant.get("id"), 0)
            plant_name = self.config_data.get_plant_name(plant_id) if plant_id in self.config_data.plant_by_id else str(plant.get("name") or "未知作物")
            phase_val = _to_int(phase.get("phase"), 0)
            phase_name = PHASE_NAMES.get(phase_val, f"阶段{phase_val}")

            if phase_val == PHASE_DEAD:
                result.dead.append(land_id)
                result.lands_detail.append(self._detail(land_id, level, status="dead", phase_name=phase_name, plant_name=plant_name))
                continue

            if phase_val == PHASE_MATURE:
                result.harvestable.append(land_id)
                result.harvestable_info.append(
                    {
                        "landId": land_id,
                        "plantId": plant_id,
                        "name": plant_name,
                        "exp": self.config_data.get_plant_exp(plant_id),
                    }
                )
                result.lands_detail.append(self._detail(land_id, level, status="harvestable", phase_name=phase_name, plant_name=plant_name))
                continue

            dry_time = to_time_sec(phase.get("dry_time"))
            need_w = _to_int(plant.get("dry_num"), 0) > 0 or 0 < dry_time <= now
            weeds_time = to_time_sec(phase.get("weeds_time"))
            need_g = bool(plant.get("weed_owners")) or 0 < weeds_time <= now
            insect_time = to_time_sec(phase.get("insect_time"))
            need_b = bool(plant.get("insect_owners")) or 0 < insect_time <= now
            if need_w:
                result.need_water.append(land_id)
            if need_g:
                result.need_weed.append(land_id)
            if need_b:
                result.need_bug.append(land_id)
            result.growing.append(land_id)
            if land.get("could_upgrade"):
                result.upgradable.append(land_id)
            detail = self._detail(land_id, level, status="growing", phase_name=phase_name, plant_name=plant_name)
            detail.update(
                {
                    "needWater": need_w,
                    "needWeed": need_g,
                    "needBug": need_b,
                    "matureInSec": self._mature_left_sec(phases, now),
                }
            )
            result.lands_detail.append(detail)

        return result

    @staticmethod
    def _detail(
        land_id: int,
        level: int,
        *,
        status: str,
        phase_name: str,
        plant_name: str = "",
        unlocked: bool = True,
    ) -> dict[str, Any]:
        return {
            "id": land_id,
            "unlocked": unlocked,
            "status": status,
            "plantName": plant_name,
            "phaseName": phase_name,
            "level": level,
            "needWater": False,
            "needWeed": False,
            "needBug": False,
        }

    @staticmethod
    def _mature_left_sec(phases: Sequence[dict[str, Any]], now_sec: int) -> int:
        mature_at = 0
        for phase in phases:
            if _to_int(phase.get("phase"), 0) != PHASE_MATURE:
                continue
            begin = to_time_sec(phase.get("begin_time"))
            if begin > 0 and (mature_at == 0 or begin < mature_at):
                mature_at = begin
        if mature_at <= 0:
            return 0
        return max(0, mature_at - now_sec)

    def _warn(self, message: str) -> None:
        if self.logger:
            self.logger.warning(message)

    def _debug(self, message: str) -> None:
        if self.logger:
            self.logger.debug(message)
