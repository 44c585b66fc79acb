from __future__ import annotations

import asyncio
from typing import Any

from ..domain.farm_service import LandAnalyzeResult
from .context import RuntimeContext


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


def _unique(ids: list[int]) -> list[int]:
    seen: set[int] = set()
    rows: list[int] = []
    for land_id in ids:
        lid = _to_int(land_id, 0)
        if lid <= 0 or lid in seen:
            continue
        seen.add(lid)
        rows.append(lid)
    return rows


class FarmOrchestrator:
    """自家农场的一轮巡查。

    同一时间只允许一轮；正在执行时再次触发直接返回 False。每个阶段单独兜底，
    任何失败只记日志，不会让整轮抛出。
    """

    UPGRADE_DELAY_SEC = 0.05

    def __init__(self, ctx: RuntimeContext) -> None:
        self.ctx = ctx
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self) -> bool:
        if self._lock.locked():
            return False
        async with self._lock:
            try:
                await self._run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.ctx.log.warn("巡田", f"检查失败: {e}")
        return True

    async def _run_cycle(self) -> None:
        ctx = self.ctx
        if not ctx.player.gid or not ctx.session.connected:
            return
        settings = ctx.settings

        await self._refresh_backpack()

        reply = await ctx.farm.get_all_lands()
        lands = list(reply.get("lands") or [])
        if not lands:
            ctx.log.info("农场", "没有土地数据")
            return
        ctx.quota.update(reply.get("operation_limits"))
        ctx.publish_quota()

        status = ctx.farm.analyze_lands(lands, now_sec=ctx.clock.now_sec())
        ctx.store.set_lands(status.lands_detail)
        unlocked_count = sum(1 for land in lands if land.get("unlocked"))
        actions: list[str] = []

        await self._remedy(status, actions)
        harvested = await self._harvest(status, actions)

        dead = list(status.dead)
        empty = list(status.empty)
        if harvested:
            post = await self._reclassify(harvested)
            if post is not None:
                for land_id in harvested:
                    if land_id in post.empty:
                        empty.append(land_id)
                    elif land_id in post.dead:
                        dead.append(land_id)
                    # 两季作物第二季仍在生长，等下一轮

        dead = _unique(dead) if settings.auto_remove else []
        empty = _unique(empty) if settings.auto_plant else []
        if dead or empty:
            try:
                planted = await self._replant(dead, empty, unlocked_count)
                if planted:
                    actions.append(f"种植{planted}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                ctx.log.warn("种植", str(e))

        if settings.auto_upgrade and status.upgradable:
            upgraded = await self._sequential("升级土地", status.upgradable, ctx.farm.upgrade_land)
            if upgraded:
                actions.append(f"升级{upgraded}")
        if settings.auto_unlock and status.unlockable:
            unlocked = await self._sequential("解锁土地", status.unlockable, ctx.farm.unlock_land)
            if unlocked:
                actions.append(f"解锁{unlocked}")

        if status.has_work:
            line = f"[{' '.join(status.summary_parts())}]"
            if actions:
                line += f" → {'/'.join(actions)}"
            ctx.log.info("农场", line)

    async def _refresh_backpack(self) -> None:
        try:
            self.ctx.store.set_backpack(await self.ctx.warehouse.get_backpack())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.ctx.log.debug("仓库", f"刷新背包失败: {e}")

    async def _remedy(self, status: LandAnalyzeResult, actions: list[str]) -> None:
        ctx = self.ctx
        gid = ctx.player.gid
        jobs: list[tuple[str, list[int], Any]] = []
        if ctx.settings.auto_weed and status.need_weed:
            jobs.append(("除草", status.need_weed, ctx.farm.weed(status.need_weed, gid)))
        if ctx.settings.auto_pest and status.need_bug:
            jobs.append(("除虫", status.need_bug, ctx.farm.bug(status.need_bug, gid)))
        if ctx.settings.auto_water and status.need_water:
            jobs.append(("浇水", status.need_water, ctx.farm.water(status.need_water, gid)))
        if not jobs:
            return
        results = await asyncio.gather(*(coro for _, _, coro in jobs), return_exceptions=True)
        for (label, ids, _), result in zip(jobs, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                ctx.log.warn(label, str(result))
                continue
            actions.append(f"{label}{len(ids)}")

    async def _harvest(self, status: LandAnalyzeResult, actions: list[str]) -> list[int]:
        ctx = self.ctx
        if not ctx.settings.auto_harvest or not status.harvestable:
            return []
        try:
            await ctx.farm.harvest(status.harvestable, ctx.player.gid)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx.log.warn("收获", str(e))
            return []
        actions.append(f"收获{len(status.harvestable)}")
        return list(status.harvestable)

    async def _reclassify(self, land_ids: list[int]) -> LandAnalyzeResult | None:
        ctx = self.ctx
        try:
            reply = await ctx.farm.get_all_lands(land_ids=land_ids)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx.log.warn("巡田", f"收获后刷新土地状态失败: {e}，跳过收获地块的后续处理")
            return None
        return ctx.farm.analyze_lands(list(reply.get("lands") or []), now_sec=ctx.clock.now_sec())

    async def _replant(self, dead: list[int], empty: list[int], unlocked_count: int) -> int:
        ctx = self.ctx
        settings = ctx.settings
        targets = list(empty)
        if dead:
            try:
                await ctx.farm.remove_plant(dead)
                ctx.log.info("铲除", f"已铲除 {len(dead)} 块 ({','.join(str(v) for v in dead)})")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                ctx.log.warn("铲除", f"批量铲除失败: {e}")
            targets.extend(dead)
        targets = _unique(targets)
        if not targets or not settings.auto_plant:
            return 0

        try:
            seed = await ctx.farm.find_best_seed(
                level=ctx.player.level,
                land_count=unlocked_count,
                shop_id=settings.seed_shop_id,
                force_lowest=settings.force_lowest_level_crop,
                fallback_level_threshold=settings.fallback_level_threshold,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx.log.warn("商店", f"查询失败: {e}")
            return 0
        if seed is None:
            return 0
        seed_name = ctx.config_data.get_plant_name_by_seed(seed.seed_id)
        ctx.log.info("商店", f"最佳种子: {seed_name} ({seed.seed_id}) 价格={seed.price}金币")

        if seed.price > 0 and seed.price * len(targets) > ctx.player.gold:
            can_buy = ctx.player.gold // seed.price
            ctx.log.warn("商店", f"金币不足! 需要 {seed.price * len(targets)} 金币, 当前 {ctx.player.gold} 金币")
            if can_buy <= 0:
                return 0
            targets = targets[:can_buy]
            ctx.log.info("商店", f"金币有限，只种 {can_buy} 块地")

        seed_id = seed.seed_id
        try:
            buy_reply = await ctx.farm.buy_goods(seed.goods_id, len(targets), seed.price)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx.log.warn("购买", str(e))
            return 0
        got_items = buy_reply.get("get_items") or []
        if got_items:
            got_id = _to_int(got_items[0].get("id"), 0)
            if got_id > 0:
                seed_id = got_id
        for item in buy_reply.get("cost_items") or []:
            ctx.player.gold -= _to_int(item.get("count"), 0)
        ctx.log.info("购买", f"已购买 {ctx.config_data.get_plant_name_by_seed(seed_id)}种子 x{len(targets)}, 花费 {seed.price * len(targets)} 金币")

        planted_ids = await ctx.farm.plant(seed_id, targets, delay_sec=settings.plant_delay)
        ctx.log.info("种植", f"已在 {len(planted_ids)} 块地种植 ({','.join(str(v) for v in planted_ids)})")
        if planted_ids and settings.auto_fertilize:
            fertilized = await ctx.farm.fertilize(planted_ids, settings.fertilizer_id, delay_sec=settings.plant_delay)
            if fertilized > 0:
                ctx.log.info("施肥", f"已为 {fertilized}/{len(planted_ids)} 块地施肥")
        return len(planted_ids)

    async def _sequential(self, label: str, land_ids: list[int], action: Any) -> int:
        """逐块执行，遇到第一次失败即停止本类操作。"""
        done = 0
        for land_id in land_ids:
            try:
                await action(land_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.ctx.log.warn(label, f"土地{land_id}失败: {e}")
                break
            done += 1
            self.ctx.log.info(label, f"土地{land_id}完成")
            await asyncio.sleep(self.UPGRADE_DELAY_SEC)
        return done
