from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..domain.friend_service import FriendLandStatus, FriendPreview
from ..domain.quota_tracker import (
    HELP_OPS,
    OP_HELP_INSECT,
    OP_HELP_WATER,
    OP_HELP_WEED,
    OP_PUT_INSECT,
    OP_PUT_WEED,
)
from .context import RuntimeContext


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


@dataclass(slots=True)
class FriendCycleTotals:
    steal: int = 0
    weed: int = 0
    bug: int = 0
    water: int = 0
    put_bug: int = 0
    put_weed: int = 0

    def summary_parts(self) -> list[str]:
        parts: list[str] = []
        for label, count in (
            ("偷", self.steal),
            ("除草", self.weed),
            ("除虫", self.bug),
            ("浇水", self.water),
            ("放虫", self.put_bug),
            ("放草", self.put_weed),
        ):
            if count > 0:
                parts.append(f"{label}{count}")
        return parts


LandAction = Callable[[int, Sequence[int]], Awaitable[Any]]


class FriendOrchestrator:
    """好友农场巡查：排访问列表，逐个进入、帮忙、偷菜、（可选）捣乱、离开。

    帮忙类操作在执行前打经验预采样，下一次带 operation_limits 的回包里
    若计数未增长即认定当日经验耗尽，之后整类跳过。
    """

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
                self.ctx.log.warn("好友", f"巡查失败: {e}")
        return True

    async def _run_cycle(self) -> None:
        ctx = self.ctx
        if not ctx.player.gid:
            return
        ctx.quota.check_daily_reset()

        reply = await ctx.friend.get_all_friends()
        previews = ctx.friend.build_previews(reply, ctx.player.gid)
        ctx.store.set_friends(
            [
                {
                    "gid": p.gid,
                    "name": p.name,
                    "level": p.level,
                    "steal": p.steal_num,
                    "dry": p.dry_num,
                    "weed": p.weed_num,
                    "insect": p.insect_num,
                }
                for p in previews
            ]
        )
        if not previews:
            ctx.log.info("好友", "没有好友")
            return

        to_visit = self.build_visit_list(previews)
        if not to_visit:
            return

        totals = FriendCycleTotals()
        for friend in to_visit:
            try:
                await self.visit_friend(friend, totals)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                ctx.log.debug("好友", f"访问 {friend.name} 出错: {e}")
            await asyncio.sleep(ctx.settings.friend_visit_delay)
        ctx.publish_quota()

        summary = totals.summary_parts()
        if summary:
            ctx.log.info("好友", f"巡查 {len(to_visit)} 人 → {'/'.join(summary)}")

    def build_visit_list(self, previews: Sequence[FriendPreview]) -> list[FriendPreview]:
        """可偷的永远在列；只有帮忙项时要求帮忙操作未耗尽（开启只拿经验时还要能拿经验）；捣乱目标排在最后。"""
        ctx = self.ctx
        settings = ctx.settings
        quota = ctx.quota
        can_help = (
            settings.auto_help
            and any(not quota.is_exhausted(op) for op in HELP_OPS)
            and (not settings.help_only_with_exp or any(quota.can_get_exp(op) for op in HELP_OPS))
        )
        can_put = settings.enable_put_bad_things and (quota.can_operate(OP_PUT_INSECT) or quota.can_operate(OP_PUT_WEED))

        priority: list[FriendPreview] = []
        others: list[FriendPreview] = []
        seen: set[int] = set()
        for friend in previews:
            if friend.gid == ctx.player.gid or friend.gid in seen:
                continue
            if friend.has_steal:
                priority.append(friend)
            elif friend.has_help and can_help:
                priority.append(friend)
            elif can_put:
                others.append(friend)
            else:
                continue
            seen.add(friend.gid)
        return priority + others

    async def visit_friend(self, friend: FriendPreview, totals: FriendCycleTotals | None = None) -> list[str]:
        ctx = self.ctx
        totals = totals or FriendCycleTotals()
        gid = friend.gid
        try:
            enter = await ctx.friend.enter_friend_farm(gid)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx.log.warn("好友", f"进入 {friend.name} 农场失败: {e}")
            return []

        actions: list[str] = []
        try:
            lands = list(enter.get("lands") or [])
            if not lands:
                return actions
            status = ctx.friend.analyze_friend_lands(
                lands,
                ctx.player.gid,
                now_sec=ctx.clock.now_sec(),
                steal_min_grow_sec=ctx.settings.steal_min_grow_sec,
                steal_override_plant_id=ctx.settings.steal_override_plant_id,
            )
            await self._help(friend, status, actions, totals)
            if ctx.settings.auto_steal:
                await self._steal(friend, status, actions, totals)
            if ctx.settings.enable_put_bad_things:
                await self._nuisance(friend, status, actions, totals)
            if actions:
                ctx.log.info("好友", f"{friend.name}: {'/'.join(actions)}")
        finally:
            await self._leave(gid)
        return actions

    async def _help(
        self,
        friend: FriendPreview,
        status: FriendLandStatus,
        actions: list[str],
        totals: FriendCycleTotals,
    ) -> None:
        ctx = self.ctx
        if not ctx.settings.auto_help:
            return
        for op_id, land_ids, action, label, attr in (
            (OP_HELP_WEED, status.need_weed, ctx.friend.help_weed, "草", "weed"),
            (OP_HELP_INSECT, status.need_bug, ctx.friend.help_bug, "虫", "bug"),
            (OP_HELP_WATER, status.need_water, ctx.friend.help_water, "水", "water"),
        ):
            if not land_ids:
                continue
            if ctx.quota.is_exhausted(op_id):
                continue
            if ctx.settings.help_only_with_exp and not ctx.quota.can_get_exp(op_id):
                continue
            ctx.quota.mark_pre_sample(op_id)
            ok = await self._per_land(friend, land_ids, action)
            if ok:
                actions.append(f"{label}{ok}")
                setattr(totals, attr, getattr(totals, attr) + ok)

    async def _steal(
        self,
        friend: FriendPreview,
        status: FriendLandStatus,
        actions: list[str],
        totals: FriendCycleTotals,
    ) -> None:
        if not status.stealable:
            return
        ok = 0
        names: list[str] = []
        for idx, land_id in enumerate(status.stealable):
            try:
                await self.ctx.friend.steal_harvest(friend.gid, [land_id])
                ok += 1
                if idx < len(status.stealable_info):
                    name = status.stealable_info[idx].get("name")
                    if name and name not in names:
                        names.append(name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.ctx.log.debug("好友", f"偷 {friend.name} 土地#{land_id} 失败: {e}")
            await asyncio.sleep(self.ctx.settings.friend_land_delay)
        if ok:
            actions.append(f"偷{ok}" + (f"({'/'.join(names)})" if names else ""))
            totals.steal += ok

    async def _nuisance(
        self,
        friend: FriendPreview,
        status: FriendLandStatus,
        actions: list[str],
        totals: FriendCycleTotals,
    ) -> None:
        ctx = self.ctx
        for op_id, land_ids, action, label, attr in (
            (OP_PUT_INSECT, status.can_put_bug, ctx.friend.put_insects, "放虫", "put_bug"),
            (OP_PUT_WEED, status.can_put_weed, ctx.friend.put_weeds, "放草", "put_weed"),
        ):
            if not land_ids or not ctx.quota.can_operate(op_id):
                continue
            targets = list(land_ids)[: ctx.quota.remaining(op_id)]
            ok = await self._per_land(friend, targets, action, stop_when=lambda op=op_id: not ctx.quota.can_operate(op))
            if ok:
                actions.append(f"{label}{ok}")
                setattr(totals, attr, getattr(totals, attr) + ok)

    async def _per_land(
        self,
        friend: FriendPreview,
        land_ids: Sequence[int],
        action: LandAction,
        *,
        stop_when: Callable[[], bool] | None = None,
    ) -> int:
        ok = 0
        for land_id in land_ids:
            if stop_when is not None and stop_when():
                break
            try:
                await action(friend.gid, [land_id])
                ok += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.ctx.log.debug("好友", f"{friend.name} 土地#{land_id} 操作失败: {e}")
            await asyncio.sleep(self.ctx.settings.friend_land_delay)
        return ok

    async def _leave(self, gid: int) -> None:
        try:
            await self.ctx.friend.leave_friend_farm(gid)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.ctx.log.debug("好友", f"离开农场失败: {e}")

    async def check_applications(self) -> int:
        try:
            applications = await self.ctx.friend.get_applications()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # QQ 平台可能不支持
            self.ctx.log.debug("申请", f"查询好友申请失败: {e}")
            return 0
        if not applications:
            return 0
        names = ", ".join(str(a.get("name") or f"GID:{_to_int(a.get('gid'))}") for a in applications)
        self.ctx.log.info("申请", f"发现 {len(applications)} 个待处理申请: {names}")
        return await self.accept([_to_int(a.get("gid"), 0) for a in applications])

    async def accept(self, gids: Sequence[int]) -> int:
        if not gids:
            return 0
        try:
            friends = await self.ctx.friend.accept_friends(gids)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.ctx.log.warn("申请", f"同意失败: {e}")
            return 0
        if friends:
            names = ", ".join(str(f.get("name") or f.get("remark") or f"GID:{_to_int(f.get('gid'))}") for f in friends)
            self.ctx.log.info("申请", f"已同意 {len(friends)} 人: {names}")
        return len(friends)
