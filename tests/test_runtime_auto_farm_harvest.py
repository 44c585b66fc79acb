from __future__ import annotations

import asyncio
from datetime import date

import pytest

from qfarm_autopilot.services.domain.analytics_service import AnalyticsService
from qfarm_autopilot.services.domain.config_data import GameConfigData
from qfarm_autopilot.services.domain.farm_service import FarmService
from qfarm_autopilot.services.domain.friend_service import FriendService
from qfarm_autopilot.services.domain.quota_tracker import QuotaTracker
from qfarm_autopilot.services.domain.warehouse_service import WarehouseService
from qfarm_autopilot.services.protocol.clock import ServerClock
from qfarm_autopilot.services.runtime.context import PlayerState, RuntimeContext
from qfarm_autopilot.services.runtime.farm_orchestrator import FarmOrchestrator
from qfarm_autopilot.services.runtime.log_sink import RuntimeLog
from qfarm_autopilot.services.runtime.settings import AutomationSettings
from qfarm_autopilot.services.state_store import RuntimeStateStore

NOW = 1_760_000_000


class _ScriptedRpc:
    """按方法名返回预设回包；值为异常时抛出，为可调用对象时以 payload 调用。"""

    def __init__(self, script: dict) -> None:
        self.script = script
        self.calls: list[tuple[str, dict]] = []

    async def call(self, service: str, method: str, payload=None, *, timeout_sec=None):
        _ = (service, timeout_sec)
        payload = dict(payload or {})
        self.calls.append((method, payload))
        handler = self.script.get(method, {})
        if callable(handler):
            handler = handler(payload)
            if asyncio.iscoroutine(handler):
                handler = await handler
        if isinstance(handler, Exception):
            raise handler
        return handler

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


class _FakeSession:
    connected = True


def _growing(land_id: int, **extra) -> dict:
    phase = {"phase": 3, "begin_time": str(NOW - 600)}
    phase.update(extra)
    return {
        "id": str(land_id),
        "unlocked": True,
        "plant": {"id": "1020002", "phases": [phase, {"phase": 6, "begin_time": str(NOW + 3600)}]},
    }


def _mature(land_id: int) -> dict:
    return {"id": str(land_id), "unlocked": True, "plant": {"id": "1020002", "phases": [{"phase": 6, "begin_time": str(NOW - 5)}]}}


def _empty(land_id: int, **extra) -> dict:
    row = {"id": str(land_id), "unlocked": True}
    row.update(extra)
    return row


def _shop(price: int = 10) -> dict:
    return {
        "goods_list": [
            {"id": "7", "item_id": "20002", "price": str(price), "unlocked": True, "conds": [{"type": 1, "param": "1"}]},
        ]
    }


def _build(rpc: _ScriptedRpc, *, gold: int = 1000, **settings) -> RuntimeContext:
    config = GameConfigData.from_tables(plants=[{"id": 1020002, "seed_id": 20002, "name": "胡萝卜"}])
    analytics = AnalyticsService(config)
    store = RuntimeStateStore()
    log = RuntimeLog(store)
    quota = QuotaTracker(today_fn=lambda: date(2026, 3, 1))
    base = {"plant_delay": 0, "friend_land_delay": 0, "friend_visit_delay": 0}
    base.update(settings)
    return RuntimeContext(
        session=_FakeSession(),  # type: ignore[arg-type]
        rpc=rpc,  # type: ignore[arg-type]
        clock=ServerClock(wall=lambda: float(NOW), monotonic=lambda: 0.0),
        quota=quota,
        config_data=config,
        farm=FarmService(rpc, config, analytics, logger=log.child("农场")),  # type: ignore[arg-type]
        friend=FriendService(rpc, config, quota),  # type: ignore[arg-type]
        warehouse=WarehouseService(rpc, config),  # type: ignore[arg-type]
        analytics=analytics,
        log=log,
        store=store,
        settings=AutomationSettings.from_mapping(base),
        player=PlayerState(gid=9527, level=10, gold=gold),
    )


def _all_lands(first: list[dict], refreshed: list[dict] | None = None):
    def _reply(payload: dict) -> dict:
        if payload.get("land_ids"):
            return {"lands": list(refreshed or [])}
        return {"lands": list(first), "operation_limits": [{"id": 10001, "day_times": "3"}]}

    return _reply


@pytest.mark.asyncio
async def test_harvested_land_is_replanted_in_same_cycle():
    rpc = _ScriptedRpc(
        {
            "AllLands": _all_lands([_mature(1), _growing(2, weeds_time=str(NOW - 10))], [_empty(1)]),
            "ShopInfo": _shop(10),
            "BuyGoods": {"get_items": [{"id": "20003", "count": "1"}], "cost_items": [{"id": "1", "count": "10"}]},
        }
    )
    ctx = _build(rpc)

    assert await FarmOrchestrator(ctx).run_cycle() is True

    assert rpc.methods() == ["Bag", "AllLands", "WeedOut", "Harvest", "AllLands", "ShopInfo", "BuyGoods", "Plant", "Fertilize"]
    assert rpc.calls[2][1] == {"land_ids": [2], "host_gid": 9527}
    assert rpc.calls[4][1]["land_ids"] == [1]
    assert rpc.calls[6][1] == {"goods_id": 7, "num": 1, "price": 10}
    # 以购买回包里的种子 id 为准
    assert rpc.calls[7][1] == {"items": [{"seed_id": 20003, "land_ids": [1]}]}
    assert ctx.player.gold == 990
    assert ctx.quota.get(10001).day_times == 3
    assert [row["id"] for row in ctx.store.lands] == [1, 2]
    messages = [row["message"] for row in ctx.store.logs]
    assert any(m.startswith("[收:1 草:1 长:1] → 除草1/收获1/种植1") for m in messages)


@pytest.mark.asyncio
async def test_second_season_land_is_left_alone():
    rpc = _ScriptedRpc({"AllLands": _all_lands([_mature(1)], [_growing(1)])})
    ctx = _build(rpc)

    await FarmOrchestrator(ctx).run_cycle()

    assert rpc.methods() == ["Bag", "AllLands", "Harvest", "AllLands"]


@pytest.mark.asyncio
async def test_dead_lands_are_skipped_when_auto_remove_disabled():
    dead = {"id": "4", "unlocked": True, "plant": {"id": "1020002", "phases": [{"phase": 7, "begin_time": str(NOW - 5)}]}}
    rpc = _ScriptedRpc({"AllLands": _all_lands([dead]), "ShopInfo": _shop()})
    ctx = _build(rpc, auto_remove=False)

    await FarmOrchestrator(ctx).run_cycle()

    assert "RemovePlant" not in rpc.methods()
    assert "Plant" not in rpc.methods()

    rpc.calls.clear()
    ctx.settings = AutomationSettings.from_mapping({"plant_delay": 0, "auto_fertilize": False})
    await FarmOrchestrator(ctx).run_cycle()
    assert rpc.methods() == ["Bag", "AllLands", "RemovePlant", "ShopInfo", "BuyGoods", "Plant"]


@pytest.mark.asyncio
async def test_planting_is_capped_by_gold():
    rpc = _ScriptedRpc({"AllLands": _all_lands([_empty(1), _empty(2), _empty(3)]), "ShopInfo": _shop(400)})
    ctx = _build(rpc, gold=1000, auto_fertilize=False)

    await FarmOrchestrator(ctx).run_cycle()

    buy = [p for m, p in rpc.calls if m == "BuyGoods"]
    plants = [p["items"][0]["land_ids"] for m, p in rpc.calls if m == "Plant"]
    assert buy == [{"goods_id": 7, "num": 2, "price": 400}]
    assert plants == [[1], [2]]
    assert any("金币不足" in row["message"] for row in ctx.store.logs)


@pytest.mark.asyncio
async def test_fertilizer_goes_only_to_lands_that_were_planted():
    rpc = _ScriptedRpc(
        {
            "AllLands": _all_lands([_empty(1), _empty(2), _empty(3)]),
            "ShopInfo": _shop(10),
            "Plant": lambda payload: RuntimeError("土地被占用") if payload["items"][0]["land_ids"] == [1] else {},
        }
    )
    ctx = _build(rpc)

    await FarmOrchestrator(ctx).run_cycle()

    fertilized = [p["land_ids"] for m, p in rpc.calls if m == "Fertilize"]
    assert fertilized == [[2], [3]]


@pytest.mark.asyncio
async def test_upgrade_stops_at_first_failure_but_unlock_still_runs():
    lands = [
        _growing(3) | {"could_upgrade": True},
        _growing(5) | {"could_upgrade": True},
        {"id": "8", "unlocked": False, "could_unlock": True},
        {"id": "9", "unlocked": False, "could_unlock": True},
    ]
    rpc = _ScriptedRpc(
        {
            "AllLands": _all_lands(lands),
            "UpgradeLand": lambda payload: RuntimeError("金币不足") if payload["land_id"] == 3 else {},
        }
    )
    ctx = _build(rpc)

    await FarmOrchestrator(ctx).run_cycle()

    assert [(m, p.get("land_id")) for m, p in rpc.calls if m in {"UpgradeLand", "UnlockLand"}] == [
        ("UpgradeLand", 3),
        ("UnlockLand", 8),
        ("UnlockLand", 9),
    ]
    assert any(row["isWarn"] and "土地3失败" in row["message"] for row in ctx.store.logs)


@pytest.mark.asyncio
async def test_remedy_failure_does_not_block_harvest():
    rpc = _ScriptedRpc(
        {
            "AllLands": _all_lands([_mature(1), _growing(2, insect_time=str(NOW - 1))], [_growing(1)]),
            "Insecticide": RuntimeError("boom"),
        }
    )
    ctx = _build(rpc)

    await FarmOrchestrator(ctx).run_cycle()

    assert "Harvest" in rpc.methods()
    assert any(row["tag"] == "除虫" and row["isWarn"] for row in ctx.store.logs)


@pytest.mark.asyncio
async def test_cycle_is_not_reentrant():
    gate = asyncio.Event()

    async def _slow_bag(payload: dict) -> dict:
        _ = payload
        await gate.wait()
        return {}

    rpc = _ScriptedRpc({"Bag": _slow_bag, "AllLands": {"lands": []}})
    ctx = _build(rpc)
    farm = FarmOrchestrator(ctx)

    first = asyncio.create_task(farm.run_cycle())
    await asyncio.sleep(0)
    assert farm.running is True
    assert await farm.run_cycle() is False

    gate.set()
    assert await first is True
    assert farm.running is False
    assert rpc.methods() == ["Bag", "AllLands"]
    assert ctx.store.logs[0]["message"] == "没有土地数据"


@pytest.mark.asyncio
async def test_cycle_skipped_without_login():
    rpc = _ScriptedRpc({})
    ctx = _build(rpc)
    ctx.player.gid = 0

    assert await FarmOrchestrator(ctx).run_cycle() is True
    assert rpc.calls == []
