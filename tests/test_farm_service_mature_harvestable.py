from __future__ import annotations

import time

from qfarm_autopilot.services.domain.analytics_service import AnalyticsService
from qfarm_autopilot.services.domain.config_data import GameConfigData
from qfarm_autopilot.services.domain.farm_service import FarmService


class _DummyRpc:
    async def call(self, *args, **kwargs):  # pragma: no cover
        _ = (args, kwargs)
        raise RuntimeError("not used in this test")


def _service() -> FarmService:
    config = GameConfigData.from_tables(plants=[{"id": 1020001, "seed_id": 20001, "name": "白萝卜", "exp": 2}])
    return FarmService(
        _DummyRpc(),  # type: ignore[arg-type]
        config,
        AnalyticsService(config),
    )


def test_mature_land_is_harvestable_even_when_not_stealable():
    service = _service()
    now = int(time.time())
    land = {
        "id": "1",
        "unlocked": True,
        "level": 1,
        "plant": {
            "id": "1020001",
            "stealable": False,
            "phases": [{"phase": 6, "begin_time": str(now - 10)}],
        },
    }

    analyzed = service.analyze_lands([land], now_sec=now)

    assert analyzed.harvestable == [1]
    assert 1 not in analyzed.growing
    assert analyzed.lands_detail[0]["status"] == "harvestable"
    assert analyzed.harvestable_info == [{"landId": 1, "plantId": 1020001, "name": "白萝卜", "exp": 2}]


def test_land_buckets_cover_locked_empty_dead_and_upgrade():
    service = _service()
    now = int(time.time())
    lands = [
        {"id": 1, "unlocked": False, "could_unlock": True},
        {"id": 2, "unlocked": False},
        {"id": 3, "unlocked": True, "could_upgrade": True},
        {"id": 4, "unlocked": True, "could_upgrade": True, "plant": {"id": 1020001, "phases": [{"phase": 7, "begin_time": str(now - 1)}]}},
        {"id": 5, "unlocked": True, "could_upgrade": True, "plant": {"id": 1020001, "phases": [{"phase": 3, "begin_time": str(now - 10)}]}},
    ]

    analyzed = service.analyze_lands(lands, now_sec=now)

    assert analyzed.unlockable == [1]
    # 只有生长中的地才算可升级
    assert analyzed.upgradable == [5]
    assert analyzed.empty == [3]
    assert analyzed.dead == [4]
    assert [d["status"] for d in analyzed.lands_detail] == ["locked", "locked", "empty", "dead", "growing"]
    assert analyzed.summary_parts() == ["枯:1", "空:1", "升:1", "解:1", "长:1"]
