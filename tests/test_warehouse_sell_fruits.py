from __future__ import annotations

import pytest

from qfarm_autopilot.services.domain.config_data import GameConfigData
from qfarm_autopilot.services.domain.warehouse_service import WarehouseService


class _BagRpc:
    def __init__(self, bag: dict, *, fail_batches: bool = False, bad_ids: set[int] | None = None) -> None:
        self.bag = bag
        self.fail_batches = fail_batches
        self.bad_ids = bad_ids or set()
        self.sells: list[list[int]] = []

    async def call(self, service: str, method: str, payload=None, *, timeout_sec=None):
        _ = (service, timeout_sec)
        if method == "Bag":
            return self.bag
        items = (payload or {}).get("items") or []
        self.sells.append([row["id"] for row in items])
        if len(items) > 1 and self.fail_batches:
            raise RuntimeError("batch rejected")
        if any(row["id"] in self.bad_ids for row in items):
            raise RuntimeError("item locked")
        gold = sum(row["count"] for row in items)
        return {"get_items": [{"id": "1", "count": str(gold)}]}


def _config() -> GameConfigData:
    return GameConfigData.from_tables(
        plants=[
            {"id": 1020002, "seed_id": 20002, "name": "胡萝卜", "fruit": {"id": 40002}},
            {"id": 1020003, "seed_id": 20003, "name": "白菜", "fruit": {"id": 40003}},
        ]
    )


def _bag() -> dict:
    return {
        "item_bag": {
            "items": [
                {"id": "40002", "count": "5", "uid": "11"},
                {"id": "40003", "count": "2", "uid": "12"},
                {"id": "20002", "count": "9", "uid": "13"},
                {"id": "40003", "count": "1", "uid": "0"},
            ]
        }
    }


@pytest.mark.asyncio
async def test_sell_all_fruits_sells_only_fruit_slots():
    rpc = _BagRpc(_bag())
    service = WarehouseService(rpc, _config())  # type: ignore[arg-type]

    result = await service.sell_all_fruits()

    assert rpc.sells == [[40002, 40003]]
    assert result == {"soldKinds": 2, "goldEarned": 7, "names": ["胡萝卜x5", "白菜x2"]}


@pytest.mark.asyncio
async def test_batch_failure_falls_back_to_single_sells():
    rpc = _BagRpc(_bag(), fail_batches=True, bad_ids={40003})
    service = WarehouseService(rpc, _config())  # type: ignore[arg-type]

    result = await service.sell_all_fruits()

    assert rpc.sells == [[40002, 40003], [40002], [40003]]
    assert result["soldKinds"] == 1
    assert result["goldEarned"] == 5


@pytest.mark.asyncio
async def test_backpack_rows_use_table_names():
    rpc = _BagRpc({"items": [{"id": "20002", "count": "3", "uid": "1"}]})
    service = WarehouseService(rpc, _config())  # type: ignore[arg-type]

    rows = await service.get_backpack()

    assert rows[0]["id"] == 20002
    assert rows[0]["count"] == 3
    assert rows[0]["name"] == "胡萝卜种子"
