from __future__ import annotations

import asyncio
from typing import Any

from ..protocol.rpc import GameRpc
from .config_data import GameConfigData

ITEM_SERVICE = "gamepb.itempb.ItemService"

GOLD_ITEM_IDS = {1, 1001}
EXP_ITEM_IDS = {2, 1101}


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


class WarehouseService:
    SELL_BATCH_SIZE = 15

    def __init__(self, rpc: GameRpc, config_data: GameConfigData, *, logger: Any | None = None) -> None:
        self.rpc = rpc
        self.config_data = config_data
        self.logger = logger

    async def get_bag(self) -> dict[str, Any]:
        return await self.rpc.call(ITEM_SERVICE, "Bag", {})

    async def sell_items(self, items: list[dict[str, int]]) -> dict[str, Any]:
        payload = [self._to_sell_item(row) for row in items if _to_int(row.get("count"), 0) > 0]
        return await self.rpc.call(ITEM_SERVICE, "Sell", {"items": payload})

    async def get_backpack(self) -> list[dict[str, Any]]:
        reply = await self.get_bag()
        rows: list[dict[str, Any]] = []
        for item in self.get_bag_items(reply):
            item_id = _to_int(item.get("id"), 0)
            info = self.config_data.get_item_by_id(item_id) or {}
            rows.append(
                {
                    "id": item_id,
                    "count": _to_int(item.get("count"), 0),
                    "uid": _to_int(item.get("uid"), 0),
                    "name": str(info.get("name") or self.config_data.get_item_name(item_id)),
                    "icon": str(info.get("icon_res") or ""),
                    "type": _to_int(info.get("type"), 0),
                    "mutant_types": list(item.get("mutant_types") or []),
                }
            )
        return rows

    async def sell_all_fruits(self) -> dict[str, Any]:
        bag_reply = await self.get_bag()
        targets = []
        names = []
        for item in self.get_bag_items(bag_reply):
            item_id = _to_int(item.get("id"), 0)
            count = _to_int(item.get("count"), 0)
            uid = _to_int(item.get("uid"), 0)
            # uid 为 0 的是无效格子
            if count <= 0 or uid <= 0:
                continue
            if self.config_data.is_fruit(item_id):
                targets.append({"id": item_id, "count": count, "uid": uid})
                names.append(f"{self.config_data.get_fruit_name(item_id)}x{count}")
        if not targets:
            return {"soldKinds": 0, "goldEarned": 0, "names": []}

        sold = 0
        gold_total = 0
        for idx in range(0, len(targets), self.SELL_BATCH_SIZE):
            batch = targets[idx : idx + self.SELL_BATCH_SIZE]
            try:
                reply = await self.sell_items(batch)
                sold += len(batch)
                gold_total += self._derive_gold_gain(reply)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._debug(f"批量出售失败，逐个重试: {e}")
                for row in batch:
                    try:
                        reply = await self.sell_items([row])
                        sold += 1
                        gold_total += self._derive_gold_gain(reply)
                    except asyncio.CancelledError:
                        raise
                    except Exception as single_err:
                        self._debug(f"出售 {row.get('id')} 失败: {single_err}")
                        continue
                    await asyncio.sleep(0.1)
            if idx + self.SELL_BATCH_SIZE < len(targets):
                await asyncio.sleep(0.3)
        return {"soldKinds": sold, "goldEarned": max(0, gold_total), "names": names}

    @staticmethod
    def get_bag_items(reply: dict[str, Any]) -> list[dict[str, Any]]:
        bag = reply.get("item_bag") or {}
        items = bag.get("items") or []
        if items:
            return list(items)
        return list(reply.get("items") or [])

    @staticmethod
    def _to_sell_item(row: dict[str, int]) -> dict[str, int]:
        return {
            "id": _to_int(row.get("id"), 0),
            "count": _to_int(row.get("count"), 0),
            "uid": _to_int(row.get("uid"), 0),
        }

    @staticmethod
    def _derive_gold_gain(reply: dict[str, Any]) -> int:
        gold = 0
        for item in reply.get("get_items") or []:
            if _to_int(item.get("id"), 0) in GOLD_ITEM_IDS:
                gold += max(0, _to_int(item.get("count"), 0))
        if not gold and reply.get("gold") is not None:
            gold = _to_int(reply.get("gold"), 0)
        return gold

    def _debug(self, message: str) -> None:
        if self.logger:
            self.logger.debug(message)
