from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


class GameConfigData:
    """静态游戏配置表：Plant.json、ItemInfo.json、RoleLevel.json。

    文件缺失或损坏时退化为空表，查询返回占位名称而不是报错。
    """

    SEED_ITEM_TYPE = 5

    def __init__(self, config_dir: Path | str | None = None, *, logger: Any | None = None) -> None:
        self.config_dir = Path(config_dir) if config_dir else None
        self.logger = logger

        self.role_level: list[dict[str, Any]] = []
        self.level_exp_table: dict[int, int] = {}

        self.plants: list[dict[str, Any]] = []
        self.plant_by_id: dict[int, dict[str, Any]] = {}
        self.plant_by_seed: dict[int, dict[str, Any]] = {}
        self.plant_by_fruit: dict[int, dict[str, Any]] = {}

        self.item_by_id: dict[int, dict[str, Any]] = {}
        self.seed_item_by_id: dict[int, dict[str, Any]] = {}

        self.reload()

    @classmethod
    def from_tables(
        cls,
        *,
        plants: list[dict[str, Any]] | None = None,
        items: list[dict[str, Any]] | None = None,
        role_level: list[dict[str, Any]] | None = None,
    ) -> GameConfigData:
        data = cls(None)
        data._index_role_level(role_level or [])
        data._index_plants(plants or [])
        data._index_items(items or [])
        return data

    def reload(self) -> None:
        if self.config_dir is None:
            return
        self._index_role_level(self._read_json(self.config_dir / "RoleLevel.json", []))
        self._index_plants(self._read_json(self.config_dir / "Plant.json", []))
        self._index_items(self._read_json(self.config_dir / "ItemInfo.json", []))

    def get_level_exp_progress(self, level: int, total_exp: int) -> dict[str, int]:
        current_start = self.level_exp_table.get(level, 0)
        next_start = self.level_exp_table.get(level + 1, current_start + 100000)
        current = max(0, int(total_exp) - int(current_start))
        needed = max(1, int(next_start) - int(current_start))
        return {"current": current, "needed": needed, "level": int(level)}

    def get_seed_price(self, seed_id: int) -> int:
        item = self.seed_item_by_id.get(int(seed_id))
        return _to_int(item.get("price"), 0) if item else 0

    def get_fruit_price(self, fruit_id: int) -> int:
        item = self.item_by_id.get(int(fruit_id))
        return _to_int(item.get("price"), 0) if item else 0

    def get_item_by_id(self, item_id: int) -> dict[str, Any] | None:
        return self.item_by_id.get(int(item_id))

    def get_item_name(self, item_id: int) -> str:
        item = self.item_by_id.get(int(item_id))
        if item and item.get("name"):
            return str(item["name"])
        plant = self.plant_by_seed.get(int(item_id))
        if plant:
            return f"{plant.get('name')}种子"
        return self.get_fruit_name(item_id) if int(item_id) in self.plant_by_fruit else f"物品{item_id}"

    def is_fruit(self, item_id: int) -> bool:
        return int(item_id) in self.plant_by_fruit

    def get_fruit_name(self, fruit_id: int) -> str:
        plant = self.plant_by_fruit.get(int(fruit_id))
        if plant:
            return str(plant.get("name") or f"果实{fruit_id}")
        item = self.item_by_id.get(int(fruit_id))
        if item:
            return str(item.get("name") or f"果实{fruit_id}")
        return f"果实{fruit_id}"

    def get_plant_exp(self, plant_id: int) -> int:
        plant = self.plant_by_id.get(int(plant_id))
        return _to_int(plant.get("exp"), 0) if plant else 0

    def get_plant_grow_time_sec(self, plant_id: int) -> int:
        plant = self.plant_by_id.get(int(plant_id))
        if not plant:
            return 0
        return parse_grow_time(plant.get("grow_phases"))

    @staticmethod
    def format_grow_time(seconds: int) -> str:
        sec = max(0, int(seconds))
        if sec < 60:
            return f"{sec}秒"
        if sec < 3600:
            return f"{sec // 60}分钟"
        hours = sec // 3600
        mins = (sec % 3600) // 60
        if mins > 0:
            return f"{hours}小时{mins}分钟"
        return f"{hours}小时"

    def get_plant_by_seed(self, seed_id: int) -> dict[str, Any] | None:
        return self.plant_by_seed.get(int(seed_id))

    def get_plant_name_by_seed(self, seed_id: int) -> str:
        plant = self.get_plant_by_seed(seed_id)
        return str(plant.get("name")) if plant else f"种子{seed_id}"

    def get_plant_name(self, plant_id: int) -> str:
        plant = self.plant_by_id.get(int(plant_id))
        return str(plant.get("name")) if plant else f"植物{plant_id}"

    def _index_role_level(self, rows: list[dict[str, Any]]) -> None:
        self.role_level = rows
        self.level_exp_table = {}
        for row in rows:
            level = _to_int(row.get("level"), 0)
            if level > 0:
                self.level_exp_table[level] = _to_int(row.get("exp"), 0)

    def _index_plants(self, rows: list[dict[str, Any]]) -> None:
        self.plants = rows
        self.plant_by_id = {}
        self.plant_by_seed = {}
        self.plant_by_fruit = {}
        for plant in rows:
            plant_id = _to_int(plant.get("id"), 0)
            if plant_id > 0:
                self.plant_by_id[plant_id] = plant
            seed_id = _to_int(plant.get("seed_id"), 0)
            if seed_id > 0:
                self.plant_by_seed[seed_id] = plant
            fruit = plant.get("fruit") if isinstance(plant.get("fruit"), dict) else {}
            fruit_id = _to_int(fruit.get("id"), 0)
            if fruit_id > 0:
                self.plant_by_fruit[fruit_id] = plant

    def _index_items(self, rows: list[dict[str, Any]]) -> None:
        self.item_by_id = {}
        self.seed_item_by_id = {}
        for row in rows:
            item_id = _to_int(row.get("id"), 0)
            if item_id <= 0:
                continue
            self.item_by_id[item_id] = row
            if _to_int(row.get("type"), 0) == self.SEED_ITEM_TYPE:
                self.seed_item_by_id[item_id] = row

    def _read_json(self, path: Path, default: Any) -> Any:
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            if self.logger:
                self.logger.warning(f"读取 {path.name} 失败: {e}")
            return default


def parse_grow_time(grow_phases: str | None) -> int:
    """``"种子:3600;发芽:7200;..."`` -> 各阶段秒数之和。"""
    if not grow_phases:
        return 0
    total = 0
    for seg in str(grow_phases).split(";"):
        part = seg.strip()
        if not part or ":" not in part:
            continue
        total += _to_int(part.rsplit(":", 1)[1], 0)
    return max(0, total)
