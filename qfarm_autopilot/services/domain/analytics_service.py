from __future__ import annotations

from typing import Any

from .config_data import GameConfigData, parse_grow_time

# 种植 + 施肥都是逐块操作，每块约 2 * 50ms
_PER_LAND_OP_SEC = 0.1


def _parse_normal_fertilizer_reduce_sec(grow_phases: str | None) -> int:
    if not grow_phases:
        return 0
    first = str(grow_phases).split(";", 1)[0]
    if ":" not in first:
        return 0
    try:
        return int(first.rsplit(":", 1)[1])
    except ValueError:
        return 0


class AnalyticsService:
    def __init__(self, config: GameConfigData) -> None:
        self.config = config

    def get_plant_rankings(self, land_count: int = 18) -> list[dict[str, Any]]:
        lands = max(1, int(land_count or 0))
        overhead = lands * _PER_LAND_OP_SEC
        rows: list[dict[str, Any]] = []
        for plant in self.config.plants:
            plant_id = int(plant.get("id") or 0)
            seed_id = int(plant.get("seed_id") or 0)
            if plant_id <= 0 or seed_id <= 0:
                continue
            if not str(plant_id).startswith("102"):
                continue
            if not (20000 <= seed_id < 30000):
                continue

            base_grow = parse_grow_time(plant.get("grow_phases"))
            if base_grow <= 0:
                continue
            seasons = int(plant.get("seasons") or 1)
            is_two = seasons == 2
            grow_time = int(base_grow * 1.5) if is_two else base_grow

            base_exp = int(plant.get("exp") or 0)
            harvest_exp = base_exp * 2 if is_two else base_exp
            exp_per_hour = (harvest_exp * lands / (grow_time + overhead)) * 3600

            reduce_base = _parse_normal_fertilizer_reduce_sec(plant.get("grow_phases"))
            reduce_applied = reduce_base * 2 if is_two else reduce_base
            fert_time = max(1, grow_time - reduce_applied)
            fert_exp_per_hour = (harvest_exp * lands / (fert_time + overhead)) * 3600

            rows.append(
                {
                    "id": plant_id,
                    "seedId": seed_id,
                    "name": str(plant.get("name") or f"作物{seed_id}"),
                    "seasons": seasons,
                    "level": int(plant.get("land_level_need") or 0),
                    "growTime": grow_time,
                    "expPerHour": round(exp_per_hour, 2),
                    "normalFertilizerExpPerHour": round(fert_exp_per_hour, 2),
                }
            )
        rows.sort(key=lambda x: float(x["normalFertilizerExpPerHour"]), reverse=True)
        return rows

    def recommend(self, level: int, land_count: int) -> list[int]:
        """按普通肥料经验效率排序的种子 id，仅含等级已达到的作物。"""
        current = int(level or 0)
        return [
            int(row["seedId"])
            for row in self.get_plant_rankings(land_count)
            if int(row["level"]) <= current
        ]
