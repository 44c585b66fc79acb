from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return float(default)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


# 秒为单位的巡查间隔，最低 1 秒
_MIN_INTERVAL_SEC = 1.0
_INTERVAL_KEYS = {"farm_check_interval", "friend_check_interval"}


@dataclass(slots=True, frozen=True)
class AutomationSettings:
    farm_check_interval: float = 1.0
    friend_check_interval: float = 10.0
    force_lowest_level_crop: bool = False

    auto_harvest: bool = True
    auto_remove: bool = True
    auto_plant: bool = True
    auto_fertilize: bool = True
    auto_weed: bool = True
    auto_pest: bool = True
    auto_water: bool = True
    auto_upgrade: bool = True
    auto_unlock: bool = True
    farm_push: bool = True

    auto_friend_visit: bool = True
    auto_help: bool = True
    auto_steal: bool = True
    help_only_with_exp: bool = True
    # 放草放虫会反复拜访好友，默认关闭
    enable_put_bad_things: bool = False

    auto_sell: bool = True
    sell_interval: float = 60.0

    plant_delay: float = 0.05
    friend_land_delay: float = 0.1
    friend_visit_delay: float = 0.5
    steal_min_grow_sec: int = 43200
    steal_override_plant_id: int = 1021542
    fallback_level_threshold: int = 28
    fertilizer_id: int = 1011
    seed_shop_id: int = 2

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> AutomationSettings:
        return cls().merged(data)

    def merged(self, update: Mapping[str, Any] | None) -> AutomationSettings:
        """返回应用了 update 的新实例；接受 snake_case 与 camelCase，未知键忽略。"""
        if not update:
            return self
        fields = {f.name: f for f in dataclasses.fields(self)}
        changes: dict[str, Any] = {}
        for raw_key, value in update.items():
            if value is None:
                continue
            key = _snake(str(raw_key))
            current_field = fields.get(key)
            if current_field is None:
                continue
            current = getattr(self, key)
            if isinstance(current, bool):
                changes[key] = _to_bool(value)
            elif isinstance(current, int):
                changes[key] = int(_to_float(value, current))
            else:
                changes[key] = _to_float(value, current)
            if key in _INTERVAL_KEYS:
                changes[key] = max(_MIN_INTERVAL_SEC, changes[key])
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """camelCase，与外部面板的字段名一致。"""
        result: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            head, *rest = f.name.split("_")
            result[head + "".join(p.capitalize() for p in rest)] = getattr(self, f.name)
        return result


def load_settings_file(path: Path | str | None) -> AutomationSettings:
    if not path:
        return AutomationSettings()
    file = Path(path)
    with file.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{file} 顶层必须是 JSON 对象")
    return AutomationSettings.from_mapping(data)
