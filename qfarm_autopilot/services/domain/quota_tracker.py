from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import Any

OP_HARVEST = 10001
OP_REMOVE = 10002
OP_PUT_WEED = 10003
OP_PUT_INSECT = 10004
OP_HELP_WEED = 10005
OP_HELP_INSECT = 10006
OP_HELP_WATER = 10007
OP_STEAL = 10008

OP_NAMES = {
    OP_HARVEST: "收获",
    OP_REMOVE: "铲除",
    OP_PUT_WEED: "放草",
    OP_PUT_INSECT: "放虫",
    OP_HELP_WEED: "除草",
    OP_HELP_INSECT: "除虫",
    OP_HELP_WATER: "浇水",
    OP_STEAL: "偷菜",
}

HELP_OPS = (OP_HELP_WEED, OP_HELP_INSECT, OP_HELP_WATER)

UNCAPPED_REMAINING = 999


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


class QuotaExhausted(RuntimeError):
    def __init__(self, op_id: int) -> None:
        self.op_id = int(op_id)
        super().__init__(f"{OP_NAMES.get(self.op_id, f'#{self.op_id}')} 今日经验已耗尽")


@dataclass(slots=True)
class OperationQuota:
    day_times: int = 0
    day_times_limit: int = 0
    day_exp_times: int = 0
    day_exp_times_limit: int = 0
    exp_exhausted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "dayTimes": self.day_times,
            "dayTimesLimit": self.day_times_limit,
            "dayExpTimes": self.day_exp_times,
            "dayExpTimesLimit": self.day_exp_times_limit,
            "expExhausted": self.exp_exhausted,
        }


class QuotaTracker:
    """服务端下发的每日操作次数。

    经验上限不会显式下发，只能推断：:meth:`mark_pre_sample` 在操作前记下
    ``day_exp_times``，下一次带该操作的 :meth:`update` 做比较。没有增长即视为
    今日经验已满，直到本地日期变化。
    """

    def __init__(
        self,
        *,
        today_fn: Callable[[], date] = date.today,
        on_log: Callable[[str, str], None] | None = None,
    ) -> None:
        self._today_fn = today_fn
        self._on_log = on_log
        self._limits: dict[int, OperationQuota] = {}
        self._exhausted: set[int] = set()
        self._pre_samples: dict[int, int] = {}
        self._last_reset_date = ""

    def check_daily_reset(self) -> bool:
        today = self._today_fn().isoformat()
        if self._last_reset_date == today:
            return False
        had_date = bool(self._last_reset_date)
        self._limits.clear()
        self._exhausted.clear()
        self._pre_samples.clear()
        self._last_reset_date = today
        if had_date:
            self._log("系统", "跨日重置，清空操作限制缓存")
        return had_date

    def update(self, limits: Iterable[dict[str, Any]] | None) -> None:
        rows = list(limits or [])
        if not rows:
            return
        self.check_daily_reset()
        for row in rows:
            op_id = _to_int(row.get("id"), 0)
            if op_id <= 0:
                continue
            exp_times = _to_int(row.get("day_exp_times"), 0)
            self._limits[op_id] = OperationQuota(
                day_times=_to_int(row.get("day_times"), 0),
                day_times_limit=_to_int(row.get("day_times_lt"), 0),
                day_exp_times=exp_times,
                day_exp_times_limit=_to_int(row.get("day_ex_times_lt"), 0),
                exp_exhausted=op_id in self._exhausted,
            )
            if op_id not in self._pre_samples:
                continue
            before = self._pre_samples.pop(op_id)
            if exp_times <= before and op_id not in self._exhausted:
                self._exhausted.add(op_id)
                self._limits[op_id].exp_exhausted = True
                self._log("限制", f"{OP_NAMES.get(op_id, f'#{op_id}')} 经验已耗尽 (已获{exp_times}次)")

    def mark_pre_sample(self, op_id: int) -> None:
        quota = self._limits.get(int(op_id))
        if quota is not None:
            self._pre_samples[int(op_id)] = quota.day_exp_times

    def mark_exhausted(self, op_id: int) -> None:
        self._exhausted.add(int(op_id))
        quota = self._limits.get(int(op_id))
        if quota is not None:
            quota.exp_exhausted = True

    def is_exhausted(self, op_id: int) -> bool:
        return int(op_id) in self._exhausted

    def can_get_exp(self, op_id: int) -> bool:
        op_id = int(op_id)
        if op_id in self._exhausted:
            return False
        quota = self._limits.get(op_id)
        if quota is None:
            return True
        if quota.day_exp_times_limit > 0:
            return quota.day_exp_times < quota.day_exp_times_limit
        return True

    def require_exp(self, op_id: int) -> None:
        if not self.can_get_exp(op_id):
            raise QuotaExhausted(op_id)

    def can_operate(self, op_id: int) -> bool:
        quota = self._limits.get(int(op_id))
        if quota is None or quota.day_times_limit <= 0:
            return True
        return quota.day_times < quota.day_times_limit

    def remaining(self, op_id: int) -> int:
        quota = self._limits.get(int(op_id))
        if quota is None or quota.day_times_limit <= 0:
            return UNCAPPED_REMAINING
        return max(0, quota.day_times_limit - quota.day_times)

    def get(self, op_id: int) -> OperationQuota | None:
        return self._limits.get(int(op_id))

    def snapshot(self) -> dict[str, Any]:
        return {
            str(op_id): {"name": OP_NAMES.get(op_id, f"#{op_id}"), **quota.to_dict()}
            for op_id, quota in sorted(self._limits.items())
        }

    def summary_parts(self) -> list[str]:
        parts: list[str] = []
        for op_id in (*HELP_OPS, OP_STEAL):
            quota = self._limits.get(op_id)
            if quota and quota.day_exp_times_limit > 0:
                left = quota.day_exp_times_limit - quota.day_exp_times
                parts.append(f"{OP_NAMES[op_id]}{left}/{quota.day_exp_times_limit}")
        for op_id in (OP_PUT_WEED, OP_PUT_INSECT):
            quota = self._limits.get(op_id)
            if quota and quota.day_times_limit > 0:
                left = quota.day_times_limit - quota.day_times
                parts.append(f"{OP_NAMES[op_id]}{left}/{quota.day_times_limit}")
        return parts

    def __len__(self) -> int:
        return len(self._limits)

    def _log(self, tag: str, message: str) -> None:
        if self._on_log is not None:
            self._on_log(tag, message)
