from __future__ import annotations

from datetime import date

import pytest

from qfarm_autopilot.services.domain.quota_tracker import (
    OP_HELP_INSECT,
    OP_HELP_WATER,
    OP_HELP_WEED,
    OP_PUT_INSECT,
    OP_STEAL,
    UNCAPPED_REMAINING,
    QuotaExhausted,
    QuotaTracker,
)


class _Today:
    def __init__(self, day: date) -> None:
        self.day = day

    def __call__(self) -> date:
        return self.day


def _limit(op_id: int, **fields) -> dict:
    # json_format 把 int64 转成字符串，这里保持一致
    row = {"id": op_id}
    row.update({k: str(v) for k, v in fields.items()})
    return row


def test_exhausted_after_single_non_growing_sample():
    logs: list[tuple[str, str]] = []
    quota = QuotaTracker(today_fn=_Today(date(2026, 3, 1)), on_log=lambda tag, msg: logs.append((tag, msg)))
    quota.update([_limit(OP_HELP_WEED, day_exp_times=3, day_ex_times_lt=20)])
    assert quota.can_get_exp(OP_HELP_WEED) is True

    quota.mark_pre_sample(OP_HELP_WEED)
    quota.update([_limit(OP_HELP_WEED, day_exp_times=3, day_ex_times_lt=20)])

    assert quota.is_exhausted(OP_HELP_WEED) is True
    assert quota.can_get_exp(OP_HELP_WEED) is False
    assert quota.get(OP_HELP_WEED).exp_exhausted is True
    assert any("经验已耗尽" in msg for _, msg in logs)
    with pytest.raises(QuotaExhausted):
        quota.require_exp(OP_HELP_WEED)


def test_growing_sample_keeps_exp_available():
    quota = QuotaTracker(today_fn=_Today(date(2026, 3, 1)))
    quota.update([_limit(OP_HELP_WATER, day_exp_times=3)])

    quota.mark_pre_sample(OP_HELP_WATER)
    quota.update([_limit(OP_HELP_WATER, day_exp_times=4)])

    assert quota.is_exhausted(OP_HELP_WATER) is False
    quota.require_exp(OP_HELP_WATER)

    # 没有预采样的更新不做推断
    quota.update([_limit(OP_HELP_WATER, day_exp_times=4)])
    assert quota.is_exhausted(OP_HELP_WATER) is False


def test_exp_limit_reached_blocks_without_sample():
    quota = QuotaTracker(today_fn=_Today(date(2026, 3, 1)))
    quota.update([_limit(OP_HELP_INSECT, day_exp_times=20, day_ex_times_lt=20)])

    assert quota.can_get_exp(OP_HELP_INSECT) is False
    assert quota.is_exhausted(OP_HELP_INSECT) is False


def test_hard_cap_and_remaining():
    quota = QuotaTracker(today_fn=_Today(date(2026, 3, 1)))
    assert quota.can_operate(OP_PUT_INSECT) is True
    assert quota.remaining(OP_PUT_INSECT) == UNCAPPED_REMAINING

    quota.update([_limit(OP_PUT_INSECT, day_times=7, day_times_lt=10), _limit(OP_STEAL, day_times=5)])
    assert quota.remaining(OP_PUT_INSECT) == 3
    assert quota.can_operate(OP_PUT_INSECT) is True
    assert quota.remaining(OP_STEAL) == UNCAPPED_REMAINING

    quota.update([_limit(OP_PUT_INSECT, day_times=10, day_times_lt=10)])
    assert quota.can_operate(OP_PUT_INSECT) is False
    assert quota.remaining(OP_PUT_INSECT) == 0


def test_date_rollover_clears_everything():
    today = _Today(date(2026, 3, 1))
    logs: list[str] = []
    quota = QuotaTracker(today_fn=today, on_log=lambda tag, msg: logs.append(msg))
    quota.update([_limit(OP_HELP_WEED, day_exp_times=3), _limit(OP_PUT_INSECT, day_times=10, day_times_lt=10)])
    quota.mark_exhausted(OP_HELP_WEED)
    assert quota.check_daily_reset() is False

    today.day = date(2026, 3, 2)
    assert quota.check_daily_reset() is True

    assert len(quota) == 0
    assert quota.is_exhausted(OP_HELP_WEED) is False
    assert quota.can_operate(OP_PUT_INSECT) is True
    assert quota.snapshot() == {}
    assert logs == ["跨日重置，清空操作限制缓存"]


def test_update_on_new_day_resets_before_applying():
    today = _Today(date(2026, 3, 1))
    quota = QuotaTracker(today_fn=today)
    quota.update([_limit(OP_HELP_WEED, day_exp_times=3)])
    quota.mark_exhausted(OP_HELP_WEED)

    today.day = date(2026, 3, 2)
    quota.update([_limit(OP_STEAL, day_times=1)])

    assert quota.get(OP_HELP_WEED) is None
    assert quota.is_exhausted(OP_HELP_WEED) is False
    assert quota.get(OP_STEAL).day_times == 1


def test_summary_parts_and_snapshot():
    quota = QuotaTracker(today_fn=_Today(date(2026, 3, 1)))
    quota.update([_limit(OP_HELP_WEED, day_exp_times=5, day_ex_times_lt=20), _limit(OP_PUT_INSECT, day_times=2, day_times_lt=10)])

    assert quota.summary_parts() == ["除草15/20", "放虫8/10"]
    snap = quota.snapshot()
    assert snap[str(OP_HELP_WEED)]["name"] == "除草"
    assert snap[str(OP_HELP_WEED)]["dayExpTimes"] == 5
